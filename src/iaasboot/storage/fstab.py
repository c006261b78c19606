# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/iaasboot/storage/fstab.py

from __future__ import annotations

from typing import List, Tuple


def fstab_line(uuid: str, mount_point: str, fs_type: str, options: str = "defaults,nofail") -> str:
    return f"UUID={uuid} {mount_point} {fs_type} {options} 0 2"


def reconcile_fstab(text: str, uuid: str, mount_point: str, fs_type: str, options: str = "defaults,nofail") -> Tuple[str, bool]:
    """
    Return (new_text, changed). Exactly one line for mount_point, keyed by
    UUID, survives; stale entries for the same mount point or the same UUID
    (e.g. an old /dev/sdX line) are dropped. Comments and unrelated entries
    are kept in place.
    """
    desired = fstab_line(uuid, mount_point, fs_type, options)
    out: List[str] = []
    placed = False

    for raw in text.splitlines():
        fields = raw.split()
        is_entry = len(fields) >= 2 and not raw.lstrip().startswith("#")
        if is_entry and (fields[1] == mount_point or fields[0] == f"UUID={uuid}"):
            if not placed:
                out.append(desired)
                placed = True
            continue
        out.append(raw)

    if not placed:
        out.append(desired)

    new_text = "\n".join(out) + "\n"
    return new_text, new_text != text
