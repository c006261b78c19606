# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/iaasboot/storage/selection.py

"""
Pure data-disk selection over a structured device listing. Nothing here
touches the host, so every rule is unit tested directly.
"""

from __future__ import annotations

from typing import Iterable, List, Optional, Sequence

from .devices import BlockDevice


def within_tolerance(size: int, expected: int, tolerance: int) -> bool:
    return abs(size - expected) <= tolerance


def whole_disks(devices: Iterable[BlockDevice]) -> List[BlockDevice]:
    return [d for d in devices if d.type == "disk"]


def unmounted_disks(devices: Iterable[BlockDevice]) -> List[BlockDevice]:
    """Whole disks with nothing mounted on them or on their partitions (skips OS and temp disks)."""
    return [d for d in whole_disks(devices) if not d.mounted]


def select_by_size(devices: Sequence[BlockDevice], expected: int, tolerance: int) -> Optional[BlockDevice]:
    """
    Unmounted disk whose size lies within expected ± tolerance. Several
    matches resolve to the closest size, then the lowest path, so device
    letter ordering never changes the outcome.
    """
    matches = [d for d in unmounted_disks(devices) if within_tolerance(d.size, expected, tolerance)]
    if not matches:
        return None
    return min(matches, key=lambda d: (abs(d.size - expected), d.path))


def select_fallback(devices: Sequence[BlockDevice], fallback_paths: Sequence[str], min_size: int) -> Optional[BlockDevice]:
    """First unmounted disk from fallback_paths (in that order) at least min_size bytes large."""
    by_path = {d.path: d for d in unmounted_disks(devices)}
    for p in fallback_paths:
        d = by_path.get(p)
        if d is not None and d.size >= min_size:
            return d
    return None


def misplaced_matches(devices: Sequence[BlockDevice], expected: int, tolerance: int, mount_point: str) -> List[BlockDevice]:
    """Size-matching disks already mounted somewhere other than mount_point."""
    return [
        d for d in whole_disks(devices)
        if d.mounted
        and mount_point not in d.mountpoints()
        and within_tolerance(d.size, expected, tolerance)
    ]


def describe(devices: Iterable[BlockDevice]) -> str:
    lines = []
    for d in devices:
        lines.append(
            f"{d.path} type={d.type} size={d.size} fstype={d.fstype or '-'} "
            f"uuid={d.uuid or '-'} mounts={','.join(d.mountpoints()) or '-'}"
        )
    return "\n".join(lines)
