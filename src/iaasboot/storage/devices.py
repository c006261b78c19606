# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/iaasboot/storage/devices.py

from __future__ import annotations

import json
import logging
import os
import stat
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol, Tuple

from iaasboot.execution.runner import CommandRunner

log = logging.getLogger("iaasboot")

LSBLK_COLUMNS = "NAME,PATH,SIZE,TYPE,UUID,FSTYPE,MOUNTPOINT"


@dataclass(frozen=True)
class BlockDevice:
    """
    A block device candidate. ``path`` is not stable across reboots on Azure;
    ``uuid`` is, once the device carries a filesystem.
    """
    path: str
    size: int                            # bytes
    type: str = "disk"                   # disk | part | rom | loop ...
    uuid: Optional[str] = None
    fstype: Optional[str] = None
    mountpoint: Optional[str] = None
    children: Tuple["BlockDevice", ...] = ()

    def mountpoints(self) -> List[str]:
        out = [self.mountpoint] if self.mountpoint else []
        for c in self.children:
            out.extend(c.mountpoints())
        return out

    @property
    def mounted(self) -> bool:
        return bool(self.mountpoints())


def _size(raw: Any) -> int:
    # lsblk -b emits numbers on recent util-linux, strings on older releases
    if raw in (None, ""):
        return 0
    return int(raw)


def _device_from_lsblk(entry: Dict[str, Any]) -> BlockDevice:
    mountpoint = entry.get("mountpoint")
    if mountpoint is None and entry.get("mountpoints"):
        mountpoint = next((m for m in entry["mountpoints"] if m), None)
    path = entry.get("path") or f"/dev/{entry['name']}"
    return BlockDevice(
        path=path,
        size=_size(entry.get("size")),
        type=entry.get("type") or "disk",
        uuid=entry.get("uuid") or None,
        fstype=entry.get("fstype") or None,
        mountpoint=mountpoint or None,
        children=tuple(_device_from_lsblk(c) for c in entry.get("children") or []),
    )


def parse_lsblk(output: str) -> List[BlockDevice]:
    data = json.loads(output or "{}")
    return [_device_from_lsblk(e) for e in data.get("blockdevices", [])]


class DeviceProbe(Protocol):
    """Host-specific device and mount operations used by the VolumeResolver."""

    def list_block_devices(self) -> List[BlockDevice]: ...
    def is_mountpoint(self, mount_point: str) -> bool: ...
    def mount_source(self, mount_point: str) -> Optional[str]: ...
    def is_block_device(self, path: str) -> bool: ...
    def has_signature(self, path: str) -> bool: ...
    def make_filesystem(self, path: str, fs_type: str) -> None: ...
    def read_uuid(self, path: str) -> Optional[str]: ...
    def mount_uuid(self, uuid: str, mount_point: str) -> None: ...
    def reload_mount_units(self) -> None: ...
    def diagnostics(self) -> str: ...


class LinuxDeviceProbe:
    """DeviceProbe backed by util-linux (lsblk, blkid, findmnt, mount)."""

    def __init__(self, runner: CommandRunner):
        self.runner = runner

    def list_block_devices(self) -> List[BlockDevice]:
        out = self.runner.output(["lsblk", "-J", "-b", "-o", LSBLK_COLUMNS])
        return parse_lsblk(out)

    def is_mountpoint(self, mount_point: str) -> bool:
        return self.runner.ok(["mountpoint", "-q", mount_point])

    def mount_source(self, mount_point: str) -> Optional[str]:
        res = self.runner.probe().run(
            ["findmnt", "-n", "-o", "SOURCE", "--mountpoint", mount_point], check=False, quiet=True
        )
        src = res.stdout.strip()
        if res.returncode != 0 or not src:
            return None
        return os.path.realpath(src)

    def is_block_device(self, path: str) -> bool:
        try:
            return stat.S_ISBLK(os.stat(path).st_mode)
        except OSError:
            return False

    def has_signature(self, path: str) -> bool:
        # blkid -p exits 2 when no signature (filesystem, raid, partition table) is found
        res = self.runner.probe().run(["blkid", "-p", path], check=False, quiet=True)
        if res.returncode == 2:
            return False
        if res.returncode == 0:
            return True
        # anything else is ambiguous; refuse to treat the device as blank
        log.warning(f"[volume] blkid -p {path} exited {res.returncode}; assuming a signature is present")
        return True

    def make_filesystem(self, path: str, fs_type: str) -> None:
        self.runner.run([f"mkfs.{fs_type}", path])
        self.runner.run(["udevadm", "settle"], check=False)

    def read_uuid(self, path: str) -> Optional[str]:
        res = self.runner.probe().run(["blkid", "-s", "UUID", "-o", "value", path], check=False, quiet=True)
        uuid = res.stdout.strip()
        return uuid or None

    def mount_uuid(self, uuid: str, mount_point: str) -> None:
        self.runner.run(["mount", f"UUID={uuid}", mount_point])

    def reload_mount_units(self) -> None:
        self.runner.run(["systemctl", "daemon-reload"], check=False)

    def diagnostics(self) -> str:
        parts = []
        for cmd in (["lsblk", "-o", "NAME,PATH,SIZE,TYPE,FSTYPE,UUID,MOUNTPOINT"], ["findmnt", "-l"], ["cat", "/etc/fstab"]):
            res = self.runner.probe().run(cmd, check=False, quiet=True)
            parts.append(f"$ {' '.join(cmd)}\n{(res.stdout or res.stderr).rstrip()}")
        return "\n\n".join(parts)
