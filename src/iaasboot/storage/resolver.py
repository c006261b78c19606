# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/iaasboot/storage/resolver.py

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from iaasboot.config.models import GIB, VolumeSpec
from iaasboot.errors import ProvisioningError, VolumeError
from iaasboot.utils.hostfs import HostFS
from iaasboot.utils.retry import RetryError, retry

from .devices import BlockDevice, DeviceProbe
from .fstab import reconcile_fstab
from .selection import describe, misplaced_matches, select_by_size, select_fallback

log = logging.getLogger("iaasboot")

FSTAB = "/etc/fstab"


@dataclass(frozen=True)
class Mounted:
    uuid: str
    device: str
    mount_point: str
    actions: List[str] = field(default_factory=list)


class VolumeResolver:
    """
    Finds the attached data disk, formats it only when it is blank, and
    mounts it by filesystem UUID with a matching fstab entry.

    Re-running against an already mounted volume is a no-op apart from
    restoring a missing fstab line.
    """

    def __init__(
        self,
        probe: DeviceProbe,
        fs: HostFS,
        spec: VolumeSpec,
        *,
        sleep: Optional[Callable[[float], None]] = None,
    ):
        self.probe = probe
        self.fs = fs
        self.spec = spec
        self._sleep = sleep

    # ------------------ helpers ------------------

    def _fail(self, message: str, devices: Optional[List[BlockDevice]] = None) -> VolumeError:
        diag = []
        if devices is not None:
            diag.append("candidates:\n" + (describe(devices) or "(none)"))
        try:
            diag.append(self.probe.diagnostics())
        except ProvisioningError as e:
            diag.append(f"diagnostics unavailable: {e}")
        return VolumeError(message, diagnostics="\n\n".join(diag))

    def _ensure_fstab(self, uuid: str, mount_point: str) -> bool:
        current = self.fs.read_text(FSTAB) or ""
        new_text, changed = reconcile_fstab(current, uuid, mount_point, self.spec.fs_type, self.spec.mount_options)
        if not changed:
            return False
        self.fs.write_text(FSTAB, new_text, mode=0o644)
        self.probe.reload_mount_units()
        return True

    def _select(self, devices: List[BlockDevice], expected: int, tolerance: int, mount_point: str) -> BlockDevice:
        chosen = select_by_size(devices, expected, tolerance)
        if chosen is not None:
            log.info(f"[volume] {chosen.path} matches expected size ({chosen.size} bytes)")
            return chosen

        misplaced = misplaced_matches(devices, expected, tolerance, mount_point)
        if misplaced:
            # a formatted data disk mounted elsewhere is never unmounted for us
            raise self._fail(
                f"data disk {misplaced[0].path} is already mounted at "
                f"{','.join(misplaced[0].mountpoints())}, expected {mount_point}",
                devices,
            )

        log.info("[volume] no disk matched by size; scanning fallback devices")
        chosen = select_fallback(devices, self.spec.fallback_devices, self.spec.fallback_min_size_gb * GIB)
        if chosen is not None:
            log.info(f"[volume] falling back to {chosen.path} ({chosen.size} bytes)")
            return chosen

        raise self._fail(
            f"no data disk found (expected {expected} bytes ± {tolerance}, "
            f"fallback {','.join(self.spec.fallback_devices)})",
            devices,
        )

    def _mount(self, uuid: str, mount_point: str) -> None:
        def _on_retry(attempt: int, exc: Exception) -> None:
            log.warning(f"[volume] mount attempt {attempt}/{self.spec.mount_attempts} failed: {exc}")

        @retry(
            retries=self.spec.mount_attempts,
            delay=self.spec.mount_backoff_seconds,
            retry_on=(ProvisioningError,),
            on_retry=_on_retry,
            sleep=self._sleep,
        )
        def _attempt() -> None:
            # systemd may mount it from the fresh fstab entry before we do
            if self.probe.is_mountpoint(mount_point):
                return
            self.probe.mount_uuid(uuid, mount_point)
            if not self.probe.is_mountpoint(mount_point):
                raise VolumeError(f"mount of UUID={uuid} returned but {mount_point} is not active")

        try:
            _attempt()
        except RetryError as e:
            raise self._fail(
                f"could not mount UUID={uuid} at {mount_point} after {self.spec.mount_attempts} attempts: {e.__cause__}"
            ) from e

    # ------------------ public API ------------------

    def resolve_and_mount(self, expected_size_bytes: int, size_tolerance: int, mount_point: str) -> Mounted:
        actions: List[str] = []

        # 1) already satisfied
        if self.probe.is_mountpoint(mount_point):
            source = self.probe.mount_source(mount_point)
            if not source or not self.probe.is_block_device(source):
                raise self._fail(f"{mount_point} is mounted from {source!r}, which is not a block device")
            uuid = self.probe.read_uuid(source)
            if not uuid:
                raise self._fail(f"{mount_point} is mounted from {source} but it has no filesystem UUID")
            log.info(f"[volume] {mount_point} already mounted from {source} (UUID={uuid})")
            if self._ensure_fstab(uuid, mount_point):
                actions.append(f"restored fstab entry UUID={uuid} -> {mount_point}")
            return Mounted(uuid=uuid, device=source, mount_point=mount_point, actions=actions)

        # 2-3) discovery
        devices = self.probe.list_block_devices()
        log.debug("[volume] block devices:\n" + describe(devices))
        device = self._select(devices, expected_size_bytes, size_tolerance, mount_point)

        # 4) format only blank devices
        formatted = False
        if self.probe.has_signature(device.path):
            log.info(f"[volume] {device.path} already carries a signature; keeping existing data")
        else:
            log.info(f"[volume] {device.path} is blank; creating {self.spec.fs_type} filesystem")
            self.probe.make_filesystem(device.path, self.spec.fs_type)
            formatted = True
            actions.append(f"formatted {device.path} as {self.spec.fs_type}")

        # 5) stable identity
        uuid = self.probe.read_uuid(device.path)
        if not uuid and formatted and self.fs.ctx.dry_run:
            log.info(f"[volume] dry-run: would mount the new filesystem on {device.path} at {mount_point}")
            actions.append(f"mounted {device.path} at {mount_point}")
            return Mounted(uuid="", device=device.path, mount_point=mount_point, actions=actions)
        if not uuid:
            raise self._fail(
                f"{device.path} has a signature but no filesystem UUID (partition table or foreign data?)",
                devices,
            )

        # 6) persist and mount
        if self.fs.ensure_dir(mount_point, mode=0o755):
            actions.append(f"created {mount_point}")
        if self._ensure_fstab(uuid, mount_point):
            actions.append(f"wrote fstab entry UUID={uuid} -> {mount_point}")

        if self.fs.ctx.dry_run:
            log.info(f"[volume] dry-run: would mount UUID={uuid} at {mount_point}")
        else:
            self._mount(uuid, mount_point)
        actions.append(f"mounted UUID={uuid} at {mount_point}")
        log.info(f"[volume] mounted {device.path} (UUID={uuid}) at {mount_point}")
        return Mounted(uuid=uuid, device=device.path, mount_point=mount_point, actions=actions)

    def reconcile(self) -> Mounted:
        return self.resolve_and_mount(
            self.spec.expected_size_bytes, self.spec.tolerance_bytes, self.spec.mount_point
        )
