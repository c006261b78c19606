# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/iaasboot/packages/locks.py

from __future__ import annotations

import enum
import fcntl
import logging
import os
from typing import Callable, Iterable, List, Optional

from iaasboot.errors import LockTimeoutError, ProvisioningError
from iaasboot.utils.retry import Clock, poll_until

log = logging.getLogger("iaasboot")


class LockResult(str, enum.Enum):
    READY = "ready"
    TIMED_OUT = "timed_out"


def is_held(path: str) -> bool:
    """
    Non-blocking test of the POSIX record lock dpkg/apt take on their lock
    files. A missing lock file is free. The probe lock is released at once.
    """
    try:
        fd = os.open(path, os.O_RDWR)
    except FileNotFoundError:
        return False
    except PermissionError as e:
        raise ProvisioningError(
            f"cannot probe package manager lock {path}: permission denied",
            diagnostics=f"{e}; iaasboot must run as root (it does under the CustomScript extension)",
        ) from e

    try:
        fcntl.lockf(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
    except OSError:
        return True
    else:
        fcntl.lockf(fd, fcntl.LOCK_UN)
        return False
    finally:
        os.close(fd)


def held_locks(paths: Iterable[str], probe: Callable[[str], bool] = is_held) -> List[str]:
    return [p for p in paths if probe(p)]


def await_lock(
    probe_paths: Iterable[str],
    timeout: float,
    interval: float,
    *,
    clock: Optional[Clock] = None,
    probe: Callable[[str], bool] = is_held,
) -> LockResult:
    """
    Wait until none of probe_paths is held by another process.

    Returns READY as soon as every path is free, TIMED_OUT once timeout
    seconds have elapsed. One progress line is logged per poll.
    """
    paths = list(probe_paths)
    log.info("Checking for dpkg/apt locks...")

    last_held: List[str] = []

    def _free() -> bool:
        nonlocal last_held
        last_held = held_locks(paths, probe)
        return not last_held

    def _progress(attempt: int, elapsed: float) -> None:
        log.info(
            "apt/dpkg lock is held (%s), waiting %ss... (%ds elapsed)",
            ", ".join(last_held), interval, int(elapsed),
        )

    result = poll_until(_free, timeout=timeout, interval=interval, clock=clock, on_wait=_progress)
    if result.ok:
        log.info("All apt/dpkg locks are free, proceeding...")
        return LockResult.READY

    log.error("Timeout waiting for apt/dpkg locks after %ss (still held: %s)", timeout, ", ".join(last_held))
    return LockResult.TIMED_OUT


def ensure_unlocked(
    probe_paths: Iterable[str],
    timeout: float,
    interval: float,
    *,
    clock: Optional[Clock] = None,
    probe: Callable[[str], bool] = is_held,
) -> None:
    """await_lock, escalating TIMED_OUT to LockTimeoutError."""
    paths = list(probe_paths)
    if await_lock(paths, timeout, interval, clock=clock, probe=probe) is LockResult.TIMED_OUT:
        raise LockTimeoutError(
            f"package manager locks still held after {timeout}s",
            diagnostics="held: " + ", ".join(held_locks(paths, probe)),
        )
