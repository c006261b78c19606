# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/iaasboot/services/systemd.py

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from iaasboot.config.models import ServiceCheckSpec
from iaasboot.errors import ServiceStartError
from iaasboot.execution.runner import CommandRunner
from iaasboot.utils.hostfs import HostFS
from iaasboot.utils.retry import Clock, poll_until

from .health import HealthCheck

log = logging.getLogger("iaasboot")


@dataclass
class ServiceUnit:
    """
    A supervised process. ``log_path`` is the service's own log, which is
    what explains storage-engine or config errors when startup fails.
    """
    name: str
    health: Optional[HealthCheck] = None
    log_path: Optional[str] = None
    config_test: Sequence[str] = field(default_factory=tuple)   # e.g. ["nginx", "-t"]


class ServiceBootstrapper:
    """Ensures units are enabled and running, then verifies them."""

    def __init__(
        self,
        runner: CommandRunner,
        fs: HostFS,
        spec: ServiceCheckSpec,
        *,
        clock: Optional[Clock] = None,
    ):
        self.runner = runner
        self.fs = fs
        self.spec = spec
        self.clock = clock

    def _systemctl(self, *args: str) -> None:
        self.runner.run(["systemctl", *args])

    def _start(self, unit: ServiceUnit, verb: str = "start") -> bool:
        # a failed start job is retried by verify(); its cause is in the unit's own log
        res = self.runner.run(["systemctl", verb, unit.name], check=False)
        if res.returncode != 0:
            err = (res.stderr or res.stdout).strip().splitlines()
            log.warning(f"[service] systemctl {verb} {unit.name} exited {res.returncode}: {err[-1] if err else ''}")
        return res.returncode == 0

    def is_enabled(self, unit: str) -> bool:
        return self.runner.ok(["systemctl", "is-enabled", "--quiet", unit])

    def is_active(self, unit: str) -> bool:
        return self.runner.ok(["systemctl", "is-active", "--quiet", unit])

    def _healthy(self, unit: ServiceUnit) -> bool:
        if not self.is_active(unit.name):
            return False
        if unit.health is not None and not unit.health.check():
            return False
        return True

    def log_tail(self, unit: ServiceUnit) -> str:
        n = self.spec.log_tail_lines
        if unit.log_path:
            text = self.fs.read_text(unit.log_path)
            if text is not None:
                lines = text.splitlines()[-n:]
                return f"--- last {len(lines)} lines of {unit.log_path} ---\n" + "\n".join(lines)
        res = self.runner.probe().run(
            ["journalctl", "-u", unit.name, "-n", str(n), "--no-pager"], check=False, quiet=True
        )
        return f"--- journalctl -u {unit.name} -n {n} ---\n{(res.stdout or res.stderr).rstrip()}"

    def diagnostics(self, unit: ServiceUnit) -> str:
        status = self.runner.probe().run(
            ["systemctl", "status", unit.name, "--no-pager", "-l"], check=False, quiet=True
        )
        return f"--- systemctl status {unit.name} ---\n{status.stdout.rstrip()}\n\n{self.log_tail(unit)}"

    def ensure_running(self, unit: ServiceUnit, *, restart: bool = False) -> List[str]:
        """
        Converge the unit to enabled + running. ``restart`` is set by callers
        whose config files changed in this run.
        """
        actions: List[str] = []

        if unit.config_test:
            self.runner.run(list(unit.config_test))

        if not self.is_enabled(unit.name):
            self._systemctl("enable", unit.name)
            actions.append(f"enabled {unit.name}")

        if not self.is_active(unit.name):
            self._start(unit)
            actions.append(f"started {unit.name}")
        elif restart:
            self._start(unit, "restart")
            actions.append(f"restarted {unit.name}")
        else:
            log.info(f"[service] {unit.name} already running")

        if self.runner.dry_run:
            return actions

        self.verify(unit)
        return actions

    def verify(self, unit: ServiceUnit) -> None:
        attempts = self.spec.attempts
        interval = self.spec.interval_seconds

        checks = {"n": 0}

        def _ready() -> bool:
            checks["n"] += 1
            if checks["n"] > 1 and not self.is_active(unit.name):
                self._start(unit)
            return self._healthy(unit)

        def _progress(attempt: int, elapsed: float) -> None:
            log.info(f"[service] {unit.name} not ready (check {attempt}/{attempts}), retrying in {interval}s")

        result = poll_until(
            _ready,
            timeout=attempts * interval,
            interval=interval,
            max_attempts=attempts,
            clock=self.clock,
            on_wait=_progress,
        )
        if not result.ok:
            what = unit.health.describe() if unit.health else "systemctl is-active"
            raise ServiceStartError(
                f"{unit.name} failed to become healthy after {result.attempts} checks ({what})",
                diagnostics=self.diagnostics(unit),
            )
        log.info(f"[service] {unit.name} healthy after {result.attempts} check(s)")
