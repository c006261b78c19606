# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/iaasboot/pipeline.py

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from .config.models import NodeParams
from .errors import ProvisioningError
from .execution.runner import CommandRunner
from .inject.injector import ConfigurationInjector
from .inject.templates import TemplateRenderer
from .logging.log import register_secrets
from .observers.dispatcher import EventBus
from .observers.events import (
    ActionTaken,
    PhaseFailed,
    PhaseStarted,
    PhaseSucceeded,
    ProvisionSummary,
    new_ctx,
)
from .packages.apt import AptClient
from .services.systemd import ServiceBootstrapper
from .storage.devices import DeviceProbe
from .tiers.base import TierContext, TierInstaller
from .tiers.registry import build_tier
from .utils.execution import ExecutionContext
from .utils.hostfs import HostFS
from .utils.retry import Clock

log = logging.getLogger("iaasboot")

PHASES = ("install", "prepare_storage", "configure", "start", "post_start")


@dataclass
class PhaseOutcome:
    phase: str
    status: str                 # "OK" | "FAILED"
    actions: List[str] = field(default_factory=list)
    duration_ms: int = 0
    error: Optional[str] = None


@dataclass
class ProvisionReport:
    role: str
    outcomes: List[PhaseOutcome] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return all(o.status == "OK" for o in self.outcomes)

    @property
    def actions(self) -> List[str]:
        return [a for o in self.outcomes for a in o.actions]

    @property
    def changed(self) -> bool:
        return bool(self.actions)

    def summary(self) -> str:
        state = "OK" if self.ok else "FAILED"
        return f"{self.role}: {state}, {len(self.actions)} action(s) across {len(self.outcomes)} phase(s)"


def build_context(
    params: NodeParams,
    *,
    dry_run: bool = False,
    fs: Optional[HostFS] = None,
    runner: Optional[CommandRunner] = None,
    clock: Optional[Clock] = None,
    device_probe: Optional[DeviceProbe] = None,
    lock_probe: Optional[Callable[[str], bool]] = None,
) -> TierContext:
    """Wire the host collaborators for one run; tests pass fakes for any of them."""
    runner = runner or CommandRunner(dry_run=dry_run, label=params.node.role)
    fs = fs or HostFS(ctx=ExecutionContext(dry_run=dry_run))
    apt_kwargs = {"lock_probe": lock_probe} if lock_probe else {}
    return TierContext(
        params=params,
        runner=runner,
        fs=fs,
        apt=AptClient(runner, fs, params.locks, clock=clock, **apt_kwargs),
        services=ServiceBootstrapper(runner, fs, params.services, clock=clock),
        renderer=TemplateRenderer(),
        injector=ConfigurationInjector(fs),
        clock=clock,
        device_probe=device_probe,
    )


def run_phases(
    tier: TierInstaller,
    *,
    observers: Optional[List] = None,
    run_id: Optional[str] = None,
) -> ProvisionReport:
    """
    Run every phase of ``tier`` in order, stopping at the first failure.
    Re-running on a converged host produces a report with no actions.
    """
    node = tier.ctx.params.node
    bus = EventBus(observers or [])
    run_ctx = new_ctx(role=node.role, tag=node.tag, run_id=run_id)
    report = ProvisionReport(role=node.role)

    for phase in PHASES:
        bus.emit(PhaseStarted(phase=phase, **run_ctx))
        log.info(f"[pipeline] {node.role}: {phase}")
        start = time.time()
        try:
            actions = getattr(tier, phase)()
        except ProvisioningError as e:
            duration_ms = int((time.time() - start) * 1000)
            log.error(f"[pipeline] {node.role}: {phase} failed: {e}")
            if e.diagnostics:
                log.error(f"[pipeline] diagnostics:\n{e.diagnostics}")
            report.outcomes.append(PhaseOutcome(phase, "FAILED", duration_ms=duration_ms, error=str(e)))
            bus.emit(PhaseFailed(phase=phase, error=str(e), diagnostics=e.diagnostics, **run_ctx))
            bus.emit(ProvisionSummary(status="FAILED", actions=len(report.actions), error=str(e), **run_ctx))
            raise

        duration_ms = int((time.time() - start) * 1000)
        for action in actions:
            bus.emit(ActionTaken(phase=phase, action=action, **run_ctx))
        report.outcomes.append(PhaseOutcome(phase, "OK", actions=list(actions), duration_ms=duration_ms))
        bus.emit(PhaseSucceeded(phase=phase, actions=list(actions), duration_ms=duration_ms, **run_ctx))

    bus.emit(ProvisionSummary(status="OK", actions=len(report.actions), **run_ctx))
    log.info(f"[pipeline] {report.summary()}")
    return report


def provision_node(
    params: NodeParams,
    *,
    dry_run: bool = False,
    observers: Optional[List] = None,
    run_id: Optional[str] = None,
    ctx: Optional[TierContext] = None,
) -> ProvisionReport:
    register_secrets(params.secret_values())
    ctx = ctx or build_context(params, dry_run=dry_run)
    tier = build_tier(params.node.role, ctx)
    return run_phases(tier, observers=observers, run_id=run_id)
