# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/iaasboot/observers/logger.py
from __future__ import annotations
import logging
from .events import BaseEvent, PhaseSucceeded, ProvisionSummary

_SKIP = ("ts", "run_id", "role", "tag")


class LoggerObserver:
    """
    Writes events to the run log. Phase timings and the summary are INFO
    so they reach the CustomScript status; everything else is DEBUG.
    Failures are already logged by the pipeline itself.
    """

    def __init__(self, logger: logging.Logger):
        self.logger = logger

    def notify(self, event: BaseEvent) -> None:
        etype = event.__class__.__name__
        if isinstance(event, PhaseSucceeded):
            self.logger.info(
                f"[{event.role}] phase {event.phase} ok "
                f"({len(event.actions)} action(s), {event.duration_ms} ms)"
            )
            return
        if isinstance(event, ProvisionSummary):
            self.logger.info(f"[{event.role}] provisioning {event.status}, {event.actions} action(s), tag={event.tag}")
            return

        d = event.dict()
        msg = ", ".join(f"{k}={v}" for k, v in d.items() if k not in _SKIP)
        self.logger.debug(f"[EVENT] {etype}: {msg}")
