# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/iaasboot/observers/events.py

from __future__ import annotations
from dataclasses import dataclass, asdict
from typing import List, Dict, Any, Optional
from datetime import datetime, timezone
import uuid


# ---------------------------------------------------------------------
# Base context and helper
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class BaseEvent:
    ts: str           # ISO timestamp
    run_id: str       # correlates all events in a single provisioning invocation
    role: str         # web/app/db
    tag: Optional[str]  # idempotency tag that triggered this run

    def dict(self) -> Dict[str, Any]:
        return asdict(self)


def new_ctx(role: str, tag: Optional[str], run_id: Optional[str] = None) -> Dict[str, Any]:
    return {
        "ts": datetime.now(timezone.utc).isoformat(timespec="seconds"),
        "run_id": run_id or str(uuid.uuid4()),
        "role": role,
        "tag": tag,
    }


# ---------------------------------------------------------------------
# Pipeline phases
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class PhaseStarted(BaseEvent):
    phase: str

@dataclass(frozen=True)
class PhaseSucceeded(BaseEvent):
    phase: str
    actions: List[str]
    duration_ms: int

@dataclass(frozen=True)
class PhaseFailed(BaseEvent):
    phase: str
    error: str
    diagnostics: str = ""

@dataclass(frozen=True)
class ActionTaken(BaseEvent):
    phase: str
    action: str


# ---------------------------------------------------------------------
# Summary
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class ProvisionSummary(BaseEvent):
    status: str        # "OK" | "FAILED"
    actions: int
    error: Optional[str] = None
