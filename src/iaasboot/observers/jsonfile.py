# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/iaasboot/observers/jsonfile.py

from __future__ import annotations
import json
from pathlib import Path
from typing import Any
from iaasboot.logging.log import redact
from .interface import Observer
from .events import BaseEvent


def _redact_values(value: Any) -> Any:
    # masked before json.dumps escapes quotes and backslashes inside a secret
    if isinstance(value, str):
        return redact(value)
    if isinstance(value, dict):
        return {k: _redact_values(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_redact_values(v) for v in value]
    return value


class JsonFileObserver(Observer):
    """One JSON object per line; secrets are masked like in the log file."""

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)

    def notify(self, event: BaseEvent) -> None:
        record = _redact_values({"type": event.__class__.__name__, **event.dict()})
        with self.path.open("a") as f:
            f.write(json.dumps(record) + "\n")
