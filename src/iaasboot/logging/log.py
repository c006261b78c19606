# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

#src/iaasboot/logging/log.py

from __future__ import annotations

import logging
import os
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable

MASK = "********"


class SecretRedactingFilter(logging.Filter):
    """
    Replaces every registered secret value with a mask before a record is
    emitted. Attached to every handler created by init_logging.
    """

    def __init__(self):
        super().__init__()
        self._secrets: set[str] = set()

    def add(self, value: str | None) -> None:
        if value:
            self._secrets.add(value)

    def redact(self, text: str) -> str:
        # longest first so a secret containing another one is fully masked
        for secret in sorted(self._secrets, key=len, reverse=True):
            text = text.replace(secret, MASK)
        return text

    def filter(self, record: logging.LogRecord) -> bool:
        if self._secrets:
            record.msg = self.redact(record.getMessage())
            record.args = ()
        return True


REDACTOR = SecretRedactingFilter()


def register_secrets(values: Iterable[str | None]) -> None:
    for v in values:
        REDACTOR.add(v)


def redact(text: str) -> str:
    return REDACTOR.redact(text)


def _default_log_dir() -> Path:
    if hasattr(os, "geteuid") and os.geteuid() == 0:
        return Path("/var/log/iaasboot")
    return Path.home() / ".iaasboot" / "logs"


def init_logging(
    *,
    base_dir: Path | None = None,
    name: str = "iaasboot",
    verbose: bool = False,
) -> tuple[logging.Logger, str, Path]:
    """
    Initializes:
      - full trace log file (DEBUG)
      - console output captured by the CustomScript extension status
      - returns run_id so observers can reuse it
    """
    run_id = str(uuid.uuid4())

    if base_dir is None:
        base_dir = _default_log_dir()
    base_dir.mkdir(parents=True, exist_ok=True)

    ts = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
    log_path = base_dir / f"{name}-{ts}-{run_id}.log"

    logger = logging.getLogger(name)
    logger.setLevel(logging.DEBUG)
    logger.handlers.clear()
    logger.propagate = False

    formatter = logging.Formatter(
        "%(asctime)s | %(levelname)-7s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    # File = FULL TRACE
    fh = logging.FileHandler(log_path)
    fh.setLevel(logging.DEBUG)
    fh.setFormatter(formatter)
    fh.addFilter(REDACTOR)

    # Console = INFO by default, DEBUG when --verbose is passed
    ch = logging.StreamHandler()
    ch.setLevel(logging.DEBUG if verbose else logging.INFO)
    ch.setFormatter(formatter)
    ch.addFilter(REDACTOR)

    logger.addHandler(fh)
    logger.addHandler(ch)

    logger.info("=== iaasboot run started ===")
    logger.info(f"run_id={run_id}")
    logger.info(f"log_file={log_path}")

    return logger, run_id, log_path
