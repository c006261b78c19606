# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/iaasboot/utils/execution.py
from dataclasses import dataclass


@dataclass(frozen=True)
class ExecutionContext:
    """
    whether host files are really written; probes always run
    """

    dry_run: bool = False

    def intent(self, action: str) -> str:
        return f"dry-run: would {action}" if self.dry_run else action
