# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/iaasboot/execution/runner.py
from __future__ import annotations

import logging
import os
import shlex
import subprocess
import time
from dataclasses import dataclass
from typing import Mapping, Optional, Sequence, Union

from iaasboot.errors import CommandError
from iaasboot.logging.log import redact

Cmd = Sequence[Union[str, "os.PathLike[str]"]]

log = logging.getLogger("iaasboot")


@dataclass
class CommandRunner:
    """
    Runs host commands with logging. Command lines and outputs pass through
    the secret redactor before they are logged; values handed over in
    ``env`` are never part of the command line at all.
    """

    dry_run: bool = False
    label: Optional[str] = None
    timeout: int = 1800

    def run(
        self,
        cmd: Cmd,
        *,
        check: bool = True,
        env: Mapping[str, str] | None = None,
        input: str | None = None,
        quiet: bool = False,
    ) -> subprocess.CompletedProcess:
        label = self.label or "cmd"
        cmd_str = redact(shlex.join(map(str, cmd)))

        if quiet:
            log.debug(f"[{label}] $ {cmd_str}")
        else:
            log.info(f"[{label}] $ {cmd_str}")

        if self.dry_run:
            log.info(f"[{label}] dry-run: skipped execution")
            return subprocess.CompletedProcess(args=list(cmd), returncode=0, stdout="", stderr="")

        full_env = None
        if env:
            full_env = {**os.environ, **env}

        start = time.time()
        try:
            result = subprocess.run(
                list(map(str, cmd)),
                capture_output=True,
                text=True,
                env=full_env,
                input=input,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired as e:
            raise CommandError(cmd_str, -1, stderr=f"timed out after {self.timeout}s") from e
        except FileNotFoundError as e:
            raise CommandError(cmd_str, 127, stderr=str(e)) from e

        duration = time.time() - start

        if result.stdout:
            log.debug(f"[{label}][stdout]\n{redact(result.stdout.rstrip())}")
        if result.stderr:
            log.debug(f"[{label}][stderr]\n{redact(result.stderr.rstrip())}")
        log.debug(f"[{label}][exit {result.returncode}] ({duration:.2f}s)")

        if check and result.returncode != 0:
            raise CommandError(
                cmd_str,
                result.returncode,
                stdout=redact(result.stdout or ""),
                stderr=redact(result.stderr or ""),
            )
        return result

    def probe(self) -> "CommandRunner":
        # read-only probes still execute under dry-run
        if self.dry_run:
            return CommandRunner(dry_run=False, label=self.label, timeout=self.timeout)
        return self

    def ok(self, cmd: Cmd, **kwargs) -> bool:
        """True when cmd exits 0."""
        return self.probe().run(cmd, check=False, quiet=True, **kwargs).returncode == 0

    def output(self, cmd: Cmd, **kwargs) -> str:
        """stdout of a read-only probe; raises CommandError on failure."""
        return self.probe().run(cmd, check=True, quiet=True, **kwargs).stdout
