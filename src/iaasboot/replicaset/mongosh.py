# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/iaasboot/replicaset/mongosh.py

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Mapping, Optional

from iaasboot.errors import CommandError, ReplicaSetError
from iaasboot.execution.runner import CommandRunner

log = logging.getLogger("iaasboot")

# Authenticates when admin credentials are provided; before the first user
# exists the localhost exception applies and the failure is ignored.
AUTH_PRELUDE = """
try {
  if (process.env.IAASBOOT_MONGO_USER) {
    db.getSiblingDB("admin").auth(process.env.IAASBOOT_MONGO_USER, process.env.IAASBOOT_MONGO_PASSWORD);
  }
} catch (e) {}
"""


class MongoShell:
    """
    Thin mongosh wrapper. Scripts print one JSON document on their last
    line; parameters and secrets travel through environment variables so
    they never appear in the command line.
    """

    def __init__(
        self,
        runner: CommandRunner,
        *,
        host: str = "127.0.0.1",
        port: int = 27017,
        admin_user: Optional[str] = None,
        admin_password: Optional[str] = None,
    ):
        self.runner = runner
        self.host = host
        self.port = port
        self.admin_user = admin_user
        self.admin_password = admin_password

    def _env(self, extra: Optional[Mapping[str, str]]) -> Dict[str, str]:
        env: Dict[str, str] = {}
        if self.admin_user and self.admin_password:
            env["IAASBOOT_MONGO_USER"] = self.admin_user
            env["IAASBOOT_MONGO_PASSWORD"] = self.admin_password
        env.update(extra or {})
        return env

    def eval_json(self, script: str, env: Optional[Mapping[str, str]] = None, *, mutating: bool = False) -> Dict[str, Any]:
        cmd = ["mongosh", "--quiet", "--host", self.host, "--port", str(self.port), "--eval", AUTH_PRELUDE + script]
        runner = self.runner if mutating else self.runner.probe()
        try:
            res = runner.run(cmd, env=self._env(env), quiet=not mutating)
        except CommandError as e:
            raise ReplicaSetError(f"mongosh failed against {self.host}:{self.port}", diagnostics=e.diagnostics) from e

        if runner.dry_run:
            return {"ok": 1, "dry_run": True}

        lines = [ln for ln in res.stdout.splitlines() if ln.strip()]
        if not lines:
            raise ReplicaSetError("mongosh returned no output", diagnostics=res.stderr)
        try:
            return json.loads(lines[-1])
        except json.JSONDecodeError as e:
            raise ReplicaSetError("mongosh returned unexpected output", diagnostics=res.stdout[-2000:]) from e
