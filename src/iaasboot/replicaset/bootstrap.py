# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/iaasboot/replicaset/bootstrap.py

from __future__ import annotations

import enum
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from iaasboot.config.models import ReplicaSetSpec
from iaasboot.errors import ReplicaSetError
from iaasboot.utils.retry import Clock, poll_until

from .mongosh import MongoShell

log = logging.getLogger("iaasboot")

NOT_YET_INITIALIZED = 94
ALREADY_INITIALIZED = 23

# rs.initiate errors raised while another member's mongod is not up yet
MEMBER_NOT_READY = ("quorum check failed", "NodeNotFound", "HostUnreachable", "NetworkTimeout")

STATUS_JS = """
try {
  const s = rs.status();
  print(JSON.stringify({ok: s.ok, set: s.set, members: s.members.map(m => ({name: m.name, state: m.stateStr}))}));
} catch (e) {
  print(JSON.stringify({ok: 0, code: e.code || null, codeName: e.codeName || null, error: String(e.message || e)}));
}
"""

INITIATE_JS = """
try {
  const r = rs.initiate(JSON.parse(process.env.IAASBOOT_RS_CONFIG));
  print(JSON.stringify({ok: r.ok, code: r.code || null, codeName: r.codeName || null, error: r.errmsg || null}));
} catch (e) {
  print(JSON.stringify({ok: 0, code: e.code || null, codeName: e.codeName || null, error: String(e.message || e)}));
}
"""

HELLO_JS = """
print(JSON.stringify({ok: db.hello().ok}));
"""

ENSURE_USER_JS = """
if (!db.hello().isWritablePrimary) {
  print(JSON.stringify({ok: 1, result: "not-primary"}));
} else {
  const d = db.getSiblingDB(process.env.IAASBOOT_USER_DB);
  if (d.getUser(process.env.IAASBOOT_USER_NAME) === null) {
    d.createUser({
      user: process.env.IAASBOOT_USER_NAME,
      pwd: process.env.IAASBOOT_USER_PASSWORD,
      roles: JSON.parse(process.env.IAASBOOT_USER_ROLES)
    });
    print(JSON.stringify({ok: 1, result: "created"}));
  } else {
    print(JSON.stringify({ok: 1, result: "exists"}));
  }
}
"""


class ReplicaSetState(str, enum.Enum):
    UNINITIALIZED = "uninitialized"
    INITIATING = "initiating"
    STABLE = "stable"


@dataclass
class ReplicaSetStatus:
    state: ReplicaSetState
    members: List[Dict[str, Any]] = field(default_factory=list)

    def describe(self) -> str:
        if not self.members:
            return self.state.value
        return ", ".join(f"{m.get('name')}: {m.get('state')}" for m in self.members)


@dataclass(frozen=True)
class DatabaseUser:
    database: str
    name: str
    password: str
    roles: List[Dict[str, str]]


def parse_status(doc: Dict[str, Any]) -> ReplicaSetStatus:
    if doc.get("ok") == 1 and doc.get("members") is not None:
        members = doc["members"]
        if any(m.get("state") == "PRIMARY" for m in members):
            return ReplicaSetStatus(ReplicaSetState.STABLE, members)
        return ReplicaSetStatus(ReplicaSetState.INITIATING, members)
    if doc.get("code") == NOT_YET_INITIALIZED or doc.get("codeName") == "NotYetInitialized":
        return ReplicaSetStatus(ReplicaSetState.UNINITIALIZED)
    raise ReplicaSetError(f"cannot read replica set status: {doc.get('codeName') or doc.get('error')}")


class ReplicaSetBootstrapper:
    """
    UNINITIALIZED -> INITIATING -> STABLE, driven only from the initiator.

    State is always read back from the server, never remembered locally, so
    any number of re-runs converge on the same set without a second
    rs.initiate. Joiners have nothing to do; membership propagates through
    the database itself.
    """

    def __init__(self, shell: MongoShell, spec: ReplicaSetSpec, *, clock: Optional[Clock] = None):
        self.shell = shell
        self.spec = spec
        self.clock = clock

    def config_document(self) -> Dict[str, Any]:
        return {
            "_id": self.spec.name,
            "members": [
                {"_id": i, "host": m.address, "priority": m.priority, "votes": m.votes}
                for i, m in enumerate(self.spec.members)
            ],
        }

    def status(self) -> ReplicaSetStatus:
        return parse_status(self.shell.eval_json(STATUS_JS))

    def reachability(self) -> str:
        """One line per member: does its mongod answer db.hello()?"""
        lines = []
        for m in self.spec.members:
            shell = MongoShell(self.shell.runner, host=m.host, port=m.port)
            try:
                ok = shell.eval_json(HELLO_JS).get("ok") == 1
            except ReplicaSetError:
                ok = False
            lines.append(f"{m.address}: {'reachable' if ok else 'unreachable'}")
        return "\n".join(lines)

    def _try_initiate(self, last: Dict[str, str]) -> bool:
        try:
            doc = self.shell.eval_json(
                INITIATE_JS,
                env={"IAASBOOT_RS_CONFIG": json.dumps(self.config_document())},
                mutating=True,
            )
        except ReplicaSetError as e:
            detail = e.diagnostics or str(e)
            if not any(marker in detail for marker in MEMBER_NOT_READY):
                raise
            last["error"] = detail
            return False

        if doc.get("ok") == 1:
            return True
        if doc.get("code") == ALREADY_INITIALIZED or doc.get("codeName") == "AlreadyInitialized":
            log.info(f"[replicaset] {self.spec.name} was already initiated")
            return True
        detail = f"{doc.get('codeName')}: {doc.get('error')}"
        if not any(marker in detail for marker in MEMBER_NOT_READY):
            raise ReplicaSetError(f"rs.initiate failed: {doc.get('error')}")
        last["error"] = detail
        return False

    def _initiate(self) -> None:
        log.info(f"[replicaset] initiating {self.spec.name} with {len(self.spec.members)} member(s)")
        last: Dict[str, str] = {"error": ""}
        timeout = self.spec.members_timeout_seconds
        interval = self.spec.members_interval_seconds

        def _progress(attempt: int, elapsed: float) -> None:
            reason = last["error"].strip().splitlines()[-1:] or [""]
            log.info(
                f"[replicaset] members not ready for rs.initiate ({int(elapsed)}s elapsed), "
                f"retrying in {interval}s: {reason[0]}"
            )

        result = poll_until(
            lambda: self._try_initiate(last),
            timeout=timeout,
            interval=interval,
            clock=self.clock,
            on_wait=_progress,
        )
        if not result.ok:
            raise ReplicaSetError(
                f"rs.initiate for {self.spec.name} did not succeed within {timeout}s; not every member is reachable",
                diagnostics=f"{self.reachability()}\n\nlast error:\n{last['error']}",
            )

    def _await_primary(self) -> ReplicaSetStatus:
        last: Dict[str, ReplicaSetStatus] = {}

        def _stable() -> bool:
            last["status"] = self.status()
            return last["status"].state is ReplicaSetState.STABLE

        def _progress(attempt: int, elapsed: float) -> None:
            log.info(f"[replicaset] waiting for primary election ({int(elapsed)}s elapsed): {last['status'].describe()}")

        result = poll_until(
            _stable,
            timeout=self.spec.election_timeout_seconds,
            interval=self.spec.election_interval_seconds,
            clock=self.clock,
            on_wait=_progress,
        )
        if not result.ok:
            status = last.get("status")
            raise ReplicaSetError(
                f"no primary elected in {self.spec.name} after {self.spec.election_timeout_seconds}s",
                diagnostics=status.describe() if status else "",
            )
        return last["status"]

    def reconcile(self, node_host: str) -> List[str]:
        if not self.spec.is_initiator(node_host):
            log.info(f"[replicaset] {node_host} joins {self.spec.name} passively; nothing to do")
            return []

        if self.shell.runner.dry_run:
            log.info(f"[replicaset] dry-run: would ensure {self.spec.name} is initiated")
            return []

        status = self.status()
        if status.state is ReplicaSetState.STABLE:
            log.info(f"[replicaset] {self.spec.name} already initialized: {status.describe()}")
            return []

        actions: List[str] = []
        if status.state is ReplicaSetState.UNINITIALIZED:
            self._initiate()
            actions.append(f"initiated replica set {self.spec.name}")
        else:
            log.info(f"[replicaset] {self.spec.name} initiation already in progress")

        status = self._await_primary()
        log.info(f"[replicaset] {self.spec.name} stable: {status.describe()}")
        return actions

    def ensure_users(self, users: List[DatabaseUser]) -> List[str]:
        """Create missing users on the primary; existing users are left untouched."""
        actions: List[str] = []
        for u in users:
            doc = self.shell.eval_json(
                ENSURE_USER_JS,
                env={
                    "IAASBOOT_USER_DB": u.database,
                    "IAASBOOT_USER_NAME": u.name,
                    "IAASBOOT_USER_PASSWORD": u.password,
                    "IAASBOOT_USER_ROLES": json.dumps(u.roles),
                },
                mutating=True,
            )
            result = doc.get("result")
            if result == "created":
                actions.append(f"created user {u.name}@{u.database}")
            elif result == "not-primary":
                log.warning(f"[replicaset] not primary; skipping user {u.name}@{u.database}")
            else:
                log.info(f"[replicaset] user {u.name}@{u.database} already exists")
        return actions
