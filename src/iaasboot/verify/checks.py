# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/iaasboot/verify/checks.py

from __future__ import annotations

import json
import logging
import shlex
from dataclasses import dataclass
from typing import Callable, Dict, List, Protocol

from iaasboot.config.models import NodeParams
from iaasboot.replicaset.bootstrap import STATUS_JS, parse_status, ReplicaSetState
from iaasboot.errors import ReplicaSetError

log = logging.getLogger("iaasboot")


class RemoteRunner(Protocol):
    def run(self, cmd: str, *, sudo: bool = False, timeout: int | None = 60) -> tuple[int, str, str]: ...


@dataclass(frozen=True)
class CheckResult:
    name: str
    ok: bool
    detail: str = ""


def _cmd_check(runner: RemoteRunner, name: str, cmd: str, *, sudo: bool = False) -> CheckResult:
    rc, out, err = runner.run(cmd, sudo=sudo)
    detail = (out or err).strip().splitlines()
    return CheckResult(name, rc == 0, detail[-1] if detail else f"exit {rc}")


def _service(runner: RemoteRunner, unit: str) -> CheckResult:
    return _cmd_check(runner, f"service {unit} active", f"systemctl is-active {shlex.quote(unit)}")


def _http(runner: RemoteRunner, url: str) -> CheckResult:
    return _cmd_check(runner, f"GET {url}", f"curl -fsS --max-time 5 {shlex.quote(url)}")


# ------------------ per-role checks ------------------

def check_web(runner: RemoteRunner, params: NodeParams) -> List[CheckResult]:
    web = params.web
    results = [_service(runner, "nginx"), _http(runner, "http://127.0.0.1/health")]

    path = f"{web.web_root}/config.json"
    rc, out, err = runner.run(f"cat {shlex.quote(path)}")
    if rc != 0:
        results.append(CheckResult(f"{path} present", False, err.strip()))
        return results
    try:
        doc = json.loads(out)
    except json.JSONDecodeError as e:
        results.append(CheckResult(f"{path} parses", False, str(e)))
        return results
    missing = [k for k in ("ENTRA_TENANT_ID", "ENTRA_FRONTEND_CLIENT_ID", "ENTRA_BACKEND_CLIENT_ID", "API_BASE_URL")
               if not doc.get(k)]
    results.append(CheckResult(
        f"{path} complete", not missing, f"missing {', '.join(missing)}" if missing else "all keys present"
    ))
    return results


def check_app(runner: RemoteRunner, params: NodeParams) -> List[CheckResult]:
    app = params.app
    results = [
        _service(runner, f"pm2-{app.user}"),
        _http(runner, f"http://127.0.0.1:{app.port}/health"),
    ]

    rc, out, _ = runner.run(f"cat {shlex.quote(app.environment_file)}")
    present = {line.split("=", 1)[0].strip() for line in out.splitlines() if "=" in line}
    missing = [k for k in ("NODE_ENV", "PORT", "LOG_LEVEL", "ENTRA_TENANT_ID", "ENTRA_CLIENT_ID") if k not in present]
    results.append(CheckResult(
        f"{app.environment_file} keys", rc == 0 and not missing,
        f"missing {', '.join(missing)}" if missing else "all keys present",
    ))

    dotenv = f"{app.app_dir}/.env"
    rc, out, err = runner.run(f"stat -c %a {shlex.quote(dotenv)}", sudo=True)
    mode = out.strip()
    results.append(CheckResult(f"{dotenv} mode 600", rc == 0 and mode == "600", mode or err.strip()))
    return results


def check_db(runner: RemoteRunner, params: NodeParams) -> List[CheckResult]:
    db = params.db
    mp = db.volume.mount_point
    results = [
        _cmd_check(runner, f"{mp} mounted", f"findmnt -n -o SOURCE,FSTYPE {shlex.quote(mp)}"),
        _cmd_check(runner, f"{mp} in fstab", f"grep -E '^UUID=[^ ]+ {mp} ' /etc/fstab"),
        _service(runner, "mongod"),
    ]

    rc, out, err = runner.run(f"mongosh --quiet --port {db.port} --eval {shlex.quote(STATUS_JS)}")
    lines = [ln for ln in out.splitlines() if ln.strip()]
    if rc != 0 or not lines:
        results.append(CheckResult("replica set status", False, err.strip() or f"exit {rc}"))
        return results
    try:
        status = parse_status(json.loads(lines[-1]))
    except (json.JSONDecodeError, ReplicaSetError) as e:
        results.append(CheckResult("replica set status", False, str(e)))
        return results
    results.append(CheckResult(
        f"replica set {db.replica_set.name} has a primary",
        status.state is ReplicaSetState.STABLE,
        status.describe(),
    ))
    return results


CHECKS: Dict[str, Callable[[RemoteRunner, NodeParams], List[CheckResult]]] = {
    "web": check_web,
    "app": check_app,
    "db": check_db,
}


def verify_node(runner: RemoteRunner, params: NodeParams) -> List[CheckResult]:
    results = CHECKS[params.node.role](runner, params)
    for r in results:
        log.info(f"[verify] {'PASS' if r.ok else 'FAIL'} {r.name}: {r.detail}")
    return results
