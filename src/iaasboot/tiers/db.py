# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/iaasboot/tiers/db.py

from __future__ import annotations

import logging
from typing import Dict, List, Optional

from iaasboot.inject.sinks import ConfigurationBundle, TemplateFileSink
from iaasboot.replicaset.bootstrap import DatabaseUser, ReplicaSetBootstrapper
from iaasboot.replicaset.mongosh import MongoShell
from iaasboot.services.health import TcpHealthCheck
from iaasboot.services.systemd import ServiceUnit
from iaasboot.storage.devices import LinuxDeviceProbe
from iaasboot.storage.resolver import Mounted, VolumeResolver

from .base import TierInstaller

log = logging.getLogger("iaasboot")

MONGOD_CONF = "/etc/mongod.conf"
DEFAULT_CODENAME = "jammy"


class DbTier(TierInstaller):
    """
    MongoDB replica set member. The data disk is resolved and mounted
    before mongod ever starts, so the database never initializes on the
    OS disk.
    """

    name = "db"

    def __init__(self, ctx):
        super().__init__(ctx)
        self.mounted: Optional[Mounted] = None

    @property
    def p(self):
        return self.ctx.params.db

    @property
    def owner(self) -> str:
        return f"{self.p.service_user}:{self.p.service_user}"

    def codename(self) -> str:
        if self.p.ubuntu_codename:
            return self.p.ubuntu_codename
        for line in (self.ctx.fs.read_text("/etc/os-release") or "").splitlines():
            key, _, value = line.partition("=")
            if key.strip() == "VERSION_CODENAME" and value.strip():
                return value.strip().strip('"')
        log.warning(f"[db] could not read the Ubuntu codename; assuming {DEFAULT_CODENAME}")
        return DEFAULT_CODENAME

    def repositories(self) -> List[Dict[str, str]]:
        v = self.p.mongodb_version
        return [{
            "name": f"mongodb-server-{v}",
            "key_url": f"https://www.mongodb.org/static/pgp/server-{v}.asc",
            "source_line": (
                f"deb [ arch=amd64,arm64 signed-by=/etc/apt/keyrings/mongodb-server-{v}.gpg ] "
                f"https://repo.mongodb.org/apt/ubuntu {self.codename()}/mongodb-org/{v} multiverse"
            ),
        }]

    def packages(self) -> List[str]:
        return ["mongodb-org"]

    def install(self) -> List[str]:
        actions = self.ctx.apt.ensure_installed(["ca-certificates", "curl", "gnupg"])
        actions += super().install()
        return actions

    # ------------------ storage ------------------

    def resolver(self) -> VolumeResolver:
        probe = self.ctx.device_probe or LinuxDeviceProbe(self.ctx.runner)
        sleep = self.ctx.clock.sleep if self.ctx.clock else None
        return VolumeResolver(probe, self.ctx.fs, self.p.volume, sleep=sleep)

    def prepare_storage(self) -> List[str]:
        self.mounted = self.resolver().reconcile()
        actions = list(self.mounted.actions)

        fs = self.ctx.fs
        for d in (self.p.volume.mount_point, self.p.data_dir, self.p.log_dir):
            if fs.ensure_dir(d, mode=0o755, owner=self.owner):
                actions.append(f"ensured {d} owned by {self.owner}")
        return actions

    # ------------------ config + service ------------------

    def bundle(self) -> ConfigurationBundle:
        return ConfigurationBundle({
            "data_dir": self.p.data_dir,
            "log_path": f"{self.p.log_dir}/mongod.log",
            "port": str(self.p.port),
            "bind_ip": self.p.bind_ip,
            "replica_set_name": self.p.replica_set.name,
        })

    def configure(self) -> List[str]:
        sink = TemplateFileSink(path=MONGOD_CONF, template="mongod.conf.j2", renderer=self.ctx.renderer)
        return self._track(self.ctx.injector.materialize(self.bundle(), [sink]).actions)

    def unit(self) -> ServiceUnit:
        return ServiceUnit(
            name="mongod",
            health=TcpHealthCheck("127.0.0.1", self.p.port),
            log_path=f"{self.p.log_dir}/mongod.log",
        )

    def start(self) -> List[str]:
        return self.ctx.services.ensure_running(self.unit(), restart=self.config_changed)

    # ------------------ replica set ------------------

    def _secret(self, value) -> Optional[str]:
        return value.get_secret_value() if value is not None else None

    def bootstrapper(self) -> ReplicaSetBootstrapper:
        shell = MongoShell(
            self.ctx.runner,
            port=self.p.port,
            admin_user=self.p.admin_user,
            admin_password=self._secret(self.p.admin_password),
        )
        return ReplicaSetBootstrapper(shell, self.p.replica_set, clock=self.ctx.clock)

    def users(self) -> List[DatabaseUser]:
        out: List[DatabaseUser] = []
        admin_pw = self._secret(self.p.admin_password)
        app_pw = self._secret(self.p.app_password)
        if admin_pw:
            out.append(DatabaseUser("admin", self.p.admin_user, admin_pw, [{"role": "root", "db": "admin"}]))
        if app_pw:
            out.append(DatabaseUser(
                self.p.app_database, self.p.app_user, app_pw,
                [{"role": "readWrite", "db": self.p.app_database}],
            ))
        return out

    def post_start(self) -> List[str]:
        rs = self.bootstrapper()
        host = self.ctx.params.node.private_ip
        actions = rs.reconcile(host)

        users = self.users()
        if users and self.p.replica_set.is_initiator(host) and not self.ctx.runner.dry_run:
            actions += rs.ensure_users(users)
        return actions
