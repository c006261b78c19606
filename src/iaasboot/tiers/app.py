# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/iaasboot/tiers/app.py

from __future__ import annotations

import logging
from typing import Dict, List, Sequence

from iaasboot.inject.sinks import ConfigurationBundle, DotenvSink, EnvironmentFileSink, TemplateFileSink
from iaasboot.services.health import HttpHealthCheck
from iaasboot.services.systemd import ServiceUnit

from .base import TierInstaller

log = logging.getLogger("iaasboot")

NODESOURCE_KEY = "https://deb.nodesource.com/gpgkey/nodesource-repo.gpg.key"
PREREQUISITES = ["ca-certificates", "curl", "gnupg"]

PUBLIC_KEYS = ["NODE_ENV", "PORT", "LOG_LEVEL", "ENTRA_TENANT_ID", "ENTRA_CLIENT_ID"]


class AppTier(TierInstaller):
    """Node.js LTS from NodeSource, supervised by PM2 under the app user."""

    name = "app"

    @property
    def p(self):
        return self.ctx.params.app

    @property
    def home(self) -> str:
        return f"/home/{self.p.user}"

    @property
    def owner(self) -> str:
        return f"{self.p.user}:{self.p.user}"

    def repositories(self) -> List[Dict[str, str]]:
        return [{
            "name": "nodesource",
            "key_url": NODESOURCE_KEY,
            "source_line": (
                "deb [signed-by=/etc/apt/keyrings/nodesource.gpg] "
                f"https://deb.nodesource.com/node_{self.p.node_major}.x nodistro main"
            ),
        }]

    def packages(self) -> List[str]:
        return ["nodejs"]

    def _ensure_pm2(self) -> List[str]:
        if self.ctx.runner.ok(["npm", "ls", "-g", "pm2", "--depth=0"]):
            log.info("[app] pm2 already installed")
            return []
        self.ctx.runner.run(["npm", "install", "-g", "pm2"])
        return ["installed pm2"]

    def install(self) -> List[str]:
        # curl and gnupg are needed to fetch the NodeSource key
        actions = self.ctx.apt.ensure_installed(PREREQUISITES)
        actions += super().install()
        actions += self._ensure_pm2()
        return actions

    def bundle(self) -> ConfigurationBundle:
        return ConfigurationBundle(
            {
                "NODE_ENV": self.p.node_env,
                "PORT": str(self.p.port),
                "LOG_LEVEL": self.p.log_level,
                "MONGODB_URI": self.p.mongodb_uri.get_secret_value(),
                "ENTRA_TENANT_ID": self.p.entra_tenant_id,
                "ENTRA_CLIENT_ID": self.p.entra_client_id,
            },
            secret_keys={"MONGODB_URI"},
        )

    def configure(self) -> List[str]:
        actions: List[str] = []
        if self.ctx.fs.ensure_dir(self.p.app_dir, mode=0o755, owner=self.owner):
            actions.append(f"ensured {self.p.app_dir}")

        bundle = self.bundle()
        sinks = [
            EnvironmentFileSink(path=self.p.environment_file, keys=PUBLIC_KEYS),
            DotenvSink(path=f"{self.p.app_dir}/.env", owner=self.owner),
            TemplateFileSink(
                path=f"{self.p.app_dir}/health-server.js",
                template="health-server.js.j2",
                renderer=self.ctx.renderer,
                owner=self.owner,
            ),
        ]
        actions += self._track(self.ctx.injector.materialize(bundle, sinks).actions)
        return actions

    # ------------------ process supervision ------------------

    def _as_user(self, *args: str, preserve: Sequence[str] = ()) -> List[str]:
        # sudo resets the environment; only the named variables pass through
        keep = [f"--preserve-env={','.join(preserve)}"] if preserve else []
        return ["sudo", *keep, "-u", self.p.user, "env", f"HOME={self.home}", *args]

    def _ensure_startup_unit(self) -> List[str]:
        unit_file = f"/etc/systemd/system/pm2-{self.p.user}.service"
        if self.ctx.fs.exists(unit_file):
            return []
        self.ctx.runner.run(["pm2", "startup", "systemd", "-u", self.p.user, "--hp", self.home])
        return [f"registered pm2-{self.p.user} with systemd"]

    def _ensure_process(self) -> List[str]:
        name = self.p.pm2_app_name
        env = self.bundle().values
        if not self.ctx.runner.ok(self._as_user("pm2", "describe", name)):
            self.ctx.runner.run(
                self._as_user(
                    "pm2", "start", f"{self.p.app_dir}/health-server.js", "--name", name, "--cwd", self.p.app_dir,
                    preserve=list(env),
                ),
                env=env,
            )
            self.ctx.runner.run(self._as_user("pm2", "save"))
            return [f"started pm2 process {name}"]
        if self.config_changed:
            self.ctx.runner.run(self._as_user("pm2", "restart", name, "--update-env", preserve=list(env)), env=env)
            self.ctx.runner.run(self._as_user("pm2", "save"))
            return [f"restarted pm2 process {name}"]
        log.info(f"[app] pm2 process {name} already running")
        return []

    def unit(self) -> ServiceUnit:
        return ServiceUnit(
            name=f"pm2-{self.p.user}",
            health=HttpHealthCheck(f"http://127.0.0.1:{self.p.port}/health"),
            log_path=f"{self.home}/.pm2/pm2.log",
        )

    def start(self) -> List[str]:
        actions = self._ensure_startup_unit()
        actions += self._ensure_process()
        actions += self.ctx.services.ensure_running(self.unit())
        return actions
