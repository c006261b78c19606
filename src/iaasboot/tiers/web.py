# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/iaasboot/tiers/web.py

from __future__ import annotations

import logging
from typing import List

from iaasboot.inject.sinks import ConfigurationBundle, JsonFileSink, TemplateFileSink
from iaasboot.services.health import HttpHealthCheck
from iaasboot.services.systemd import ServiceUnit

from .base import TierInstaller

log = logging.getLogger("iaasboot")

NGINX_SITE = "/etc/nginx/sites-available/default"


class WebTier(TierInstaller):
    """
    NGINX reverse proxy serving the SPA, a load-balancer health endpoint on
    plain HTTP, and /api/ proxied to the internal load balancer.
    """

    name = "web"

    @property
    def p(self):
        return self.ctx.params.web

    def packages(self) -> List[str]:
        return ["nginx", "openssl"]

    def _cert_paths(self) -> tuple[str, str]:
        return f"{self.p.cert_dir}/nginx.key", f"{self.p.cert_dir}/nginx.crt"

    def _ensure_certificate(self) -> List[str]:
        key, crt = self._cert_paths()
        fs = self.ctx.fs
        if fs.exists(key) and fs.exists(crt):
            log.info("[web] self-signed certificate already present")
            return []

        fs.ensure_dir(self.p.cert_dir, mode=0o755)
        log.info("[web] generating self-signed SSL certificate")
        self.ctx.runner.run([
            "openssl", "req", "-x509", "-nodes",
            "-days", str(self.p.cert_days),
            "-newkey", "rsa:2048",
            "-keyout", str(fs.path(key)),
            "-out", str(fs.path(crt)),
            "-subj", self.p.cert_subject,
        ])
        self.ctx.runner.run(["chmod", "600", str(fs.path(key))])
        self.ctx.runner.run(["chmod", "644", str(fs.path(crt))])
        return [f"generated certificate {crt}"]

    def runtime_bundle(self) -> ConfigurationBundle:
        """config.json fetched by the browser client, so Entra IDs change without a rebuild."""
        return ConfigurationBundle({
            "ENTRA_TENANT_ID": self.p.entra_tenant_id,
            "ENTRA_FRONTEND_CLIENT_ID": self.p.entra_frontend_client_id,
            "ENTRA_BACKEND_CLIENT_ID": self.p.entra_backend_client_id,
            "API_BASE_URL": self.p.api_base_url,
        })

    def site_bundle(self) -> ConfigurationBundle:
        key, crt = self._cert_paths()
        return ConfigurationBundle({
            "api_upstream": self.p.api_upstream.rstrip("/"),
            "server_name": self.p.server_name,
            "web_root": self.p.web_root,
            "ssl_certificate": crt,
            "ssl_certificate_key": key,
        })

    def configure(self) -> List[str]:
        actions: List[str] = []
        fs = self.ctx.fs

        fs.ensure_dir(self.p.web_root, mode=0o755)
        if fs.write_text(f"{self.p.web_root}/health", "OK\n", mode=0o644):
            actions.append(f"wrote {self.p.web_root}/health")

        actions += self._track(self._ensure_certificate())

        site = TemplateFileSink(path=NGINX_SITE, template="nginx-site.conf.j2", renderer=self.ctx.renderer)
        actions += self._track(self.ctx.injector.materialize(self.site_bundle(), [site]).actions)

        runtime = JsonFileSink(path=f"{self.p.web_root}/config.json")
        actions += self.ctx.injector.materialize(self.runtime_bundle(), [runtime]).actions
        return actions

    def unit(self) -> ServiceUnit:
        return ServiceUnit(
            name="nginx",
            health=HttpHealthCheck("http://127.0.0.1/health"),
            log_path="/var/log/nginx/error.log",
            config_test=("nginx", "-t"),
        )

    def start(self) -> List[str]:
        return self.ctx.services.ensure_running(self.unit(), restart=self.config_changed)
