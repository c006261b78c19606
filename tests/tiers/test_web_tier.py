import json
import stat

import pytest

from iaasboot.errors import TemplateRenderError
from iaasboot.pipeline import build_context
from iaasboot.tiers.registry import build_tier
from iaasboot.tiers.web import NGINX_SITE, WebTier
from iaasboot.utils.hostfs import HostFS

from conftest import FakeHost, make_params


def _tier(tmp_path, clock, host=None, **web):
    host = host or FakeHost(tmp_path)
    ctx = build_context(make_params("web", **web), fs=HostFS(tmp_path), runner=host, clock=clock,
                        lock_probe=lambda p: False)
    return build_tier("web", ctx), host


def _all_phases(tier):
    return [a for phase in ("install", "prepare_storage", "configure", "start", "post_start")
            for a in getattr(tier, phase)()]


def test_registry_builds_web_tier(tmp_path, clock):
    tier, _ = _tier(tmp_path, clock)
    assert isinstance(tier, WebTier)


def test_first_run_installs_configures_and_starts(tmp_path, clock, healthy):
    tier, host = _tier(tmp_path, clock)

    actions = _all_phases(tier)

    assert {"nginx", "openssl"} <= host.installed
    assert "started nginx" in actions and "enabled nginx" in actions
    site = (tmp_path / NGINX_SITE.lstrip("/")).read_text()
    assert "proxy_pass http://10.0.2.10:3000;" in site
    assert "ssl_certificate /etc/nginx/ssl/nginx.crt;" in site
    key = tmp_path / "etc/nginx/ssl/nginx.key"
    assert key.exists()
    assert host.ran("chmod", "600")


def test_runtime_config_json_has_entra_ids(tmp_path, clock, healthy):
    tier, _ = _tier(tmp_path, clock)
    tier.configure()

    p = tmp_path / "var/www/html/config.json"
    assert json.loads(p.read_text()) == {
        "ENTRA_TENANT_ID": "tenant-1111",
        "ENTRA_FRONTEND_CLIENT_ID": "spa-2222",
        "ENTRA_BACKEND_CLIENT_ID": "api-3333",
        "API_BASE_URL": "/api",
    }
    assert stat.S_IMODE(p.stat().st_mode) == 0o644


def test_second_run_changes_nothing(tmp_path, clock, healthy):
    host = FakeHost(tmp_path)
    first, _ = _tier(tmp_path, clock, host=host)
    _all_phases(first)
    host.calls.clear()

    again, _ = _tier(tmp_path, clock, host=host)
    assert _all_phases(again) == []
    assert host.mutations() == []


def test_site_drift_is_repaired_and_nginx_restarted(tmp_path, clock, healthy):
    host = FakeHost(tmp_path)
    first, _ = _tier(tmp_path, clock, host=host)
    _all_phases(first)
    (tmp_path / NGINX_SITE.lstrip("/")).write_text("server { listen 8080; }\n")

    again, _ = _tier(tmp_path, clock, host=host)
    actions = _all_phases(again)

    assert f"wrote {NGINX_SITE}" in actions
    assert "restarted nginx" in actions


def test_changed_upstream_flows_into_site(tmp_path, clock, healthy):
    tier, _ = _tier(tmp_path, clock, api_upstream="http://10.0.2.99:3000/")
    tier.configure()

    site = (tmp_path / NGINX_SITE.lstrip("/")).read_text()
    assert "proxy_pass http://10.0.2.99:3000;" in site


def test_placeholder_entra_id_aborts_before_writing(tmp_path, clock):
    tier, _ = _tier(tmp_path, clock, entra_tenant_id="__ENTRA_TENANT_ID__")

    with pytest.raises(TemplateRenderError):
        tier.configure()
    assert not (tmp_path / "var/www/html/config.json").exists()
