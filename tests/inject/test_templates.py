import pytest

from iaasboot.errors import TemplateRenderError
from iaasboot.inject.templates import TemplateRenderer, unresolved_placeholders


def test_missing_value_fails_render():
    r = TemplateRenderer()
    with pytest.raises(TemplateRenderError, match="missing a value"):
        r.render_string("proxy_pass {{ api_upstream }};", {})


def test_literal_placeholder_in_output_is_rejected():
    r = TemplateRenderer()
    with pytest.raises(TemplateRenderError, match="__ENTRA_TENANT_ID__"):
        r.render_string("tenant={{ t }}", {"t": "__ENTRA_TENANT_ID__"})


def test_unresolved_placeholders_detects_both_styles():
    assert unresolved_placeholders("a {{ x }} b __MONGODB_URI__ c") == ["{{ x }}", "__MONGODB_URI__"]
    assert unresolved_placeholders("location /api/ { proxy_pass http://x; }") == []


def test_packaged_nginx_template_renders_clean():
    r = TemplateRenderer()
    out = r.render("nginx-site.conf.j2", {
        "api_upstream": "http://10.0.2.10:3000",
        "server_name": "blogapp.local",
        "web_root": "/var/www/html",
        "ssl_certificate": "/etc/nginx/ssl/nginx.crt",
        "ssl_certificate_key": "/etc/nginx/ssl/nginx.key",
    })

    assert "proxy_pass http://10.0.2.10:3000;" in out
    assert "ssl_certificate_key /etc/nginx/ssl/nginx.key;" in out
    assert "try_files $uri $uri/ /index.html;" in out
    assert unresolved_placeholders(out) == []


def test_packaged_mongod_template_renders_clean():
    out = TemplateRenderer().render("mongod.conf.j2", {
        "data_dir": "/data/mongodb/db",
        "log_path": "/var/log/mongodb/mongod.log",
        "port": "27017",
        "bind_ip": "0.0.0.0",
        "replica_set_name": "blogapp-rs0",
    })

    assert "dbPath: /data/mongodb/db" in out
    assert "replSetName: blogapp-rs0" in out


def test_templates_dir_override(tmp_path):
    (tmp_path / "x.conf.j2").write_text("value={{ v }}\n")
    assert TemplateRenderer(tmp_path).render("x.conf.j2", {"v": 1}) == "value=1\n"
