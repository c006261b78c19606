import stat

from iaasboot.pipeline import build_context
from iaasboot.tiers.registry import build_tier
from iaasboot.utils.hostfs import HostFS

from conftest import APP, FakeHost, make_params


def _tier(tmp_path, clock, host, **app):
    ctx = build_context(make_params("app", **app), fs=HostFS(tmp_path), runner=host, clock=clock,
                        lock_probe=lambda p: False)
    return build_tier("app", ctx)


def _all_phases(tier):
    return [a for phase in ("install", "prepare_storage", "configure", "start", "post_start")
            for a in getattr(tier, phase)()]


def test_nodesource_repo_and_node_installed(tmp_path, clock, healthy):
    host = FakeHost(tmp_path)
    _all_phases(_tier(tmp_path, clock, host))

    assert {"ca-certificates", "curl", "gnupg", "nodejs"} <= host.installed
    listing = (tmp_path / "etc/apt/sources.list.d/nodesource.list").read_text()
    assert "https://deb.nodesource.com/node_20.x nodistro main" in listing
    assert host.pm2_global


def test_prerequisites_installed_before_repository_key(tmp_path, clock, healthy):
    host = FakeHost(tmp_path)
    _all_phases(_tier(tmp_path, clock, host))

    installs = [i for i, c in enumerate(host.calls) if c[0] == "apt-get" and "install" in c]
    key_fetch = next(i for i, c in enumerate(host.calls) if c[0] == "bash")
    assert installs[0] < key_fetch < installs[1]


def test_environment_split_between_public_file_and_dotenv(tmp_path, clock, healthy):
    host = FakeHost(tmp_path)
    _tier(tmp_path, clock, host).configure()

    env = (tmp_path / "etc/environment").read_text()
    assert "NODE_ENV=production" in env and "PORT=3000" in env and "ENTRA_CLIENT_ID=api-3333" in env
    assert "MONGODB_URI" not in env

    dotenv = tmp_path / "opt/blogapp/.env"
    assert f"MONGODB_URI={APP['mongodb_uri']}" in dotenv.read_text()
    assert stat.S_IMODE(dotenv.stat().st_mode) == 0o600
    assert "process.env.PORT" in (tmp_path / "opt/blogapp/health-server.js").read_text()


def test_pm2_process_started_as_app_user_with_env(tmp_path, clock, healthy):
    host = FakeHost(tmp_path)
    _all_phases(_tier(tmp_path, clock, host))

    start = next(c for c in host.calls if "start" in c and "--name" in c)
    assert start[:1] == ["sudo"] and "azureuser" in start
    assert start[start.index("--name") + 1] == "blogapp-health"
    assert APP["mongodb_uri"] not in " ".join(start)
    env = host.envs[host.calls.index(start)]
    assert env["PORT"] == "3000" and env["MONGODB_URI"] == APP["mongodb_uri"]
    assert (tmp_path / "etc/systemd/system/pm2-azureuser.service").exists()
    assert "pm2-azureuser" in host.active


def test_second_run_changes_nothing(tmp_path, clock, healthy):
    host = FakeHost(tmp_path)
    _all_phases(_tier(tmp_path, clock, host))
    host.calls.clear()

    assert _all_phases(_tier(tmp_path, clock, host)) == []
    assert host.mutations() == []


def test_changed_uri_restarts_pm2_with_new_env(tmp_path, clock, healthy):
    host = FakeHost(tmp_path)
    _all_phases(_tier(tmp_path, clock, host))

    new_uri = APP["mongodb_uri"].replace("s3cr3t-pw", "rotated-pw")
    actions = _all_phases(_tier(tmp_path, clock, host, mongodb_uri=new_uri))

    assert "restarted pm2 process blogapp-health" in actions
    assert "rotated-pw" in (tmp_path / "opt/blogapp/.env").read_text()
