import json

import pytest

from iaasboot.config.models import ReplicaSetSpec
from iaasboot.errors import ReplicaSetError
from iaasboot.replicaset.bootstrap import (
    DatabaseUser,
    ReplicaSetBootstrapper,
    ReplicaSetState,
    parse_status,
)
from iaasboot.replicaset.mongosh import MongoShell

from conftest import FakeRunner

SPEC = ReplicaSetSpec(
    members=[{"host": "10.0.3.4", "priority": 2}, {"host": "10.0.3.5", "priority": 1}],
    election_timeout_seconds=30,
    election_interval_seconds=3,
)


class FakeMongo:
    """Answers mongosh --eval like a mongod that elects a primary after a few status polls."""

    def __init__(self, initiated=False, polls_to_primary=2, users=(), unreachable_for=0):
        self.initiated = initiated
        self.unreachable_for = unreachable_for    # initiate attempts refused while 10.0.3.5 boots
        self.polls_to_primary = polls_to_primary
        self.initiate_calls = []
        self.users = set(users)

    def __call__(self, cmd):
        script = cmd[-1]
        if "rs.initiate" in script:
            return self.initiate(cmd)
        if "rs.status()" in script:
            return self.status()
        if "createUser" in script:
            return 0, "", ""  # the env-driven path is exercised through the runner envs
        if "db.hello().ok" in script:
            host = cmd[cmd.index("--host") + 1]
            if host == "10.0.3.5" and self.unreachable_for:
                return 1, "", "MongoNetworkError: connect ECONNREFUSED 10.0.3.5:27017"
            return 0, '{"ok": 1}\n', ""
        return 1, "", "unexpected script"

    def initiate(self, cmd):
        self.initiate_calls.append(cmd)
        if self.unreachable_for:
            self.unreachable_for -= 1
            return 1, "", (
                "MongoServerError: replSetInitiate quorum check failed because not all proposed set members "
                "responded affirmatively: 10.0.3.5:27017 failed with Error connecting to 10.0.3.5:27017 "
                ":: caused by :: Connection refused"
            )
        self.initiated = True
        return 0, json.dumps({"ok": 1, "error": None}) + "\n", ""

    def status(self):
        if not self.initiated:
            doc = {"ok": 0, "code": 94, "codeName": "NotYetInitialized", "error": "no replset config has been received"}
        else:
            if self.polls_to_primary > 0:
                self.polls_to_primary -= 1
                states = ["SECONDARY", "SECONDARY"]
            else:
                states = ["PRIMARY", "SECONDARY"]
            doc = {"ok": 1, "set": "blogapp-rs0", "members": [
                {"name": "10.0.3.4:27017", "state": states[0]},
                {"name": "10.0.3.5:27017", "state": states[1]},
            ]}
        return 0, "Current Mongosh Log ID: 65f\n" + json.dumps(doc) + "\n", ""


def _rs(mongo, clock, dry_run=False, runner=None):
    runner = runner or FakeRunner({("mongosh",): mongo}, dry_run=dry_run)
    shell = MongoShell(runner, admin_user="blogadmin", admin_password="adm1n-pw")
    return ReplicaSetBootstrapper(shell, SPEC, clock=clock), runner


def test_parse_status_states():
    assert parse_status({"ok": 0, "code": 94}).state is ReplicaSetState.UNINITIALIZED
    assert parse_status({"ok": 1, "members": [{"state": "STARTUP2"}]}).state is ReplicaSetState.INITIATING
    assert parse_status({"ok": 1, "members": [{"state": "PRIMARY"}]}).state is ReplicaSetState.STABLE
    with pytest.raises(ReplicaSetError):
        parse_status({"ok": 0, "code": 13, "codeName": "Unauthorized"})


def test_config_document_lists_members_with_priorities():
    rs, _ = _rs(FakeMongo(), None)
    assert rs.config_document() == {
        "_id": "blogapp-rs0",
        "members": [
            {"_id": 0, "host": "10.0.3.4:27017", "priority": 2, "votes": 1},
            {"_id": 1, "host": "10.0.3.5:27017", "priority": 1, "votes": 1},
        ],
    }


def test_initiator_initiates_and_waits_for_primary(clock):
    mongo = FakeMongo()
    rs, runner = _rs(mongo, clock)

    actions = rs.reconcile("10.0.3.4")

    assert actions == ["initiated replica set blogapp-rs0"]
    assert len(mongo.initiate_calls) == 1
    assert clock.sleeps == [3, 3]
    env = runner.envs[runner.calls.index(mongo.initiate_calls[0])]
    assert json.loads(env["IAASBOOT_RS_CONFIG"])["_id"] == "blogapp-rs0"


def test_second_invocation_issues_no_mutating_command(clock):
    mongo = FakeMongo()
    rs, _ = _rs(mongo, clock)
    rs.reconcile("10.0.3.4")

    assert rs.reconcile("10.0.3.4") == []
    assert len(mongo.initiate_calls) == 1


def test_initiating_set_is_awaited_not_reinitiated(clock):
    mongo = FakeMongo(initiated=True, polls_to_primary=3)
    rs, _ = _rs(mongo, clock)

    assert rs.reconcile("10.0.3.4") == []
    assert mongo.initiate_calls == []


def test_joiner_does_nothing(clock):
    mongo = FakeMongo()
    rs, runner = _rs(mongo, clock)

    assert rs.reconcile("10.0.3.5") == []
    assert runner.calls == []


def test_no_primary_within_timeout_raises(clock):
    mongo = FakeMongo(polls_to_primary=1000)
    rs, _ = _rs(mongo, clock)

    with pytest.raises(ReplicaSetError, match="no primary elected") as ei:
        rs.reconcile("10.0.3.4")
    assert "SECONDARY" in ei.value.diagnostics
    assert sum(clock.sleeps) == 30


def test_dry_run_never_calls_mongosh(clock):
    mongo = FakeMongo()
    rs, runner = _rs(mongo, clock, dry_run=True)

    assert rs.reconcile("10.0.3.4") == []
    assert runner.calls == []


def test_credentials_travel_in_env_not_argv(clock):
    mongo = FakeMongo()
    rs, runner = _rs(mongo, clock)
    rs.reconcile("10.0.3.4")

    assert all("adm1n-pw" not in " ".join(c) for c in runner.calls)
    assert all(e["IAASBOOT_MONGO_PASSWORD"] == "adm1n-pw" for e in runner.envs)


def test_ensure_users_reports_created_only(clock):
    replies = iter([
        (0, '{"ok": 1, "result": "created"}\n', ""),
        (0, '{"ok": 1, "result": "exists"}\n', ""),
    ])
    runner = FakeRunner({("mongosh",): lambda cmd: next(replies)})
    rs, _ = _rs(None, clock, runner=runner)

    actions = rs.ensure_users([
        DatabaseUser("admin", "blogadmin", "adm1n-pw", [{"role": "root", "db": "admin"}]),
        DatabaseUser("blogapp", "blogapp", "app-pw-42", [{"role": "readWrite", "db": "blogapp"}]),
    ])

    assert actions == ["created user blogadmin@admin"]
    assert runner.envs[1]["IAASBOOT_USER_NAME"] == "blogapp"
    assert json.loads(runner.envs[1]["IAASBOOT_USER_ROLES"]) == [{"role": "readWrite", "db": "blogapp"}]
    assert all("app-pw-42" not in " ".join(c) for c in runner.calls)


def test_mongosh_failure_wrapped(clock):
    runner = FakeRunner({("mongosh",): (1, "", "MongoNetworkError: connect ECONNREFUSED")})
    rs, _ = _rs(None, clock, runner=runner)

    with pytest.raises(ReplicaSetError) as ei:
        rs.reconcile("10.0.3.4")
    assert "ECONNREFUSED" in ei.value.diagnostics


def test_initiate_waits_for_members_still_booting(clock):
    mongo = FakeMongo(unreachable_for=2)
    rs, _ = _rs(mongo, clock)

    actions = rs.reconcile("10.0.3.4")

    assert actions == ["initiated replica set blogapp-rs0"]
    assert len(mongo.initiate_calls) == 3
    assert clock.sleeps[:2] == [10, 10]


def test_initiate_gives_up_with_member_reachability(clock):
    mongo = FakeMongo(unreachable_for=10_000)
    rs, _ = _rs(mongo, clock)

    with pytest.raises(ReplicaSetError, match="did not succeed within 600") as ei:
        rs.reconcile("10.0.3.4")

    assert sum(clock.sleeps) == 600
    assert "10.0.3.4:27017: reachable" in ei.value.diagnostics
    assert "10.0.3.5:27017: unreachable" in ei.value.diagnostics
    assert "quorum check failed" in ei.value.diagnostics


def test_initiate_rejected_config_is_not_retried(clock):
    mongo = FakeMongo()
    mongo.initiate = lambda cmd: (0, json.dumps({
        "ok": 0, "code": 93, "codeName": "InvalidReplicaSetConfig", "error": "priority must be 0 for arbiters",
    }) + "\n", "")
    rs, _ = _rs(mongo, clock)

    with pytest.raises(ReplicaSetError, match="priority must be 0"):
        rs.reconcile("10.0.3.4")
    assert clock.sleeps == []


def test_already_initialized_counts_as_initiated(clock):
    mongo = FakeMongo()

    def already(cmd):
        mongo.initiated = True
        return 0, json.dumps({"ok": 0, "code": 23, "codeName": "AlreadyInitialized", "error": "already initialized"}) + "\n", ""

    mongo.initiate = already
    rs, _ = _rs(mongo, clock)

    assert rs.reconcile("10.0.3.4") == ["initiated replica set blogapp-rs0"]
