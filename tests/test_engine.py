"""Tests for the two-way sync engine."""

import copy
import json
from unittest.mock import patch

import pytest

from apollo_sync.exceptions import ApplicationError, LocalStoreError, RemoteError
from apollo_sync.store import LocalStore
from apollo_sync.sync.baseline import BaselineCache, calculate_checksum
from apollo_sync.sync.conflict_resolver import ConflictPolicy
from apollo_sync.sync.diff import DiffAction, EntryDiff
from apollo_sync.sync.engine import (
    TwoWaySyncEngine,
    TwoWaySyncOptions,
    apply_local_operation,
    apply_local_operations,
    build_create_payload,
    build_update_payload,
    order_remote_operations,
)

STEAM = {
    "name": "Steam",
    "cmd": "steam.exe",
    "exit-timeout": 5,
    "detached": ["steam://open/bigpicture"],
}
STEAM_ON_HOST = dict(STEAM, uuid="u-steam", **{"image-path": "steam.png"})


@pytest.fixture
def catalog(temp_dir):
    path = temp_dir / "apps.json"

    def write(apps):
        path.write_text(json.dumps({"apps": apps}))
        return path

    return write


@pytest.fixture
def baseline(temp_dir):
    return BaselineCache(temp_dir / "cache")


def run(host, baseline, path, **options):
    engine = TwoWaySyncEngine(host.client(), LocalStore(), baseline)
    return engine.sync(TwoWaySyncOptions(config_path=path, **options))


def read_apps(path):
    return json.loads(path.read_text())["apps"]


class TestApplyLocalOperations:
    """Tests for copy-on-apply local changes."""

    def test_create_strips_host_fields(self):
        op = EntryDiff("Steam", DiffAction.CREATE, "", remote=STEAM_ON_HOST, target=STEAM_ON_HOST)

        apps = apply_local_operation([], op)

        assert apps == [STEAM]

    def test_update_keeps_local_keys_and_removes_cleared_fields(self):
        local = dict(STEAM, notes="mine")
        target = {"name": "Steam", "cmd": "steam-beta.exe", "exit-timeout": 5}
        op = EntryDiff("Steam", DiffAction.UPDATE, "", local=local, remote=target, target=target)

        apps = apply_local_operation([local], op)

        assert apps == [{"name": "Steam", "cmd": "steam-beta.exe", "exit-timeout": 5, "notes": "mine"}]
        assert local["cmd"] == "steam.exe"

    def test_delete(self):
        apps = [{"name": "A"}, dict(STEAM), {"name": "B"}]
        op = EntryDiff("steam", DiffAction.DELETE, "", local=STEAM)

        assert apply_local_operation(apps, op) == [{"name": "A"}, {"name": "B"}]
        assert len(apps) == 3

    def test_missing_entry(self):
        op = EntryDiff("Steam", DiffAction.DELETE, "", local=STEAM)

        with pytest.raises(ApplicationError) as exc_info:
            apply_local_operations([{"name": "Other"}], [op])

        assert exc_info.value.name == "Steam"
        assert exc_info.value.operation == "delete"

    def test_input_is_not_modified(self):
        apps = [dict(STEAM)]
        snapshot = copy.deepcopy(apps)
        ops = [
            EntryDiff("Celeste", DiffAction.CREATE, "", target={"name": "Celeste"}),
            EntryDiff("Steam", DiffAction.UPDATE, "", local=STEAM, target={"name": "Steam"}),
        ]

        result = apply_local_operations(apps, ops)

        assert apps == snapshot
        assert result == [{"name": "Steam"}, {"name": "Celeste"}]


class TestPayloads:
    """Tests for host payloads."""

    def test_create_payload(self):
        payload = build_create_payload({"name": "Celeste", "cmd": "celeste.exe"})
        assert payload == {"name": "Celeste", "cmd": "celeste.exe", "uuid": "", "index": -1}

    def test_update_payload_keeps_host_fields_and_clears(self):
        target = {"name": "Steam", "cmd": "steam-beta.exe"}

        payload = build_update_payload(STEAM_ON_HOST, 3, target)

        assert payload["index"] == 3
        assert payload["uuid"] == "u-steam"
        assert payload["image-path"] == "steam.png"
        assert payload["cmd"] == "steam-beta.exe"
        assert payload["detached"] == []
        assert payload["exit-timeout"] == 0
        assert payload["prep-cmd"] == []
        assert STEAM_ON_HOST["cmd"] == "steam.exe"


class TestOrderRemoteOperations:
    """Tests for the order host operations are pushed in."""

    def test_updates_first_and_deletes_from_the_end(self):
        ops = [
            EntryDiff("B", DiffAction.DELETE, "", remote_index=1),
            EntryDiff("New", DiffAction.CREATE, ""),
            EntryDiff("D", DiffAction.DELETE, "", remote_index=3),
            EntryDiff("C", DiffAction.UPDATE, "", remote_index=2),
        ]

        ordered = order_remote_operations(ops)

        assert [(op.action, op.name) for op in ordered] == [
            (DiffAction.UPDATE, "C"),
            (DiffAction.CREATE, "New"),
            (DiffAction.DELETE, "D"),
            (DiffAction.DELETE, "B"),
        ]


class TestTwoWaySync:
    """End-to-end sync runs against a fake host."""

    def test_create_on_server(self, fake_host, baseline, catalog):
        path = catalog([{"name": "Celeste", "cmd": "celeste.exe"}])

        result = run(fake_host, baseline, path)

        assert result.success
        assert result.remote_changes == 1
        assert fake_host.pushed_payloads() == [
            {"name": "Celeste", "cmd": "celeste.exe", "uuid": "", "index": -1}
        ]
        # Baseline comes from the host after the push, with its uuid
        assert baseline.load().apps == [{"name": "Celeste", "cmd": "celeste.exe", "uuid": "uuid-1"}]

    def test_create_locally(self, make_host, baseline, catalog):
        host = make_host([STEAM_ON_HOST])
        path = catalog([])

        result = run(host, baseline, path)

        assert result.local_changes == 1
        assert read_apps(path) == [STEAM]
        assert host.pushed_payloads() == []

    def test_delete_on_server(self, make_host, baseline, catalog):
        old = {"name": "Old Game", "cmd": "old.exe", "uuid": "u-old"}
        host = make_host([STEAM_ON_HOST, old])
        baseline.save([STEAM_ON_HOST, old])
        path = catalog([STEAM])

        result = run(host, baseline, path)

        assert result.remote_changes == 1
        assert [app["name"] for app in host.apps] == ["Steam"]
        assert [app["name"] for app in baseline.load().apps] == ["Steam"]

    def test_delete_locally(self, make_host, baseline, catalog):
        host = make_host([])
        baseline.save([STEAM_ON_HOST])
        path = catalog([STEAM, {"name": "Local"}])

        result = run(host, baseline, path)

        assert result.local_changes == 1
        assert read_apps(path) == [{"name": "Local"}]
        # Local-only entry was pushed to the host
        assert [p["name"] for p in host.pushed_payloads()] == ["Local"]

    def test_update_server(self, make_host, baseline, catalog):
        host = make_host([{"name": "Desktop", "uuid": "u-desk"}, STEAM_ON_HOST])
        baseline.save(copy.deepcopy(host.apps))
        path = catalog([{"name": "Desktop"}, dict(STEAM, cmd="steam-beta.exe")])

        result = run(host, baseline, path)

        assert result.remote_changes == 1
        payload = host.pushed_payloads()[0]
        assert payload["index"] == 1
        assert payload["uuid"] == "u-steam"
        assert payload["image-path"] == "steam.png"
        assert host.apps[1]["cmd"] == "steam-beta.exe"

    def test_merge_disjoint_edits(self, make_host, baseline, catalog):
        host = make_host([dict(STEAM_ON_HOST, **{"exit-timeout": 30})])
        baseline.save([STEAM_ON_HOST])
        path = catalog([dict(STEAM, cmd="steam-beta.exe")])

        result = run(host, baseline, path)

        assert result.local_changes == 1
        assert result.remote_changes == 1
        assert read_apps(path)[0]["exit-timeout"] == 30
        assert host.apps[0]["cmd"] == "steam-beta.exe"
        assert host.apps[0]["exit-timeout"] == 30

    def test_second_run_is_a_no_op(self, make_host, baseline, catalog):
        host = make_host([STEAM_ON_HOST, {"name": "Desktop", "uuid": "u-desk"}])
        path = catalog([{"name": "Celeste", "cmd": "celeste.exe"}, dict(STEAM)])

        first = run(host, baseline, path)
        assert first.success
        catalog_after_first = path.read_text()
        pushes = len(host.pushed_payloads())

        second = run(host, baseline, path)

        assert second.success
        assert second.local_changes == 0
        assert second.remote_changes == 0
        assert second.plan.is_empty
        assert path.read_text() == catalog_after_first
        assert len(host.pushed_payloads()) == pushes

    def test_dry_run_writes_nothing(self, make_host, baseline, catalog):
        host = make_host([STEAM_ON_HOST])
        path = catalog([{"name": "Celeste"}])
        before = path.read_bytes()

        result = run(host, baseline, path, dry_run=True)

        assert result.dry_run
        assert result.local_changes == 1
        assert result.remote_changes == 1
        assert path.read_bytes() == before
        assert host.requests_to("POST", "/api/apps") == []
        assert not baseline.cache_file.exists()

    def test_dry_run_plans_like_real_run(self, make_host, baseline, catalog):
        host = make_host([STEAM_ON_HOST])
        path = catalog([{"name": "Celeste"}])

        dry = run(host, baseline, path, dry_run=True)
        real = run(host, baseline, path)

        assert dry.plan.to_dict() == real.plan.to_dict()

    def test_corrupt_baseline_is_ignored(self, make_host, baseline, catalog):
        host = make_host([STEAM_ON_HOST])
        baseline.store.save_json(
            baseline.cache_file,
            {"apps": [STEAM_ON_HOST], "timestamp": 1, "checksum": "bad"},
        )
        path = catalog([])

        result = run(host, baseline, path)

        # Without a baseline the host entry is new, not deleted locally
        assert result.local_changes == 1
        assert read_apps(path) == [STEAM]
        assert host.requests_to("POST", "/api/apps/delete") == []

    def test_valid_baseline_is_used(self, make_host, baseline, catalog):
        host = make_host([STEAM_ON_HOST])
        baseline.store.save_json(
            baseline.cache_file,
            {
                "apps": [STEAM_ON_HOST],
                "timestamp": 1,
                "checksum": calculate_checksum([STEAM_ON_HOST]),
            },
        )
        path = catalog([])

        result = run(host, baseline, path)

        assert result.remote_changes == 1
        assert host.apps == []

    def test_conflict_left_for_user(self, make_host, baseline, catalog):
        host = make_host([dict(STEAM_ON_HOST, **{"exit-timeout": 20})])
        baseline.save([STEAM_ON_HOST])
        path = catalog([dict(STEAM, **{"exit-timeout": 10})])

        result = run(host, baseline, path)

        assert result.success
        assert result.conflicts == 1
        assert str(result.plan.conflicts[0].conflicts[0]) == "exit-timeout: local=10 vs remote=20"
        assert host.pushed_payloads() == []
        assert read_apps(path)[0]["exit-timeout"] == 10

        # The conflict is still reported next time
        again = run(host, baseline, path)
        assert again.conflicts == 1

    @pytest.mark.parametrize(
        "policy,expected",
        [(ConflictPolicy.LOCAL_WINS, 10), (ConflictPolicy.SERVER_WINS, 20)],
    )
    def test_conflict_policies(self, make_host, baseline, catalog, policy, expected):
        host = make_host([dict(STEAM_ON_HOST, **{"exit-timeout": 20})])
        baseline.save([STEAM_ON_HOST])
        path = catalog([dict(STEAM, **{"exit-timeout": 10})])

        result = run(host, baseline, path, conflict_policy=policy)

        assert result.conflicts == 0
        assert host.apps[0]["exit-timeout"] == expected
        assert read_apps(path)[0]["exit-timeout"] == expected

    def test_resolved_conflict_after_earlier_server_delete(self, make_host, baseline, catalog):
        apps = [
            {"name": name, "uuid": f"u-{name}", "exit-timeout": 5} for name in "ABCD"
        ]
        baseline.save(copy.deepcopy(apps))
        apps[2]["exit-timeout"] = 20
        host = make_host(apps)
        path = catalog([
            {"name": "A", "exit-timeout": 5},
            {"name": "C", "exit-timeout": 10},
            {"name": "D", "exit-timeout": 5},
        ])

        result = run(host, baseline, path, conflict_policy=ConflictPolicy.LOCAL_WINS)

        assert result.success
        assert result.remote_changes == 2
        assert [app["name"] for app in host.apps] == ["A", "C", "D"]
        assert host.apps[1]["exit-timeout"] == 10
        assert host.apps[2] == {"name": "D", "uuid": "u-D", "exit-timeout": 5}

    @patch("apollo_sync.client.time.sleep")
    def test_push_failure_is_recorded(self, mock_sleep, make_host, baseline, catalog):
        host = make_host([STEAM_ON_HOST])
        host.failures[("POST", "/api/apps")] = 500
        saved = baseline.save([STEAM_ON_HOST])
        path = catalog([STEAM, {"name": "Celeste"}])

        result = run(host, baseline, path)

        assert not result.success
        assert result.remote_changes == 0
        assert "Celeste" in result.errors[0]
        kept = baseline.load()
        assert kept.checksum == saved.checksum
        assert kept.timestamp == saved.timestamp

    def test_save_failure_is_recorded(self, make_host, baseline, catalog):
        host = make_host([STEAM_ON_HOST])
        path = catalog([])

        with patch.object(LocalStore, "save_catalog", side_effect=LocalStoreError("read-only")):
            result = run(host, baseline, path)

        assert not result.success
        assert "read-only" in result.errors[0]
        assert not baseline.cache_file.exists()

    def test_rejected_login_is_fatal(self, make_host, baseline, catalog):
        host = make_host([])
        client = host.client()
        host.password = "rotated"
        path = catalog([STEAM])

        with pytest.raises(RemoteError):
            TwoWaySyncEngine(client, LocalStore(), baseline).sync(
                TwoWaySyncOptions(config_path=path)
            )
        assert not baseline.cache_file.exists()

    def test_missing_catalog_is_fatal(self, fake_host, baseline, temp_dir):
        with pytest.raises(LocalStoreError):
            run(fake_host, baseline, temp_dir / "missing.json")
        assert fake_host.requests == []
