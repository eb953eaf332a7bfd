"""Unit tests for pynsxt_fxns.py - configuration, connections and commands."""

import json

import pandas as pd
import pytest
from unittest.mock import MagicMock, patch

from pynsxt_errors import CredentialsUnavailable, InvalidArgument
from pynsxt_fxns import (
    EXIT_CONFLICT,
    EXIT_ERROR,
    EXIT_OK,
    apply_file,
    build_initial_config,
    link_tier0,
    new_gateway,
    new_group,
    open_session,
    read_config,
    show_config,
    show_gateways,
    show_groups,
    worst_exit_code,
)
from pynsxt_nsx import InMemoryCollection
from pynsxt_reconcile import Action, Outcome
from pynsxt_session import ConnectionRegistry, Prompter
from pynsxt_specs import KIND_GROUP, KIND_TIER0, KIND_TIER1, Tier1GatewaySpec


def group_names(session):
    return [g.name for g in session.collections[KIND_GROUP].list()]


class TestReadConfig:

    def test_missing_file_gives_defaults(self, tmp_path):
        config_params = read_config(str(tmp_path / "config.ini"))
        assert config_params["domain"] == "default"
        assert config_params["verify_ssl"] is False
        assert config_params["retries"] == 3

    def test_values(self, tmp_path):
        path = tmp_path / "config.ini"
        path.write_text("[nsxtConfig]\ndefault_server = lab\nverify_ssl = true\nretries = 5\ndomain = cgw\n")
        config_params = read_config(str(path))

        assert config_params["default_server"] == "lab"
        assert config_params["verify_ssl"] is True
        assert config_params["retries"] == 5
        assert config_params["domain"] == "cgw"
        assert config_params["timeout"] == 30

    @pytest.mark.parametrize("content", ["[otherConfig]\nusername = admin\n", "[nsxtConfig]\nretries = many\n", "no section"])
    def test_invalid_file(self, tmp_path, content):
        path = tmp_path / "config.ini"
        path.write_text(content)
        with pytest.raises(InvalidArgument):
            read_config(str(path))

    def test_show_config_masks_password(self, tmp_path, capsys):
        path = tmp_path / "config.ini"
        path.write_text("[nsxtConfig]\nusername = admin\npassword = s3cret\n")

        assert show_config(config_file=str(path)) == EXIT_OK
        out = capsys.readouterr().out
        assert "********" in out
        assert "s3cret" not in out

    def test_show_config_missing(self, tmp_path):
        assert show_config(config_file=str(tmp_path / "config.ini")) == EXIT_ERROR

    def test_build_initial_config(self, tmp_path):
        path = tmp_path / "config.ini"
        with patch("builtins.input", side_effect=["nsxmgr-lab", "admin"]):
            assert build_initial_config(config_file=str(path)) == EXIT_OK

        config_params = read_config(str(path))
        assert config_params["default_server"] == "nsxmgr-lab"
        assert config_params["username"] == "admin"
        assert config_params["password"] == ""


class TestOpenSession:

    @pytest.fixture
    def config_params(self, tmp_path):
        servers = tmp_path / "servers.json"
        servers.write_text(json.dumps({"lab": {"host": "nsx-lab.test", "username": "admin", "password": "pw"}}))
        config_params = read_config(str(tmp_path / "config.ini"))
        config_params["server_file"] = str(servers)
        return config_params

    def test_connects_with_lookup_file_credentials(self, config_params, fake_session):
        factory = MagicMock(return_value=fake_session)
        registry = ConnectionRegistry()

        session = open_session("lab", config_params, Prompter(interactive=False), registry, session_factory=factory)

        factory.assert_called_once_with("nsx-lab.test", "admin", "pw", verify_ssl=False, retries=3, timeout=30)
        assert session is fake_session
        assert fake_session.connected
        assert registry.names() == ["lab"]

    @patch.dict("os.environ", {"NSXT_USERNAME": "envuser", "NSXT_PASSWORD": "envpw"})
    def test_raw_host_uses_environment(self, config_params, fake_session):
        factory = MagicMock(return_value=fake_session)
        open_session("10.0.0.5", config_params, Prompter(interactive=False), session_factory=factory)

        factory.assert_called_once_with("10.0.0.5", "envuser", "envpw", verify_ssl=False, retries=3, timeout=30)

    @patch.dict("os.environ", {}, clear=True)
    def test_non_interactive_without_credentials(self, config_params, fake_session):
        factory = MagicMock(return_value=fake_session)
        with pytest.raises(CredentialsUnavailable):
            open_session("10.0.0.5", config_params, Prompter(interactive=False), session_factory=factory)
        factory.assert_not_called()


class TestExitCodes:

    @pytest.mark.parametrize("actions,expected", [
        ([Action.CREATED, Action.FOUND, Action.DRY_RUN], EXIT_OK),
        ([Action.CREATED, Action.CONFLICT], EXIT_CONFLICT),
        ([Action.CONFLICT, Action.ERROR, Action.UPDATED], EXIT_ERROR),
        ([], EXIT_OK),
    ])
    def test_worst_exit_code(self, actions, expected):
        assert worst_exit_code([Outcome(a) for a in actions]) == expected


class TestGroupCommands:

    def new(self, session, **kwargs):
        params = {"session": session, "objectname": "G1", "type": "ip-based", "members": ["10.0.0.1"], "domain": "default"}
        params.update(kwargs)
        return new_group(**params)

    def test_create_then_found(self, fake_session, capsys):
        assert self.new(fake_session) == EXIT_OK
        assert "Created" in capsys.readouterr().out
        assert self.new(fake_session) == EXIT_OK
        assert "Found" in capsys.readouterr().out
        assert group_names(fake_session) == ["G1"]

    def test_conflict_and_force(self, fake_session, capsys):
        self.new(fake_session)
        capsys.readouterr()

        assert self.new(fake_session, description="changed") == EXIT_CONFLICT
        assert "Use --force" in capsys.readouterr().out
        assert self.new(fake_session, description="changed", force=True) == EXIT_OK
        assert "Updated" in capsys.readouterr().out

    def test_dry_run(self, fake_session, capsys):
        assert self.new(fake_session, dry_run=True) == EXIT_OK
        assert "DryRun" in capsys.readouterr().out
        assert fake_session.collections[KIND_GROUP].mutations == []

    def test_invalid_arguments(self, fake_session, capsys):
        assert self.new(fake_session, type="criteria-based", members=None, key="Name") == EXIT_ERROR
        assert "Error" in capsys.readouterr().out
        assert fake_session.collections[KIND_GROUP].calls == []

    def test_unknown_domain(self, fake_session, capsys):
        assert self.new(fake_session, domain="nope") == EXIT_ERROR
        assert "does not exist" in capsys.readouterr().out

    def test_show_list_and_detail(self, fake_session, capsys):
        self.new(fake_session, tag=["env=lab"])
        capsys.readouterr()

        assert show_groups(session=fake_session, domain="default") == EXIT_OK
        assert "G1" in capsys.readouterr().out
        assert show_groups(session=fake_session, domain="default", objectname="G1") == EXIT_OK
        out = capsys.readouterr().out
        assert "10.0.0.1" in out
        assert "env=lab" in out

    def test_show_missing_group(self, fake_session):
        assert show_groups(session=fake_session, domain="default", objectname="nope") == EXIT_ERROR


class TestGatewayCommands:

    @pytest.fixture
    def with_tier0(self, fake_session):
        fake_session.collections[KIND_TIER0] = InMemoryCollection(KIND_TIER0, [
            {"id": "t0-id", "display_name": "T0-Core", "path": "/infra/tier-0s/t0-id"},
        ])
        return fake_session

    def test_link_tier0_by_name(self, with_tier0):
        linked = link_tier0(with_tier0, Tier1GatewaySpec("T1", tier0_path="T0-Core"))
        assert linked.tier0_path == "/infra/tier-0s/t0-id"

    def test_link_tier0_leaves_paths_and_unknown_names(self, with_tier0):
        by_path = Tier1GatewaySpec("T1", tier0_path="/infra/tier-0s/other")
        unknown = Tier1GatewaySpec("T1", tier0_path="t0-other")

        assert link_tier0(with_tier0, by_path) is by_path
        assert link_tier0(with_tier0, unknown) is unknown
        assert link_tier0(with_tier0, Tier1GatewaySpec("T1")).tier0_path is None

    def test_new_tier1_linked_by_name(self, with_tier0):
        assert new_gateway(session=with_tier0, objectname="T1-Web", tier="t1", tier0="T0-Core",
                           advertise=["TIER1_CONNECTED"]) == EXIT_OK

        stored = with_tier0.collections[KIND_TIER1].list()[0]
        assert stored.fields["tier0_path"] == "/infra/tier-0s/t0-id"
        assert stored.fields["route_advertisement_types"] == ["TIER1_CONNECTED"]

    def test_strict_names_applies_to_tier0_link(self, fake_session, capsys):
        fake_session.collections[KIND_TIER0] = InMemoryCollection(KIND_TIER0, [
            {"id": "a", "display_name": "T0-Core"},
            {"id": "b", "display_name": "T0-Core"},
        ])

        assert new_gateway(session=fake_session, objectname="T1", tier="t1", tier0="T0-Core",
                           strict_names=True) == EXIT_ERROR
        assert "2 objects are named" in capsys.readouterr().out
        assert fake_session.collections[KIND_TIER1].calls == []
        assert link_tier0(fake_session, Tier1GatewaySpec("T1", tier0_path="T0-Core")).tier0_path == "/infra/tier-0s/a"

    def test_new_tier0(self, fake_session):
        assert new_gateway(session=fake_session, objectname="T0", tier="t0", ha_mode="ACTIVE_STANDBY") == EXIT_OK
        assert fake_session.collections[KIND_TIER0].list()[0].fields["ha_mode"] == "ACTIVE_STANDBY"

    def test_show_gateways(self, with_tier0, capsys):
        new_gateway(session=with_tier0, objectname="T1-Web", tier="t1", tier0="T0-Core")
        capsys.readouterr()

        assert show_gateways(session=with_tier0, tier="both") == EXIT_OK
        out = capsys.readouterr().out
        assert "T0-Core" in out
        assert "T1-Web" in out
        assert show_gateways(session=with_tier0, tier="t0", objectname="T1-Web") == EXIT_ERROR


class TestApplyFile:

    @pytest.fixture
    def desired_file(self, tmp_path):
        path = tmp_path / "desired.json"
        path.write_text(json.dumps([
            {"kind": "tier0", "name": "T0-Core", "ha_mode": "ACTIVE_STANDBY"},
            {"kind": "tier1", "name": "T1-Web", "tier0_path": "T0-Core"},
            {"kind": "group", "name": "web", "type": "criteria-based", "key": "Name", "operator": "STARTSWITH", "filter_value": "web"},
        ]))
        return str(path)

    def test_apply_and_report(self, fake_session, desired_file, tmp_path):
        report = tmp_path / "report.csv"
        assert apply_file(session=fake_session, filename=desired_file, report=str(report)) == EXIT_OK

        tier0_id = fake_session.collections[KIND_TIER0].list()[0].remote_id
        tier1 = fake_session.collections[KIND_TIER1].list()[0]
        assert tier1.fields["tier0_path"] == f"/infra/tier-0s/{tier0_id}"
        df = pd.read_csv(report)
        assert list(df["action"]) == ["Created", "Created", "Created"]
        assert list(df["name"]) == ["T0-Core", "T1-Web", "web"]

    def test_second_apply_finds_everything(self, fake_session, desired_file, capsys):
        apply_file(session=fake_session, filename=desired_file)
        capsys.readouterr()

        assert apply_file(session=fake_session, filename=desired_file) == EXIT_OK
        out = capsys.readouterr().out
        assert "Created" not in out
        assert "Found" in out

    def test_dry_run_changes_nothing(self, fake_session, desired_file):
        assert apply_file(session=fake_session, filename=desired_file, dry_run=True) == EXIT_OK
        for kind in (KIND_GROUP, KIND_TIER0, KIND_TIER1):
            assert fake_session.collections[kind].mutations == []

    def test_conflict_and_error_exit_codes(self, fake_session, tmp_path):
        fake_session.collections[KIND_GROUP] = InMemoryCollection(KIND_GROUP, [
            {"id": "g1", "display_name": "web", "description": "old"},
        ])
        path = tmp_path / "desired.json"
        path.write_text(json.dumps([{"kind": "group", "name": "web"}]))
        assert apply_file(session=fake_session, filename=str(path)) == EXIT_CONFLICT

        path.write_text(json.dumps({"objects": [
            {"kind": "group", "name": "web"},
            {"kind": "group", "name": "other", "domain": "nope"},
            {"kind": "tier0", "name": "T0"},
        ]}))
        assert apply_file(session=fake_session, filename=str(path)) == EXIT_ERROR
        assert [t.name for t in fake_session.collections[KIND_TIER0].list()] == ["T0"]

    def test_malformed_entry_is_reported_and_batch_continues(self, fake_session, tmp_path, capsys):
        path = tmp_path / "desired.json"
        path.write_text(json.dumps([
            {"kind": "group", "name": "bad", "type": "ip-based", "members": [10]},
            {"kind": "group", "name": "good", "type": "ip-based", "members": ["10.0.0.1"]},
        ]))

        assert apply_file(session=fake_session, filename=str(path)) == EXIT_ERROR
        assert group_names(fake_session) == ["good"]
        assert "IP addresses must be strings" in capsys.readouterr().out

    def test_groups_default_to_configured_domain(self, session_factory_for, tmp_path):
        session = session_factory_for({KIND_GROUP: InMemoryCollection(KIND_GROUP)}, domains=("cgw",))
        path = tmp_path / "desired.json"
        path.write_text(json.dumps([{"kind": "group", "name": "G1"}]))

        assert apply_file(session=session, filename=str(path), domain="cgw") == EXIT_OK
        assert group_names(session) == ["G1"]

    def test_strict_names_refuses_ambiguous_tier0(self, fake_session, tmp_path):
        fake_session.collections[KIND_TIER0] = InMemoryCollection(KIND_TIER0, [
            {"id": "a", "display_name": "T0-Core"},
            {"id": "b", "display_name": "T0-Core"},
        ])
        path = tmp_path / "desired.json"
        path.write_text(json.dumps([{"kind": "tier1", "name": "T1", "tier0_path": "T0-Core"}]))

        assert apply_file(session=fake_session, filename=str(path), strict_names=True) == EXIT_ERROR
        assert fake_session.collections[KIND_TIER1].mutations == []

    def test_invalid_file(self, fake_session, tmp_path):
        path = tmp_path / "desired.json"
        path.write_text(json.dumps([{"kind": "segment", "name": "S1"}]))
        assert apply_file(session=fake_session, filename=str(path)) == EXIT_ERROR
