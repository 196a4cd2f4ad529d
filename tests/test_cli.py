"""Unit tests for infra_lifecycle.py (CLI entry point).

Tests argument parsing, configuration building and error-to-exit-code mapping.
"""

import json
import logging
from unittest.mock import MagicMock, patch

import pytest
from kubernetes import config as kube_config

import infra_lifecycle
from infra_lifecycle import build_config, execute, parse_args, validate_args
from lib.config import LifecycleConfig
from lib.exceptions import BackupFailed, ConfirmationDeclined
from lib.utils import EnvironmentState


@pytest.fixture
def logger():
    return logging.getLogger("infra_lifecycle.test")


@pytest.fixture
def cfg(tmp_path):
    return LifecycleConfig(environment="staging", state_dir=str(tmp_path))


@pytest.mark.unit
class TestArgParsing:
    def test_command_required(self):
        with pytest.raises(SystemExit):
            parse_args([])

    def test_validate_defaults(self):
        args = parse_args(["validate"])

        assert args.command == "validate"
        assert args.fast is False
        assert args.stop_on_critical is True
        assert args.categories is None
        assert args.output_format == "text"

    def test_validate_options(self):
        args = parse_args(
            ["--environment", "staging", "--format", "json", "validate", "--fast", "--no-stop-on-critical",
             "--category", "cluster", "--category", "security"]
        )

        assert args.environment == "staging"
        assert args.output_format == "json"
        assert args.stop_on_critical is False
        assert args.categories == ["cluster", "security"]

    def test_unknown_environment_rejected(self):
        with pytest.raises(SystemExit):
            parse_args(["--environment", "qa", "validate"])

    def test_backup_type(self):
        assert parse_args(["backup"]).backup_type == "full"
        assert parse_args(["backup", "--type", "incremental"]).backup_type == "incremental"

    def test_verify_needs_target(self):
        with pytest.raises(SystemExit):
            parse_args(["verify"])
        assert parse_args(["verify", "--all"]).all is True

    def test_restore(self):
        args = parse_args(
            ["restore", "backup-llm_analytics-20261001T020000Z-0123456789ab", "--pitr-target", "2026-10-01T03:15:00Z",
             "--yes"]
        )

        assert args.backup_id == "backup-llm_analytics-20261001T020000Z-0123456789ab"
        assert args.pitr_target == "2026-10-01T03:15:00Z"
        assert args.yes is True

    def test_teardown(self):
        args = parse_args(
            ["teardown", "--provider", "aws", "--scope", "full", "--additional-namespace", "batch", "--dry-run"]
        )

        assert args.provider == "aws"
        assert args.scope == "full"
        assert args.additional_namespaces == ["batch"]
        assert args.dry_run is True
        assert args.force is False


@pytest.mark.unit
class TestValidateArgs:
    def test_invalid_namespace_exits(self, logger):
        args = parse_args(["--namespace", "Bad_Namespace", "validate"])

        with pytest.raises(SystemExit) as exc_info:
            validate_args(args, logger)
        assert exc_info.value.code == 1

    def test_invalid_pitr_target_exits(self, logger):
        args = parse_args(
            ["restore", "backup-llm_analytics-20261001T020000Z-0123456789ab", "--pitr-target", "yesterday"]
        )

        with pytest.raises(SystemExit) as exc_info:
            validate_args(args, logger)
        assert exc_info.value.code == 1

    def test_valid_args_pass(self, logger):
        validate_args(parse_args(["--environment", "dev", "teardown", "--dry-run"]), logger)


@pytest.mark.unit
def test_build_config_applies_cli_overrides(tmp_path, monkeypatch):
    monkeypatch.delenv("INFRA_LIFECYCLE_NAMESPACE", raising=False)
    args = parse_args(
        ["--environment", "production", "--namespace", "analytics", "--state-dir", str(tmp_path),
         "teardown", "--provider", "gcp"]
    )

    cfg = build_config(args)

    assert cfg.environment == "production"
    assert cfg.namespace == "analytics"
    assert cfg.provider == "gcp"
    assert cfg.state_dir == str(tmp_path)


@pytest.mark.unit
class TestExecute:
    def _execute_raising(self, monkeypatch, cfg, logger, exc, command="validate"):
        handler = MagicMock(side_effect=exc)
        monkeypatch.setitem(infra_lifecycle.COMMANDS, command, handler)
        argv = {"validate": ["validate"], "backup": ["backup"], "teardown": ["teardown"]}[command]
        return execute(parse_args(argv), cfg, logger)

    def test_success_recorded_in_state(self, monkeypatch, cfg, logger):
        monkeypatch.setitem(infra_lifecycle.COMMANDS, "validate", MagicMock(return_value=3))

        assert execute(parse_args(["validate"]), cfg, logger) == 3
        assert EnvironmentState(cfg.state_dir, "staging").last_run("validate")["exit_code"] == 3

    def test_lifecycle_error_exit_1(self, monkeypatch, cfg, logger):
        assert self._execute_raising(monkeypatch, cfg, logger, BackupFailed("dump failed"), "backup") == 1

    def test_declined_exit_4(self, monkeypatch, cfg, logger):
        assert self._execute_raising(monkeypatch, cfg, logger, ConfirmationDeclined("no")) == 4

    def test_interrupt_exit_130(self, monkeypatch, cfg, logger):
        assert self._execute_raising(monkeypatch, cfg, logger, KeyboardInterrupt()) == 130

    def test_kubeconfig_error_exit_1(self, monkeypatch, cfg, logger):
        assert self._execute_raising(monkeypatch, cfg, logger, kube_config.ConfigException("no context")) == 1

    def test_teardown_not_recorded(self, monkeypatch, cfg, logger):
        monkeypatch.setitem(infra_lifecycle.COMMANDS, "teardown", MagicMock(return_value=0))

        execute(parse_args(["teardown"]), cfg, logger)

        assert EnvironmentState(cfg.state_dir, "staging").last_run("teardown") is None


@pytest.mark.unit
class TestCommands:
    def test_validate_json_report(self, healthy_kube, cfg, logger, capsys):
        completed = MagicMock(returncode=0, stdout="v1.29.4\n")
        with patch("infra_lifecycle._kube", return_value=healthy_kube), patch(
            "modules.validation.prerequisites.shutil.which", return_value="/usr/bin/tool"
        ), patch("modules.validation.prerequisites.subprocess.run", return_value=completed):
            exit_code = execute(parse_args(["--format", "json", "validate", "--fast"]), cfg, logger)

        report = json.loads(capsys.readouterr().out)
        assert exit_code == 0
        assert report["healthy"] is True
        assert [c["category"] for c in report["categories"]] == [
            "prerequisites", "cluster", "services", "security", "resources"
        ]

    def test_backup_requires_key_when_encrypting(self, cfg, logger, monkeypatch, memory_storage):
        monkeypatch.delenv("INFRA_LIFECYCLE_BACKUP_KEY", raising=False)
        with patch("infra_lifecycle._kube"), patch("infra_lifecycle.ObjectStorageClient", return_value=memory_storage):
            exit_code = execute(parse_args(["backup"]), cfg, logger)

        assert exit_code == 1
        assert memory_storage.list("timescaledb/") == []

    def test_restore_declined(self, cfg, logger):
        with patch("infra_lifecycle.confirm_phrase", return_value=False), patch(
            "infra_lifecycle._backup_manager"
        ) as mock_manager:
            exit_code = execute(
                parse_args(["restore", "backup-llm_analytics-20261001T020000Z-0123456789ab"]), cfg, logger
            )

        assert exit_code == 4
        mock_manager.assert_not_called()

    def test_restore_future_target_rejected(self, cfg, logger):
        with patch("infra_lifecycle._backup_manager") as mock_manager:
            exit_code = execute(
                parse_args(
                    ["restore", "backup-llm_analytics-20261001T020000Z-0123456789ab", "--pitr-target",
                     "2999-01-01T00:00:00Z", "--yes"]
                ),
                cfg,
                logger,
            )

        assert exit_code == 1
        mock_manager.assert_not_called()

    def test_teardown_dry_run_needs_no_cluster(self, cfg, logger, capsys):
        with patch("infra_lifecycle._kube") as mock_kube:
            exit_code = execute(parse_args(["--format", "json", "teardown", "--dry-run"]), cfg, logger)

        result = json.loads(capsys.readouterr().out)
        assert exit_code == 0
        assert result["final_state"] == "done"
        assert all(t["status"] == "dry-run" for t in result["transitions"][1:])
        mock_kube.assert_not_called()

    def test_output_file(self, cfg, logger, tmp_path):
        output = tmp_path / "teardown.txt"

        execute(parse_args(["--output", str(output), "teardown", "--dry-run"]), cfg, logger)

        assert "cleaning_local_state" in output.read_text()
