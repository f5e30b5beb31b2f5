"""
Tests for the cloudseq command line.
"""

import json
import logging
import os
from unittest.mock import patch

import pytest

from cloudseq.cli import (
    EXIT_FAILED,
    EXIT_MANUAL_CLEANUP,
    EXIT_OK,
    _cleanup_decider,
    _failure_plan,
    build_parser,
    main,
)


@pytest.fixture(autouse=True)
def _restore_cloudseq_logger():
    """main() reconfigures the cloudseq logger; put it back afterwards."""
    logger = logging.getLogger("cloudseq")
    handlers, level = list(logger.handlers), logger.level
    yield
    for handler in logger.handlers:
        if handler not in handlers:
            handler.close()
    logger.handlers = handlers
    logger.setLevel(level)


class TestParser:
    """Argument parsing."""

    def test_demo_defaults(self):
        args = build_parser().parse_args(["demo"])

        assert args.command == "demo"
        assert args.fail_at is None
        assert args.fail_mode == "create"
        assert args.cleanup == "ask"
        assert args.interval == 0.2

    def test_unknown_step_rejected(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["demo", "--fail-at", "database"])

    def test_command_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])

    @pytest.mark.parametrize("mode,field,kind", [
        ("create", "fail_create", "nat-gateway"),
        ("poll", "fail_ready", "nat-gateway"),
        ("timeout", "never_ready", "nat-gateway"),
    ])
    def test_failure_plan(self, mode, field, kind):
        args = build_parser().parse_args(["demo", "--fail-at", "nat-gateway", "--fail-mode", mode])

        plan = _failure_plan(args)

        assert getattr(plan, field) == {kind}

    def test_failure_plan_maps_step_to_kind(self):
        args = build_parser().parse_args(["demo", "--fail-at", "instance", "--blocked-deletes", "3"])

        plan = _failure_plan(args)

        assert plan.fail_create == {"ec2-instance"}
        assert plan.blocked_deletes == {"security-group": 3}

    @pytest.mark.parametrize("step", ["internet-gateway", "route-table", "security-group"])
    @pytest.mark.parametrize("mode", ["poll", "timeout"])
    def test_readiness_failure_needs_waiting_step(self, step, mode, capsys):
        with pytest.raises(SystemExit) as excinfo:
            main(["demo", "--fail-at", step, "--fail-mode", mode])

        assert excinfo.value.code == 2
        assert "waits for readiness" in capsys.readouterr().err

    def test_create_failure_allowed_on_any_step(self, capsys):
        code = main(["demo", "--fail-at", "route-table", "--interval", "0"])

        assert code == EXIT_FAILED

    def test_cleanup_deciders(self):
        assert _cleanup_decider("never") is None
        assert _cleanup_decider("always")(None) is True
        assert callable(_cleanup_decider("ask"))


class TestDemoCommand:
    """Exit codes and output of `cloudseq demo`."""

    def test_success_keeps_resources(self, capsys):
        code = main(["demo", "--cleanup", "never", "--interval", "0"])

        assert code == EXIT_OK
        out = capsys.readouterr().out
        assert "succeeded" in out
        assert "Resources were kept" in out

    def test_success_with_cleanup(self, capsys):
        code = main(["demo", "--cleanup", "always", "--interval", "0"])

        assert code == EXIT_OK
        assert "All created resources were cleaned up." in capsys.readouterr().out

    def test_failure_rolled_back(self, capsys):
        code = main(["demo", "--fail-at", "nat-gateway", "--fail-mode", "poll", "--interval", "0"])

        assert code == EXIT_FAILED
        out = capsys.readouterr().out
        assert "rolled_back" in out
        assert "ERROR:" in out

    def test_preflight_failure(self, capsys):
        code = main(["demo", "--fail-preflight", "--interval", "0"])

        assert code == EXIT_FAILED
        out = capsys.readouterr().out
        assert "Preflight check failed" in out
        assert "No resources were created." in out

    def test_manual_cleanup_needed(self, capsys):
        with patch.dict(os.environ, {"ROLLBACK_DELETE_RETRIES": "1"}):
            code = main([
                "demo",
                "--fail-at", "instance",
                "--blocked-deletes", "5",
                "--interval", "0",
            ])

        assert code == EXIT_MANUAL_CLEANUP
        out = capsys.readouterr().out
        assert "must be deleted manually" in out
        assert "security-group" in out

    def test_report_written(self, tmp_path, capsys):
        report = tmp_path / "run.json"

        main(["demo", "--cleanup", "always", "--interval", "0", "--report", str(report)])

        data = json.loads(report.read_text())
        assert data["state"] == "rolled_back"
        assert len(data["ledger"]) == 8
        assert data["events"][0]["kind"] == "run_start"
        assert data["events"][-1]["kind"] == "run_end"

    def test_report_dir_from_settings(self, tmp_path, capsys):
        with patch.dict(os.environ, {"REPORT_DIR": str(tmp_path)}):
            main(["demo", "--cleanup", "never", "--interval", "0"])

        reports = list(tmp_path.glob("run-*.json"))
        assert len(reports) == 1

    def test_json_log_file(self, tmp_path, capsys):
        log_file = tmp_path / "cloudseq.log"

        main(["--log-file", str(log_file), "demo", "--cleanup", "never", "--interval", "0"])

        for handler in logging.getLogger("cloudseq").handlers:
            handler.flush()
        lines = [json.loads(line) for line in log_file.read_text().splitlines()]
        assert any(line.get("event") == "step_success" for line in lines)


class TestPoliciesCommand:
    """`cloudseq policies`."""

    def test_lists_configured_kinds(self, capsys):
        code = main(["policies"])

        assert code == EXIT_OK
        out = capsys.readouterr().out
        assert "nat-gateway" in out
        assert "max_wait=" in out

    def test_no_policies(self, tmp_path, capsys):
        with patch.dict(os.environ, {"POLL_POLICY_FILE": str(tmp_path / "absent.yaml")}):
            code = main(["policies"])

        assert code == EXIT_FAILED
        assert "No poll policies configured" in capsys.readouterr().out
