"""
Tests for logging helpers, report output and the CLI.
"""

import json
import logging

import pytest
from click.testing import CliRunner

from fleet_auditor.core.report import write_json_report
from fleet_auditor.helpers.log import AuditEventLogger, RunIdFilter, StructuredFormatter, redact, run_id
from fleet_auditor.main import cli
from fleet_auditor.reports.formatter import format_report

from tests.test_orchestrator import make_orchestrator, remote


class TestLogging:

    def test_redact(self):
        assert redact({"credential": "hunter2", "Token": "t", "target": "web-01"}) == {
            "credential": "***", "Token": "***", "target": "web-01"}

    def test_event_logger_never_raises(self, mocker):
        events = AuditEventLogger()
        mocker.patch.object(events.logger, "log", side_effect=RuntimeError("disk full"))

        events.event("collector.finished", collector="dns_config")
        events.warning("fleet.started")
        events.error("fleet.finished")

    def test_structured_formatter_includes_run_id_and_extra(self):
        record = logging.LogRecord("fleet_auditor.events", logging.INFO, __file__, 1,
                                   "profile.measured", None, None)
        record.fields = {"tier": "high"}

        token = run_id.set("abc123")
        try:
            RunIdFilter().filter(record)
        finally:
            run_id.reset(token)
        entry = json.loads(StructuredFormatter().format(record))

        assert entry["run_id"] == "abc123"
        assert entry["message"] == "profile.measured"
        assert entry["extra"]["fields"] == {"tier": "high"}


class TestReports:

    @pytest.fixture
    def report(self):
        return make_orchestrator().audit_fleet([remote("web-01.example.com"), remote("bad host!")])

    def test_format_report(self, report):
        text = format_report(report)
        assert "audited=1" in text
        assert "errors=1" in text
        assert "hostname: success via shell" in text
        assert "contract violation" in text

    def test_write_json_report(self, report, tmp_path):
        path = write_json_report(report, tmp_path / "out" / "report.json")
        data = json.loads(path.read_text(encoding="utf-8"))

        assert data["summary"]["audited"] == 1
        assert data["targets"][0]["target"] == {"address": "web-01.example.com", "port": 5985,
                                                "local": False, "os_family": None}
        assert data["targets"][0]["profile"]["tier"] == "very_high"


class TestCli:

    @pytest.fixture(autouse=True)
    def restore_logging(self):
        package_logger = logging.getLogger("fleet_auditor")
        saved = package_logger.handlers[:], package_logger.level, package_logger.propagate
        yield
        package_logger.handlers, level, package_logger.propagate = saved
        package_logger.setLevel(level)

    def test_check_localhost(self):
        result = CliRunner().invoke(cli, ["check", "localhost"])
        assert result.exit_code == 0, result.output
        assert json.loads(result.stdout)["healthy"] == 1

    def test_bad_config_is_reported(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("fleet_throttle: 0\n", encoding="utf-8")

        result = CliRunner().invoke(cli, ["--config", str(path), "check", "localhost"])

        assert result.exit_code == 1
        assert "invalid audit options" in result.output

    def test_unknown_collector(self):
        result = CliRunner().invoke(cli, ["audit", "localhost", "--collector", "bogus"])
        assert result.exit_code == 1
        assert "bogus" in result.output

    def test_collectors_lists_those_compatible_with_the_os(self):
        windows = CliRunner().invoke(cli, ["collectors", "--os", "windows"])
        linux = CliRunner().invoke(cli, ["collectors", "--os", "linux"])

        assert windows.exit_code == 0, windows.output
        windows_names = [line.split("\t")[0] for line in windows.stdout.splitlines()]
        linux_names = [line.split("\t")[0] for line in linux.stdout.splitlines()]
        assert windows_names == ["network_interfaces", "listening_ports", "windows_os", "windows_hardware"]
        assert "default_route" in linux_names
        assert "windows_os" not in linux_names
