"""Tests for the command line entry point."""

import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from click.testing import CliRunner

from vm_rightsizing.cli import load_fleet, main, resolve_window_days
from vm_rightsizing.config.settings import CollectionSettings, Settings
from vm_rightsizing.core.exceptions import DataValidationException


class TestLoadFleet:

    def test_json_list(self, tmp_path):
        path = tmp_path / "fleet.json"
        path.write_text(json.dumps([{"vmName": "web-01", "resourceGroup": "rg-web"}]))
        assert load_fleet(path) == [{"vmName": "web-01", "resourceGroup": "rg-web"}]

    def test_yaml_mapping(self, tmp_path):
        path = tmp_path / "fleet.yaml"
        path.write_text("vms:\n  - vmName: web-01\n  - vmName: db-01\n")
        assert [vm["vmName"] for vm in load_fleet(path)] == ["web-01", "db-01"]

    def test_rejects_scalar(self, tmp_path):
        path = tmp_path / "fleet.yaml"
        path.write_text("just text\n")
        with pytest.raises(DataValidationException):
            load_fleet(path)


class TestScanCommand:

    def test_help(self):
        result = CliRunner().invoke(main, ["scan", "--help"])

        assert result.exit_code == 0
        assert "--fleet" in result.output
        assert "--window-days" in result.output

    def test_requires_fleet(self):
        result = CliRunner().invoke(main, ["scan"])
        assert result.exit_code != 0

    def test_zero_window_is_rejected_before_any_client(self, tmp_path):
        fleet = tmp_path / "fleet.json"
        fleet.write_text(json.dumps([{"vmName": "web-01"}]))
        factory = MagicMock()
        factory.disconnect_all = AsyncMock()
        factory.create_log_analytics_client = AsyncMock()

        with patch("vm_rightsizing.cli.AzureClientFactory", return_value=factory), \
                patch("vm_rightsizing.cli.setup_logging"):
            result = CliRunner().invoke(main, ["scan", "--fleet", str(fleet), "--window-days", "0", "--no-ai"])

        assert result.exit_code == 1
        assert "Validation failed for scan_window_days" in result.output
        factory.create_log_analytics_client.assert_not_awaited()
        factory.disconnect_all.assert_awaited_once()


class TestResolveWindowDays:

    def test_explicit_zero_is_not_replaced_by_default(self):
        settings = Settings(collection=CollectionSettings(scan_window_days=30))
        with pytest.raises(DataValidationException):
            resolve_window_days(0, settings)

    def test_default_when_absent(self):
        settings = Settings(collection=CollectionSettings(scan_window_days=14))
        assert resolve_window_days(None, settings) == 14

    def test_explicit_value_wins(self):
        settings = Settings(collection=CollectionSettings(scan_window_days=14))
        assert resolve_window_days(60, settings) == 60
