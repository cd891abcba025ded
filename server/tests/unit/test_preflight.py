"""启动前环境检查测试。"""
import pytest
from docscan.common.exceptions import ConfigurationError
from docscan.preflight import (
    detect_missing_dependencies, ensure_environment_ready, is_command_available,
)


def test_reports_all_when_nothing_available(config):
    missing = detect_missing_dependencies(config, command_available=lambda _: False)
    assert sorted(m.tool.env_var for m in missing) == ["IM_CONVERT_BIN", "SCANIMAGE_BIN", "TIFFCP_BIN"]


def test_blank_setting_is_missing(make_config):
    missing = detect_missing_dependencies(make_config(tiffcp_bin="  "), command_available=lambda _: True)
    assert [m.tool.env_var for m in missing] == ["TIFFCP_BIN"]
    assert missing[0].command == "tiffcp"


def test_passes_with_executable_paths(config):
    assert detect_missing_dependencies(config) == []


def test_command_lookup(tools, monkeypatch):
    assert is_command_available(tools.scanimage)
    assert not is_command_available(tools.missing)
    assert not is_command_available("")
    monkeypatch.setenv("PATH", str(tools.dir))
    assert is_command_available("scanimage")
    assert not is_command_available("definitely-not-installed-tool")


def test_tilde_expansion(tools, monkeypatch):
    monkeypatch.setenv("HOME", str(tools.dir.parent))
    assert is_command_available("~/bin/scanimage")


def test_ensure_raises_with_hints(make_config, tools):
    config = make_config(scanimage_bin=tools.missing)
    with pytest.raises(ConfigurationError) as exc:
        ensure_environment_ready(config)
    assert exc.value.missing == ["SCANIMAGE_BIN"]
    assert "sane-utils" in exc.value.message


def test_skipped_in_mock_mode(make_config, tools):
    ensure_environment_ready(make_config(scan_mock=True, scanimage_bin=tools.missing))
    ensure_environment_ready(make_config(scanimage_bin=tools.missing), skip_command_check=True)
