"""
启动前环境检查: 外部工具是否可用。

scanadf 为可选 (仅作为进纸器采集的首选工具)，缺失时由 scanimage 兜底。
模拟模式不调用任何外部工具，直接跳过。
"""
from __future__ import annotations
import os
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Callable
import structlog
from docscan.common.exceptions import ConfigurationError
from docscan.settings import Settings, settings as default_settings

logger = structlog.get_logger()


@dataclass(frozen=True)
class RequiredTool:
    setting: str
    env_var: str
    default_command: str
    description: str


@dataclass(frozen=True)
class MissingDependency:
    tool: RequiredTool
    command: str


REQUIRED_TOOLS: tuple[RequiredTool, ...] = (
    RequiredTool("scanimage_bin", "SCANIMAGE_BIN", "scanimage", "SANE CLI (scanimage)"),
    RequiredTool("tiffcp_bin", "TIFFCP_BIN", "tiffcp", "TIFF page assembler (tiffcp)"),
    RequiredTool("im_convert_bin", "IM_CONVERT_BIN", "convert", "ImageMagick convert"),
)

INSTALL_HINTS = (
    "Install SANE utilities and TIFF tools before continuing:",
    "  Ubuntu/Debian: sudo apt install sane-utils libtiff-tools imagemagick",
    "  Arch Linux:    sudo pacman -S sane libtiff imagemagick",
    "  Fedora:        sudo dnf install sane-backends-utils libtiff-tools ImageMagick",
    "",
    "If the tools live elsewhere, set SCANIMAGE_BIN, TIFFCP_BIN, or IM_CONVERT_BIN to point at them.",
)


def is_command_available(command: str) -> bool:
    expanded = os.path.expanduser(command.strip())
    if not expanded:
        return False
    if os.sep in expanded or (os.altsep and os.altsep in expanded):
        path = Path(expanded).resolve()
        return path.is_file() and os.access(path, os.X_OK)
    return shutil.which(expanded) is not None


def detect_missing_dependencies(
    config: Settings | None = None,
    command_available: Callable[[str], bool] | None = None,
) -> list[MissingDependency]:
    config = config or default_settings
    available = command_available or is_command_available
    missing = []
    for tool in REQUIRED_TOOLS:
        configured = (getattr(config, tool.setting, "") or "").strip()
        if not configured or not available(configured):
            missing.append(MissingDependency(tool=tool, command=configured or tool.default_command))
    return missing


def ensure_environment_ready(config: Settings | None = None, skip_command_check: bool = False) -> None:
    """缺少外部工具时抛出 ConfigurationError (附安装提示)。"""
    config = config or default_settings
    if skip_command_check or config.scan_mock:
        logger.info("preflight_skipped", mock=config.scan_mock)
        return

    missing = detect_missing_dependencies(config)
    if not missing:
        logger.info("preflight_passed")
        return

    lines = ["docscan could not find the system tools it needs to talk to your scanner:"]
    lines += [f"  - {m.tool.description} [{m.tool.env_var}={m.command}]" for m in missing]
    lines += ["", *INSTALL_HINTS]
    raise ConfigurationError("\n".join(lines), missing=[m.tool.env_var for m in missing])
