"""全局 pytest fixtures: 隔离配置、假能力探测器、假外部工具 (shell 脚本)。"""
import os
import stat
from pathlib import Path
from types import SimpleNamespace
import pytest
from docscan.common.exceptions import DeviceProbeError
from docscan.common.schemas import Device, DeviceCapabilities
from docscan.settings import Settings

SCANSNAP = "epjitsu:libusb:001:004"
FLATBED = "genesys:libusb:002:007"
WEBCAM = "v4l:/dev/video0"


class FakeProber:
    """内存中的能力探测器。caps 中没有的设备探测失败。"""

    def __init__(self, devices=None, caps=None, accepted_resolutions=()):
        self.devices = list(devices or [])
        self.caps = dict(caps or {})
        self.accepted_resolutions = set(accepted_resolutions)
        self.probe_calls: list[str] = []

    async def list_devices(self):
        return list(self.devices)

    async def probe_options(self, device_id):
        self.probe_calls.append(device_id)
        if device_id not in self.caps:
            raise DeviceProbeError(f"probe failed for {device_id}")
        return self.caps[device_id].model_copy(deep=True)

    async def get_device_options(self, device_id):
        try:
            return await self.probe_options(device_id)
        except DeviceProbeError:
            return DeviceCapabilities()

    async def probe_resolution(self, device_id, dpi):
        return dpi in self.accepted_resolutions


@pytest.fixture
def make_prober():
    return FakeProber


@pytest.fixture
def scansnap_caps():
    return DeviceCapabilities(
        sources=["Flatbed", "ADF Front", "ADF Duplex"],
        color_modes=["Color", "Gray", "Lineart"],
        resolutions=[150, 200, 300, 600],
        adf=True, duplex=True,
    )


@pytest.fixture
def flatbed_caps():
    return DeviceCapabilities(
        sources=["Flatbed"], color_modes=["Color", "Gray"],
        resolutions=[75, 150, 600, 1200], adf=False, duplex=False,
    )


@pytest.fixture
def scanner_prober(scansnap_caps, flatbed_caps):
    return FakeProber(
        devices=[
            Device(id=SCANSNAP, vendor="FUJITSU", model="ScanSnap S1500"),
            Device(id=FLATBED, vendor="Canon", model="LiDE 220"),
        ],
        caps={SCANSNAP: scansnap_caps, FLATBED: flatbed_caps},
        accepted_resolutions={300},
    )


# ───────────────────────── 假外部工具 ─────────────────────────

def _write_tool(directory: Path, name: str, body: str) -> str:
    path = directory / name
    path.write_text("#!/bin/sh\n" + body)
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return str(path)


def _write_non_program(directory: Path, name: str) -> str:
    """可执行位已设置但内容不是程序 (无 shebang 的二进制垃圾)，exec 报 ENOEXEC。"""
    path = directory / name
    path.write_bytes(b"\x00\x01\x02not a program\xff\xfe")
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return str(path)


def _scanner_body(flag: str, pages: int, exit_code: int = 0) -> str:
    """按 --batch= / --output-file= 的 printf 模板写出 pages 个页面。"""
    return f"""pattern=""
for arg in "$@"; do
  case "$arg" in
    {flag}*) pattern="${{arg#{flag}}}" ;;
  esac
done
[ -n "$pattern" ] || {{ echo "no output pattern" >&2; exit 2; }}
i=1
while [ $i -le {pages} ]; do
  printf "PAGE_%d" "$i" > "$(printf "$pattern" "$i")"
  i=$((i+1))
done
echo "scanned {pages} pages" >&2
exit {exit_code}
"""


MERGE_BODY = """eval "out=\\${$#}"
: > "$out"
i=1
for a in "$@"; do
  if [ "$i" -lt "$#" ]; then cat "$a" >> "$out"; fi
  i=$((i+1))
done
"""


@pytest.fixture
def tools(tmp_path):
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()

    def scanner(name, pages, flag="--batch=", exit_code=0):
        return _write_tool(bin_dir, name, _scanner_body(flag, pages, exit_code))

    return SimpleNamespace(
        dir=bin_dir,
        make=lambda name, body: _write_tool(bin_dir, name, body),
        scanner=scanner,
        scanimage=scanner("scanimage", 5),
        scanadf=scanner("scanadf", 3, flag="--output-file="),
        failing=_write_tool(bin_dir, "failing", 'echo "device busy" >&2\nexit 9\n'),
        sleeper=_write_tool(bin_dir, "sleeper", "exec sleep 30\n"),
        merge=_write_tool(bin_dir, "merge", MERGE_BODY),
        missing=str(bin_dir / "does-not-exist"),
        garbage=_write_non_program(bin_dir, "garbage"),
    )


@pytest.fixture
def make_config(tmp_path, tools):
    def _make(**overrides) -> Settings:
        values = dict(
            app_env="test",
            inbox_dir=str(tmp_path / "inbox"),
            state_dir=str(tmp_path / "state"),
            scan_mock=False,
            scan_mock_pages=2,
            scan_exclude_backends="v4l",
            scan_prefer_backends="",
            persist_last_used_device=True,
            scanimage_bin=tools.scanimage,
            scanadf_bin=tools.scanadf,
            tiffcp_bin=tools.merge,
            im_convert_bin=tools.merge,
        )
        values.update(overrides)
        return Settings(_env_file=None, **values)
    return _make


@pytest.fixture
def config(make_config) -> Settings:
    return make_config()


@pytest.fixture
def mock_config(make_config) -> Settings:
    return make_config(scan_mock=True)


@pytest.fixture(autouse=True)
def _no_ambient_env(monkeypatch):
    """开发者本机的 SCAN_* 环境变量不影响测试。"""
    for key in list(os.environ):
        if key.startswith(("SCAN_", "SCANIMAGE_", "SCANADF_", "TIFFCP_", "IM_CONVERT_")):
            monkeypatch.delenv(key, raising=False)
