"""
SANE 能力探测适配器。

- list_devices: scanimage -L
- probe_options: scanimage -A -d <id>   (失败抛 DeviceProbeError)
- get_device_options: 对外契约，失败返回空能力，不抛出
- probe_resolution: scanimage -d <id> --resolution <dpi> --dont-scan
SCAN_MOCK 模式下返回固定的 ScanSnap 设备，不调用任何外部工具。
"""
from __future__ import annotations
from docscan.common.exceptions import DeviceProbeError
from docscan.common.proc import run_command
from docscan.common.schemas import Device, DeviceCapabilities
from docscan.devices.sane_parser import parse_device_list, parse_device_options
from docscan.settings import Settings, settings as default_settings
import structlog

logger = structlog.get_logger()

MOCK_DEVICE = Device(id="epjitsu:libusb:001:004", vendor="FUJITSU", model="ScanSnap")
MOCK_CAPABILITIES = DeviceCapabilities(
    sources=["Flatbed", "ADF", "ADF Duplex"],
    color_modes=["Color", "Gray", "Lineart"],
    resolutions=[200, 300, 600],
    adf=True,
    duplex=True,
)


class SaneProber:
    def __init__(self, config: Settings | None = None) -> None:
        self._config = config or default_settings

    async def list_devices(self) -> list[Device]:
        if self._config.scan_mock:
            return [MOCK_DEVICE.model_copy()]

        outcome = await run_command(
            [self._config.scanimage_bin, "-L"],
            timeout=self._config.probe_timeout_seconds,
        )
        if not outcome.ok:
            logger.error("device_list_failed", bin=self._config.scanimage_bin,
                         stderr=outcome.stderr.strip()[-500:], **outcome.detail())
            return []

        excluded = set(self._config.exclude_backends)
        devices = [d for d in parse_device_list(outcome.stdout) if d.backend not in excluded]
        logger.info("devices_listed", count=len(devices))
        return devices

    async def probe_options(self, device_id: str) -> DeviceCapabilities:
        if self._config.scan_mock:
            return MOCK_CAPABILITIES.model_copy(deep=True)

        outcome = await run_command(
            [self._config.scanimage_bin, "-A", "-d", device_id],
            timeout=self._config.probe_timeout_seconds,
        )
        if not outcome.ok:
            raise DeviceProbeError(
                f"option probe failed for {device_id}: {outcome.detail()} "
                f"{outcome.stderr.strip()[-200:]}")
        return parse_device_options(outcome.stdout)

    async def get_device_options(self, device_id: str) -> DeviceCapabilities:
        try:
            return await self.probe_options(device_id)
        except DeviceProbeError as e:
            logger.error("device_options_failed", device_id=device_id, error=str(e))
            return DeviceCapabilities()

    async def probe_resolution(self, device_id: str, dpi: int) -> bool:
        """设备是否接受该分辨率 (只设置选项，不扫描)。"""
        if self._config.scan_mock:
            return True

        outcome = await run_command(
            [self._config.scanimage_bin, "-d", device_id,
             "--resolution", str(dpi), "--dont-scan"],
            timeout=self._config.probe_timeout_seconds,
        )
        logger.debug("resolution_probed", device_id=device_id, dpi=dpi, accepted=outcome.ok)
        return outcome.ok
