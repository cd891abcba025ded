"""
输入解析: 把调用方的部分 ScanRequest 补全为可直接执行的参数。

优先级:
1. device_id 缺省 → DeviceSelector (含上次使用设备提示)；指定设备探测失败 → 丢弃后重新选择
2. source 缺省 → 双面进纸 > 进纸 > 设备首个来源；duplex=True 且有双面进纸时强制双面
3. resolution_dpi 缺省 → 探测默认 DPI；否则列表中的默认值 > 不高于默认的最近值 > 高于默认的最近值
4. color_mode 缺省 → lineart > gray > halftone > color > 设备首个模式
5. 无任何设备信息时的兜底: Flatbed / 默认 DPI / Lineart
除触发的能力探测外无副作用，不写任何持久化状态。
"""
from __future__ import annotations
import structlog
from docscan.common.enums import ScanSource
from docscan.common.exceptions import DeviceProbeError
from docscan.common.schemas import DeviceCapabilities, ScanRequest, is_duplex_feeder_source, is_feeder_source
from docscan.devices.preferences import LastUsedDeviceStore
from docscan.devices.prober import SaneProber
from docscan.devices.selector import DesiredProfile, DeviceSelector

logger = structlog.get_logger()

DEFAULT_RESOLUTION_DPI = 300
DEFAULT_SOURCE = ScanSource.FLATBED.value
DEFAULT_COLOR_MODE = "Lineart"

# 与设备无关的模式偏好顺序；按前缀匹配设备自己的拼写 (Gray16 / Grayscale …)
COLOR_MODE_PREFERENCE: tuple[tuple[str, ...], ...] = (
    ("lineart", "binary"),
    ("gray", "grey"),
    ("halftone",),
    ("color", "colour"),
)


def _match_ci(value: str, candidates: list[str] | None) -> str | None:
    wanted = value.strip().lower()
    for c in candidates or []:
        if c.lower() == wanted:
            return c
    return None


def pick_source(caps: DeviceCapabilities | None) -> str:
    sources = (caps.sources if caps else None) or []
    for s in sources:
        if is_duplex_feeder_source(s):
            return s
    for s in sources:
        if is_feeder_source(s):
            return s
    return sources[0] if sources else DEFAULT_SOURCE


def pick_color_mode(caps: DeviceCapabilities | None) -> str:
    modes = (caps.color_modes if caps else None) or []
    for aliases in COLOR_MODE_PREFERENCE:
        for mode in modes:
            if mode.lower().startswith(aliases):
                return mode
    return modes[0] if modes else DEFAULT_COLOR_MODE


def pick_listed_resolution(resolutions: list[int] | None, default: int = DEFAULT_RESOLUTION_DPI) -> int:
    values = sorted(set(resolutions or []))
    if not values or default in values:
        return default
    below = [r for r in values if r <= default]
    if below:
        return below[-1]
    return values[0]


class InputResolver:
    def __init__(
        self,
        prober: SaneProber,
        selector: DeviceSelector,
        last_used: LastUsedDeviceStore | None = None,
        persist_last_used: bool = True,
    ):
        self._prober = prober
        self._selector = selector
        self._last_used = last_used
        self._persist_last_used = persist_last_used

    async def resolve(self, request: ScanRequest) -> ScanRequest:
        req = request.model_copy(deep=True)
        caps: DeviceCapabilities | None = None

        if req.device_id:
            caps = await self._probe(req.device_id)
            if caps is None:
                logger.warning("requested_device_unusable", device_id=req.device_id)
                req.device_id = None

        if not req.device_id:
            hint = None
            if self._persist_last_used and self._last_used is not None:
                hint = await self._last_used.load()
            best = await self._selector.select(
                DesiredProfile(source=req.source, resolution_dpi=req.resolution_dpi), hint)
            if best is not None:
                req.device_id = best.device_id
                caps = await self._probe(best.device_id)

        # source
        duplex_source = next(
            (s for s in (caps.sources if caps else None) or [] if is_duplex_feeder_source(s)), None)
        if req.duplex and duplex_source:
            req.source = duplex_source
        elif req.source:
            req.source = _match_ci(req.source, caps.sources if caps else None) or req.source
        else:
            req.source = pick_source(caps)

        # resolution
        if req.resolution_dpi is None:
            req.resolution_dpi = await self._pick_resolution(req.device_id, caps)

        # color mode
        if req.color_mode:
            req.color_mode = _match_ci(req.color_mode, caps.color_modes if caps else None) or req.color_mode
        else:
            req.color_mode = pick_color_mode(caps)

        logger.info("scan_request_resolved", device_id=req.device_id, source=req.source,
                    resolution_dpi=req.resolution_dpi, color_mode=req.color_mode)
        return req

    async def _probe(self, device_id: str) -> DeviceCapabilities | None:
        try:
            return await self._prober.probe_options(device_id)
        except DeviceProbeError as e:
            logger.warning("device_probe_failed", device_id=device_id, error=str(e))
            return None

    async def _pick_resolution(self, device_id: str | None, caps: DeviceCapabilities | None) -> int:
        if device_id and await self._prober.probe_resolution(device_id, DEFAULT_RESOLUTION_DPI):
            return DEFAULT_RESOLUTION_DPI
        return pick_listed_resolution(caps.resolutions if caps else None)
