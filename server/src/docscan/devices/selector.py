"""
设备选择器。

对每个候选设备做加性评分，分高者胜，同分按 device_id 字典序:
- 后端在排除列表: -inf (一票否决)
- 期望来源为进纸器: 双面进纸 +120 / 单面进纸 +100 / 无进纸 -50
- 未指定来源: 双面进纸 +40 / 单面进纸 +30
- 期望分辨率在设备列表中: +10
- 具备双面进纸: +10
- 后端在偏好列表: +5
- 摄像头类后端: -100
- 上次使用的设备: +1
- 能力探测失败: -5 (其余维度按未知处理)
"""
from __future__ import annotations
import math
from dataclasses import dataclass, field
from typing import Protocol
import structlog
from docscan.common.exceptions import DeviceProbeError
from docscan.common.schemas import Device, DeviceCapabilities, is_feeder_source

logger = structlog.get_logger()

CAMERA_BACKENDS = ("v4l",)


class CapabilityProber(Protocol):
    async def list_devices(self) -> list[Device]: ...
    async def probe_options(self, device_id: str) -> DeviceCapabilities: ...


@dataclass
class DesiredProfile:
    source: str | None = None
    resolution_dpi: int | None = None


@dataclass
class DeviceScore:
    device_id: str
    score: float = 0.0
    rationale: list[str] = field(default_factory=list)


def _backend(device_id: str) -> str:
    return device_id.split(":", 1)[0]


def score_device(
    device_id: str,
    caps: DeviceCapabilities | None,
    desired: DesiredProfile,
    exclude: list[str] | tuple[str, ...] = (),
    prefer: list[str] | tuple[str, ...] = (),
    last_used: str | None = None,
) -> DeviceScore:
    """纯函数，无 I/O。caps 为 None 表示探测失败。"""
    result = DeviceScore(device_id=device_id)
    backend = _backend(device_id)

    if backend in exclude:
        result.score = -math.inf
        result.rationale.append(f"backend {backend} excluded")
        return result

    def add(points: float, reason: str) -> None:
        result.score += points
        result.rationale.append(f"{points:+g} {reason}")

    if caps is None:
        add(-5, "capability probe failed")
    else:
        duplex_feeder = caps.has_duplex_feeder
        feeder = caps.has_feeder or bool(caps.adf)
        if desired.source and is_feeder_source(desired.source):
            if duplex_feeder:
                add(120, "feeder requested, duplex feeder available")
            elif feeder:
                add(100, "feeder requested, feeder available")
            else:
                add(-50, "feeder requested, no feeder")
        elif not desired.source:
            if duplex_feeder:
                add(40, "duplex feeder available")
            elif feeder:
                add(30, "feeder available")

        if desired.resolution_dpi and desired.resolution_dpi in (caps.resolutions or []):
            add(10, f"supports {desired.resolution_dpi}dpi")
        if duplex_feeder:
            add(10, "duplex capable")

    if backend in prefer:
        add(5, f"preferred backend {backend}")
    if backend.startswith(CAMERA_BACKENDS):
        add(-100, f"camera backend {backend}")
    if last_used and device_id == last_used:
        add(1, "last used device")
    return result


class DeviceSelector:
    def __init__(self, prober: CapabilityProber,
                 exclude: list[str] | None = None, prefer: list[str] | None = None):
        self._prober = prober
        self._exclude = list(exclude or [])
        self._prefer = list(prefer or [])

    async def rank(self, desired: DesiredProfile | None = None,
                   last_used: str | None = None) -> list[DeviceScore]:
        """全部候选按 (分数降序, device_id 升序) 排列。"""
        desired = desired or DesiredProfile()
        devices = await self._prober.list_devices()
        scores: list[DeviceScore] = []
        for device in devices:
            caps: DeviceCapabilities | None = None
            if device.backend not in self._exclude:
                try:
                    caps = await self._prober.probe_options(device.id)
                except DeviceProbeError as e:
                    logger.warning("device_probe_failed", device_id=device.id, error=str(e))
            scores.append(score_device(
                device.id, caps, desired, self._exclude, self._prefer, last_used))
        scores.sort(key=lambda s: (-s.score, s.device_id))
        return scores

    async def select(self, desired: DesiredProfile | None = None,
                     last_used: str | None = None) -> DeviceScore | None:
        ranked = await self.rank(desired, last_used)
        if not ranked or ranked[0].score == -math.inf:
            logger.info("device_selection_empty", candidates=len(ranked))
            return None
        best = ranked[0]
        logger.info("device_selected", device_id=best.device_id,
                    score=best.score, rationale=best.rationale)
        return best
