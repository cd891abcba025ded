"""上次使用设备 (LastUsedDevicePreference)。单个 JSON 文件 {"device_id": ...}，后写者胜。"""
from __future__ import annotations
import os
import uuid
from pathlib import Path
import aiofiles
import orjson
import structlog

logger = structlog.get_logger()


class LastUsedDeviceStore:
    def __init__(self, path: Path | str):
        self.path = Path(path)

    async def load(self) -> str | None:
        """读取失败 (不存在 / 损坏) 视为无偏好。"""
        try:
            async with aiofiles.open(self.path, "rb") as f:
                data = orjson.loads(await f.read())
        except FileNotFoundError:
            return None
        except (OSError, orjson.JSONDecodeError) as e:
            logger.warning("last_used_device_unreadable", path=str(self.path), error=str(e))
            return None
        device_id = data.get("device_id") if isinstance(data, dict) else None
        return device_id if isinstance(device_id, str) and device_id else None

    async def save(self, device_id: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        # 每次写入使用独立临时文件，并发写入互不覆盖临时文件
        tmp = self.path.with_name(f".{self.path.name}.{uuid.uuid4().hex[:8]}.tmp")
        async with aiofiles.open(tmp, "wb") as f:
            await f.write(orjson.dumps({"device_id": device_id}))
        os.replace(tmp, self.path)
        logger.debug("last_used_device_saved", device_id=device_id)
