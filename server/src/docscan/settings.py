"""应用配置。所有环境变量集中管理。"""
from __future__ import annotations
from pathlib import Path
from pydantic_settings import BaseSettings


def _split_csv(raw: str) -> list[str]:
    return [item.strip() for item in raw.split(",") if item.strip()]


class Settings(BaseSettings):
    # === App ===
    app_env: str = "development"
    app_title: str = "DocScan Server"
    cors_origins: str = "http://localhost:5173,http://localhost:3000"
    log_level: str = "INFO"

    # === Paths ===
    inbox_dir: str = "scanned_documents/inbox"
    state_dir: str = ""

    # === Capture ===
    scan_mock: bool = False
    scan_mock_pages: int = 2
    scan_exclude_backends: str = "v4l"
    scan_prefer_backends: str = ""
    persist_last_used_device: bool = True
    probe_timeout_seconds: float = 30.0

    # === External tools ===
    scanimage_bin: str = "scanimage"
    scanadf_bin: str = "scanadf"
    tiffcp_bin: str = "tiffcp"
    im_convert_bin: str = "convert"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    @property
    def exclude_backends(self) -> list[str]:
        return _split_csv(self.scan_exclude_backends)

    @property
    def prefer_backends(self) -> list[str]:
        return _split_csv(self.scan_prefer_backends)

    @property
    def inbox_path(self) -> Path:
        return Path(self.inbox_dir).resolve()

    @property
    def state_file(self) -> Path:
        """上次使用设备的持久化文件。未配置 state_dir 时放在 inbox 同级的 .state 下。"""
        base = Path(self.state_dir).resolve() if self.state_dir else self.inbox_path.parent / ".state"
        return base / "docscan.json"


settings = Settings()
