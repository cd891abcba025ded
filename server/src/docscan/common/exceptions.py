"""
异常体系。
每个异常携带 code + http_status + severity，传输层据此映射错误信封。
"""
from __future__ import annotations


class DocScanError(Exception):
    """基类异常。"""
    code: str = "UNKNOWN_ERROR"
    http_status: int = 400
    severity: str = "error"

    def __init__(self, message: str = "", code: str | None = None):
        self.message = message
        if code:
            self.code = code
        super().__init__(message)

    def to_dict(self) -> dict:
        return {"error_code": self.code, "message": self.message, "severity": self.severity}


# === Job 操作 ===
class JobNotFoundError(DocScanError):
    code = "JOB_NOT_FOUND"; http_status = 404

class InvalidJobIdError(DocScanError):
    code = "INVALID_JOB_ID"; http_status = 400

class JobAlreadyTerminalError(DocScanError):
    code = "JOB_ALREADY_TERMINAL"; http_status = 409


# === 设备 ===
class DeviceUnavailableError(DocScanError):
    code = "DEVICE_UNAVAILABLE"; http_status = 503

class DeviceProbeError(DocScanError):
    code = "DEVICE_PROBE_FAILED"; http_status = 502; severity = "warning"


# === 执行 ===
class CommandExecutionFailedError(DocScanError):
    code = "COMMAND_EXECUTION_FAILED"; http_status = 500

    def __init__(self, message: str = "", attempts: list[dict] | None = None):
        super().__init__(message)
        self.attempts = attempts or []

class AssemblyDegradedError(DocScanError):
    code = "ASSEMBLY_DEGRADED"; http_status = 500; severity = "warning"


# === 环境 ===
class ConfigurationError(DocScanError):
    code = "CONFIGURATION_ERROR"; http_status = 500; severity = "critical"

    def __init__(self, message: str = "", missing: list | None = None):
        super().__init__(message)
        self.missing = missing or []
