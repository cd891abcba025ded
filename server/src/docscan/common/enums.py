"""全系统枚举: 单一真理源。"""
from enum import StrEnum


class JobState(StrEnum):
    RUNNING = "running"; COMPLETED = "completed"
    CANCELLED = "cancelled"; ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self is not JobState.RUNNING


# 状态查询专用: 合法 job_id 但 manifest 尚不存在 / 不可读
UNKNOWN_STATE = "unknown"


class ScanSource(StrEnum):
    FLATBED = "Flatbed"; ADF = "ADF"; ADF_DUPLEX = "ADF Duplex"


class PageSize(StrEnum):
    LETTER = "Letter"; A4 = "A4"; LEGAL = "Legal"; CUSTOM = "Custom"


class BreakPolicyType(StrEnum):
    NONE = "none"; PAGE_COUNT = "page_count"
    BLANK_PAGE = "blank_page"; TIMER = "timer"; BARCODE = "barcode"


class OutputFormat(StrEnum):
    TIFF = "tiff"; PNG = "png"; JPEG = "jpeg"; PNM = "pnm"

    @property
    def extension(self) -> str:
        return {"jpeg": "jpg"}.get(self.value, self.value)

    @property
    def mime_type(self) -> str:
        return {
            "tiff": "image/tiff", "png": "image/png",
            "jpeg": "image/jpeg", "pnm": "image/x-portable-anymap",
        }[self.value]

    @classmethod
    def from_suffix(cls, suffix: str) -> "OutputFormat | None":
        ext = suffix.lower().lstrip(".")
        return {"tif": cls.TIFF, "jpg": cls.JPEG}.get(ext) or next((f for f in cls if f.value == ext), None)


class AssemblyMethod(StrEnum):
    MERGED = "merged"; COPIED = "copied"; MOCK = "mock"


class JobEventType(StrEnum):
    JOB_STARTED = "job_started"
    SCANNER_EXEC = "scanner_exec"
    SCANNER_PRIMARY_FAILED = "scanner_primary_failed"
    SCANNER_FAILED = "scanner_failed"
    PAGE_CAPTURED = "page_captured"
    BREAK_POLICY_UNSUPPORTED = "break_policy_unsupported"
    DOCUMENT_ASSEMBLED = "document_assembled"
    ASSEMBLY_DEGRADED = "assembly_degraded"
    JOB_COMPLETED = "job_completed"
    JOB_ERROR = "job_error"
    JOB_CANCELLED = "job_cancelled"


TERMINAL_EVENTS = frozenset({
    JobEventType.JOB_COMPLETED, JobEventType.JOB_ERROR, JobEventType.JOB_CANCELLED,
})
