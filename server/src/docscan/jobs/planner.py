"""
命令规划: 已解析的 ScanRequest + run_dir → 依次尝试的外部命令候选。

纯数据变换，无 I/O。
- 进纸器来源: [scanadf, scanimage]
- 其他来源:   [scanimage]
scanadf 没有输出格式参数，固定输出 pnm。
"""
from __future__ import annotations
from dataclasses import dataclass, field
from pathlib import Path
from docscan.common.enums import OutputFormat, PageSize
from docscan.common.schemas import ScanRequest, is_feeder_source

PAGE_PATTERN = "page_%04d.{ext}"
DOC_PATTERN = "doc_{index:04d}.{ext}"

# (宽, 高) 毫米
PAGE_SIZES_MM: dict[PageSize, tuple[float, float]] = {
    PageSize.LETTER: (215.9, 279.4),
    PageSize.A4: (210.0, 297.0),
    PageSize.LEGAL: (215.9, 355.6),
}
DEFAULT_PAGE_SIZE = PageSize.LETTER


@dataclass
class CommandCandidate:
    tool: str  # 逻辑名: scanimage / scanadf
    executable: str
    args: list[str] = field(default_factory=list)
    output_format: OutputFormat = OutputFormat.TIFF

    @property
    def argv(self) -> list[str]:
        return [self.executable, *self.args]


def format_mm(value: float) -> str:
    """210.0 → "210mm"，215.9 → "215.9mm"。"""
    return f"{round(value, 2):g}mm"


def page_dimensions_mm(request: ScanRequest) -> tuple[float, float]:
    if request.page_size == PageSize.CUSTOM and request.custom_size_mm is not None:
        return request.custom_size_mm.width, request.custom_size_mm.height
    size = request.page_size if request.page_size in PAGE_SIZES_MM else DEFAULT_PAGE_SIZE
    return PAGE_SIZES_MM[size]


def _common_args(request: ScanRequest) -> list[str]:
    args: list[str] = []
    if request.device_id:
        args += ["-d", request.device_id]
    if request.resolution_dpi:
        args += ["--resolution", str(request.resolution_dpi)]
    if request.color_mode:
        args += ["--mode", request.color_mode]
    if request.source:
        args += ["--source", request.source]
    width, height = page_dimensions_mm(request)
    args += ["-x", format_mm(width), "-y", format_mm(height)]
    return args


def plan_commands(
    request: ScanRequest,
    run_dir: Path | str,
    scanimage_bin: str = "scanimage",
    scanadf_bin: str = "scanadf",
) -> list[CommandCandidate]:
    run_dir = Path(run_dir)
    fmt = request.effective_format
    base = _common_args(request)

    scanimage = CommandCandidate(
        tool="scanimage",
        executable=scanimage_bin,
        args=base + [
            f"--batch={run_dir / PAGE_PATTERN.format(ext=fmt.extension)}",
            "--batch-start=1",
            f"--format={fmt.value}",
        ],
        output_format=fmt,
    )
    if not is_feeder_source(request.source):
        return [scanimage]

    scanadf = CommandCandidate(
        tool="scanadf",
        executable=scanadf_bin,
        args=base + [
            f"--output-file={run_dir / PAGE_PATTERN.format(ext=OutputFormat.PNM.extension)}",
            "--start-count=1",
        ],
        output_format=OutputFormat.PNM,
    )
    return [scanadf, scanimage]


def document_filename(index: int, fmt: OutputFormat) -> str:
    return DOC_PATTERN.format(index=index, ext=fmt.extension)
