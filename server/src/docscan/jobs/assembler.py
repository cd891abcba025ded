"""
文档合并 (多工具兜底)。

策略: tiffcp (仅 TIFF 页) → ImageMagick convert → 复制首页
复制首页是有损降级: manifest 中 assembly=copied，且文档文件只含一页。
"""
from __future__ import annotations
from dataclasses import dataclass, field
from pathlib import Path
import aiofiles
import structlog
from docscan.common.enums import AssemblyMethod
from docscan.common.exceptions import AssemblyDegradedError
from docscan.common.proc import run_command
from docscan.settings import Settings, settings as default_settings

logger = structlog.get_logger()

TIFF_SUFFIXES = {".tif", ".tiff"}
COPY_CHUNK = 64 * 1024


@dataclass
class AssemblyOutcome:
    method: AssemblyMethod
    path: Path
    tool: str | None = None
    errors: list[str] = field(default_factory=list)

    @property
    def degraded(self) -> bool:
        return self.method == AssemblyMethod.COPIED


class DocumentAssembler:
    def __init__(self, config: Settings | None = None):
        self._config = config or default_settings

    def merge_tools(self, pages: list[Path], dest: Path) -> list[tuple[str, list[str]]]:
        """按优先级返回可尝试的合并命令。"""
        tools: list[tuple[str, list[str]]] = []
        all_tiff = all(p.suffix.lower() in TIFF_SUFFIXES for p in pages)
        if all_tiff and dest.suffix.lower() in TIFF_SUFFIXES:
            tools.append(("tiffcp", [self._config.tiffcp_bin, *map(str, pages), str(dest)]))
        tools.append(("convert", [self._config.im_convert_bin, *map(str, pages), str(dest)]))
        return tools

    async def assemble(self, pages: list[Path | str], dest: Path | str) -> AssemblyOutcome | None:
        """合并为一个多页文件。空输入不产生文件，返回 None。"""
        page_paths = [Path(p) for p in pages]
        dest = Path(dest)
        if not page_paths:
            return None

        errors: list[str] = []
        for tool, argv in self.merge_tools(page_paths, dest):
            try:
                await self._merge(tool, argv, dest)
                logger.info("document_merged", tool=tool, dest=str(dest), pages=len(page_paths))
                return AssemblyOutcome(method=AssemblyMethod.MERGED, path=dest, tool=tool)
            except AssemblyDegradedError as e:
                logger.debug("merge_fallback", tool=tool, error=e.message)
                errors.append(e.message)

        # 复制的是单页原始文件，扩展名跟随页面
        dest = dest.with_suffix(page_paths[0].suffix)
        await copy_file(page_paths[0], dest)
        logger.warning("assembly_degraded", dest=str(dest), pages=len(page_paths), errors=errors)
        return AssemblyOutcome(method=AssemblyMethod.COPIED, path=dest, errors=errors)

    async def _merge(self, tool: str, argv: list[str], dest: Path) -> None:
        outcome = await run_command(argv)
        if not outcome.ok:
            dest.unlink(missing_ok=True)
            detail = outcome.detail()
            tail = outcome.stderr.strip()[-200:]
            raise AssemblyDegradedError(f"{tool}: {detail}" + (f" {tail}" if tail else ""))
        if not dest.exists():
            raise AssemblyDegradedError(f"{tool}: no output produced")

    async def concatenate(self, pages: list[Path | str], dest: Path | str) -> AssemblyOutcome | None:
        """模拟模式: 页面字节直接拼接。"""
        if not pages:
            return None
        async with aiofiles.open(dest, "wb") as out:
            for p in pages:
                async with aiofiles.open(p, "rb") as f:
                    await out.write(await f.read())
        return AssemblyOutcome(method=AssemblyMethod.MOCK, path=Path(dest), tool="mock")


async def copy_file(src: Path | str, dest: Path | str) -> None:
    async with aiofiles.open(src, "rb") as fin, aiofiles.open(dest, "wb") as fout:
        while chunk := await fin.read(COPY_CHUNK):
            await fout.write(chunk)
