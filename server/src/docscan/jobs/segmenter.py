"""
页面分段: 有序页号 → 文档分组。

- none / 缺省 / 非法 (page_count <= 0) → 单组
- page_count N → 连续 N 页一组，末组可不足 N
- blank_page / timer / barcode → 暂未实现，按单组处理 (调用方需记录降级)
"""
from __future__ import annotations
from docscan.common.enums import BreakPolicyType
from docscan.common.schemas import DocBreakPolicy

UNSUPPORTED_POLICIES = frozenset({
    BreakPolicyType.BLANK_PAGE, BreakPolicyType.TIMER, BreakPolicyType.BARCODE,
})


def is_unsupported_policy(policy: DocBreakPolicy | None) -> bool:
    return policy is not None and policy.type in UNSUPPORTED_POLICIES


def segment_pages(pages: list[int], policy: DocBreakPolicy | None = None) -> list[list[int]]:
    """返回非空、互不重叠、升序的分组，拼接后等于输入。"""
    if not pages:
        return []
    if (
        policy is not None
        and policy.type == BreakPolicyType.PAGE_COUNT
        and policy.page_count is not None
        and policy.page_count > 0
    ):
        n = policy.page_count
        return [pages[i:i + n] for i in range(0, len(pages), n)]
    return [list(pages)]
