"""通知模板渲染：将 {{variable}} 占位符替换为物品信息"""
from __future__ import annotations

import re
from typing import Mapping

from shelfwatch.services.item_selector import ExpiryCandidate, NotifyCondition

PLACEHOLDER_RE = re.compile(r"\{\{\s*([A-Za-z_][A-Za-z0-9_]*)\s*\}\}")

TEMPLATE_VARIABLES = (
    "itemName",
    "stock",
    "daysLeft",
    "condition",
    "expiryDate",
    "categoryName",
    "brand",
)

CONDITION_LABELS = {
    NotifyCondition.OUT_OF_STOCK: "缺货",
    NotifyCondition.EXPIRING: "即将过期",
    NotifyCondition.EXPIRED: "已过期",
}

SAMPLE_VARIABLES = {
    "itemName": "测试物品",
    "stock": "1",
    "daysLeft": "7 天",
    "condition": CONDITION_LABELS[NotifyCondition.EXPIRING],
    "expiryDate": "2026-02-14",
    "categoryName": "日用品",
    "brand": "",
}


class TemplateRenderError(ValueError):
    pass


def format_days_left(days_left: int | None) -> str:
    if days_left is None:
        return ""
    if days_left < 0:
        return f"已过期 {abs(days_left)} 天"
    return f"{days_left} 天"


def build_variables(candidate: ExpiryCandidate) -> dict[str, str]:
    return {
        "itemName": candidate.name,
        "stock": str(candidate.stock),
        "daysLeft": format_days_left(candidate.days_left),
        "condition": CONDITION_LABELS[candidate.condition],
        "expiryDate": candidate.expiry_date.date().isoformat() if candidate.expiry_date else "",
        "categoryName": candidate.category_name or "",
        "brand": candidate.brand or "",
    }


def render_template(template: str | None, variables: Mapping[str, str]) -> str:
    """渲染模板；出现未识别的占位符时抛出 TemplateRenderError"""
    if template is None:
        raise TemplateRenderError("template is empty")

    unknown = sorted({m.group(1) for m in PLACEHOLDER_RE.finditer(template)} - set(variables))
    if unknown:
        raise TemplateRenderError(f"unknown placeholder(s): {', '.join(unknown)}")

    # 替换值中即使包含 {{...}} 也不会再次展开
    return PLACEHOLDER_RE.sub(lambda m: variables[m.group(1)], template)
