# serverhub/services/seo.py
import re
from typing import Awaitable, Callable


def seo_string(value: str) -> str:
    """URL-безопасный slug: нижний регистр, a-z0-9, остальное через '-'"""
    value = (value or "").strip().lower()
    value = re.sub(r"[^a-z0-9]+", "-", value)
    return value.strip("-")


async def seo_unique(value: str, exists: Callable[[str], Awaitable[bool]]) -> str:
    """
    Уникальный slug для value. exists(candidate) должен вернуть True,
    если такое значение уже занято; тогда добавляется суффикс -1, -2, ...
    """
    base = seo_string(value) or "empty"
    candidate = base
    counter = 0
    while await exists(candidate):
        counter += 1
        candidate = f"{base}-{counter}"
    return candidate
