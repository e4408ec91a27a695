"""ابزارهای ماژول Policy برای taxonomy دسته‌ها و معیارهای تساوی‌شکن."""

from __future__ import annotations

from .config import CategoryPolicy, CategoryRule, SubcategoryRule

__all__ = [
    "CategoryPolicy",
    "CategoryRule",
    "SubcategoryRule",
]
