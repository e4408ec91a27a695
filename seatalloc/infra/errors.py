"""مدل خطای لایهٔ Infra برای پایگاه داده و ورودی."""
from __future__ import annotations

from dataclasses import dataclass


class InfraError(RuntimeError):
    """پایهٔ همهٔ خطاهای لایهٔ زیرساخت."""


@dataclass(eq=True)
class SchemaVersionMismatchError(InfraError):
    """عدم تطابق نسخهٔ Schema پایگاه داده با نسخهٔ مورد انتظار."""

    expected_version: int
    actual_version: int
    message: str

    def __str__(self) -> str:
        return f"{self.message} (expected={self.expected_version}, actual={self.actual_version})"


@dataclass(eq=True)
class DatabaseOperationError(InfraError):
    """خطای کلی عملیات SQLite با پیام خوانا."""

    message: str

    def __str__(self) -> str:
        return self.message


@dataclass(eq=True)
class InputDataError(InfraError):
    """ردیف ورودی (داوطلب یا سلول صندلی) قابل تبدیل به مدل دامنه نیست.

    Attributes:
        source: نام فایل یا جدول ورودی.
        row_index: شمارهٔ ردیف داده (۱-پایه، بدون سرستون).
        column: نام ستون مشکل‌دار در صورت وجود.
        message: توضیح خوانا.
    """

    source: str
    row_index: int | None
    column: str | None
    message: str

    def __str__(self) -> str:
        location = self.source
        if self.row_index is not None:
            location += f" row={self.row_index}"
        if self.column:
            location += f" column={self.column}"
        return f"{location}: {self.message}"


__all__ = [
    "InfraError",
    "SchemaVersionMismatchError",
    "DatabaseOperationError",
    "InputDataError",
]
