"""لایهٔ زیرساختی برای I/O موتور تخصیص صندلی: SQLite، ورودی، خروجی و لاگ."""

from seatalloc.infra.errors import (
    DatabaseOperationError,
    InfraError,
    InputDataError,
    SchemaVersionMismatchError,
)
from seatalloc.infra.sqlite_config import configure_connection

__all__ = [
    "DatabaseOperationError",
    "InfraError",
    "InputDataError",
    "SchemaVersionMismatchError",
    "configure_connection",
]
