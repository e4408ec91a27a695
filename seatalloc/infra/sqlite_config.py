"""پیکربندی ایمن اتصال SQLite برای لایهٔ Infra."""
from __future__ import annotations

import sqlite3

_ALLOWED_PRAGMAS = {"foreign_keys", "journal_mode", "synchronous", "busy_timeout"}


def _set_pragma(conn: sqlite3.Connection, name: str, value: str) -> None:
    """اجرای امن PRAGMA روی اتصال.

    مثال
    ----
    >>> import sqlite3
    >>> conn = sqlite3.connect(":memory:")
    >>> _set_pragma(conn, "foreign_keys", "ON")
    """
    if name not in _ALLOWED_PRAGMAS:
        raise ValueError(f"Unsupported PRAGMA: {name}")
    conn.execute(f"PRAGMA {name} = {value};")


def configure_connection(conn: sqlite3.Connection, *, busy_timeout_ms: int = 5000) -> sqlite3.Connection:
    """تنظیم PRAGMA های پایه برای اتصالات SQLite.

    کلید خارجی فعال، ژورنال WAL و همگام‌سازی NORMAL برای فرایند دسته‌ای
    تک‌نویسنده؛ ``busy_timeout`` از شکست فوری هنگام قفل بودن پایگاه جلوگیری
    می‌کند. تراکنش‌ها به‌صورت صریح (``BEGIN IMMEDIATE``) مدیریت می‌شوند.

    Returns
    -------
    sqlite3.Connection
        همان اتصال پس از اعمال تنظیمات.

    مثال
    ----
    >>> import sqlite3
    >>> from seatalloc.infra.sqlite_config import configure_connection
    >>> connection = configure_connection(sqlite3.connect(":memory:", isolation_level=None))
    >>> connection.execute("PRAGMA foreign_keys;").fetchone()[0]
    1
    """

    conn.row_factory = sqlite3.Row
    _set_pragma(conn, "foreign_keys", "ON")
    _set_pragma(conn, "journal_mode", "WAL")
    _set_pragma(conn, "synchronous", "NORMAL")
    _set_pragma(conn, "busy_timeout", str(int(busy_timeout_ms)))
    return conn


def connect(path: str, *, busy_timeout_ms: int = 5000) -> sqlite3.Connection:
    """باز کردن اتصال در حالت autocommit با پیکربندی استاندارد."""

    return configure_connection(
        sqlite3.connect(path, isolation_level=None),
        busy_timeout_ms=busy_timeout_ms,
    )


__all__ = ["configure_connection", "connect"]
