"""راه‌اندازی لاگ اجرای تخصیص: پیکربندی YAML، کانتکست نشست و پل رویدادهای موتور.

Core هیچ‌گاه لاگ نمی‌نویسد؛ رویدادهای آن (:class:`RunEvent`) از طریق
:class:`EventLogBridge` به logger ``seatalloc.engine`` می‌رسند و فیلتر نشست
شناسهٔ اجرا، شمارهٔ دور و فاز را روی هر رکورد قرار می‌دهد.
"""
from __future__ import annotations

import getpass
import logging
import logging.config
import os
import sys
import threading
import traceback
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from time import perf_counter
from types import TracebackType
from typing import Any, Callable, Iterator, Mapping

import yaml

from seatalloc.core.common.events import EventLevel, RunEvent

DEFAULT_LOGGING_CONFIG = Path("config/logging.yaml")

_EVENT_LEVELS: Mapping[EventLevel, int] = {
    EventLevel.DEBUG: logging.DEBUG,
    EventLevel.INFO: logging.INFO,
    EventLevel.WARNING: logging.WARNING,
    EventLevel.ERROR: logging.ERROR,
}

# فیلدهای هر رکورد که اگر فراخوان مقداری نداده باشد خالی می‌مانند
_RECORD_FIELDS: tuple[str, ...] = ("round_no", "phase", "error_id", "report_path")


@dataclass(slots=True, frozen=True)
class LoggingContext:
    """مشخصات نشست اجرای تخصیص برای برچسب‌گذاری لاگ و گزارش خطا.

    مثال::

        >>> from pathlib import Path
        >>> ctx = LoggingContext(
        ...     application="seatalloc",
        ...     version="0.1",
        ...     session_id="abc",
        ...     pid=123,
        ...     log_dir=Path("logs"),
        ...     error_dir=Path("logs/errors"),
        ... )
        >>> ctx.new_error_id().startswith("abc-")
        True
    """

    application: str
    version: str
    session_id: str
    pid: int
    log_dir: Path
    error_dir: Path
    user: str = ""

    @classmethod
    def create(cls, *, application: str, version: str, log_dir: Path) -> "LoggingContext":
        return cls(
            application=application,
            version=version,
            session_id=uuid.uuid4().hex,
            pid=os.getpid(),
            log_dir=log_dir,
            error_dir=log_dir / "errors",
            user=getpass.getuser(),
        )

    def new_error_id(self) -> str:
        return f"{self.session_id}-{uuid.uuid4().hex[:8]}"

    def record_fields(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "application": self.application,
            "app_version": self.version,
            "user": self.user,
        }

    def write_error_report(self, *, error_id: str, message: str, traceback_text: str) -> Path:
        """نوشتن گزارش خطای مستقل در ``error_dir``؛ مسیر فایل برگردانده می‌شود."""

        now = datetime.now(timezone.utc)
        self.error_dir.mkdir(parents=True, exist_ok=True)
        path = self.error_dir / f"{error_id}-{now:%Y%m%dT%H%M%SZ}.log"
        fields = {
            **self.record_fields(),
            "error_id": error_id,
            "pid": self.pid,
            "timestamp": now.isoformat().replace("+00:00", "Z"),
        }
        lines = [f"{key}={value}" for key, value in fields.items()]
        lines += ["", message.strip(), "", traceback_text.strip(), ""]
        path.write_text("\n".join(lines), encoding="utf-8")
        return path


class SessionContextFilter(logging.Filter):
    """تکمیل رکوردها با فیلدهای نشست و مقدار خالی برای دور/فاز/خطا."""

    def __init__(self, context: LoggingContext) -> None:
        super().__init__()
        self._fields = context.record_fields()

    def filter(self, record: logging.LogRecord) -> bool:
        for key, value in self._fields.items():
            if not hasattr(record, key):
                setattr(record, key, value)
        for key in _RECORD_FIELDS:
            if not hasattr(record, key):
                setattr(record, key, "")
        return True


def _attach_filter(target: logging.Logger, filter_obj: SessionContextFilter) -> None:
    holders: list[logging.Filterer] = [target, *target.handlers]
    for holder in holders:
        if not any(isinstance(existing, SessionContextFilter) for existing in holder.filters):
            holder.addFilter(filter_obj)


def _redirect_file_handlers(config: dict[str, Any], log_directory: Path | None) -> None:
    """مسیر نسبی handlerهای فایل به ``log_directory`` منتقل و پوشه ساخته می‌شود."""

    handlers = config.get("handlers")
    if not isinstance(handlers, dict):
        return
    for handler_cfg in handlers.values():
        if not isinstance(handler_cfg, dict) or not handler_cfg.get("filename"):
            continue
        target = Path(str(handler_cfg["filename"])).expanduser()
        if log_directory is not None and not target.is_absolute():
            target = log_directory / target.name
        target = target.resolve()
        target.parent.mkdir(parents=True, exist_ok=True)
        handler_cfg["filename"] = str(target)


def setup_logging(
    config_path: str | Path = DEFAULT_LOGGING_CONFIG,
    log_dir: str | Path | None = None,
) -> None:
    """اعمال پیکربندی dictConfig از فایل YAML.

    Raises:
        FileNotFoundError: فایل پیکربندی وجود ندارد.
        ValueError: محتوای YAML یک نگاشت نیست.
    """

    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"logging config not found: {path}")
    with path.open("r", encoding="utf-8") as handle:
        data: Any = yaml.safe_load(handle)
    if not isinstance(data, dict):
        raise ValueError("logging config must be a mapping")
    _redirect_file_handlers(data, Path(log_dir).expanduser().resolve() if log_dir else None)
    logging.config.dictConfig(data)


def configure_logging(
    *,
    app_name: str,
    app_version: str,
    logger_name: str,
    config_path: str | Path = DEFAULT_LOGGING_CONFIG,
    log_dir: str | Path | None = None,
) -> LoggingContext:
    """پیکربندی لاگ و نصب فیلتر نشست روی root و همهٔ پیشوندهای ``logger_name``.

    نصب روی پیشوندها لازم است چون handlerهای فایل معمولاً روی logger والد
    (مثلاً ``seatalloc``) تعریف می‌شوند و رکوردهای فرزندان از آن‌ها عبور می‌کنند.
    """

    log_directory = Path(log_dir).expanduser().resolve() if log_dir else Path("logs").resolve()
    log_directory.mkdir(parents=True, exist_ok=True)
    setup_logging(config_path, log_directory)

    context = LoggingContext.create(application=app_name, version=app_version, log_dir=log_directory)
    context.error_dir.mkdir(parents=True, exist_ok=True)

    filter_obj = SessionContextFilter(context)
    _attach_filter(logging.getLogger(), filter_obj)
    parts = logger_name.split(".")
    for depth in range(1, len(parts) + 1):
        _attach_filter(logging.getLogger(".".join(parts[:depth])), filter_obj)
    logging.captureWarnings(True)
    return context


class _ErrorReporter:
    """ثبت استثنای مهارنشده در لاگ و نوشتن گزارش خطای جداگانه."""

    def __init__(self, logger: logging.Logger, context: LoggingContext) -> None:
        self._logger = logger
        self._context = context

    def report(
        self,
        exc_type: type[BaseException],
        exc_value: BaseException,
        exc_tb: TracebackType | None,
        source: str,
    ) -> None:
        error_id = self._context.new_error_id()
        report_path = self._context.write_error_report(
            error_id=error_id,
            message=f"{source}: {exc_value}",
            traceback_text="".join(traceback.format_exception(exc_type, exc_value, exc_tb)),
        )
        self._logger.critical(
            "Unhandled exception from %s",
            source,
            exc_info=(exc_type, exc_value, exc_tb),
            extra={"error_id": error_id, "report_path": str(report_path)},
        )


def install_exception_hook(logger: logging.Logger, context: LoggingContext) -> Callable[[], None]:
    """نصب ``sys.excepthook`` و ``threading.excepthook``؛ تابع بازگردانی برمی‌گرداند."""

    reporter = _ErrorReporter(logger, context)
    previous_sys_hook = sys.excepthook
    previous_thread_hook = threading.excepthook

    def handle_exception(
        exc_type: type[BaseException],
        exc_value: BaseException,
        exc_tb: TracebackType | None,
    ) -> None:
        if not issubclass(exc_type, KeyboardInterrupt):
            reporter.report(exc_type, exc_value, exc_tb, "main-thread")
        previous_sys_hook(exc_type, exc_value, exc_tb)

    def handle_thread_exception(args: threading.ExceptHookArgs) -> None:
        if args.exc_value is not None:
            thread_name = args.thread.name if args.thread is not None else "thread"
            reporter.report(args.exc_type, args.exc_value, args.exc_traceback, thread_name)
        previous_thread_hook(args)

    sys.excepthook = handle_exception
    threading.excepthook = handle_thread_exception

    def restore() -> None:
        sys.excepthook = previous_sys_hook
        threading.excepthook = previous_thread_hook

    return restore


@contextmanager
def log_step(logger: logging.Logger, step: str) -> Iterator[None]:
    """ثبت شروع، مدت و شکست یک مرحلهٔ پرهزینه (خواندن ورودی، دورها، گزارش)."""

    start = perf_counter()
    logger.info("شروع مرحلهٔ %s", step)
    try:
        yield
    except Exception:
        logger.exception("مرحلهٔ %s با خطا پایان یافت", step)
        raise
    logger.info("مرحلهٔ %s تکمیل شد (%.2fs)", step, perf_counter() - start)


class EventLogBridge:
    """Sink رویداد که رویدادهای Core را به یک logger استاندارد می‌فرستد.

    مثال::

        >>> bridge = EventLogBridge(logging.getLogger("seatalloc.engine"))
        >>> bridge(RunEvent(kind="round_started", round_no=1))
    """

    def __init__(self, logger: logging.Logger) -> None:
        self._logger = logger

    def __call__(self, event: RunEvent) -> None:
        level = _EVENT_LEVELS.get(event.level, logging.INFO)
        if not self._logger.isEnabledFor(level):
            return
        details = " ".join(f"{key}={value}" for key, value in event.payload.items())
        self._logger.log(
            level,
            "%s %s",
            event.kind,
            details,
            extra={"round_no": event.round_no or "", "phase": event.phase or ""},
        )


__all__ = [
    "DEFAULT_LOGGING_CONFIG",
    "LoggingContext",
    "SessionContextFilter",
    "EventLogBridge",
    "configure_logging",
    "install_exception_hook",
    "log_step",
    "setup_logging",
]
