"""
نقطهٔ ورود برنامهٔ تخصیص صندلی دوره‌ای
مدیریت: راه‌اندازی لاگ، هندلر خطای سراسری و اجرای CLI
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Callable, Sequence

from seatalloc.infra.cli import main as cli_main
from seatalloc.infra.logging import DEFAULT_LOGGING_CONFIG, LoggingContext, configure_logging, install_exception_hook

__version__ = "0.1.0"
__description__ = "موتور تخصیص صندلی دوره‌ای با سهمیه‌بندی"

logger = logging.getLogger("seatalloc.main")
_LOGGING_CONTEXT: LoggingContext | None = None
_RESTORE_EXCEPTION_HOOK: Callable[[], None] | None = None


def _bootstrap_logging(config_path: Path, log_dir: str | None) -> LoggingContext | None:
    """راه‌اندازی زیرساخت لاگ با ذخیرهٔ کانتکست سراسری.

    اگر فایل پیکربندی وجود نداشته باشد، لاگ پیش‌فرض پایتون (هشدار به بالا
    روی stderr) باقی می‌ماند.

    مثال::

        >>> ctx = _bootstrap_logging(Path("config/logging.yaml"), None)  # doctest: +SKIP
    """

    global _LOGGING_CONTEXT, _RESTORE_EXCEPTION_HOOK
    if _LOGGING_CONTEXT is not None:
        return _LOGGING_CONTEXT
    if not config_path.exists():
        return None
    context = configure_logging(
        app_name="seatalloc",
        app_version=__version__,
        logger_name=logger.name,
        config_path=config_path,
        log_dir=log_dir,
    )
    _LOGGING_CONTEXT = context
    _RESTORE_EXCEPTION_HOOK = install_exception_hook(logger, context)
    logger.info("seatalloc %s started (session %s)", __version__, context.session_id)
    return context


def _split_logging_args(argv: Sequence[str] | None) -> tuple[argparse.Namespace, list[str]]:
    parser = argparse.ArgumentParser(add_help=False)
    parser.add_argument("--log-config", default=str(DEFAULT_LOGGING_CONFIG))
    parser.add_argument("--log-dir", default=None)
    return parser.parse_known_args(list(sys.argv[1:] if argv is None else argv))


def main(argv: Sequence[str] | None = None) -> int:
    options, remaining = _split_logging_args(argv)
    _bootstrap_logging(Path(options.log_config), options.log_dir)
    return cli_main(remaining)


if __name__ == "__main__":
    sys.exit(main())
