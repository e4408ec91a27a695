"""تست‌های واحد برای سیستم لاگ زیرساختی."""
from __future__ import annotations

import logging
import sys
from pathlib import Path
from textwrap import dedent

import pytest

from seatalloc.core.common.events import EventLevel, RunEvent
from seatalloc.infra.logging import (
    EventLogBridge,
    SessionContextFilter,
    configure_logging,
    install_exception_hook,
    log_step,
    setup_logging,
)
from tests.conftest import LOGGING_CONFIG_PATH


@pytest.fixture(autouse=True)
def _reset_loggers():
    root = logging.getLogger()
    root_handlers = list(root.handlers)
    root_level = root.level
    yield
    for name in ("test", "test.logger", "seatalloc", "seatalloc.main", "seatalloc.engine"):
        target = logging.getLogger(name)
        for handler in list(target.handlers):
            target.removeHandler(handler)
            handler.close()
        target.filters.clear()
        target.propagate = True
        target.setLevel(logging.NOTSET)
    for handler in list(root.handlers):
        if handler not in root_handlers:
            root.removeHandler(handler)
            handler.close()
    root.setLevel(root_level)
    root.filters[:] = [item for item in root.filters if not isinstance(item, SessionContextFilter)]


def _create_logging_config(tmp_path: Path) -> Path:
    """ساخت فایل پیکربندی موقت برای آزمون‌ها."""

    log_path = tmp_path / "logs" / "test.log"
    config_path = tmp_path / "logging.yaml"
    config_path.write_text(
        dedent(
            f"""
            version: 1
            disable_existing_loggers: false
            formatters:
              detailed:
                format: "%(levelname)s %(name)s | session=%(session_id)s round=%(round_no)s phase=%(phase)s error=%(error_id)s | %(message)s"
            handlers:
              file:
                class: logging.FileHandler
                level: DEBUG
                formatter: detailed
                filename: "{log_path}"
                encoding: utf-8
            loggers:
              test:
                level: DEBUG
                handlers: [file]
                propagate: false
            """
        ).strip()
    )
    return config_path


def test_configure_logging_enriches_records(tmp_path: Path) -> None:
    """کانتکست نشست در خروجی فایل درج می‌شود؛ حتی برای loggerهای فرزند."""

    config_path = _create_logging_config(tmp_path)
    context = configure_logging(
        app_name="TestApp",
        app_version="0.1",
        logger_name="test.logger",
        config_path=config_path,
        log_dir=tmp_path / "logs",
    )

    logging.getLogger("test.logger").info("hello world")
    logging.getLogger("test.engine").error("boom")

    content = (tmp_path / "logs" / "test.log").read_text(encoding="utf-8")
    assert content.count(f"session={context.session_id}") == 2
    assert "test.engine" in content
    assert context.error_dir.is_dir()


def test_shipped_config_writes_into_log_dir(tmp_path: Path) -> None:
    context = configure_logging(
        app_name="seatalloc",
        app_version="0.1.0",
        logger_name="seatalloc.main",
        config_path=LOGGING_CONFIG_PATH,
        log_dir=tmp_path,
    )

    logging.getLogger("seatalloc.engine").info("round_started", extra={"round_no": 3, "phase": "upgrade"})

    content = (tmp_path / "seatalloc.log").read_text(encoding="utf-8")
    assert context.session_id in content
    assert "round_started" in content


def test_setup_logging_validates_input(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        setup_logging(tmp_path / "missing.yaml")
    bad = tmp_path / "bad.yaml"
    bad.write_text("- just\n- a list\n", encoding="utf-8")
    with pytest.raises(ValueError):
        setup_logging(bad)


def test_install_exception_hook_creates_error_report(tmp_path: Path) -> None:
    """بررسی ایجاد فایل گزارش خطای مستقل هنگام بروز استثنا."""

    config_path = _create_logging_config(tmp_path)
    context = configure_logging(
        app_name="TestApp",
        app_version="0.2",
        logger_name="test.logger",
        config_path=config_path,
        log_dir=tmp_path / "logs",
    )

    logger = logging.getLogger("test.logger")
    restore = install_exception_hook(logger, context)
    try:
        try:
            raise RuntimeError("boom")
        except RuntimeError:
            exc_type, exc_value, exc_tb = sys.exc_info()
            assert exc_tb is not None
            sys.excepthook(exc_type, exc_value, exc_tb)
    finally:
        restore()

    reports = sorted(context.error_dir.glob("*.log"))
    assert reports, "گزارش خطا ایجاد نشده است"
    content = reports[-1].read_text(encoding="utf-8")
    assert "RuntimeError" in content
    assert "boom" in content
    assert f"session_id={context.session_id}" in content


def test_event_log_bridge_maps_levels(caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.DEBUG, logger="bridge.test")
    bridge = EventLogBridge(logging.getLogger("bridge.test"))

    bridge(RunEvent(kind="round_started", round_no=2))
    bridge(RunEvent(kind="store_unavailable", round_no=2, phase="upgrade", level=EventLevel.ERROR,
                    payload={"error": "locked"}))

    first, second = caplog.records
    assert first.levelno == logging.INFO
    assert first.round_no == 2
    assert first.getMessage().startswith("round_started")
    assert second.levelno == logging.ERROR
    assert second.phase == "upgrade"
    assert "error=locked" in second.getMessage()


def test_event_log_bridge_skips_disabled_levels(caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.WARNING, logger="bridge.quiet")
    bridge = EventLogBridge(logging.getLogger("bridge.quiet"))

    bridge(RunEvent(kind="unfilled_cell", level=EventLevel.DEBUG))

    assert caplog.records == []


def test_log_step_logs_success_and_failure(caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.INFO, logger="steps.test")
    logger = logging.getLogger("steps.test")

    with log_step(logger, "load_inputs"):
        pass
    with pytest.raises(RuntimeError):
        with log_step(logger, "write_report"):
            raise RuntimeError("disk full")

    levels = [record.levelno for record in caplog.records]
    assert levels == [logging.INFO, logging.INFO, logging.INFO, logging.ERROR]
    assert caplog.records[-1].exc_info is not None
    assert "write_report" in caplog.records[-1].getMessage()
