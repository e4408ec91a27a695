"""رویدادهای ساخت‌یافتهٔ موتور تخصیص (جایگزین چاپ پراکندهٔ کنسول).

Core هیچ‌گاه مستقیماً لاگ نمی‌نویسد؛ به‌جای آن رویدادها را به یک ``EventSink``
تزریق‌شده می‌فرستد. لایهٔ Infra این رویدادها را به ``logging`` یا جدول
``run_events`` پل می‌زند.

مثال::

    >>> log = EventLog()
    >>> log(RunEvent(kind="round_started", round_no=1))
    >>> len(log)
    1
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Callable, Iterator, List, Mapping

import pandas as pd

ProgressFn = Callable[[int, str], None]


class EventLevel(StrEnum):
    """سطح اهمیت رویداد؛ معادل سطوح logging در Infra."""

    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True)
class RunEvent:
    """یک رویداد ساخت‌یافته از ارکستراتور یا پایشگر همگرایی."""

    kind: str
    round_no: int | None = None
    phase: str | None = None
    level: EventLevel = EventLevel.INFO
    payload: Mapping[str, Any] = field(default_factory=dict)

    def as_row(self) -> dict[str, Any]:
        row: dict[str, Any] = {
            "kind": self.kind,
            "round_no": self.round_no,
            "phase": self.phase,
            "level": self.level.value,
        }
        row.update(self.payload)
        return row


EventSink = Callable[[RunEvent], None]


def noop_sink(_: RunEvent) -> None:
    """Sink پیش‌فرض که کاری انجام نمی‌دهد."""


def noop_progress(_: int, __: str) -> None:
    """تابع پیش‌فرض progress که کاری انجام نمی‌دهد."""


class EventLog:
    """Sink جمع‌کننده که رویدادها را به ترتیب دریافت نگه می‌دارد."""

    def __init__(self, forward: EventSink | None = None) -> None:
        self._events: List[RunEvent] = []
        self._forward = forward

    def __call__(self, event: RunEvent) -> None:
        self._events.append(event)
        if self._forward is not None:
            self._forward(event)

    def __iter__(self) -> Iterator[RunEvent]:
        return iter(self._events)

    def __len__(self) -> int:
        return len(self._events)

    def of_kind(self, kind: str) -> list[RunEvent]:
        return [event for event in self._events if event.kind == kind]

    def to_frame(self) -> pd.DataFrame:
        """تبدیل رویدادها به DataFrame برای گزارش‌گیری."""

        base = ["kind", "round_no", "phase", "level"]
        if not self._events:
            return pd.DataFrame(columns=base)
        frame = pd.DataFrame([event.as_row() for event in self._events])
        extra = [column for column in frame.columns if column not in base]
        return frame.loc[:, base + extra]


__all__ = [
    "ProgressFn",
    "EventLevel",
    "RunEvent",
    "EventSink",
    "EventLog",
    "noop_sink",
    "noop_progress",
]
