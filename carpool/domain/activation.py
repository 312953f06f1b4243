"""
Activation window for scheduled rides.

A scheduled ride may be started from ``before`` ahead of its departure
until ``after`` past it, both bounds inclusive:

    scheduled - now <= before   and   now - scheduled <= after
"""

from __future__ import annotations

from datetime import datetime, timedelta

from .entities import as_utc

DEFAULT_BEFORE = timedelta(hours=2)
DEFAULT_AFTER = timedelta(hours=1)


def can_start(
    scheduled_utc: datetime,
    now_utc: datetime,
    before: timedelta = DEFAULT_BEFORE,
    after: timedelta = DEFAULT_AFTER,
) -> bool:
    scheduled, now = as_utc(scheduled_utc), as_utc(now_utc)
    return scheduled - now <= before and now - scheduled <= after


class ActivationGate:
    """``can_start`` bound to configured window widths."""

    def __init__(
        self, before: timedelta = DEFAULT_BEFORE, after: timedelta = DEFAULT_AFTER
    ):
        self.before = before
        self.after = after

    @classmethod
    def from_settings(cls, settings) -> "ActivationGate":
        return cls(
            before=timedelta(minutes=settings.start_window_before_minutes),
            after=timedelta(minutes=settings.start_window_after_minutes),
        )

    def can_start(self, scheduled_utc: datetime, now_utc: datetime) -> bool:
        return can_start(scheduled_utc, now_utc, self.before, self.after)

    def opens_at(self, scheduled_utc: datetime) -> datetime:
        return as_utc(scheduled_utc) - self.before

    def closes_at(self, scheduled_utc: datetime) -> datetime:
        return as_utc(scheduled_utc) + self.after
