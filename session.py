"""
Trading Session
===============
Daily swap budget and time-of-day gate.

The session is a value object: every transition returns a new instance.
The wall clock is injected so rollover and window checks can be driven
from tests.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from datetime import date, datetime, timezone
from enum import Enum
from typing import Optional
from zoneinfo import ZoneInfo


class SessionState(Enum):
    OUT_OF_WINDOW = "out_of_window"
    TRADING = "trading"
    CAP_REACHED = "cap_reached"


class Clock(ABC):
    """Source of the current time (always timezone-aware)."""

    @abstractmethod
    def now(self) -> datetime:
        pass


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


def hour_in_window(hour: int, start_hour: int, end_hour: int) -> bool:
    """
    Whether ``hour`` falls in ``[start_hour, end_hour)``.

    ``end_hour`` may be 24 (midnight). A window with start > end wraps past
    midnight, e.g. 22 -> 6.
    """
    if start_hour < end_hour:
        return start_hour <= hour < end_hour
    return hour >= start_hour or hour < end_hour


@dataclass(frozen=True)
class TradingSession:
    """Daily counter plus the trading window it is checked against."""
    daily_cap: int
    timezone: str = "Asia/Shanghai"
    window_start_hour: int = 8
    window_end_hour: int = 24
    daily_count: int = 0
    last_reset_date: Optional[date] = None

    def __post_init__(self):
        if self.daily_count < 0:
            raise ValueError("daily_count cannot be negative")
        if self.daily_cap <= 0:
            raise ValueError("daily_cap must be positive")

    @property
    def zone(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    def local_time(self, now: datetime) -> datetime:
        if now.tzinfo is None:
            raise ValueError("now must be timezone-aware")
        return now.astimezone(self.zone)

    def rolled_over(self, now: datetime) -> "TradingSession":
        """
        Reset the counter the first time a new local calendar date is seen.

        The very first observation only stamps the date.
        """
        today = self.local_time(now).date()
        if self.last_reset_date is None:
            return replace(self, last_reset_date=today)
        if today != self.last_reset_date:
            return replace(self, daily_count=0, last_reset_date=today)
        return self

    def in_window(self, now: datetime) -> bool:
        hour = self.local_time(now).hour
        return hour_in_window(hour, self.window_start_hour, self.window_end_hour)

    def state_at(self, now: datetime) -> SessionState:
        if not self.in_window(now):
            return SessionState.OUT_OF_WINDOW
        if self.daily_count >= self.daily_cap:
            return SessionState.CAP_REACHED
        return SessionState.TRADING

    def recorded_success(self) -> "TradingSession":
        return replace(self, daily_count=self.daily_count + 1)

    @classmethod
    def from_config(cls, config) -> "TradingSession":
        return cls(
            daily_cap=config.daily_cap,
            timezone=config.timezone,
            window_start_hour=config.window_start_hour,
            window_end_hour=config.window_end_hour,
        )
