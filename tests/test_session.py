"""
Trading window, daily cap and day rollover.
"""

from dataclasses import FrozenInstanceError
from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo

import pytest

from config import Config
from session import Clock, SessionState, SystemClock, TradingSession, hour_in_window

SHANGHAI = ZoneInfo("Asia/Shanghai")


def shanghai(year, month, day, hour, minute=0):
    return datetime(year, month, day, hour, minute, tzinfo=SHANGHAI)


class TestHourInWindow:

    @pytest.mark.parametrize("hour,expected", [(7, False), (8, True), (15, True), (23, True), (0, False)])
    def test_day_window_to_midnight(self, hour, expected):
        assert hour_in_window(hour, 8, 24) is expected

    @pytest.mark.parametrize("hour,expected", [(21, False), (22, True), (23, True), (0, True), (5, True), (6, False), (12, False)])
    def test_wraps_past_midnight(self, hour, expected):
        assert hour_in_window(hour, 22, 6) is expected


class TestTradingSession:

    def test_out_of_window_at_three_am(self):
        session = TradingSession(daily_cap=180).rolled_over(shanghai(2025, 3, 10, 3))
        assert session.state_at(shanghai(2025, 3, 10, 3)) is SessionState.OUT_OF_WINDOW

    def test_trading_inside_window(self):
        now = shanghai(2025, 3, 10, 8)
        assert TradingSession(daily_cap=180).state_at(now) is SessionState.TRADING

    def test_last_minute_before_midnight(self):
        now = shanghai(2025, 3, 10, 23, 59)
        assert TradingSession(daily_cap=180).state_at(now) is SessionState.TRADING

    def test_cap_reached_on_success(self):
        now = shanghai(2025, 3, 10, 14)
        session = TradingSession(daily_cap=120, daily_count=119, last_reset_date=date(2025, 3, 10))

        assert session.state_at(now) is SessionState.TRADING
        after = session.recorded_success()
        assert after.daily_count == 120
        assert after.state_at(now) is SessionState.CAP_REACHED

    def test_out_of_window_wins_over_cap(self):
        session = TradingSession(daily_cap=1, daily_count=1)
        assert session.state_at(shanghai(2025, 3, 10, 3)) is SessionState.OUT_OF_WINDOW

    def test_transitions_return_new_sessions(self):
        session = TradingSession(daily_cap=10)
        after = session.recorded_success()
        assert session.daily_count == 0
        assert after.daily_count == 1
        with pytest.raises(FrozenInstanceError):
            session.daily_count = 5

    def test_first_observation_stamps_date(self):
        session = TradingSession(daily_cap=10, daily_count=4)
        stamped = session.rolled_over(shanghai(2025, 3, 10, 9))
        assert stamped.last_reset_date == date(2025, 3, 10)
        assert stamped.daily_count == 4

    def test_same_day_keeps_count(self):
        session = TradingSession(daily_cap=10, daily_count=4, last_reset_date=date(2025, 3, 10))
        assert session.rolled_over(shanghai(2025, 3, 10, 23, 30)) is session

    def test_rollover_uses_local_date(self):
        session = TradingSession(daily_cap=120, daily_count=120, last_reset_date=date(2025, 3, 10))
        # 16:30 UTC on the 10th is already 00:30 on the 11th in Shanghai
        now = datetime(2025, 3, 10, 16, 30, tzinfo=timezone.utc)

        rolled = session.rolled_over(now)

        assert rolled.daily_count == 0
        assert rolled.last_reset_date == date(2025, 3, 11)
        # just after midnight is still outside an 08:00 start
        assert rolled.state_at(now) is SessionState.OUT_OF_WINDOW
        assert rolled.state_at(shanghai(2025, 3, 11, 8)) is SessionState.TRADING

    def test_other_timezone(self):
        session = TradingSession(daily_cap=10, timezone="America/New_York", window_start_hour=9, window_end_hour=17)
        # 14:00 UTC in March (EDT) is 10:00 in New York
        assert session.state_at(datetime(2025, 3, 20, 14, tzinfo=timezone.utc)) is SessionState.TRADING
        assert session.state_at(datetime(2025, 3, 20, 23, tzinfo=timezone.utc)) is SessionState.OUT_OF_WINDOW

    def test_naive_time_rejected(self):
        with pytest.raises(ValueError):
            TradingSession(daily_cap=10).state_at(datetime(2025, 3, 10, 12))

    @pytest.mark.parametrize("kwargs", [{"daily_cap": 0}, {"daily_cap": 5, "daily_count": -1}])
    def test_invalid(self, kwargs):
        with pytest.raises(ValueError):
            TradingSession(**kwargs)

    def test_from_config(self):
        config = Config(rpc_url="https://rpc.test", daily_cap=90, window_start_hour=9, window_end_hour=21)
        session = TradingSession.from_config(config)
        assert (session.daily_cap, session.window_start_hour, session.window_end_hour) == (90, 9, 21)
        assert session.timezone == "Asia/Shanghai"
        assert session.daily_count == 0


def test_system_clock_is_aware():
    assert SystemClock().now().tzinfo is not None


def test_clock_is_abstract():
    with pytest.raises(TypeError):
        Clock()
