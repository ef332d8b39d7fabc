"""
Schedule loop: gating, shuffled rotation, forward + hedge legs, pacing.
"""

import random
from datetime import date, datetime
from zoneinfo import ZoneInfo

import pytest

from config import Config, WSOL_MINT, DEFAULT_TARGET_MINTS
from executor import FORWARD, HEDGE
from identity import IdentityPool
from scheduler import Pacer, ScheduleLoop, ScheduleSettings, hedge_amount
from session import TradingSession
from tests.fakes import FakeClock, RecordingExecutor, RecordingPacer

SHANGHAI = ZoneInfo("Asia/Shanghai")
MORNING = datetime(2025, 6, 2, 10, 0, tzinfo=SHANGHAI)
NIGHT = datetime(2025, 6, 2, 3, 0, tzinfo=SHANGHAI)

SETTINGS = ScheduleSettings(
    source_mint=WSOL_MINT,
    target_mints=tuple(DEFAULT_TARGET_MINTS),
    min_amount_sol=0.0001,
    max_amount_sol=0.001,
    min_slippage_bps=30,
    max_slippage_bps=80,
    dwell_seconds=(120, 360),
    identity_delay_seconds=(20, 60),
    round_delay_seconds=(300, 480),
    poll_seconds=600,
)


@pytest.fixture
def pool(identities):
    return IdentityPool(identities)


def make_loop(pool, executor=None, session=None, clock=None, seed=1, pacer=None, **kwargs):
    return ScheduleLoop(
        pool,
        executor or RecordingExecutor(),
        session or TradingSession(daily_cap=180, last_reset_date=MORNING.date()),
        SETTINGS,
        clock=clock or FakeClock(MORNING),
        rng=random.Random(seed),
        pacer=pacer or RecordingPacer(),
        **kwargs,
    )


class TestHedgeAmount:

    @pytest.mark.parametrize("forward,expected", [
        (1000, 995),
        (1001, 995),
        (100_000, 99_500),
        (123_457, 122_839),
        (1, 0),
    ])
    def test_floor_of_ratio(self, forward, expected):
        assert hedge_amount(forward) == expected


class TestPacer:

    def test_sleep_completes(self):
        assert Pacer().sleep(0) is True
        assert Pacer().sleep(0.01) is True

    def test_stop_interrupts(self):
        pacer = Pacer()
        pacer.stop()
        assert pacer.stopped
        # would block for an hour if not interrupted
        assert pacer.sleep(3600) is False


class TestScheduleLoop:

    def test_full_round(self, pool, identities):
        executor = RecordingExecutor()
        pacer = RecordingPacer()
        loop = make_loop(pool, executor=executor, pacer=pacer)

        session = loop.step(loop.session)

        forwards = [r for r in executor.requests if r.leg == FORWARD]
        hedges = [r for r in executor.requests if r.leg == HEDGE]
        assert len(forwards) == len(hedges) == 3
        assert session.daily_count == 3

        # every identity exactly once per round
        assert sorted(r.identity.label for r in forwards) == sorted(i.label for i in identities)

        # forward then hedge for the same identity, never interleaved
        legs = [(r.identity.label, r.leg) for r in executor.requests]
        for i in range(0, len(legs), 2):
            assert legs[i][0] == legs[i + 1][0]
            assert (legs[i][1], legs[i + 1][1]) == (FORWARD, HEDGE)

        for fwd, hedge in zip(forwards, hedges):
            assert fwd.source_mint == WSOL_MINT
            assert fwd.dest_mint in DEFAULT_TARGET_MINTS
            assert 100_000 <= fwd.amount_units <= 1_000_000
            assert 30 <= fwd.slippage_bps <= 80
            assert (hedge.source_mint, hedge.dest_mint) == (fwd.dest_mint, fwd.source_mint)
            assert hedge.amount_units == hedge_amount(fwd.amount_units)

        # dwell + inter-identity delay per identity, then one round delay
        assert len(pacer.sleeps) == 7
        for dwell in pacer.sleeps[0:6:2]:
            assert 120 <= dwell <= 360
        for gap in pacer.sleeps[1:6:2]:
            assert 20 <= gap <= 60
        assert 300 <= pacer.sleeps[-1] <= 480
        assert loop.last_round.completed

    def test_amount_has_six_decimals(self, pool):
        executor = RecordingExecutor()
        make_loop(pool, executor=executor, seed=3).step(TradingSession(daily_cap=180))

        for request in executor.requests:
            if request.leg == FORWARD:
                assert request.amount_units % 1000 == 0

    def test_out_of_window_does_nothing(self, pool):
        executor = RecordingExecutor()
        pacer = RecordingPacer()
        loop = make_loop(pool, executor=executor, pacer=pacer, clock=FakeClock(NIGHT))

        loop.step(loop.session)

        assert executor.requests == []
        assert pacer.sleeps == [600]

    def test_cap_reached_does_nothing(self, pool):
        executor = RecordingExecutor()
        pacer = RecordingPacer()
        full = TradingSession(daily_cap=5, daily_count=5, last_reset_date=MORNING.date())

        make_loop(pool, executor=executor, pacer=pacer).step(full)

        assert executor.requests == []
        assert pacer.sleeps == [600]

    def test_cap_hit_mid_round(self, pool):
        executor = RecordingExecutor()
        almost = TradingSession(daily_cap=120, daily_count=119, last_reset_date=MORNING.date())
        loop = make_loop(pool, executor=executor)

        session = loop.step(almost)

        assert [r.leg for r in executor.requests] == [FORWARD, HEDGE]
        assert session.daily_count == 120
        assert not loop.last_round.completed

    def test_new_day_resets_counter(self, pool):
        executor = RecordingExecutor()
        yesterday = TradingSession(daily_cap=2, daily_count=2, last_reset_date=date(2025, 6, 1))

        session = make_loop(pool, executor=executor).step(yesterday)

        assert session.last_reset_date == date(2025, 6, 2)
        assert session.daily_count == 2
        assert len([r for r in executor.requests if r.leg == FORWARD]) == 2

    def test_window_closes_mid_round(self, pool):
        executor = RecordingExecutor()
        closing = datetime(2025, 6, 2, 23, 59, tzinfo=SHANGHAI)
        after_midnight = datetime(2025, 6, 3, 0, 1, tzinfo=SHANGHAI)
        clock = FakeClock(closing, closing, after_midnight)

        make_loop(pool, executor=executor, clock=clock).step(TradingSession(daily_cap=180))

        assert [r.leg for r in executor.requests] == [FORWARD, HEDGE]

    def test_forward_failure_skips_hedge(self, pool):
        executor = RecordingExecutor(fail_legs={FORWARD})
        pacer = RecordingPacer()
        loop = make_loop(pool, executor=executor, pacer=pacer)

        session = loop.step(loop.session)

        assert all(r.leg == FORWARD for r in executor.requests)
        assert len(executor.requests) == 3
        assert session.daily_count == 0
        # no dwell: just the inter-identity delays and the round delay
        assert len(pacer.sleeps) == 4
        assert loop.last_round.forward_failed == 3

    def test_hedge_failure_still_counts_forward(self, pool):
        executor = RecordingExecutor(fail_legs={HEDGE})
        loop = make_loop(pool, executor=executor)

        session = loop.step(loop.session)

        assert session.daily_count == 3
        assert loop.last_round.hedge_failed == 3
        assert loop.last_round.hedge_ok == 0

    def test_one_identity_failing_does_not_stop_others(self, pool, identities):
        executor = RecordingExecutor(fail_labels={identities[0].label})
        session = make_loop(pool, executor=executor).step(TradingSession(daily_cap=180))

        assert session.daily_count == 2
        forwards = [r for r in executor.requests if r.leg == FORWARD]
        assert len(forwards) == 3

    def test_shutdown_during_dwell_skips_hedge(self, pool):
        executor = RecordingExecutor()
        loop = make_loop(pool, executor=executor, pacer=RecordingPacer(stop_after=1))

        session = loop.step(loop.session)

        assert [r.leg for r in executor.requests] == [FORWARD]
        assert session.daily_count == 1

    def test_same_seed_same_schedule(self, pool):
        def schedule(seed):
            executor = RecordingExecutor()
            make_loop(pool, executor=executor, seed=seed).step(TradingSession(daily_cap=180))
            return [(r.identity.label, r.leg, r.dest_mint, r.amount_units, r.slippage_bps) for r in executor.requests]

        assert schedule(11) == schedule(11)
        assert schedule(11) != schedule(12)

    def test_run_forever_stops(self, pool):
        executor = RecordingExecutor()
        pacer = RecordingPacer(stop_after=10)
        loop = make_loop(pool, executor=executor, pacer=pacer)

        loop.run_forever()

        assert pacer.stopped
        assert len(pacer.sleeps) == 10
        # first round: 7 sleeps; second round is interrupted inside
        assert loop.round_number == 2
        assert loop.session.daily_count == 5

    def test_round_callback(self, pool):
        seen = []
        loop = make_loop(pool, on_round=lambda report, session: seen.append((report.number, session.daily_count)))

        loop.step(loop.session)

        assert seen == [(1, 3)]

    def test_settings_from_config(self):
        config = Config(rpc_url="https://rpc.test", dwell_min_seconds=5, dwell_max_seconds=9)
        settings = ScheduleSettings.from_config(config)
        assert settings.dwell_seconds == (5, 9)
        assert settings.target_mints == tuple(DEFAULT_TARGET_MINTS)
        assert settings.poll_seconds == config.out_of_window_poll_seconds
