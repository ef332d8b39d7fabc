"""
Schedule Loop - Multi-Identity Rotation
======================================

One cooperative control flow drives every identity in turn:

    gate -> shuffle identities -> per identity:
        forward swap (source -> random target, random amount)
        dwell
        hedge swap (target -> source, 99.5% of the forward amount)
        inter-identity delay
    -> inter-round delay

Identities are never run in parallel, so no two identities produce
simultaneously timestamped traffic. All randomness comes from the injected
``random.Random``; all waiting goes through the Pacer, which a shutdown
signal interrupts immediately.
"""

import random
import threading
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_DOWN
from typing import Callable, List, Optional, Tuple

from executor import SwapExecutor, SwapRequest, SwapOutcome, FORWARD, HEDGE
from identity import Identity, IdentityPool
from session import Clock, SessionState, SystemClock, TradingSession
from utils import logger, LAMPORTS_PER_SOL, format_duration, format_sol, format_address

HEDGE_RATIO = Decimal("0.995")


def hedge_amount(forward_units: int) -> int:
    """Units to swap back after a forward leg of ``forward_units``."""
    return int((Decimal(forward_units) * HEDGE_RATIO).to_integral_value(rounding=ROUND_DOWN))


class Pacer:
    """Interruptible sleeps for the loop."""

    def __init__(self):
        self._stop = threading.Event()

    def sleep(self, seconds: float) -> bool:
        """Wait ``seconds``; returns False if interrupted by stop()."""
        if seconds <= 0:
            return not self._stop.is_set()
        return not self._stop.wait(seconds)

    def stop(self):
        self._stop.set()

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()


@dataclass(frozen=True)
class ScheduleSettings:
    """Targets, amount range and pacing bounds for the loop."""
    source_mint: str
    target_mints: Tuple[str, ...]
    min_amount_sol: float = 0.0001
    max_amount_sol: float = 0.001
    min_slippage_bps: int = 30
    max_slippage_bps: int = 80
    dwell_seconds: Tuple[int, int] = (120, 360)
    identity_delay_seconds: Tuple[int, int] = (20, 60)
    round_delay_seconds: Tuple[int, int] = (300, 480)
    poll_seconds: int = 600

    @classmethod
    def from_config(cls, config) -> "ScheduleSettings":
        return cls(
            source_mint=config.source_mint,
            target_mints=tuple(config.target_mints),
            min_amount_sol=config.min_amount_sol,
            max_amount_sol=config.max_amount_sol,
            min_slippage_bps=config.min_slippage_bps,
            max_slippage_bps=config.max_slippage_bps,
            dwell_seconds=(config.dwell_min_seconds, config.dwell_max_seconds),
            identity_delay_seconds=(config.identity_delay_min_seconds, config.identity_delay_max_seconds),
            round_delay_seconds=(config.round_delay_min_seconds, config.round_delay_max_seconds),
            poll_seconds=config.out_of_window_poll_seconds,
        )


@dataclass
class RoundReport:
    """What one round did."""
    number: int
    order: List[str] = field(default_factory=list)
    forward_ok: int = 0
    forward_failed: int = 0
    hedge_ok: int = 0
    hedge_failed: int = 0
    completed: bool = False


class ScheduleLoop:
    """Top-level pacing loop over the identity pool."""

    def __init__(
        self,
        pool: IdentityPool,
        executor: SwapExecutor,
        session: TradingSession,
        settings: ScheduleSettings,
        clock: Optional[Clock] = None,
        rng: Optional[random.Random] = None,
        pacer: Optional[Pacer] = None,
        on_round: Optional[Callable[[RoundReport, TradingSession], None]] = None,
    ):
        self.pool = pool
        self.executor = executor
        self.session = session
        self.settings = settings
        self.clock = clock or SystemClock()
        self.rng = rng or random.Random()
        self.pacer = pacer or Pacer()
        self.on_round = on_round
        self.round_number = 0
        self.last_round: Optional[RoundReport] = None

    # Random draws

    def pick_target(self) -> str:
        return self.rng.choice(self.settings.target_mints)

    def pick_amount_units(self) -> int:
        amount = round(self.rng.uniform(self.settings.min_amount_sol, self.settings.max_amount_sol), 6)
        units = int(Decimal(str(amount)) * LAMPORTS_PER_SOL)
        return max(units, 1)

    def pick_slippage_bps(self) -> int:
        return self.rng.randint(self.settings.min_slippage_bps, self.settings.max_slippage_bps)

    def _delay(self, bounds: Tuple[int, int]) -> int:
        return self.rng.randint(int(bounds[0]), int(bounds[1]))

    # Loop

    def _gate(self, session: TradingSession) -> Tuple[TradingSession, SessionState]:
        now = self.clock.now()
        session = session.rolled_over(now)
        return session, session.state_at(now)

    def step(self, session: TradingSession) -> TradingSession:
        """Run one round (or one idle poll) and return the updated session."""
        session, state = self._gate(session)
        if state is not SessionState.TRADING:
            if state is SessionState.CAP_REACHED:
                logger.info(
                    f"[session] daily cap reached ({session.daily_count}/{session.daily_cap}), "
                    f"checking again in {format_duration(self.settings.poll_seconds)}"
                )
            else:
                logger.info(
                    f"[session] outside trading window "
                    f"{session.window_start_hour:02d}:00-{session.window_end_hour:02d}:00 {session.timezone}, "
                    f"checking again in {format_duration(self.settings.poll_seconds)}"
                )
            self.pacer.sleep(self.settings.poll_seconds)
            return session

        self.round_number += 1
        report = RoundReport(number=self.round_number)
        self.last_round = report

        order = self.pool.permuted(self.rng)
        report.order = [identity.label for identity in order]
        logger.info(f"[round {report.number}] order: {', '.join(report.order)}")

        for identity in order:
            if self.pacer.stopped:
                return session

            session, state = self._gate(session)
            if state is not SessionState.TRADING:
                logger.info(f"[round {report.number}] session is {state.value}, ending round early")
                return session

            session = self._run_identity(identity, session, report)

            delay = self._delay(self.settings.identity_delay_seconds)
            logger.debug(f"[{identity.label}] next identity in {format_duration(delay)}")
            if not self.pacer.sleep(delay):
                return session

        report.completed = True
        loop_wait = self._delay(self.settings.round_delay_seconds)
        logger.info(
            f"[round {report.number}] done: forward {report.forward_ok} ok / {report.forward_failed} failed, "
            f"hedge {report.hedge_ok} ok / {report.hedge_failed} failed, "
            f"today {session.daily_count}/{session.daily_cap}. Sleeping {format_duration(loop_wait)}"
        )
        if self.on_round is not None:
            self.on_round(report, session)
        self.pacer.sleep(loop_wait)
        return session

    def _run_identity(self, identity: Identity, session: TradingSession, report: RoundReport) -> TradingSession:
        target = self.pick_target()
        amount_units = self.pick_amount_units()

        logger.info(
            f"[{identity.label}] SOL -> {format_address(target)} | amount: {format_sol(amount_units)}"
        )
        forward = self.executor.execute(SwapRequest(
            source_mint=self.settings.source_mint,
            dest_mint=target,
            amount_units=amount_units,
            identity=identity,
            slippage_bps=self.pick_slippage_bps(),
            leg=FORWARD,
        ))
        if not forward.success:
            report.forward_failed += 1
            return session

        report.forward_ok += 1
        session = session.recorded_success()

        dwell = self._delay(self.settings.dwell_seconds)
        logger.info(f"[{identity.label}] hedging back in {format_duration(dwell)}")
        if not self.pacer.sleep(dwell):
            logger.warning(f"[{identity.label}] shutdown during dwell, hedge leg not sent")
            return session

        hedge = self.hedge(forward)
        if hedge.success:
            report.hedge_ok += 1
        else:
            report.hedge_failed += 1
            # Best effort: the position stays unbalanced until an operator steps in
            logger.warning(
                f"[{identity.label}] hedge leg failed; {format_address(target)} balance left unhedged"
            )
        return session

    def hedge(self, forward: SwapOutcome) -> SwapOutcome:
        """Swap 99.5% of a successful forward leg back to the source asset."""
        request = forward.request
        units = hedge_amount(request.amount_units)
        if units <= 0:
            return SwapOutcome(request=request, error="hedge amount rounds down to zero")
        return self.executor.execute(SwapRequest(
            source_mint=request.dest_mint,
            dest_mint=request.source_mint,
            amount_units=units,
            identity=request.identity,
            slippage_bps=self.pick_slippage_bps(),
            leg=HEDGE,
        ))

    def run_forever(self):
        logger.info(
            f"Rotation started | {len(self.pool)} identities | window "
            f"{self.session.window_start_hour:02d}:00-{self.session.window_end_hour:02d}:00 "
            f"{self.session.timezone} | daily cap {self.session.daily_cap}"
        )
        while not self.pacer.stopped:
            self.session = self.step(self.session)
        logger.info("Rotation stopped")

    def stop(self):
        self.pacer.stop()
