"""
Swap Executor
=============
Runs one swap request end to end:

    provider chain -> sign under the identity's key -> broadcast over the
    identity's own proxy -> outcome

Every failure is turned into a SwapOutcome. Nothing raised by providers,
signing or the RPC escapes ``execute``; the caller decides what a
successful outcome means for session counters.
"""

import time
from dataclasses import dataclass, field
from typing import List, Optional

from identity import Identity
from ledger import sign_transaction
from logging_utils import MetricsCollector, SwapMetric
from providers.base import ProviderFailure
from providers.chain import ProviderChain
from retry_policy import RetryPolicy, AttemptsExhausted
from utils import (
    logger,
    AllProvidersExhausted,
    SigningError,
    explorer_url,
    format_signature,
    sanitize_error_message,
)

FORWARD = "forward"
HEDGE = "hedge"


@dataclass(frozen=True)
class SwapRequest:
    """One swap to perform for one identity."""
    source_mint: str
    dest_mint: str
    amount_units: int
    identity: Identity
    slippage_bps: Optional[int] = None
    leg: str = FORWARD

    def __post_init__(self):
        if self.amount_units <= 0:
            raise ValueError(f"amount_units must be positive, got {self.amount_units}")
        if self.source_mint == self.dest_mint:
            raise ValueError("source and destination mint are the same")


@dataclass(frozen=True)
class SwapResult:
    """A swap the ledger accepted."""
    signature: str
    provider: str


@dataclass(frozen=True)
class SwapOutcome:
    """What happened to a SwapRequest."""
    request: SwapRequest
    result: Optional[SwapResult] = None
    failures: List[ProviderFailure] = field(default_factory=list)
    error: Optional[str] = None
    provider: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.result is not None

    @property
    def providers_tried(self) -> List[str]:
        tried = [f.provider for f in self.failures]
        if self.provider and self.provider not in tried:
            tried.append(self.provider)
        return tried

    def describe_failures(self) -> str:
        parts = [str(f) for f in self.failures]
        if self.error and self.provider:
            parts.append(f"{self.provider}: {self.error}")
        elif self.error and not parts:
            parts.append(self.error)
        return "; ".join(parts) or "unknown failure"


class SwapExecutor:
    """
    Drives ProviderChain + RetryPolicy for a single request, then signs and
    submits.

    Args:
        chain: provider fallback chain
        submit_policy: retry policy for the broadcast (independent of quotes)
        broadcast_max_retries: rebroadcast budget handed to the RPC node
        dry_run: resolve and sign, but never broadcast
        metrics: optional collector for per-swap metrics
    """

    def __init__(
        self,
        chain: ProviderChain,
        submit_policy: Optional[RetryPolicy] = None,
        broadcast_max_retries: int = 3,
        dry_run: bool = False,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.chain = chain
        self.submit_policy = submit_policy or RetryPolicy()
        self.broadcast_max_retries = broadcast_max_retries
        self.dry_run = dry_run
        self.metrics = metrics

    def execute(self, request: SwapRequest) -> SwapOutcome:
        identity = request.identity
        metric = SwapMetric(identity=identity.label, leg=request.leg, start_time=time.time())

        try:
            outcome = self._execute(request)
        except Exception as e:
            # Unexpected bug paths still must not reach the schedule loop
            logger.exception(f"[{identity.label}] unexpected error during {request.leg} swap")
            outcome = SwapOutcome(request=request, error=f"unexpected error: {sanitize_error_message(e)}")

        if outcome.success:
            metric.finalize(True, provider=outcome.result.provider, signature=outcome.result.signature)
            metric.providers_tried = [f.provider for f in outcome.failures]
            logger.info(
                f"[{identity.label}] ✅ {request.leg} swap via {outcome.result.provider}: "
                f"{explorer_url(outcome.result.signature)}"
            )
        else:
            metric.finalize(False, provider=outcome.provider, error=outcome.error)
            metric.providers_tried = outcome.providers_tried
            logger.error(
                f"[{identity.label}] ❌ {request.leg} swap failed "
                f"(tried: {', '.join(outcome.providers_tried) or 'none'}): {outcome.describe_failures()}"
            )

        if self.metrics is not None:
            self.metrics.add_metric(metric)
        return outcome

    def _execute(self, request: SwapRequest) -> SwapOutcome:
        identity = request.identity

        try:
            tx, provider_name, failures = self.chain.resolve(request)
        except AllProvidersExhausted as e:
            return SwapOutcome(request=request, failures=e.failures, error=str(e))

        try:
            signed = sign_transaction(tx.payload, identity.keypair)
        except SigningError as e:
            return SwapOutcome(
                request=request,
                failures=failures,
                error=f"signing failed: {sanitize_error_message(e)}",
                provider=provider_name,
            )

        if self.dry_run:
            signature = f"DRYRUN-{str(signed.signatures[0])}"
            logger.info(f"[{identity.label}] [DRY RUN] would broadcast {format_signature(signature)}")
            return SwapOutcome(
                request=request,
                result=SwapResult(signature=signature, provider=provider_name),
                failures=failures,
                provider=provider_name,
            )

        def broadcast():
            return identity.ledger.send_transaction(
                signed,
                skip_preflight=True,
                max_retries=self.broadcast_max_retries,
            )

        try:
            signature = self.submit_policy.call(broadcast, label=f"{identity.label}/broadcast")
        except AttemptsExhausted as e:
            return SwapOutcome(
                request=request,
                failures=failures,
                error=(
                    f"submission failed after {e.attempts} attempt(s): "
                    f"{sanitize_error_message(e.cause)}"
                ),
                provider=provider_name,
            )

        return SwapOutcome(
            request=request,
            result=SwapResult(signature=signature, provider=provider_name),
            failures=failures,
            provider=provider_name,
        )
