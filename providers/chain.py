"""
Provider fallback chain.

Providers are tried in the fixed order given at construction. Unavailable
providers are never called. Each call runs under the RetryPolicy; once the
chain moves past a provider it does not come back to it for the same
request.
"""

from typing import Iterable, List, Optional, Tuple

from providers.base import Provider, ProviderFailure, UnsignedTransaction
from retry_policy import RetryPolicy, AttemptsExhausted, ErrorClass
from utils import (
    logger,
    ProviderError,
    ProviderErrorKind,
    AllProvidersExhausted,
    sanitize_error_message,
)


class ProviderChain:
    """Ordered, filtered list of providers implementing the fallback policy."""

    def __init__(self, providers: Iterable[Provider], retry_policy: Optional[RetryPolicy] = None):
        self._providers: Tuple[Provider, ...] = tuple(providers)
        names = [p.name for p in self._providers]
        if len(set(names)) != len(names):
            raise ValueError(f"Duplicate provider names: {names}")
        self.retry_policy = retry_policy or RetryPolicy()

    @property
    def providers(self) -> Tuple[Provider, ...]:
        return self._providers

    @property
    def eligible(self) -> List[Provider]:
        return [p for p in self._providers if p.available]

    def resolve(self, request) -> Tuple[UnsignedTransaction, str, List[ProviderFailure]]:
        """
        Walk the chain until one provider builds a transaction for ``request``
        (a SwapRequest; the identity supplies signer address and transport).

        Returns (transaction, provider name, failures of the providers tried
        before it). Raises AllProvidersExhausted with every failure, in
        order, when nothing succeeded.
        """
        failures: List[ProviderFailure] = []
        identity = request.identity
        label = identity.label

        for provider in self._providers:
            if not provider.available:
                logger.debug(f"[{label}] skipping {provider.name} (unavailable)")
                continue

            def call(provider=provider):
                return provider.quote_and_build(
                    request.source_mint,
                    request.dest_mint,
                    request.amount_units,
                    identity.address,
                    identity.transport,
                    slippage_bps=request.slippage_bps,
                )

            try:
                tx = self.retry_policy.call(call, label=f"{label}/{provider.name}")
            except AttemptsExhausted as e:
                failure = self._failure(provider, e)
                failures.append(failure)
                logger.warning(f"[{label}] {failure}")
                continue

            return tx, provider.name, failures

        raise AllProvidersExhausted(failures)

    @staticmethod
    def _failure(provider: Provider, exhausted: AttemptsExhausted) -> ProviderFailure:
        cause = exhausted.cause
        if isinstance(cause, ProviderError):
            kind = cause.kind
        elif exhausted.error_class is ErrorClass.TRANSIENT:
            kind = ProviderErrorKind.NETWORK
        else:
            kind = ProviderErrorKind.BUILD
        return ProviderFailure(
            provider=provider.name,
            kind=kind,
            reason=sanitize_error_message(cause),
            attempts=exhausted.attempts,
        )
