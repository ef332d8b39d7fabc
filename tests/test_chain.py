"""
Provider fallback chain.
"""

import pytest

from config import WSOL_MINT
from executor import SwapRequest
from providers.base import UnsignedTransaction
from providers.chain import ProviderChain
from retry_policy import RetryPolicy
from utils import (
    AllProvidersExhausted,
    NetworkTransientError,
    ProviderBuildError,
    ProviderErrorKind,
    ProviderQuoteError,
)
from tests.fakes import ScriptedProvider

JITOSOL = "J1toso1uCk3RLmjorhTtrVwY9HJ7X8V9yYac6Y7kGCPn"


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def policy(sleeps):
    return RetryPolicy(max_attempts=3, backoff_seconds=1.0, sleep=sleeps.append)


@pytest.fixture
def swap_request(identity):
    return SwapRequest(WSOL_MINT, JITOSOL, 250_000, identity, slippage_bps=40)


class TestProviderChain:

    def test_first_provider_wins(self, policy, swap_request):
        a, b = ScriptedProvider("a"), ScriptedProvider("b")
        tx, name, failures = ProviderChain([a, b], policy).resolve(swap_request)

        assert name == "a"
        assert tx.payload == b"tx-a"
        assert failures == []
        assert len(a.calls) == 1
        assert b.calls == []

    def test_falls_through_in_order(self, policy, swap_request):
        a = ScriptedProvider("a", [ProviderQuoteError("no route", provider="a")])
        b = ScriptedProvider("b", [ProviderBuildError("bad tx", provider="b")])
        c = ScriptedProvider("c", [UnsignedTransaction(b"tx-c", "c")])

        tx, name, failures = ProviderChain([a, b, c], policy).resolve(swap_request)

        assert name == "c"
        assert tx.payload == b"tx-c"
        assert [f.provider for f in failures] == ["a", "b"]
        assert [f.kind for f in failures] == [ProviderErrorKind.QUOTE, ProviderErrorKind.BUILD]
        assert "no route" in failures[0].reason
        # once moved past, a provider is not asked again
        assert len(a.calls) == 1
        assert len(b.calls) == 1

    def test_passes_identity_and_request(self, policy, swap_request, identity):
        a = ScriptedProvider("a")
        ProviderChain([a], policy).resolve(swap_request)

        call = a.calls[0]
        assert call["signer_address"] == identity.address
        assert call["transport"] is identity.transport
        assert call["amount_units"] == 250_000
        assert call["slippage_bps"] == 40
        assert (call["source_mint"], call["dest_mint"]) == (WSOL_MINT, JITOSOL)

    def test_unavailable_providers_never_called(self, policy, swap_request):
        off = ScriptedProvider("off", available=False)
        on = ScriptedProvider("on")

        _, name, failures = ProviderChain([off, on], policy).resolve(swap_request)

        assert name == "on"
        assert off.calls == []
        assert failures == []

    def test_transient_retried_on_same_provider(self, policy, sleeps, swap_request):
        a = ScriptedProvider("a", [NetworkTransientError("HTTP 503", provider="a"), UnsignedTransaction(b"tx", "a")])
        b = ScriptedProvider("b")

        _, name, failures = ProviderChain([a, b], policy).resolve(swap_request)

        assert name == "a"
        assert len(a.calls) == 2
        assert b.calls == []
        assert failures == []
        assert sleeps == [1.0]

    def test_transient_exhaustion_moves_on(self, policy, sleeps, swap_request):
        a = ScriptedProvider("a", [NetworkTransientError("timed out", provider="a")])
        b = ScriptedProvider("b")

        _, name, failures = ProviderChain([a, b], policy).resolve(swap_request)

        assert name == "b"
        assert len(a.calls) == 3
        assert failures[0].kind is ProviderErrorKind.NETWORK
        assert failures[0].attempts == 3
        assert sleeps == [1.0, 2.0]

    def test_all_fail(self, policy, swap_request):
        providers = [
            ScriptedProvider("a", [ProviderQuoteError("no route")]),
            ScriptedProvider("skip", available=False),
            ScriptedProvider("b", [ProviderBuildError("bad")]),
        ]

        with pytest.raises(AllProvidersExhausted) as exc:
            ProviderChain(providers, policy).resolve(swap_request)

        assert [f.provider for f in exc.value.failures] == ["a", "b"]
        assert "a [quote x1]: no route" in str(exc.value)

    def test_nothing_available(self, policy, swap_request):
        with pytest.raises(AllProvidersExhausted, match="no provider available") as exc:
            ProviderChain([ScriptedProvider("a", available=False)], policy).resolve(swap_request)
        assert exc.value.failures == []

    def test_unexpected_exception_is_a_failure(self, policy, swap_request):
        a = ScriptedProvider("a", [KeyError("outAmount")])
        b = ScriptedProvider("b")

        _, name, failures = ProviderChain([a, b], policy).resolve(swap_request)

        assert name == "b"
        assert failures[0].kind is ProviderErrorKind.BUILD

    def test_duplicate_names_rejected(self):
        with pytest.raises(ValueError):
            ProviderChain([ScriptedProvider("a"), ScriptedProvider("a")])

    def test_eligible(self):
        chain = ProviderChain([ScriptedProvider("a", available=False), ScriptedProvider("b")])
        assert [p.name for p in chain.eligible] == ["b"]
