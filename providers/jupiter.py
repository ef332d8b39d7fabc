"""
Jupiter Aggregator Integration
==============================
GET /quote prices the route, POST /swap returns a base64 versioned
transaction for the signer to sign.

Jupiter picks the route; all protocols are allowed so the swap can land on
Meteora, Orca, Sanctum and so on.
"""

import base64
import binascii
from typing import Optional

import requests

from providers.base import Provider, UnsignedTransaction
from utils import ProviderQuoteError, ProviderBuildError


class JupiterProvider(Provider):
    """Jupiter swap API (v6 compatible)."""

    name = "jupiter"

    REQUIRED_QUOTE_FIELDS = ["inAmount", "outAmount", "routePlan"]

    def __init__(self, api_base: Optional[str], timeout: float = 15.0):
        super().__init__(timeout)
        self.api_base = api_base.rstrip("/") if api_base else None

    @property
    def available(self) -> bool:
        return bool(self.api_base)

    def get_quote(
        self,
        source_mint: str,
        dest_mint: str,
        amount_units: int,
        transport: requests.Session,
        slippage_bps: Optional[int] = None,
    ) -> dict:
        params = {
            "inputMint": source_mint,
            "outputMint": dest_mint,
            "amount": str(amount_units),
        }
        if slippage_bps is not None:
            params["slippageBps"] = str(slippage_bps)

        quote = self._send(transport, "GET", f"{self.api_base}/quote", ProviderQuoteError, params=params)
        if quote.get("error"):
            raise ProviderQuoteError(f"jupiter quote rejected: {quote['error']}", provider=self.name)
        for field in self.REQUIRED_QUOTE_FIELDS:
            self._require(quote, field, ProviderQuoteError)
        try:
            int(quote["outAmount"])
        except (TypeError, ValueError):
            raise ProviderQuoteError("jupiter outAmount is not an integer", provider=self.name)
        return quote

    def build_swap(self, quote: dict, signer_address: str, transport: requests.Session) -> bytes:
        payload = {
            "quoteResponse": quote,
            "userPublicKey": signer_address,
            "wrapAndUnwrapSol": True,
            "dynamicComputeUnitLimit": True,
            "prioritizationFeeLamports": "auto",
        }
        data = self._send(transport, "POST", f"{self.api_base}/swap", ProviderBuildError, json=payload)
        if data.get("error"):
            raise ProviderBuildError(f"jupiter swap rejected: {data['error']}", provider=self.name)

        swap_tx = self._require(data, "swapTransaction", ProviderBuildError)
        try:
            return base64.b64decode(swap_tx, validate=True)
        except (binascii.Error, ValueError, TypeError):
            raise ProviderBuildError("jupiter swapTransaction is not valid base64", provider=self.name)

    def quote_and_build(
        self,
        source_mint: str,
        dest_mint: str,
        amount_units: int,
        signer_address: str,
        transport: requests.Session,
        slippage_bps: Optional[int] = None,
    ) -> UnsignedTransaction:
        quote = self.get_quote(source_mint, dest_mint, amount_units, transport, slippage_bps)
        payload = self.build_swap(quote, signer_address, transport)
        return UnsignedTransaction(
            payload=payload,
            provider=self.name,
            quoted_out=int(quote["outAmount"]),
        )
