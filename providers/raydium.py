"""
Raydium Trade API Integration
=============================
GET /compute/swap-base-in prices an exact-in route over Raydium pools,
POST /transaction/swap-base-in turns it into a base64 V0 transaction.
"""

import base64
import binascii
from typing import Optional

import requests

from providers.base import Provider, UnsignedTransaction
from utils import ProviderQuoteError, ProviderBuildError

WSOL_MINT = "So11111111111111111111111111111111111111112"


class RaydiumProvider(Provider):
    """Raydium swap API."""

    name = "raydium"

    def __init__(self, api_base: Optional[str], priority_fee_micro_lamports: int = 100_000, timeout: float = 15.0):
        super().__init__(timeout)
        self.api_base = api_base.rstrip("/") if api_base else None
        self.priority_fee_micro_lamports = priority_fee_micro_lamports

    @property
    def available(self) -> bool:
        return bool(self.api_base)

    def quote_and_build(
        self,
        source_mint: str,
        dest_mint: str,
        amount_units: int,
        signer_address: str,
        transport: requests.Session,
        slippage_bps: Optional[int] = None,
    ) -> UnsignedTransaction:
        params = {
            "inputMint": source_mint,
            "outputMint": dest_mint,
            "amount": str(amount_units),
            "slippageBps": str(slippage_bps if slippage_bps is not None else 50),
            "txVersion": "V0",
        }
        quote = self._send(
            transport, "GET", f"{self.api_base}/compute/swap-base-in", ProviderQuoteError, params=params
        )
        if not quote.get("success", False):
            raise ProviderQuoteError(
                f"raydium quote rejected: {quote.get('msg', 'unknown error')}", provider=self.name
            )
        route = self._require(quote, "data", ProviderQuoteError)
        quoted_out = self._require(route, "outputAmount", ProviderQuoteError)

        body = {
            "computeUnitPriceMicroLamports": str(self.priority_fee_micro_lamports),
            "swapResponse": quote,
            "txVersion": "V0",
            "wallet": signer_address,
            "wrapSol": source_mint == WSOL_MINT,
            "unwrapSol": dest_mint == WSOL_MINT,
        }
        built = self._send(
            transport, "POST", f"{self.api_base}/transaction/swap-base-in", ProviderBuildError, json=body
        )
        if not built.get("success", False):
            raise ProviderBuildError(
                f"raydium build rejected: {built.get('msg', 'unknown error')}", provider=self.name
            )
        txs = built.get("data")
        if not isinstance(txs, list) or not txs:
            raise ProviderBuildError("raydium response missing field: data", provider=self.name)
        # Multi-transaction bundles are not supported
        if len(txs) != 1:
            raise ProviderBuildError(
                f"raydium returned {len(txs)} transactions, expected 1", provider=self.name
            )
        tx_b64 = self._require(txs[0], "transaction", ProviderBuildError)
        try:
            payload = base64.b64decode(tx_b64, validate=True)
        except (binascii.Error, ValueError, TypeError):
            raise ProviderBuildError("raydium transaction is not valid base64", provider=self.name)

        try:
            out = int(quoted_out)
        except (TypeError, ValueError):
            out = None
        return UnsignedTransaction(payload=payload, provider=self.name, quoted_out=out)
