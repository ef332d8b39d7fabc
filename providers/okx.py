"""
OKX DEX Aggregator Integration
==============================
Uses the OKX Web3 DEX aggregator API on Solana (chain 501).

Every request is signed:
    OK-ACCESS-SIGN = base64(HMAC-SHA256(secret, timestamp + METHOD + path?query + body))

Without API key, secret and passphrase the provider reports itself
unavailable and the chain skips it.
"""

import base64
import hashlib
import hmac
from datetime import datetime, timezone
from typing import Dict, Optional
from urllib.parse import urlencode

import base58
import requests

from providers.base import Provider, UnsignedTransaction
from utils import ProviderQuoteError, ProviderBuildError

SOLANA_CHAIN_ID = "501"

# OKX addresses native SOL with the system program id
NATIVE_SOL = "11111111111111111111111111111111"
WSOL_MINT = "So11111111111111111111111111111111111111112"

QUOTE_PATH = "/api/v5/dex/aggregator/quote"
SWAP_PATH = "/api/v5/dex/aggregator/swap"


def sign_request(secret_key: str, timestamp: str, method: str, request_path: str, body: str = "") -> str:
    """OKX request signature for the given prehash components."""
    prehash = f"{timestamp}{method.upper()}{request_path}{body}"
    digest = hmac.new(secret_key.encode(), prehash.encode(), hashlib.sha256).digest()
    return base64.b64encode(digest).decode()


def _okx_timestamp(now: Optional[datetime] = None) -> str:
    now = now or datetime.now(timezone.utc)
    return now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{now.microsecond // 1000:03d}Z"


class OKXProvider(Provider):
    """OKX DEX aggregator with HMAC-signed requests."""

    name = "okx"

    def __init__(
        self,
        api_base: str,
        api_key: Optional[str],
        secret_key: Optional[str],
        passphrase: Optional[str],
        project_id: Optional[str] = None,
        timeout: float = 15.0,
    ):
        super().__init__(timeout)
        self.api_base = api_base.rstrip("/")
        self.api_key = api_key
        self.secret_key = secret_key
        self.passphrase = passphrase
        self.project_id = project_id

    @property
    def available(self) -> bool:
        return bool(self.api_base and self.api_key and self.secret_key and self.passphrase)

    def _headers(self, method: str, request_path: str, body: str = "") -> Dict[str, str]:
        timestamp = _okx_timestamp()
        headers = {
            "OK-ACCESS-KEY": self.api_key,
            "OK-ACCESS-SIGN": sign_request(self.secret_key, timestamp, method, request_path, body),
            "OK-ACCESS-TIMESTAMP": timestamp,
            "OK-ACCESS-PASSPHRASE": self.passphrase,
            "Content-Type": "application/json",
        }
        if self.project_id:
            headers["OK-ACCESS-PROJECT"] = self.project_id
        return headers

    def _signed_get(self, transport: requests.Session, path: str, params: Dict[str, str], error_cls) -> dict:
        # The signed path must match the query string byte for byte
        request_path = f"{path}?{urlencode(params)}"
        body = self._send(
            transport,
            "GET",
            f"{self.api_base}{request_path}",
            error_cls,
            headers=self._headers("GET", request_path),
        )
        if str(body.get("code", "0")) != "0":
            raise error_cls(f"okx rejected request: code={body.get('code')} msg={body.get('msg')}", provider=self.name)
        data = body.get("data")
        if not isinstance(data, list) or not data:
            raise error_cls("okx response missing field: data", provider=self.name)
        return data[0]

    @staticmethod
    def _okx_mint(mint: str) -> str:
        return NATIVE_SOL if mint == WSOL_MINT else mint

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
            "chainIndex": SOLANA_CHAIN_ID,
            "chainId": SOLANA_CHAIN_ID,
            "amount": str(amount_units),
            "fromTokenAddress": self._okx_mint(source_mint),
            "toTokenAddress": self._okx_mint(dest_mint),
        }
        quote = self._signed_get(transport, QUOTE_PATH, params, ProviderQuoteError)
        quoted_out = self._require(quote, "toTokenAmount", ProviderQuoteError)

        # OKX takes slippage as a fraction (0.005 == 0.5%)
        slippage = (slippage_bps if slippage_bps is not None else 50) / 10_000
        swap_params = dict(params)
        swap_params["slippage"] = f"{slippage:.4f}"
        swap_params["userWalletAddress"] = signer_address

        swap = self._signed_get(transport, SWAP_PATH, swap_params, ProviderBuildError)
        tx = self._require(swap, "tx", ProviderBuildError)
        tx_data = self._require(tx, "data", ProviderBuildError)
        try:
            payload = base58.b58decode(tx_data)
        except ValueError:
            raise ProviderBuildError("okx tx.data is not valid base58", provider=self.name)

        try:
            out = int(quoted_out)
        except (TypeError, ValueError):
            out = None
        return UnsignedTransaction(payload=payload, provider=self.name, quoted_out=out)

