"""
Ledger Module
=============
Signing and broadcast of Solana transactions.

Signing uses solders. Broadcast goes through a solana-py ``Client`` built
per identity with that identity's proxy, so RPC traffic leaves through the
same tunnel as the aggregator calls.
"""

from typing import Optional

import httpx
from solana.exceptions import SolanaRpcException
from solana.rpc.api import Client
from solana.rpc.commitment import Commitment, Confirmed
from solana.rpc.core import RPCException, RPCNoResultException
from solana.rpc.types import TxOpts
from solders.keypair import Keypair
from solders.transaction import VersionedTransaction

from utils import SigningError, SubmissionError, NetworkTransientError, sanitize_error_message


def sign_transaction(payload: bytes, keypair: Keypair) -> VersionedTransaction:
    """Deserialize an aggregator payload and sign it with ``keypair``."""
    try:
        unsigned = VersionedTransaction.from_bytes(payload)
    except Exception as e:
        raise SigningError(f"payload is not a versioned transaction: {e}") from e

    try:
        return VersionedTransaction(unsigned.message, [keypair])
    except Exception as e:
        raise SigningError(f"signing failed: {e}") from e


def _rpc_message(error: RPCException) -> str:
    detail = error.args[0] if error.args else error
    return str(getattr(detail, "message", None) or detail)


def translate_rpc_failure(error: SolanaRpcException) -> Exception:
    """Map a client-level failure onto NetworkTransientError or SubmissionError."""
    cause = error.__cause__
    if isinstance(cause, httpx.HTTPStatusError):
        status = cause.response.status_code
        if status == 429 or status >= 500:
            return NetworkTransientError(f"RPC HTTP {status}")
        return SubmissionError(f"RPC HTTP {status}")
    if isinstance(cause, httpx.TransportError):
        return NetworkTransientError(f"RPC unreachable: {sanitize_error_message(cause)}")
    return SubmissionError(f"RPC call failed: {sanitize_error_message(cause or error)}")


class LedgerClient:
    """Submission channel bound to one identity's proxy."""

    def __init__(
        self,
        rpc_url: str,
        proxy: Optional[str] = None,
        timeout: float = 15.0,
        client: Optional[Client] = None,
    ):
        self.rpc_url = rpc_url
        self.proxy = proxy
        self.timeout = timeout
        self.client = client or Client(rpc_url, timeout=timeout, proxy=proxy)

    def send_raw_transaction(
        self,
        raw: bytes,
        skip_preflight: bool = True,
        max_retries: Optional[int] = 3,
        preflight_commitment: Commitment = Confirmed,
    ) -> str:
        """Submit serialized signed bytes; returns the transaction signature."""
        opts = TxOpts(
            skip_preflight=skip_preflight,
            preflight_commitment=preflight_commitment,
            max_retries=max_retries,
        )
        try:
            resp = self.client.send_raw_transaction(raw, opts=opts)
        except SolanaRpcException as e:
            raise translate_rpc_failure(e) from e
        except RPCNoResultException as e:
            raise SubmissionError("RPC accepted the request but returned no signature") from e
        except RPCException as e:
            raise SubmissionError(f"RPC error: {sanitize_error_message(_rpc_message(e))}") from e

        if not resp.value:
            raise SubmissionError("RPC accepted the request but returned no signature")
        return str(resp.value)

    def send_transaction(self, tx: VersionedTransaction, **kwargs) -> str:
        return self.send_raw_transaction(bytes(tx), **kwargs)
