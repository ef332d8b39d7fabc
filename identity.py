"""
Identity Module - Trading Identities and their Network Paths
===========================================================

Each identity owns a signing keypair, an optional SOCKS5 proxy, a requests
session for aggregator calls and an RPC client, both routed through that
proxy. No two identities share a proxy.

The pool is built once at startup and never changes afterwards.
"""

import random
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Tuple

import base58
import requests
from solders.keypair import Keypair

from config import IdentityEntry, ProxySpec
from ledger import LedgerClient
from utils import ConfigurationError, format_address


USER_AGENT = "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0 Safari/537.36"


def build_transport(proxy: Optional[ProxySpec]) -> requests.Session:
    """A session whose every request leaves through ``proxy`` (if any)."""
    session = requests.Session()
    # Ignore HTTP(S)_PROXY from the environment so identities never share a path
    session.trust_env = False
    session.headers.update({"User-Agent": USER_AGENT, "Accept": "application/json"})
    if proxy is not None:
        session.proxies = {"http": proxy.url, "https": proxy.url}
    return session


@dataclass(frozen=True, eq=False)
class Identity:
    """A trading actor: key, label, exclusive proxy and its channels."""
    keypair: Keypair
    label: str
    transport: requests.Session
    ledger: LedgerClient
    proxy: Optional[ProxySpec] = None
    name: str = field(default="")

    @property
    def address(self) -> str:
        return str(self.keypair.pubkey())

    @classmethod
    def from_entry(cls, entry: IdentityEntry, rpc_url: str, timeout: float = 15.0) -> "Identity":
        try:
            keypair = Keypair.from_bytes(base58.b58decode(entry.secret_key))
        except (ValueError, TypeError):
            # Never echo the key material itself
            raise ConfigurationError(f"{entry.name}: secret key is not a valid base58 keypair")

        transport = build_transport(entry.proxy)
        address = str(keypair.pubkey())
        return cls(
            keypair=keypair,
            label=address[:6],
            transport=transport,
            ledger=LedgerClient(rpc_url, proxy=entry.proxy.url if entry.proxy else None, timeout=timeout),
            proxy=entry.proxy,
            name=entry.name,
        )

    def describe(self) -> str:
        path = self.proxy.endpoint if self.proxy else "direct"
        return f"{self.label} ({format_address(self.address)}) via {path}"


class IdentityPool:
    """Immutable set of identities with exclusive network paths."""

    def __init__(self, identities: Iterable[Identity]):
        self._identities: Tuple[Identity, ...] = tuple(identities)
        if not self._identities:
            raise ConfigurationError("Identity pool is empty")

        addresses = [i.address for i in self._identities]
        if len(set(addresses)) != len(addresses):
            raise ConfigurationError("The same key is configured for more than one identity")

        endpoints = [i.proxy.endpoint for i in self._identities if i.proxy is not None]
        if len(set(endpoints)) != len(endpoints):
            raise ConfigurationError("A proxy is shared between identities; each needs its own")

    @classmethod
    def from_entries(cls, entries: Iterable[IdentityEntry], rpc_url: str, timeout: float = 15.0) -> "IdentityPool":
        return cls(Identity.from_entry(e, rpc_url, timeout) for e in entries)

    def __len__(self) -> int:
        return len(self._identities)

    def __iter__(self):
        return iter(self._identities)

    def permuted(self, rng: random.Random) -> List[Identity]:
        """A fresh random ordering of every identity, each exactly once."""
        return rng.sample(self._identities, k=len(self._identities))

    def close(self):
        for identity in self._identities:
            identity.transport.close()
