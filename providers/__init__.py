"""
Swap Provider Package
=====================
Interchangeable aggregator integrations behind one interface, plus the
priority-ordered fallback chain that drives them.

Usage:
    from providers import build_chain

    chain = build_chain(config)
    tx, provider_name, failures = chain.resolve(request)
"""

from typing import List

from providers.base import Provider, ProviderFailure, UnsignedTransaction
from providers.chain import ProviderChain
from providers.jupiter import JupiterProvider
from providers.okx import OKXProvider
from providers.raydium import RaydiumProvider
from retry_policy import RetryPolicy
from utils import ConfigurationError


def build_providers(config) -> List[Provider]:
    """Instantiate providers in ``config.provider_order``."""
    factories = {
        "jupiter": lambda: JupiterProvider(config.jupiter_api, timeout=config.http_timeout_seconds),
        "okx": lambda: OKXProvider(
            config.okx_api_base,
            config.okx_api_key,
            config.okx_secret_key,
            config.okx_passphrase,
            project_id=config.okx_project_id,
            timeout=config.http_timeout_seconds,
        ),
        "raydium": lambda: RaydiumProvider(config.raydium_api, timeout=config.http_timeout_seconds),
    }

    if len(set(config.provider_order)) != len(config.provider_order):
        raise ConfigurationError(f"provider_order lists a provider twice: {config.provider_order}")

    providers = []
    for name in config.provider_order:
        factory = factories.get(name)
        if factory is None:
            raise ConfigurationError(f"Unknown provider in provider_order: {name}")
        providers.append(factory())
    return providers


def build_chain(config, sleep=None) -> ProviderChain:
    policy = RetryPolicy(
        max_attempts=config.provider_max_attempts,
        backoff_seconds=config.provider_backoff_seconds,
        sleep=sleep,
    )
    chain = ProviderChain(build_providers(config), policy)
    if not chain.eligible:
        raise ConfigurationError("No swap provider is configured (set JUP_API, RAYDIUM_API or OKX keys)")
    return chain


__all__ = [
    "Provider",
    "ProviderFailure",
    "UnsignedTransaction",
    "ProviderChain",
    "JupiterProvider",
    "OKXProvider",
    "RaydiumProvider",
    "build_providers",
    "build_chain",
]
