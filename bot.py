#!/usr/bin/env python3
"""
LST Rotation Bot
================
Rotates a pool of Solana identities through small SOL -> liquid staking
token swaps and back, each identity over its own SOCKS5 path, inside a
daily trading window and under a daily swap cap.

Usage:
    python bot.py run [--config bot_config.yaml] [--dry-run] [--seed 42]
    python bot.py identities
    python bot.py init-config
"""

import os
import sys
import random
import signal
from pathlib import Path

from rich.table import Table
from rich.panel import Panel
from rich import box

from config import ConfigManager, DEFAULT_CONFIG, load_identity_entries
from executor import SwapExecutor
from identity import IdentityPool
from logging_utils import MetricsCollector
from providers import build_chain, build_providers
from retry_policy import RetryPolicy
from scheduler import Pacer, ScheduleLoop, ScheduleSettings
from session import TradingSession
from utils import console, logger, setup_logging, ConfigurationError, format_address

EXIT_CONFIG_ERROR = 2


def load_settings(config_path=None, dry_run=False, seed=None):
    """Config plus identity pool, or ConfigurationError."""
    config = ConfigManager(config_path).load_config()
    if dry_run:
        config.dry_run = True
    if seed is not None:
        config.seed = seed

    setup_logging(config.log_level, config.log_file)

    entries = load_identity_entries(os.environ)
    pool = IdentityPool.from_entries(entries, config.rpc_url, timeout=config.http_timeout_seconds)
    return config, pool


def run_command(config_path=None, dry_run=False, seed=None, metrics_file=None):
    """Start the rotation loop and block until SIGINT/SIGTERM; optionally dump metrics on the way out."""
    config, pool = load_settings(config_path, dry_run, seed)

    metrics = MetricsCollector()
    chain = build_chain(config)
    executor = SwapExecutor(
        chain,
        submit_policy=RetryPolicy(
            max_attempts=config.submit_attempts,
            backoff_seconds=config.provider_backoff_seconds,
        ),
        broadcast_max_retries=config.broadcast_max_retries,
        dry_run=config.dry_run,
        metrics=metrics,
    )

    pacer = Pacer()
    loop = ScheduleLoop(
        pool,
        executor,
        TradingSession.from_config(config),
        ScheduleSettings.from_config(config),
        rng=random.Random(config.seed),
        pacer=pacer,
        on_round=lambda report, session: console.print(
            metrics.summary_table(f"Round {report.number} | today {session.daily_count}/{session.daily_cap}")
        ),
    )

    def handle_signal(signum, frame):
        logger.warning(f"Received signal {signum}, stopping after the current step")
        pacer.stop()

    signal.signal(signal.SIGINT, handle_signal)
    signal.signal(signal.SIGTERM, handle_signal)

    mode = "[yellow]DRY RUN[/yellow]" if config.dry_run else "[green]LIVE[/green]"
    chain_desc = " -> ".join(
        f"{p.name}{'' if p.available else ' (off)'}" for p in chain.providers
    )
    console.print(Panel.fit(
        f"[bold cyan]LST Rotation Bot[/bold cyan]\n"
        f"Mode: {mode}\n"
        f"Identities: {len(pool)}\n"
        f"Providers: {chain_desc}\n"
        f"Window: {config.window_start_hour:02d}:00-{config.window_end_hour:02d}:00 {config.timezone}\n"
        f"Daily cap: {config.daily_cap}",
        box=box.ROUNDED,
    ))

    try:
        loop.run_forever()
    finally:
        pool.close()
        console.print(metrics.summary_table("Final Statistics"))
        if metrics_file:
            metrics.save_to_file(metrics_file)
            logger.info(f"Metrics written to {metrics_file}")


def identities_command(config_path=None):
    """Show the identity pool and which providers are usable, without trading."""
    config, pool = load_settings(config_path)

    table = Table(title="Identities", box=box.ROUNDED)
    table.add_column("Label", style="cyan")
    table.add_column("Variable")
    table.add_column("Address", style="green")
    table.add_column("Proxy")
    for identity in pool:
        table.add_row(
            identity.label,
            identity.name,
            format_address(identity.address, 6),
            identity.proxy.endpoint if identity.proxy else "[red]direct[/red]",
        )
    console.print(table)

    providers = Table(title="Providers", box=box.ROUNDED)
    providers.add_column("Order")
    providers.add_column("Provider", style="cyan")
    providers.add_column("Available")
    for index, provider in enumerate(build_providers(config), 1):
        providers.add_row(
            str(index),
            provider.name,
            "[green]yes[/green]" if provider.available else "[red]no[/red]",
        )
    console.print(providers)
    pool.close()


def init_config_command(path):
    """Write the default YAML config to ``path`` (never overwrites)."""
    target = Path(path)
    if target.exists():
        console.print(f"[yellow]{target} already exists, leaving it alone[/yellow]")
        return
    target.write_text(DEFAULT_CONFIG + "\n")
    console.print(f"[green]✓ Wrote {target}[/green]")
    console.print("[dim]Put RPC_URL, WALLET_* and aggregator keys in .env[/dim]")


def main(argv=None):
    import argparse

    parser = argparse.ArgumentParser(description="LST rotation bot for Solana")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Run command
    run_parser = subparsers.add_parser("run", help="Start the rotation loop")
    run_parser.add_argument("--config", type=str, default=None, help="Path to YAML config")
    run_parser.add_argument("--dry-run", action="store_true", help="Sign but never broadcast")
    run_parser.add_argument("--seed", type=int, default=None, help="Seed for reproducible randomness")
    run_parser.add_argument("--metrics-file", type=str, default=None, help="Write swap metrics as JSON on shutdown")

    # Identities command
    ids_parser = subparsers.add_parser("identities", help="List identities and providers")
    ids_parser.add_argument("--config", type=str, default=None, help="Path to YAML config")

    # Init command
    init_parser = subparsers.add_parser("init-config", help="Write a default config file")
    init_parser.add_argument("--path", type=str, default="bot_config.yaml", help="Where to write it")

    args = parser.parse_args(argv)

    try:
        if args.command == "run":
            run_command(
                config_path=args.config,
                dry_run=args.dry_run,
                seed=args.seed,
                metrics_file=args.metrics_file,
            )
        elif args.command == "identities":
            identities_command(config_path=args.config)
        elif args.command == "init-config":
            init_config_command(args.path)
        else:
            parser.print_help()
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        sys.exit(EXIT_CONFIG_ERROR)


if __name__ == "__main__":
    main()
