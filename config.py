"""
Configuration Management Module

Loads bot settings from an optional YAML file, overlays environment
variables (a local .env is honoured), and parses the per-identity
``WALLET_*`` entries.
"""

import os
from pathlib import Path
from typing import Dict, Any, List, Mapping, Optional
from dataclasses import dataclass, asdict, field, fields
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml
from dotenv import load_dotenv

from utils import logger, ConfigurationError, register_secret, resolve_log_level


WSOL_MINT = "So11111111111111111111111111111111111111112"

# Liquid staking tokens the rotation picks from
DEFAULT_TARGET_MINTS = [
    "J1toso1uCk3RLmjorhTtrVwY9HJ7X8V9yYac6Y7kGCPn",  # JitoSOL
    "mSoLzYCxHdYgdzU16g5QSh3i5K3z3KZK7ytfqcJm7So",   # mSOL (Marinade)
    "bSo13r4TkiE4KumL71LsHTPpL2euBYLFx6h9HP3piy1",   # bSOL (BlazeStake)
]

WALLET_ENV_PREFIX = "WALLET_"


@dataclass
class Config:
    """Bot configuration settings."""

    # Network
    rpc_url: Optional[str] = None

    # Aggregators (a provider without its endpoint/credentials is unavailable)
    jupiter_api: Optional[str] = None
    raydium_api: Optional[str] = None
    okx_api_base: str = "https://web3.okx.com"
    okx_api_key: Optional[str] = None
    okx_secret_key: Optional[str] = None
    okx_passphrase: Optional[str] = None
    okx_project_id: Optional[str] = None
    provider_order: List[str] = field(default_factory=lambda: ["jupiter", "okx", "raydium"])

    # Trading window
    timezone: str = "Asia/Shanghai"
    window_start_hour: int = 8
    window_end_hour: int = 24
    daily_cap: int = 180

    # Assets and amounts
    source_mint: str = WSOL_MINT
    target_mints: List[str] = field(default_factory=lambda: list(DEFAULT_TARGET_MINTS))
    min_amount_sol: float = 0.0001
    max_amount_sol: float = 0.001
    min_slippage_bps: int = 30
    max_slippage_bps: int = 80

    # Pacing (seconds)
    dwell_min_seconds: int = 120
    dwell_max_seconds: int = 360
    identity_delay_min_seconds: int = 20
    identity_delay_max_seconds: int = 60
    round_delay_min_seconds: int = 300
    round_delay_max_seconds: int = 480
    out_of_window_poll_seconds: int = 600

    # Retries
    provider_max_attempts: int = 3
    provider_backoff_seconds: float = 2.0
    submit_attempts: int = 3
    broadcast_max_retries: int = 3
    http_timeout_seconds: float = 15.0

    # Operation
    dry_run: bool = False
    seed: Optional[int] = None
    log_level: str = "INFO"
    log_file: Optional[str] = "./lst_rotator.log"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary (excluding sensitive data)."""
        data = asdict(self)
        for secret in ("okx_api_key", "okx_secret_key", "okx_passphrase"):
            if data.get(secret):
                data[secret] = "***"
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Config":
        """Create Config from dictionary."""
        # Filter only valid fields
        valid_fields = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        return cls(**valid_fields)

    def _check_types(self):
        # YAML values arrive untyped
        for f in fields(self):
            value = getattr(self, f.name)
            if f.type is int:
                ok = isinstance(value, int) and not isinstance(value, bool)
            elif f.type is float:
                ok = isinstance(value, (int, float)) and not isinstance(value, bool)
            elif f.type is bool:
                ok = isinstance(value, bool)
            elif f.type is str:
                ok = isinstance(value, str)
            else:
                continue
            if not ok:
                raise ConfigurationError(f"{f.name} must be {f.type.__name__}, got {value!r}")

        if self.seed is not None and (isinstance(self.seed, bool) or not isinstance(self.seed, int)):
            raise ConfigurationError(f"seed must be an integer, got {self.seed!r}")
        for name in ("target_mints", "provider_order"):
            value = getattr(self, name)
            if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
                raise ConfigurationError(f"{name} must be a list of strings")

    def validate(self):
        """Raise ConfigurationError for settings the bot cannot start with."""
        self._check_types()
        if not self.rpc_url:
            raise ConfigurationError("RPC_URL is not configured")
        try:
            ZoneInfo(self.timezone)
        except (ZoneInfoNotFoundError, ValueError):
            raise ConfigurationError(f"Unknown timezone: {self.timezone}")
        if not (0 <= self.window_start_hour <= 23):
            raise ConfigurationError(f"window_start_hour out of range: {self.window_start_hour}")
        if not (1 <= self.window_end_hour <= 24):
            raise ConfigurationError(f"window_end_hour out of range: {self.window_end_hour}")
        if self.window_start_hour == self.window_end_hour:
            raise ConfigurationError("Trading window is empty")
        if self.daily_cap <= 0:
            raise ConfigurationError("daily_cap must be positive")
        if not self.target_mints:
            raise ConfigurationError("target_mints is empty")
        if self.source_mint in self.target_mints:
            raise ConfigurationError("source_mint cannot also be a target")

        bounds = [
            ("amount_sol", self.min_amount_sol, self.max_amount_sol),
            ("slippage_bps", self.min_slippage_bps, self.max_slippage_bps),
            ("dwell_seconds", self.dwell_min_seconds, self.dwell_max_seconds),
            ("identity_delay_seconds", self.identity_delay_min_seconds, self.identity_delay_max_seconds),
            ("round_delay_seconds", self.round_delay_min_seconds, self.round_delay_max_seconds),
        ]
        if self.min_amount_sol <= 0:
            raise ConfigurationError("min_amount_sol must be positive")
        for name, low, high in bounds:
            if low < 0 or low > high:
                raise ConfigurationError(f"Invalid {name} bounds: {low}..{high}")

        if self.provider_max_attempts < 1 or self.submit_attempts < 1:
            raise ConfigurationError("Attempt counts must be at least 1")
        if self.broadcast_max_retries < 0:
            raise ConfigurationError("broadcast_max_retries cannot be negative")
        if self.provider_backoff_seconds <= 0:
            raise ConfigurationError("provider_backoff_seconds must be positive")
        if self.http_timeout_seconds <= 0:
            raise ConfigurationError("http_timeout_seconds must be positive")
        if self.out_of_window_poll_seconds <= 0:
            raise ConfigurationError("out_of_window_poll_seconds must be positive")
        resolve_log_level(self.log_level)


# Environment variable -> (field, converter)
ENV_OVERRIDES = {
    "RPC_URL": ("rpc_url", str),
    "JUP_API": ("jupiter_api", str),
    "RAYDIUM_API": ("raydium_api", str),
    "OKX_API_BASE": ("okx_api_base", str),
    "OKX_API_KEY": ("okx_api_key", str),
    "OKX_SECRET_KEY": ("okx_secret_key", str),
    "OKX_PASSPHRASE": ("okx_passphrase", str),
    "OKX_PROJECT_ID": ("okx_project_id", str),
    "TRADING_TIMEZONE": ("timezone", str),
    "WINDOW_START_HOUR": ("window_start_hour", int),
    "WINDOW_END_HOUR": ("window_end_hour", int),
    "DAILY_CAP": ("daily_cap", int),
    "DRY_RUN": ("dry_run", lambda v: v.strip().lower() in ("1", "true", "yes")),
    "BOT_SEED": ("seed", int),
    "LOG_LEVEL": ("log_level", str),
}


@dataclass(frozen=True)
class ProxySpec:
    """SOCKS5 tunnel owned by exactly one identity."""
    host: str
    port: int
    username: Optional[str] = None
    password: Optional[str] = None

    @property
    def url(self) -> str:
        # socks5h resolves DNS through the tunnel as well
        if self.username:
            return f"socks5h://{self.username}:{self.password or ''}@{self.host}:{self.port}"
        return f"socks5h://{self.host}:{self.port}"

    @property
    def endpoint(self) -> str:
        return f"{self.host}:{self.port}"

    @classmethod
    def parse(cls, raw: str) -> "ProxySpec":
        """Parse ``host:port[:user:pass]``."""
        parts = raw.strip().split(":")
        if len(parts) not in (2, 4) or not parts[0]:
            raise ConfigurationError("Proxy must be host:port or host:port:user:pass")
        try:
            port = int(parts[1])
        except ValueError:
            raise ConfigurationError(f"Proxy port is not a number: {parts[1]!r}")
        if not (0 < port < 65536):
            raise ConfigurationError(f"Proxy port out of range: {port}")
        if len(parts) == 4:
            return cls(parts[0], port, parts[2] or None, parts[3] or None)
        return cls(parts[0], port)


@dataclass(frozen=True)
class IdentityEntry:
    """Raw identity material as found in the environment."""
    name: str
    secret_key: str
    proxy: Optional[ProxySpec] = None


def parse_identity_entry(name: str, raw: str) -> IdentityEntry:
    """Parse ``base58_secret_key[|host:port:user:pass]``."""
    key_part, sep, proxy_part = raw.strip().partition("|")
    key_part = key_part.strip()
    if not key_part:
        raise ConfigurationError(f"{name}: missing secret key")
    register_secret(key_part)

    proxy = None
    if sep and proxy_part.strip():
        try:
            proxy = ProxySpec.parse(proxy_part)
        except ConfigurationError as e:
            raise ConfigurationError(f"{name}: {e}")
        register_secret(proxy.password)
    return IdentityEntry(name=name, secret_key=key_part, proxy=proxy)


def load_identity_entries(environ: Mapping[str, str]) -> List[IdentityEntry]:
    """Collect every ``WALLET_*`` variable, in sorted order."""
    names = sorted(k for k in environ if k.startswith(WALLET_ENV_PREFIX))
    entries = [parse_identity_entry(name, environ[name]) for name in names if environ[name].strip()]
    if not entries:
        raise ConfigurationError("No identities configured (set WALLET_1=<key>|host:port:user:pass)")
    return entries


class ConfigManager:
    """Builds a Config from YAML defaults plus environment overrides."""

    def __init__(self, config_path: Optional[Path] = None, env_file: Optional[Path] = None):
        self.config_path = Path(config_path) if config_path else None
        self.env_file = env_file

    def read_raw_config(self) -> Dict[str, Any]:
        """Read the YAML file, or nothing if none was given."""
        if self.config_path is None:
            return {}
        if not self.config_path.exists():
            raise ConfigurationError(f"Config file not found: {self.config_path}")

        with open(self.config_path, 'r') as f:
            try:
                data = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigurationError(f"Config file is not valid YAML: {e}")
        if not isinstance(data, dict):
            raise ConfigurationError("Config file must contain a mapping")
        return data

    def apply_env(self, data: Dict[str, Any], environ: Mapping[str, str]) -> Dict[str, Any]:
        merged = dict(data)
        for env_name, (field_name, convert) in ENV_OVERRIDES.items():
            value = environ.get(env_name)
            if value is None or value == "":
                continue
            try:
                merged[field_name] = convert(value)
            except ValueError:
                raise ConfigurationError(f"{env_name} has an invalid value: {value!r}")
        return merged

    def load_config(self, environ: Optional[Mapping[str, str]] = None) -> Config:
        """Load, merge and validate configuration."""
        if environ is None:
            load_dotenv(self.env_file)
            environ = os.environ

        data = self.apply_env(self.read_raw_config(), environ)
        config = Config.from_dict(data)
        for secret in (config.okx_api_key, config.okx_secret_key, config.okx_passphrase):
            register_secret(secret)
        config.validate()

        logger.info("Configuration loaded successfully")
        return config


# Default configuration template
DEFAULT_CONFIG = """
# LST rotation bot configuration
# Secrets (wallet keys, OKX credentials) belong in the environment / .env

timezone: Asia/Shanghai
window_start_hour: 8
window_end_hour: 24
daily_cap: 180

provider_order: [jupiter, okx, raydium]

min_amount_sol: 0.0001
max_amount_sol: 0.001
min_slippage_bps: 30
max_slippage_bps: 80

dwell_min_seconds: 120
dwell_max_seconds: 360
identity_delay_min_seconds: 20
identity_delay_max_seconds: 60
round_delay_min_seconds: 300
round_delay_max_seconds: 480
out_of_window_poll_seconds: 600

provider_max_attempts: 3
provider_backoff_seconds: 2.0
submit_attempts: 3
broadcast_max_retries: 3

dry_run: false
log_level: INFO
log_file: ./lst_rotator.log
""".strip()
