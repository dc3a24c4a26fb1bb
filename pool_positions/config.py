"""Configuration loader — reads config.yaml, interpolates env vars, validates."""
from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Frozen config dataclasses
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ChainConfig:
    chain_id: int = 1
    rpc_endpoints: tuple[str, ...] = ()
    rpc_timeout: int = 30
    receipt_timeout: int = 120
    poll_interval: float = 2.0


@dataclass(frozen=True)
class AccountConfig:
    address: str = ""
    private_key: str = ""
    admin: str = ""


@dataclass(frozen=True)
class PoolConfig:
    address: str = ""
    referral_code: int = 0


@dataclass(frozen=True)
class TokenConfig:
    address: str = ""
    decimals: int = 18
    permit_version: str = "1"
    # Pool deposits and repayments use a self-signed permit instead of approve.
    permit: bool = False


@dataclass(frozen=True)
class AppConfig:
    chain: ChainConfig = field(default_factory=ChainConfig)
    account: AccountConfig = field(default_factory=AccountConfig)
    pool: PoolConfig = field(default_factory=PoolConfig)
    tokens: dict[str, TokenConfig] = field(default_factory=dict)

    def token_address(self, symbol_or_address: str) -> str:
        """Resolve a configured symbol to its address; addresses pass through."""
        token = self.tokens.get(symbol_or_address.upper())
        if token is not None:
            return token.address
        if symbol_or_address.startswith("0x"):
            return symbol_or_address
        raise KeyError(f"Unknown token '{symbol_or_address}'")


# ---------------------------------------------------------------------------
# Env interpolation
# ---------------------------------------------------------------------------

_ENV_VAR_RE = re.compile(r"\$\{([^}]+)}")
_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")


def _interpolate_env(value: Any) -> Any:
    """Recursively replace ${VAR} references with environment variable values."""
    if isinstance(value, str):
        return _ENV_VAR_RE.sub(lambda m: os.environ.get(m.group(1), ""), value)
    if isinstance(value, dict):
        return {k: _interpolate_env(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_interpolate_env(item) for item in value]
    return value


# ---------------------------------------------------------------------------
# YAML → dataclass builders
# ---------------------------------------------------------------------------


def _build_chain(raw: dict[str, Any]) -> ChainConfig:
    return ChainConfig(
        chain_id=int(raw.get("chain_id", 1)),
        rpc_endpoints=tuple(raw.get("rpc_endpoints", [])),
        rpc_timeout=int(raw.get("rpc_timeout", 30)),
        receipt_timeout=int(raw.get("receipt_timeout", 120)),
        poll_interval=float(raw.get("poll_interval", 2.0)),
    )


def _build_account(raw: dict[str, Any]) -> AccountConfig:
    return AccountConfig(
        address=raw.get("address", ""),
        private_key=raw.get("private_key", ""),
        admin=raw.get("admin", ""),
    )


def _build_pool(raw: dict[str, Any]) -> PoolConfig:
    return PoolConfig(
        address=raw.get("address", ""),
        referral_code=int(raw.get("referral_code", 0)),
    )


def _build_tokens(raw: dict[str, Any]) -> dict[str, TokenConfig]:
    tokens: dict[str, TokenConfig] = {}
    for symbol, cfg in raw.items():
        tokens[symbol.upper()] = TokenConfig(
            address=cfg.get("address", ""),
            decimals=int(cfg.get("decimals", 18)),
            permit_version=str(cfg.get("permit_version", "1")),
            permit=bool(cfg.get("permit", False)),
        )
    return tokens


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(config_path: str | Path | None = None) -> AppConfig:
    """Load and validate application configuration from YAML + .env.

    Args:
        config_path: Path to config.yaml. Defaults to ``config.yaml`` in the
            project root (two levels up from this file).
    """
    load_dotenv()

    if config_path is None:
        config_path = Path(__file__).resolve().parent.parent / "config.yaml"
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path) as f:
        raw = yaml.safe_load(f) or {}

    raw = _interpolate_env(raw)

    cfg = AppConfig(
        chain=_build_chain(raw.get("chain", {})),
        account=_build_account(raw.get("account", {})),
        pool=_build_pool(raw.get("pool", {})),
        tokens=_build_tokens(raw.get("tokens", {})),
    )

    _validate(cfg)
    logger.info("Configuration loaded from %s", config_path)
    return cfg


def _validate(cfg: AppConfig) -> None:
    """Raise on invalid configuration."""
    if not cfg.chain.rpc_endpoints:
        raise ValueError("At least one RPC endpoint must be configured")

    if not _ADDRESS_RE.match(cfg.account.address):
        raise ValueError(f"Invalid account address '{cfg.account.address}'")

    if cfg.account.admin and not _ADDRESS_RE.match(cfg.account.admin):
        raise ValueError(f"Invalid admin address '{cfg.account.admin}'")

    if not _ADDRESS_RE.match(cfg.pool.address):
        raise ValueError(f"Invalid pool address '{cfg.pool.address}'")

    for symbol, token in cfg.tokens.items():
        if not _ADDRESS_RE.match(token.address):
            raise ValueError(f"Token '{symbol}' has an invalid address")
