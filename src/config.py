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

from .models import Asset

logger = logging.getLogger(__name__)

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

CONTRACT_NAMES = (
    "loan_marketplace",
    "configuration",
    "collateral_escrow",
    "ltv_config",
    "supplier_registry",
    "fiat_oracle",
    "fiat_loan_bridge",
)

_REQUIRED_CONTRACTS = ("loan_marketplace", "configuration", "ltv_config")

# ---------------------------------------------------------------------------
# Frozen config dataclasses
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ClientConfig:
    network: str = "base_sepolia"
    wallet_address: str = ""
    mock_oracle: bool = False


@dataclass(frozen=True)
class StalenessConfig:
    price_max_age_seconds: int = 900
    exchange_rate_max_age_seconds: int = 3600


@dataclass(frozen=True)
class ApprovalConfig:
    buffer_bps: int = 100
    allowance_retry_delay_seconds: float = 2.0
    allowance_retries: int = 1


@dataclass(frozen=True)
class TransactionsConfig:
    receipt_poll_interval_seconds: float = 2.0
    receipt_timeout_seconds: int = 120
    batch_size: int = 50


@dataclass(frozen=True)
class TokenConfig:
    symbol: str = ""
    address: str = ZERO_ADDRESS
    decimals: int = 18


@dataclass(frozen=True)
class ChainConfig:
    rpc_endpoints: tuple[str, ...] = ()
    rpc_timeout: int = 30


@dataclass(frozen=True)
class NetworkConfig:
    name: str = ""
    chain_id: int = 0
    chain: ChainConfig = field(default_factory=ChainConfig)
    contracts: dict[str, str] = field(default_factory=dict)
    tokens: dict[str, TokenConfig] = field(default_factory=dict)
    fiat_supported: bool = False

    def contract(self, name: str) -> str:
        """Contract address by table name; unset entries are the zero address."""
        return self.contracts.get(name) or ZERO_ADDRESS

    def asset(self, symbol: str) -> Asset | None:
        token = self.tokens.get(symbol.upper())
        if token is None or token.address == ZERO_ADDRESS:
            return None
        return Asset(address=token.address, symbol=token.symbol, decimals=token.decimals)

    def asset_by_address(self, address: str) -> Asset | None:
        for token in self.tokens.values():
            if token.address != ZERO_ADDRESS and token.address.lower() == address.lower():
                return Asset(
                    address=token.address, symbol=token.symbol, decimals=token.decimals
                )
        return None


@dataclass(frozen=True)
class AppConfig:
    client: ClientConfig = field(default_factory=ClientConfig)
    staleness: StalenessConfig = field(default_factory=StalenessConfig)
    approval: ApprovalConfig = field(default_factory=ApprovalConfig)
    transactions: TransactionsConfig = field(default_factory=TransactionsConfig)
    networks: dict[str, NetworkConfig] = field(default_factory=dict)

    @property
    def network(self) -> NetworkConfig:
        """The active network selected by ``client.network``."""
        return self.networks[self.client.network]


# ---------------------------------------------------------------------------
# Env interpolation
# ---------------------------------------------------------------------------

_ENV_VAR_RE = re.compile(r"\$\{([^}]+)}")


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


def _build_client(raw: dict[str, Any]) -> ClientConfig:
    return ClientConfig(
        network=raw.get("network", "base_sepolia"),
        wallet_address=raw.get("wallet_address", "") or "",
        mock_oracle=bool(raw.get("mock_oracle", False)),
    )


def _build_staleness(raw: dict[str, Any]) -> StalenessConfig:
    return StalenessConfig(
        price_max_age_seconds=int(raw.get("price_max_age_seconds", 900)),
        exchange_rate_max_age_seconds=int(
            raw.get("exchange_rate_max_age_seconds", 3600)
        ),
    )


def _build_approval(raw: dict[str, Any]) -> ApprovalConfig:
    return ApprovalConfig(
        buffer_bps=int(raw.get("buffer_bps", 100)),
        allowance_retry_delay_seconds=float(
            raw.get("allowance_retry_delay_seconds", 2.0)
        ),
        allowance_retries=int(raw.get("allowance_retries", 1)),
    )


def _build_transactions(raw: dict[str, Any]) -> TransactionsConfig:
    return TransactionsConfig(
        receipt_poll_interval_seconds=float(
            raw.get("receipt_poll_interval_seconds", 2.0)
        ),
        receipt_timeout_seconds=int(raw.get("receipt_timeout_seconds", 120)),
        batch_size=int(raw.get("batch_size", 50)),
    )


def _build_tokens(raw: dict[str, Any]) -> dict[str, TokenConfig]:
    tokens: dict[str, TokenConfig] = {}
    for symbol, cfg in raw.items():
        tokens[symbol.upper()] = TokenConfig(
            symbol=symbol.upper(),
            address=cfg.get("address") or ZERO_ADDRESS,
            decimals=int(cfg.get("decimals", 18)),
        )
    return tokens


def _build_networks(raw: dict[str, Any]) -> dict[str, NetworkConfig]:
    networks: dict[str, NetworkConfig] = {}
    for name, cfg in raw.items():
        contracts = {
            key: (cfg.get("contracts", {}).get(key) or ZERO_ADDRESS)
            for key in CONTRACT_NAMES
        }
        networks[name] = NetworkConfig(
            name=name,
            chain_id=int(cfg.get("chain_id", 0)),
            chain=ChainConfig(
                rpc_endpoints=tuple(cfg.get("rpc_endpoints", [])),
                rpc_timeout=int(cfg.get("rpc_timeout", 30)),
            ),
            contracts=contracts,
            tokens=_build_tokens(cfg.get("tokens", {})),
            fiat_supported=bool(cfg.get("fiat_supported", False)),
        )
    return networks


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
        client=_build_client(raw.get("client", {})),
        staleness=_build_staleness(raw.get("staleness", {})),
        approval=_build_approval(raw.get("approval", {})),
        transactions=_build_transactions(raw.get("transactions", {})),
        networks=_build_networks(raw.get("networks", {})),
    )

    _validate(cfg)
    logger.info(
        "Configuration loaded from %s (network=%s)", config_path, cfg.client.network
    )
    return cfg


def _validate(cfg: AppConfig) -> None:
    """Raise on invalid configuration."""
    if cfg.client.network not in cfg.networks:
        raise ValueError(f"Unknown network '{cfg.client.network}'")

    network = cfg.network
    if not network.chain.rpc_endpoints:
        raise ValueError(f"Network '{network.name}' has no RPC endpoints")

    for name in _REQUIRED_CONTRACTS:
        if network.contract(name) == ZERO_ADDRESS:
            raise ValueError(
                f"Network '{network.name}' is missing contract address '{name}'"
            )

    for token in network.tokens.values():
        if not 0 <= token.decimals <= 36:
            raise ValueError(
                f"Token '{token.symbol}' has invalid decimals {token.decimals}"
            )

    if cfg.approval.buffer_bps < 0:
        raise ValueError("approval.buffer_bps must not be negative")
    if cfg.transactions.batch_size < 1:
        raise ValueError("transactions.batch_size must be at least 1")
