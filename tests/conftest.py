"""Shared test fixtures and sample data."""
from __future__ import annotations

import textwrap
from pathlib import Path
from typing import Any, Callable

import pytest

from src.config import (
    AppConfig,
    ApprovalConfig,
    ChainConfig,
    ClientConfig,
    NetworkConfig,
    StalenessConfig,
    TokenConfig,
    TransactionsConfig,
)
from src.models import (
    Asset,
    FiatLenderOffer,
    FiatLenderOfferStatus,
    LenderOffer,
    Loan,
    LoanRequest,
    LoanRequestStatus,
    LoanStatus,
    PriceQuote,
)

NOW = 1_700_000_000

WALLET = "0x" + "aa" * 20
LENDER = "0x" + "bb" * 20

MARKETPLACE = "0x" + "01" * 20
CONFIGURATION = "0x" + "02" * 20
ESCROW = "0x" + "03" * 20
LTV_CONFIG = "0x" + "04" * 20
SUPPLIER_REGISTRY = "0x" + "05" * 20
FIAT_ORACLE = "0x" + "06" * 20
FIAT_BRIDGE = "0x" + "07" * 20

USDC = "0x" + "10" * 20
WETH = "0x" + "20" * 20
WBTC = "0x" + "30" * 20


# ---------------------------------------------------------------------------
# Config fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def sample_chain_config() -> ChainConfig:
    return ChainConfig(
        rpc_endpoints=("https://rpc1.example.com", "https://rpc2.example.com"),
        rpc_timeout=10,
    )


@pytest.fixture()
def sample_network(sample_chain_config: ChainConfig) -> NetworkConfig:
    return NetworkConfig(
        name="base_sepolia",
        chain_id=84532,
        chain=sample_chain_config,
        contracts={
            "loan_marketplace": MARKETPLACE,
            "configuration": CONFIGURATION,
            "collateral_escrow": ESCROW,
            "ltv_config": LTV_CONFIG,
            "supplier_registry": SUPPLIER_REGISTRY,
            "fiat_oracle": FIAT_ORACLE,
            "fiat_loan_bridge": FIAT_BRIDGE,
        },
        tokens={
            "USDC": TokenConfig(symbol="USDC", address=USDC, decimals=6),
            "WETH": TokenConfig(symbol="WETH", address=WETH, decimals=18),
            "WBTC": TokenConfig(symbol="WBTC", address=WBTC, decimals=8),
        },
        fiat_supported=True,
    )


@pytest.fixture()
def sample_app_config(sample_network: NetworkConfig) -> AppConfig:
    return AppConfig(
        client=ClientConfig(network="base_sepolia", wallet_address=WALLET, mock_oracle=False),
        staleness=StalenessConfig(),
        approval=ApprovalConfig(allowance_retry_delay_seconds=0.0),
        transactions=TransactionsConfig(receipt_poll_interval_seconds=0.0),
        networks={"base_sepolia": sample_network},
    )


# ---------------------------------------------------------------------------
# Model fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def usdc() -> Asset:
    return Asset(address=USDC, symbol="USDC", decimals=6)


@pytest.fixture()
def weth() -> Asset:
    return Asset(address=WETH, symbol="WETH", decimals=18)


@pytest.fixture()
def quote_factory() -> Callable[..., PriceQuote]:
    def make(asset: Asset, price: int, age: int = 60) -> PriceQuote:
        return PriceQuote(
            asset=asset, price=price, updated_at=NOW - age, feed_address="0x" + "fe" * 20
        )

    return make


@pytest.fixture()
def loan_factory() -> Callable[..., Loan]:
    def make(**overrides: Any) -> Loan:
        fields: dict[str, Any] = dict(
            loan_id=7,
            request_id=3,
            borrower=WALLET,
            lender=LENDER,
            collateral_asset=WETH,
            collateral_amount=2 * 10**18,
            collateral_released=0,
            borrow_asset=USDC,
            principal_amount=4_900,
            interest_rate=500,
            duration=30 * 86_400,
            start_time=NOW - 86_400,
            due_date=NOW + 29 * 86_400,
            amount_repaid=0,
            status=LoanStatus.ACTIVE,
            last_interest_update=NOW - 86_400,
            grace_period_end=NOW + 32 * 86_400,
        )
        fields.update(overrides)
        return Loan(**fields)

    return make


@pytest.fixture()
def offer_factory() -> Callable[..., LenderOffer]:
    def make(**overrides: Any) -> LenderOffer:
        fields: dict[str, Any] = dict(
            offer_id=4,
            lender=LENDER,
            lend_asset=USDC,
            lend_amount=10_000 * 10**6,
            remaining_amount=10_000 * 10**6,
            borrowed_amount=0,
            required_collateral_asset="0x" + "00" * 20,
            min_collateral_amount=0,
            duration=30 * 86_400,
            interest_rate=500,
            created_at=NOW - 3_600,
            expire_at=NOW + 7 * 86_400,
            status=LoanRequestStatus.PENDING,
            chain_id=84532,
        )
        fields.update(overrides)
        return LenderOffer(**fields)

    return make


@pytest.fixture()
def fiat_offer_factory() -> Callable[..., FiatLenderOffer]:
    def make(**overrides: Any) -> FiatLenderOffer:
        fields: dict[str, Any] = dict(
            offer_id=2,
            lender=LENDER,
            fiat_amount_cents=1_500_000_00,
            remaining_amount_cents=1_500_000_00,
            borrowed_amount_cents=0,
            currency="NGN",
            min_collateral_value_usd=0,
            duration=30 * 86_400 + 3_600,
            interest_rate=1_000,
            created_at=NOW - 3_600,
            expire_at=NOW + 7 * 86_400,
            status=FiatLenderOfferStatus.ACTIVE,
            exchange_rate_at_creation=1_500 * 10**8,
            chain_id=84532,
        )
        fields.update(overrides)
        return FiatLenderOffer(**fields)

    return make


@pytest.fixture()
def request_factory() -> Callable[..., LoanRequest]:
    def make(**overrides: Any) -> LoanRequest:
        fields: dict[str, Any] = dict(
            request_id=3,
            borrower=LENDER,
            collateral_amount=10**18,
            collateral_token=WETH,
            borrow_asset=USDC,
            borrow_amount=1_000 * 10**6,
            duration=30 * 86_400,
            max_interest_rate=1_000,
            interest_rate=500,
            created_at=NOW - 3_600,
            expire_at=NOW + 7 * 86_400,
            status=LoanRequestStatus.PENDING,
            chain_id=84532,
        )
        fields.update(overrides)
        return LoanRequest(**fields)

    return make


# ---------------------------------------------------------------------------
# Config YAML fixture
# ---------------------------------------------------------------------------

SAMPLE_YAML = textwrap.dedent(f"""\
    client:
      network: base_sepolia
      wallet_address: "{WALLET}"
      mock_oracle: true
    staleness:
      price_max_age_seconds: 900
      exchange_rate_max_age_seconds: 3600
    approval:
      buffer_bps: 100
      allowance_retry_delay_seconds: 2.0
      allowance_retries: 1
    transactions:
      receipt_poll_interval_seconds: 1.5
      receipt_timeout_seconds: 60
      batch_size: 25
    networks:
      base_sepolia:
        chain_id: 84532
        fiat_supported: true
        rpc_endpoints: ["https://rpc.example.com"]
        rpc_timeout: 10
        contracts:
          loan_marketplace: "{MARKETPLACE}"
          configuration: "{CONFIGURATION}"
          ltv_config: "{LTV_CONFIG}"
          fiat_oracle: "{FIAT_ORACLE}"
          fiat_loan_bridge: "{FIAT_BRIDGE}"
        tokens:
          USDC: {{address: "{USDC}", decimals: 6}}
          WETH: {{address: "{WETH}", decimals: 18}}
      polygon_amoy:
        chain_id: 80002
        fiat_supported: false
        rpc_endpoints: ["https://amoy.example.com"]
        contracts:
          loan_marketplace: "{MARKETPLACE}"
          configuration: "{CONFIGURATION}"
          ltv_config: "{LTV_CONFIG}"
""")


@pytest.fixture()
def sample_yaml_path(tmp_path: Path) -> Path:
    cfg_file = tmp_path / "config.yaml"
    cfg_file.write_text(SAMPLE_YAML)
    return cfg_file
