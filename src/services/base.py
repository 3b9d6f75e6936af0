"""Shared wiring for the dashboard and marketplace aggregators."""
from __future__ import annotations

import logging
import time
from typing import Callable

from ..chains.evm import EvmClient
from ..config import AppConfig
from ..engine.approval import ApprovalOrchestrator
from ..engine.ltv import LTVResolver
from ..engine.preflight import TransactionPreflight
from ..interfaces.price_oracle import PriceOracle
from ..models import (
    Asset,
    EntityType,
    ExchangeRate,
    Failure,
    FailureKind,
    Ok,
    PriceQuote,
    Remedy,
    Result,
)
from ..oracles import ExchangeRateClient, PriceFeedClient
from ..protocols.erc20 import Erc20Reader
from ..protocols.marketplace import MarketplaceAdapter
from ..store import EntityRepository
from .flows import FlowSession, FlowTracker

logger = logging.getLogger(__name__)


class LendingService:
    """Builds every client for the active network from one config."""

    def __init__(
        self,
        config: AppConfig,
        repository: EntityRepository | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._config = config
        self._network = config.network
        self._wallet = config.client.wallet_address

        tx = config.transactions
        self._client = EvmClient(
            self._network.chain,
            batch_size=tx.batch_size,
            receipt_poll_interval=tx.receipt_poll_interval_seconds,
            receipt_timeout=tx.receipt_timeout_seconds,
        )

        mock_oracle = config.client.mock_oracle
        self._preflight = TransactionPreflight(
            self._client,
            Remedy.REFRESH_PRICE if mock_oracle else Remedy.WAIT_FOR_ORACLE,
        )
        self._prices: PriceOracle = PriceFeedClient(
            self._client,
            self._network,
            config.staleness,
            preflight=self._preflight,
            mock_oracle=mock_oracle,
            sender=self._wallet,
            clock=clock,
        )

        self._rates = ExchangeRateClient(self._client, self._network, config.staleness, clock)
        self._ltv = LTVResolver(self._client, self._network)
        self._erc20 = Erc20Reader(self._client)
        self._marketplace = MarketplaceAdapter(self._client, self._network)
        self._repository = repository if repository is not None else EntityRepository()
        self._flows = FlowTracker()

    @property
    def repository(self) -> EntityRepository:
        return self._repository

    @property
    def flows(self) -> FlowTracker:
        return self._flows

    def asset(self, symbol: str) -> Asset | None:
        return self._network.asset(symbol)

    def asset_at(self, address: str) -> Asset | None:
        return self._network.asset_by_address(address)

    def now(self) -> int:
        return self._prices.now()

    def price_is_stale(self, quote: PriceQuote) -> bool:
        return self._prices.is_stale(quote)

    def rate_is_stale(self, rate: ExchangeRate) -> bool:
        return self._rates.is_stale(rate)

    async def prices(self, symbols: list[str]) -> Result:
        """``Ok({symbol: Result})`` from one concurrent round of feed reads."""
        assets = []
        for symbol in symbols:
            asset = self.asset(symbol)
            if asset is None:
                return Failure(FailureKind.VALIDATION, f"Unknown token '{symbol}'")
            assets.append(asset)

        by_address = await self._prices.get_prices(assets)
        for result in by_address.values():
            if result.ok:
                self._store_quote(result.value)
        return Ok({asset.symbol: by_address[asset.address] for asset in assets})

    async def exchange_rate(self, currency: str) -> Result:
        result = await self._rates.get_rate(currency)
        if result.ok:
            rate = result.value
            self._repository.upsert(EntityType.EXCHANGE_RATE, rate, key=rate.currency)
        return result

    async def ltv_terms(self, symbol: str, days: int) -> Result:
        asset = self.asset(symbol)
        if asset is None:
            return Failure(FailureKind.VALIDATION, f"Unknown token '{symbol}'")
        return await self._ltv.resolve(asset, days)

    def _new_approval(self) -> ApprovalOrchestrator:
        return ApprovalOrchestrator(self._erc20, self._preflight, self._config.approval)

    def _require_wallet(self) -> Failure | None:
        if not self._wallet:
            return Failure(
                FailureKind.VALIDATION, "No wallet address configured (client.wallet_address)"
            )
        return None

    def _store_quote(self, quote: PriceQuote) -> None:
        self._repository.upsert(EntityType.PRICE_QUOTE, quote, key=quote.asset.address)

    def _stale_failure(self, *quotes: PriceQuote) -> Failure | None:
        stale = [q.asset.symbol for q in quotes if self._prices.is_stale(q)]
        if not stale:
            return None
        return Failure(
            FailureKind.STALE,
            f"Price data for {', '.join(stale)} is stale. Refresh the price feed before continuing.",
            self._prices.stale_remedy,
            retryable=True,
        )

    async def refresh_price(self, symbol: str) -> Result:
        """Refresh (mock oracle) or report that the oracle must update."""
        asset = self.asset(symbol)
        if asset is None:
            return Failure(FailureKind.VALIDATION, f"Unknown token '{symbol}'")

        result = await self._prices.refresh(asset)
        if result.ok:
            self._repository.invalidate(EntityType.PRICE_QUOTE, asset.address)
            self._store_quote(result.value)
        return result

    async def wait_for_fresh_price(
        self, symbol: str, timeout: float = 300, poll_interval: float = 15
    ) -> Result:
        asset = self.asset(symbol)
        if asset is None:
            return Failure(FailureKind.VALIDATION, f"Unknown token '{symbol}'")
        result = await self._prices.wait_for_fresh(asset, timeout, poll_interval)
        if result.ok:
            self._store_quote(result.value)
        return result

    def close_flow(self, session: FlowSession) -> None:
        """Abandon a flow; late results for it are discarded."""
        self._flows.reset(session)
