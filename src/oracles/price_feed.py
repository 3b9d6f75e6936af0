"""On-chain price feed client (Configuration.priceFeeds → Chainlink-style feed)."""
from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable

from ..chains.evm import ContractRevert
from ..chains.evm.abi import is_zero_address
from ..config import NetworkConfig, StalenessConfig
from ..engine.preflight import TransactionPreflight
from ..interfaces.chain import ChainClient
from ..models import (
    Asset,
    ContractCall,
    Failure,
    FailureKind,
    Ok,
    PriceQuote,
    Remedy,
    Result,
    transport_failure,
    unavailable,
)

logger = logging.getLogger(__name__)


class PriceFeedClient:
    """Read USD prices (8 decimals) and their last-update time."""

    def __init__(
        self,
        client: ChainClient,
        network: NetworkConfig,
        staleness: StalenessConfig,
        preflight: TransactionPreflight | None = None,
        mock_oracle: bool = False,
        sender: str = "",
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._client = client
        self._configuration = network.contract("configuration")
        self.max_age = staleness.price_max_age_seconds
        self._preflight = preflight
        self.mock_oracle = mock_oracle
        self._sender = sender
        self._clock = clock

    def now(self) -> int:
        return int(self._clock())

    def is_stale(self, quote: PriceQuote) -> bool:
        return quote.is_stale(self.now(), self.max_age)

    @property
    def stale_remedy(self) -> Remedy:
        return Remedy.REFRESH_PRICE if self.mock_oracle else Remedy.WAIT_FOR_ORACLE

    async def get_price(self, asset: Asset) -> Result:
        """``Ok(PriceQuote)`` or an explicit unavailable/transport failure."""
        try:
            (feed,) = await self._client.read(self._configuration, "priceFeeds", asset.address)
            if is_zero_address(feed):
                return unavailable(f"NotConfigured: no price feed for {asset.symbol}")

            round_data = await self._client.read(feed, "latestRoundData")
        except (ContractRevert, ValueError) as e:
            return unavailable(f"Price for {asset.symbol} unavailable: {e}")
        except (RuntimeError, TimeoutError) as e:
            logger.error("Error fetching price for %s: %s", asset.symbol, e)
            return transport_failure(e)

        answer, updated_at = int(round_data[1]), int(round_data[3])
        if answer <= 0:
            return unavailable(f"InvalidPrice: feed for {asset.symbol} returned {answer}")

        quote = PriceQuote(asset=asset, price=answer, updated_at=updated_at, feed_address=feed)
        logger.debug(
            "%s price $%.4f (age %ds)", asset.symbol, answer / 1e8, quote.age(self.now())
        )
        return Ok(quote)

    async def get_prices(self, assets: list[Asset]) -> dict[str, Result]:
        """Concurrent :meth:`get_price` keyed by asset address."""
        results = await asyncio.gather(*(self.get_price(a) for a in assets))
        return {asset.address: result for asset, result in zip(assets, results)}

    async def refresh(self, asset: Asset) -> Result:
        """Re-stamp a mock feed with its current answer, then re-read it.

        Only test oracles accept ``updateAnswer``; against a real oracle the
        caller must wait for the publisher instead (:meth:`wait_for_fresh`).
        The returned quote always comes from a chain read after confirmation.
        """
        if not self.mock_oracle or self._preflight is None:
            return Failure(
                FailureKind.UNSUPPORTED,
                "Price refresh is not available on this oracle; wait for the oracle publisher to update.",
                Remedy.WAIT_FOR_ORACLE,
            )

        current = await self.get_price(asset)
        if not current.ok:
            return current
        quote: PriceQuote = current.value

        call = ContractCall(
            to=quote.feed_address,
            function="updateAnswer",
            args=(quote.price,),
            sender=self._sender,
        )
        outcome = await self._preflight.submit_and_confirm(call)
        if not outcome.ok:
            return outcome

        logger.info("Refreshed %s price feed %s", asset.symbol, quote.feed_address)
        return await self.get_price(asset)

    async def wait_for_fresh(
        self, asset: Asset, timeout: float = 300, poll_interval: float = 15
    ) -> Result:
        """Poll until the feed is fresh; STALE failure after ``timeout``."""
        deadline = time.monotonic() + timeout
        while True:
            result = await self.get_price(asset)
            if not result.ok:
                return result
            if not self.is_stale(result.value):
                return result
            if time.monotonic() >= deadline:
                return Failure(
                    FailureKind.STALE,
                    f"{asset.symbol} price is still stale after {timeout:.0f}s",
                    Remedy.WAIT_FOR_ORACLE,
                    retryable=True,
                )
            await asyncio.sleep(poll_interval)
