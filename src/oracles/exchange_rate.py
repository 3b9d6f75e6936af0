"""Fiat exchange rates (units per USD, 8 decimals) from the fiat oracle."""
from __future__ import annotations

import logging
import time
from typing import Callable

from ..chains.evm import ContractRevert
from ..chains.evm.abi import is_zero_address
from ..config import NetworkConfig, StalenessConfig
from ..interfaces.chain import ChainClient
from ..models import (
    FIAT_CURRENCY_SYMBOLS,
    PRICE_SCALE,
    ExchangeRate,
    FailureKind,
    Failure,
    Ok,
    Result,
    transport_failure,
    unavailable,
)

logger = logging.getLogger(__name__)

RATE_SCALE = PRICE_SCALE


def to_usd_cents(amount_cents: int, rate_per_usd: int) -> int | None:
    """Local-currency cents → USD cents, truncating. ``None`` if rate unknown."""
    if rate_per_usd <= 0:
        return None
    return amount_cents * RATE_SCALE // rate_per_usd


def from_usd_cents(usd_cents: int, rate_per_usd: int) -> int | None:
    """USD cents → local-currency cents, truncating. ``None`` if rate unknown."""
    if rate_per_usd <= 0:
        return None
    return usd_cents * rate_per_usd // RATE_SCALE


class ExchangeRateClient:
    """Fiat-per-USD rates with a one-hour staleness window."""

    def __init__(
        self,
        client: ChainClient,
        network: NetworkConfig,
        staleness: StalenessConfig,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._client = client
        self._oracle = network.contract("fiat_oracle")
        self.supported = network.fiat_supported and not is_zero_address(self._oracle)
        self.max_age = staleness.exchange_rate_max_age_seconds
        self._clock = clock

    def now(self) -> int:
        return int(self._clock())

    def is_stale(self, rate: ExchangeRate) -> bool:
        return rate.is_stale(self.now(), self.max_age)

    async def get_rate(self, currency: str) -> Result:
        code = currency.upper()
        if code not in FIAT_CURRENCY_SYMBOLS:
            return Failure(FailureKind.VALIDATION, f"Unsupported currency '{currency}'")
        if code == "USD":
            return Ok(ExchangeRate(currency="USD", rate_per_usd=RATE_SCALE, updated_at=self.now()))
        if not self.supported:
            return Failure(
                FailureKind.UNSUPPORTED, "Fiat loans are not available on this network"
            )

        try:
            rate, updated_at = await self._client.read(self._oracle, "getExchangeRate", code)
        except (ContractRevert, ValueError) as e:
            return unavailable(f"Exchange rate for {code} unavailable: {e}")
        except (RuntimeError, TimeoutError) as e:
            logger.error("Error fetching %s exchange rate: %s", code, e)
            return transport_failure(e)

        if int(rate) == 0:
            return unavailable(f"No exchange rate set for {code}")

        logger.debug("%s per USD: %.4f", code, int(rate) / RATE_SCALE)
        return Ok(ExchangeRate(currency=code, rate_per_usd=int(rate), updated_at=int(updated_at)))
