"""LTV schedule lookups against the LTVConfig contract."""
from __future__ import annotations

import asyncio
import logging
import math

from ..chains.evm import ContractRevert
from ..config import NetworkConfig
from ..interfaces.chain import ChainClient
from ..models import BPS_DENOMINATOR, Asset, LTVTerms, Ok, Result, transport_failure, unavailable

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86_400


def duration_days_ceil(duration_seconds: int) -> int:
    """Crypto offers bucket partial days upward."""
    return math.ceil(duration_seconds / SECONDS_PER_DAY) if duration_seconds > 0 else 0


def duration_days_floor(duration_seconds: int) -> int:
    """Fiat offers bucket partial days downward."""
    return duration_seconds // SECONDS_PER_DAY if duration_seconds > 0 else 0


class LTVResolver:
    def __init__(self, client: ChainClient, network: NetworkConfig) -> None:
        self._client = client
        self._ltv_config = network.contract("ltv_config")

    async def resolve(self, asset: Asset, duration_days: int) -> Result:
        """``Ok(LTVTerms)``; check ``terms.available`` before using the ratio."""
        if duration_days <= 0:
            return unavailable("Loan duration must be at least one day")

        try:
            (ltv,), (threshold,) = await asyncio.gather(
                self._client.read(self._ltv_config, "getLTV", asset.address, duration_days),
                self._client.read(
                    self._ltv_config, "getLiquidationThreshold", asset.address, duration_days
                ),
            )
        except (ContractRevert, ValueError) as e:
            return unavailable(f"No LTV terms for {asset.symbol}: {e}")
        except (RuntimeError, TimeoutError) as e:
            logger.error("Error reading LTV for %s/%dd: %s", asset.symbol, duration_days, e)
            return transport_failure(e)

        if int(ltv) > BPS_DENOMINATOR or int(threshold) > BPS_DENOMINATOR:
            return unavailable(
                f"InvalidLTV: {asset.symbol} returned {ltv}/{threshold} bps"
            )

        terms = LTVTerms(
            asset_address=asset.address,
            duration_days=duration_days,
            max_ltv_bps=int(ltv),
            liquidation_threshold_bps=int(threshold),
        )
        if not terms.available:
            logger.info("No LTV terms for %s at %d days", asset.symbol, duration_days)
        return Ok(terms)
