"""Price oracle protocol — USD price feed abstraction."""
from typing import Protocol

from ..models import Asset, PriceQuote, Remedy, Result


class PriceOracle(Protocol):
    """Abstract interface for reading and refreshing asset prices."""

    @property
    def stale_remedy(self) -> Remedy: ...

    def now(self) -> int: ...

    def is_stale(self, quote: PriceQuote) -> bool: ...

    async def get_price(self, asset: Asset) -> Result: ...

    async def get_prices(self, assets: list[Asset]) -> dict[str, Result]: ...

    async def refresh(self, asset: Asset) -> Result: ...

    async def wait_for_fresh(self, asset: Asset, timeout: float, poll_interval: float) -> Result: ...
