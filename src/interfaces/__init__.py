"""Protocol interfaces for the lending client."""
from .chain import ChainClient
from .price_oracle import PriceOracle

__all__ = ["ChainClient", "PriceOracle"]
