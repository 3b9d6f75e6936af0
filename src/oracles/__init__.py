"""Price and exchange-rate oracle clients."""
from .exchange_rate import ExchangeRateClient, from_usd_cents, to_usd_cents
from .price_feed import PriceFeedClient

__all__ = ["ExchangeRateClient", "PriceFeedClient", "from_usd_cents", "to_usd_cents"]
