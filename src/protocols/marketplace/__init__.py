from .adapter import MarketplaceAdapter

__all__ = ["MarketplaceAdapter"]
