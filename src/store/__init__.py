"""Entity storage."""
from .repository import EntityRepository

__all__ = ["EntityRepository"]
