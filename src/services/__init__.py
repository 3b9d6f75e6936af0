"""Service modules"""
from .dashboard import DashboardAggregator
from .flows import FlowSession, FlowTracker
from .marketplace import MarketplaceAggregator

__all__ = ["DashboardAggregator", "FlowSession", "FlowTracker", "MarketplaceAggregator"]
