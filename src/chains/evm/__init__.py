"""EVM chain client."""
from .client import ContractRevert, EvmClient, RpcError

__all__ = ["ContractRevert", "EvmClient", "RpcError"]
