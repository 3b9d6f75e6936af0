"""Chain client protocol — contract read/write/simulate boundary."""
from typing import Any, Protocol

from ..models import ContractCall, Receipt


class ChainClient(Protocol):
    """Abstract interface for EVM contract interactions."""

    async def read(self, address: str, function: str, *args: Any) -> tuple[Any, ...]: ...

    async def read_many(
        self, requests: list[tuple[str, str, tuple[Any, ...]]]
    ) -> list[tuple[Any, ...] | None]: ...

    async def simulate(self, call: ContractCall) -> str: ...

    async def send_transaction(self, call: ContractCall) -> str: ...

    async def wait_for_receipt(self, tx_hash: str) -> Receipt: ...
