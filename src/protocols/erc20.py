"""ERC20 allowance and balance reads."""
from __future__ import annotations

from ..interfaces.chain import ChainClient
from ..models import ContractCall


class Erc20Reader:
    def __init__(self, client: ChainClient) -> None:
        self._client = client

    async def allowance(self, token: str, owner: str, spender: str) -> int:
        (value,) = await self._client.read(token, "allowance", owner, spender)
        return int(value)

    async def balance_of(self, token: str, owner: str) -> int:
        (value,) = await self._client.read(token, "balanceOf", owner)
        return int(value)

    @staticmethod
    def approve_call(token: str, spender: str, amount: int, sender: str) -> ContractCall:
        return ContractCall(to=token, function="approve", args=(spender, amount), sender=sender)
