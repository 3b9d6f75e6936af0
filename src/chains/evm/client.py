"""EVM JSON-RPC client with endpoint fallback, batched reads and receipts."""
from __future__ import annotations

import asyncio
import logging
import ssl
import time
from typing import Any

import aiohttp
import certifi

from ...config import ChainConfig
from ...models import ContractCall, Receipt
from .abi import checksum, decode_result, encode_call

logger = logging.getLogger(__name__)


class RpcError(Exception):
    """JSON-RPC error object returned by a node."""

    def __init__(self, code: int, message: str, data: Any = None) -> None:
        super().__init__(f"RPC Error {code}: {message}")
        self.code = code
        self.message = message
        self.data = data


class ContractRevert(RpcError):
    """The node executed the call and it reverted.

    A revert is an answer about chain state, not an endpoint failure, so it is
    never retried against another endpoint.
    """

    @property
    def revert_data(self) -> str | None:
        data = self.data
        if isinstance(data, dict):
            data = data.get("data")
        if isinstance(data, str) and data.startswith("0x") and len(data) >= 10:
            return data
        return None


def _rpc_error(error: dict[str, Any]) -> RpcError:
    code = int(error.get("code", 0))
    message = str(error.get("message", ""))
    data = error.get("data")
    if code == 3 or "revert" in message.lower():
        return ContractRevert(code, message, data)
    return RpcError(code, message, data)


class EvmClient:
    """EVM RPC client with automatic endpoint fallback."""

    def __init__(
        self,
        config: ChainConfig,
        batch_size: int = 50,
        receipt_poll_interval: float = 2.0,
        receipt_timeout: float = 120,
    ) -> None:
        self.endpoints = list(config.rpc_endpoints)
        self.timeout = config.rpc_timeout
        self.current_rpc_index = 0
        self.batch_size = batch_size
        self.receipt_poll_interval = receipt_poll_interval
        self.receipt_timeout = receipt_timeout
        self._request_id = 0

    def _next_id(self) -> int:
        self._request_id += 1
        return self._request_id

    async def _post(self, payload: Any, idempotent: bool = True) -> Any:
        """POST a JSON-RPC payload (single or batch) with endpoint fallback.

        Non-idempotent payloads get one attempt: a timeout does not tell us
        whether the node accepted the transaction, so it is never re-sent.
        """
        ssl_context = ssl.create_default_context(cafile=certifi.where())

        last_error: Exception | None = None
        for attempt in range(len(self.endpoints)):
            rpc_index = (self.current_rpc_index + attempt) % len(self.endpoints)
            rpc_url = self.endpoints[rpc_index]

            try:
                connector = aiohttp.TCPConnector(ssl=ssl_context)
                async with aiohttp.ClientSession(connector=connector) as session:
                    async with session.post(
                        rpc_url,
                        json=payload,
                        timeout=aiohttp.ClientTimeout(total=self.timeout),
                    ) as response:
                        result = await response.json()
                        if isinstance(result, dict) and "error" in result:
                            raise _rpc_error(result["error"])

                        if rpc_index != self.current_rpc_index:
                            logger.info("Switched to RPC endpoint: %s", rpc_url)
                            self.current_rpc_index = rpc_index

                        return result
            except ContractRevert:
                raise
            except Exception as e:
                last_error = e
                logger.warning("RPC endpoint %s failed: %s", rpc_url, e)
                if not idempotent:
                    raise RuntimeError(
                        f"RPC endpoint {rpc_url} failed; not retrying a write: {e}"
                    ) from e
                if attempt < len(self.endpoints) - 1:
                    logger.info("Trying next endpoint...")
                continue

        raise RuntimeError(f"All RPC endpoints failed. Last error: {last_error}")

    async def rpc_call(
        self, method: str, params: list[Any], idempotent: bool = True
    ) -> Any:
        """Make RPC call with fallback to alternative endpoints."""
        payload = {
            "jsonrpc": "2.0",
            "id": self._next_id(),
            "method": method,
            "params": params,
        }
        result = await self._post(payload, idempotent=idempotent)
        return result.get("result")

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def call(self, to: str, data: str, sender: str | None = None) -> str:
        tx: dict[str, Any] = {"to": checksum(to), "data": data}
        if sender:
            tx["from"] = checksum(sender)
        return await self.rpc_call("eth_call", [tx, "latest"])

    async def read(self, address: str, function: str, *args: Any) -> tuple[Any, ...]:
        """Call a view function and decode its outputs."""
        raw = await self.call(address, encode_call(function, *args))
        return decode_result(function, raw)

    async def read_many(
        self, requests: list[tuple[str, str, tuple[Any, ...]]]
    ) -> list[tuple[Any, ...] | None]:
        """Batched view calls: ``(address, function, args)`` per item.

        Items that revert or fail to decode come back as ``None``; the batch
        as a whole only fails on transport errors.
        """
        calls = [(address, encode_call(fn, *args)) for address, fn, args in requests]
        raw_results = await self.batch_call(calls)

        decoded: list[tuple[Any, ...] | None] = []
        for (_, fn, _), raw in zip(requests, raw_results):
            if raw is None:
                decoded.append(None)
                continue
            try:
                decoded.append(decode_result(fn, raw))
            except Exception as e:
                logger.debug("Could not decode %s result: %s", fn, e)
                decoded.append(None)
        return decoded

    async def batch_call(self, calls: list[tuple[str, str]]) -> list[str | None]:
        """Send ``eth_call``s as JSON-RPC batches of at most ``batch_size``."""
        results: list[str | None] = []
        for start in range(0, len(calls), self.batch_size):
            chunk = calls[start : start + self.batch_size]
            payload = [
                {
                    "jsonrpc": "2.0",
                    "id": i,
                    "method": "eth_call",
                    "params": [{"to": checksum(to), "data": data}, "latest"],
                }
                for i, (to, data) in enumerate(chunk)
            ]
            response = await self._post(payload)
            if not isinstance(response, list):
                raise RuntimeError(f"Unexpected batch response: {response!r}")

            by_id = {item.get("id"): item for item in response}
            for i in range(len(chunk)):
                item = by_id.get(i, {})
                if "error" in item:
                    logger.debug("Batch item %d failed: %s", start + i, item["error"])
                    results.append(None)
                else:
                    results.append(item.get("result"))
        return results

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    @staticmethod
    def _transaction(call: ContractCall) -> dict[str, Any]:
        tx: dict[str, Any] = {
            "to": checksum(call.to),
            "data": encode_call(call.function, *call.args),
        }
        if call.sender:
            tx["from"] = checksum(call.sender)
        if call.value:
            tx["value"] = hex(call.value)
        return tx

    async def simulate(self, call: ContractCall) -> str:
        """Dry-run ``call`` with ``eth_call``; raises :class:`ContractRevert`."""
        return await self.rpc_call("eth_call", [self._transaction(call), "latest"])

    async def send_transaction(self, call: ContractCall) -> str:
        tx_hash = await self.rpc_call(
            "eth_sendTransaction", [self._transaction(call)], idempotent=False
        )
        logger.info("Submitted %s to %s: %s", call.function, call.to, tx_hash)
        return tx_hash

    async def get_receipt(self, tx_hash: str) -> dict[str, Any] | None:
        return await self.rpc_call("eth_getTransactionReceipt", [tx_hash])

    async def wait_for_receipt(self, tx_hash: str) -> Receipt:
        """Poll for the receipt until mined or ``receipt_timeout`` elapses."""
        deadline = time.monotonic() + self.receipt_timeout
        while True:
            raw = await self.get_receipt(tx_hash)
            if raw:
                receipt = Receipt(
                    tx_hash=tx_hash,
                    success=int(raw.get("status", "0x0"), 16) == 1,
                    block_number=int(raw.get("blockNumber", "0x0"), 16),
                    gas_used=int(raw.get("gasUsed", "0x0"), 16),
                    raw=raw,
                )
                logger.info(
                    "Transaction %s mined in block %d (%s)",
                    tx_hash,
                    receipt.block_number,
                    "success" if receipt.success else "reverted",
                )
                return receipt

            if time.monotonic() >= deadline:
                raise TimeoutError(
                    f"Transaction {tx_hash} not mined within {self.receipt_timeout}s"
                )
            await asyncio.sleep(self.receipt_poll_interval)
