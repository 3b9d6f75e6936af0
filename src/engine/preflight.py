"""Transaction preflight: simulate, submit, and confirm state-changing calls."""
from __future__ import annotations

import logging

from ..chains.evm import ContractRevert
from ..interfaces.chain import ChainClient
from ..models import (
    ContractCall,
    Failure,
    FailureKind,
    Ok,
    Receipt,
    Remedy,
    Result,
    transport_failure,
)
from .revert_reasons import explain_revert, is_stale_price_reason

logger = logging.getLogger(__name__)


class TransactionPreflight:
    """Every write goes through :meth:`submit_and_confirm`.

    The call that is simulated is the exact object that is submitted, so the
    sender, target and arguments cannot drift between the two.
    """

    def __init__(self, client: ChainClient, stale_remedy: Remedy = Remedy.REFRESH_PRICE) -> None:
        self._client = client
        self._stale_remedy = stale_remedy

    def _revert_failure(self, error: ContractRevert, kind: FailureKind) -> Failure:
        reason = explain_revert(error.revert_data, error.message)
        if is_stale_price_reason(reason, error.message):
            return Failure(kind, reason, self._stale_remedy, retryable=True)
        return Failure(kind, reason, Remedy.NONE, retryable=False)

    async def simulate(self, call: ContractCall) -> Result:
        """Dry-run ``call``; ``Ok(call)`` means it would not revert right now."""
        try:
            await self._client.simulate(call)
        except ContractRevert as e:
            failure = self._revert_failure(e, FailureKind.SIMULATION_REVERT)
            logger.info("Preflight of %s reverted: %s", call.function, failure.message)
            return failure
        except (RuntimeError, TimeoutError) as e:
            logger.warning("Preflight of %s failed: %s", call.function, e)
            return transport_failure(e)

        logger.debug("Preflight of %s passed", call.function)
        return Ok(call)

    async def submit_and_confirm(self, call: ContractCall) -> Result:
        """Preflight, submit, await the receipt.

        A mined-but-reverted receipt is a retryable failure, never a success.
        """
        preflight = await self.simulate(call)
        if not preflight.ok:
            return preflight

        try:
            tx_hash = await self._client.send_transaction(call)
        except ContractRevert as e:
            # Some nodes re-simulate during gas estimation.
            return self._revert_failure(e, FailureKind.SIMULATION_REVERT)
        except (RuntimeError, TimeoutError) as e:
            logger.error("Submitting %s failed: %s", call.function, e)
            return transport_failure(e)

        try:
            receipt: Receipt = await self._client.wait_for_receipt(tx_hash)
        except (RuntimeError, TimeoutError) as e:
            logger.error("Waiting for %s (%s) failed: %s", call.function, tx_hash, e)
            return Failure(
                FailureKind.TRANSPORT,
                f"Transaction {tx_hash} was not confirmed: {e}",
                Remedy.RETRY,
                retryable=True,
            )

        if not receipt.success:
            logger.warning(
                "%s passed preflight but reverted on-chain (%s)", call.function, tx_hash
            )
            return Failure(
                FailureKind.ONCHAIN_REVERT,
                f"Transaction {tx_hash} reverted on-chain; chain state changed "
                "after simulation. Review the inputs and try again.",
                Remedy.RETRY,
                retryable=True,
            )

        return Ok(receipt)
