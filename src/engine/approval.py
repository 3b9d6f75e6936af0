"""Approval-then-action state machine for spend-requiring operations."""
from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Awaitable, Callable

from ..chains.evm import ContractRevert
from ..config import ApprovalConfig
from ..models import (
    BPS_DENOMINATOR,
    ContractCall,
    Failure,
    FailureKind,
    Ok,
    Remedy,
    Result,
    transport_failure,
    unavailable,
)
from ..protocols.erc20 import Erc20Reader
from .preflight import TransactionPreflight

logger = logging.getLogger(__name__)


class ApprovalStep(str, Enum):
    INPUT = "input"
    NEEDS_APPROVAL = "needs_approval"
    APPROVED = "approved"
    SUBMITTING = "submitting"
    DONE = "done"
    ERROR = "error"


TRANSITIONS: dict[ApprovalStep, frozenset[ApprovalStep]] = {
    ApprovalStep.INPUT: frozenset(
        {ApprovalStep.NEEDS_APPROVAL, ApprovalStep.APPROVED, ApprovalStep.ERROR}
    ),
    ApprovalStep.NEEDS_APPROVAL: frozenset({ApprovalStep.APPROVED, ApprovalStep.ERROR}),
    ApprovalStep.APPROVED: frozenset({ApprovalStep.SUBMITTING, ApprovalStep.ERROR}),
    ApprovalStep.SUBMITTING: frozenset({ApprovalStep.DONE, ApprovalStep.ERROR}),
    ApprovalStep.ERROR: frozenset({ApprovalStep.INPUT}),
    ApprovalStep.DONE: frozenset(),
}


class InvalidTransition(Exception):
    pass


def approval_amount(required: int, buffer_bps: int = 100) -> int:
    """Amount to approve: ``required`` plus a small margin, never less."""
    return required + max(0, required * buffer_bps // BPS_DENOMINATOR)


class ApprovalOrchestrator:
    """Drives INPUT → (NEEDS_APPROVAL →) APPROVED → SUBMITTING → DONE.

    Allowance is shared mutable chain state, so it is re-read before every
    decision and again after an approval lands; a cached value is never
    trusted.
    """

    def __init__(
        self,
        erc20: Erc20Reader,
        preflight: TransactionPreflight,
        config: ApprovalConfig,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._erc20 = erc20
        self._preflight = preflight
        self._config = config
        self._sleep = sleep
        self.step = ApprovalStep.INPUT
        self.history: list[ApprovalStep] = [ApprovalStep.INPUT]
        self.last_failure: Failure | None = None

    def _move(self, target: ApprovalStep) -> None:
        if target not in TRANSITIONS[self.step]:
            raise InvalidTransition(f"{self.step.value} → {target.value}")
        logger.debug("Approval step %s → %s", self.step.value, target.value)
        self.step = target
        self.history.append(target)

    def _fail(self, failure: Failure) -> Failure:
        """ERROR then back to INPUT so the flow stays retryable."""
        self._move(ApprovalStep.ERROR)
        self.last_failure = failure
        self._move(ApprovalStep.INPUT)
        return failure

    def reset(self) -> None:
        """Abandon the flow; the next run starts from INPUT."""
        self.step = ApprovalStep.INPUT
        self.history = [ApprovalStep.INPUT]
        self.last_failure = None

    async def decide(self, token: str, owner: str, spender: str, required: int) -> Result:
        """Route INPUT to APPROVED or NEEDS_APPROVAL from a fresh allowance read."""
        if self.step is not ApprovalStep.INPUT:
            raise InvalidTransition(f"decide() called in step {self.step.value}")
        try:
            allowance = await self._erc20.allowance(token, owner, spender)
        except (ContractRevert, ValueError) as e:
            return self._fail(unavailable(f"Allowance unavailable: {e}"))
        except (RuntimeError, TimeoutError) as e:
            return self._fail(transport_failure(e))

        target = (
            ApprovalStep.APPROVED if allowance >= required else ApprovalStep.NEEDS_APPROVAL
        )
        logger.info(
            "Allowance %d vs required %d → %s", allowance, required, target.value
        )
        self._move(target)
        return Ok(target)

    async def _confirmed_allowance(
        self, token: str, owner: str, spender: str, required: int
    ) -> int:
        allowance = await self._erc20.allowance(token, owner, spender)
        retries = self._config.allowance_retries
        while allowance < required and retries > 0:
            logger.info(
                "Allowance %d still below %d after approval; re-checking in %.1fs",
                allowance,
                required,
                self._config.allowance_retry_delay_seconds,
            )
            await self._sleep(self._config.allowance_retry_delay_seconds)
            allowance = await self._erc20.allowance(token, owner, spender)
            retries -= 1
        return allowance

    async def approve(self, token: str, owner: str, spender: str, required: int) -> Result:
        """Submit a buffered approval and wait until the allowance reflects it."""
        if self.step is not ApprovalStep.NEEDS_APPROVAL:
            raise InvalidTransition(f"approve() called in step {self.step.value}")

        amount = approval_amount(required, self._config.buffer_bps)
        call = Erc20Reader.approve_call(token, spender, amount, owner)
        outcome = await self._preflight.submit_and_confirm(call)
        if not outcome.ok:
            return self._fail(outcome)

        try:
            allowance = await self._confirmed_allowance(token, owner, spender, amount)
        except (ContractRevert, ValueError) as e:
            return self._fail(unavailable(f"Allowance unavailable: {e}"))
        except (RuntimeError, TimeoutError) as e:
            return self._fail(transport_failure(e))

        if allowance < amount:
            return self._fail(
                Failure(
                    FailureKind.VALIDATION,
                    f"Approval confirmed but allowance is {allowance}, below {amount}.",
                    Remedy.APPROVE_AGAIN,
                    retryable=True,
                )
            )

        self._move(ApprovalStep.APPROVED)
        return Ok(outcome.value)

    async def execute(self, action: ContractCall) -> Result:
        """Preflight, submit and confirm the dependent action."""
        if self.step is not ApprovalStep.APPROVED:
            raise InvalidTransition(f"execute() called in step {self.step.value}")
        self._move(ApprovalStep.SUBMITTING)
        outcome = await self._preflight.submit_and_confirm(action)
        if not outcome.ok:
            return self._fail(outcome)
        self._move(ApprovalStep.DONE)
        return outcome

    def _abandoned(self) -> Failure:
        """The owning flow went away; drop back to INPUT without touching the chain."""
        logger.info("Flow closed in step %s; not submitting the action", self.step.value)
        self._move(ApprovalStep.ERROR)
        self._move(ApprovalStep.INPUT)
        return Failure(
            FailureKind.ABANDONED,
            "The flow was closed before its transaction was submitted.",
        )

    async def run(
        self,
        token: str,
        owner: str,
        spender: str,
        required: int,
        action: ContractCall,
        is_active: Callable[[], bool] | None = None,
    ) -> Result:
        """Full sequence; returns the action's receipt or the first failure.

        ``is_active`` is consulted after every await that precedes the action,
        so a flow closed while an approval mines never submits the action.
        """
        decision = await self.decide(token, owner, spender, required)
        if not decision.ok:
            return decision
        if is_active is not None and not is_active():
            return self._abandoned()

        if self.step is ApprovalStep.NEEDS_APPROVAL:
            approved = await self.approve(token, owner, spender, required)
            if not approved.ok:
                return approved
            if is_active is not None and not is_active():
                return self._abandoned()

        return await self.execute(action)
