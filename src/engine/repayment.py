"""Pure repayment reconciliation, no I/O."""
from __future__ import annotations

from ..models import RepaymentState, RepaymentStatus, Remedy


def remaining_owed(total_owed: int, already_repaid: int) -> int:
    return max(0, total_owed - already_repaid)


def is_partial(entered: int, remaining: int) -> bool:
    return 0 < entered < remaining


def reconcile(
    total_owed: int,
    already_repaid: int,
    entered: int,
    wallet_balance: int,
    price_stale: bool,
    stale_remedy: Remedy = Remedy.REFRESH_PRICE,
) -> RepaymentState:
    """Classify a repayment attempt.

    ``total_owed`` must come from the contract; interest is never recomputed
    here. Checks run in a fixed order: an empty wallet is reported before any
    amount validation, and stale prices only block partial repayments because
    a full repayment releases all collateral without a price lookup.
    """
    remaining = remaining_owed(total_owed, already_repaid)
    partial = is_partial(entered, remaining)
    sufficient = wallet_balance >= entered

    def state(status: RepaymentStatus, remedy: Remedy = Remedy.NONE, message: str = "") -> RepaymentState:
        return RepaymentState(
            total_owed=total_owed,
            amount_already_repaid=already_repaid,
            remaining_owed=remaining,
            entered_amount=entered,
            is_partial=partial,
            has_sufficient_balance=sufficient,
            status=status,
            remedy=remedy,
            message=message,
        )

    if wallet_balance <= 0:
        return state(
            RepaymentStatus.NO_BALANCE,
            Remedy.GET_BALANCE,
            "You have no balance of the borrowed token to repay with.",
        )
    if remaining == 0:
        return state(RepaymentStatus.NOTHING_OWED, Remedy.NONE, "Nothing left to repay.")
    if entered <= 0:
        return state(
            RepaymentStatus.INVALID_AMOUNT,
            Remedy.ADJUST_AMOUNT,
            "Enter an amount greater than zero.",
        )
    if entered > remaining:
        return state(
            RepaymentStatus.EXCEEDS_REMAINING,
            Remedy.ADJUST_AMOUNT,
            "Amount exceeds the remaining balance owed.",
        )
    if not sufficient:
        return state(
            RepaymentStatus.INSUFFICIENT_BALANCE,
            Remedy.GET_BALANCE,
            "Wallet balance is lower than the repayment amount.",
        )
    if partial and price_stale:
        return state(
            RepaymentStatus.STALE_PRICE,
            stale_remedy,
            "Price data is stale. Partial repayments need a fresh price; "
            "full repayment is still possible.",
        )
    return state(RepaymentStatus.READY)
