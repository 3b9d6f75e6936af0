"""Borrower dashboard: loan lists, position health and the repay flow."""
from __future__ import annotations

import asyncio
import logging

from ..chains.evm import ContractRevert
from ..engine.collateral import loan_health
from ..engine.ltv import duration_days_ceil
from ..engine.repayment import reconcile, remaining_owed
from ..models import (
    EntityType,
    Failure,
    FailureKind,
    FiatLoan,
    Loan,
    LoanRequest,
    LoanStatus,
    LTVTerms,
    Ok,
    RepaymentState,
    RepaymentStatus,
    Result,
    transport_failure,
    unavailable,
)
from .base import LendingService
from .flows import FlowSession

logger = logging.getLogger(__name__)

REPAY_FLOW = "repay"


class DashboardAggregator(LendingService):
    """Reads a wallet's loans and drives repayments against them."""

    # ------------------------------------------------------------------
    # Lists
    # ------------------------------------------------------------------

    async def _all_loans(self) -> list[Loan]:
        loans = await self._marketplace.list_loans()
        self._repository.upsert_batch(EntityType.LOAN, loans)
        return loans

    async def borrowed_loans(self) -> Result:
        try:
            loans = await self._all_loans()
        except (RuntimeError, TimeoutError) as e:
            return transport_failure(e)
        wallet = self._wallet.lower()
        return Ok([loan for loan in loans if loan.borrower.lower() == wallet])

    async def lent_loans(self) -> Result:
        try:
            loans = await self._all_loans()
        except (RuntimeError, TimeoutError) as e:
            return transport_failure(e)
        wallet = self._wallet.lower()
        return Ok([loan for loan in loans if loan.lender.lower() == wallet])

    async def my_loan_requests(self) -> Result:
        try:
            requests: list[LoanRequest] = await self._marketplace.list_loan_requests()
        except (RuntimeError, TimeoutError) as e:
            return transport_failure(e)
        self._repository.upsert_batch(EntityType.LOAN_REQUEST, requests)
        wallet = self._wallet.lower()
        return Ok([r for r in requests if r.borrower.lower() == wallet])

    async def my_fiat_loans(self) -> Result:
        if not self._rates.supported:
            return Failure(
                FailureKind.UNSUPPORTED, "Fiat loans are not available on this network"
            )
        try:
            loans: list[FiatLoan] = await self._marketplace.list_fiat_loans()
        except (RuntimeError, TimeoutError) as e:
            return transport_failure(e)
        self._repository.upsert_batch(EntityType.FIAT_LOAN, loans)
        wallet = self._wallet.lower()
        return Ok([loan for loan in loans if loan.borrower.lower() == wallet])

    async def position_health(self, loan_id: int) -> Result:
        """Current LTV, health factor and liquidation price at live prices."""
        loan_result = await self._read_loan(loan_id)
        if not loan_result.ok:
            return loan_result
        loan, total_owed = loan_result.value

        collateral = self.asset_at(loan.collateral_asset)
        borrow = self.asset_at(loan.borrow_asset)
        if collateral is None or borrow is None:
            return unavailable(f"Unknown asset on loan {loan_id}")

        terms_result, collateral_price, borrow_price = await asyncio.gather(
            self._ltv.resolve(collateral, duration_days_ceil(loan.duration)),
            self._prices.get_price(collateral),
            self._prices.get_price(borrow),
        )
        for result in (terms_result, collateral_price, borrow_price):
            if not result.ok:
                return result
        for quote in (collateral_price.value, borrow_price.value):
            self._store_quote(quote)
        stale = self._stale_failure(collateral_price.value, borrow_price.value)
        if stale:
            return stale

        terms: LTVTerms = terms_result.value
        if not terms.available:
            return unavailable(f"No LTV terms available for loan {loan_id}")
        health = loan_health(
            loan.collateral_amount - loan.collateral_released,
            collateral_price.value.price,
            collateral.decimals,
            remaining_owed(total_owed, loan.amount_repaid),
            borrow_price.value.price,
            borrow.decimals,
            terms.max_ltv_bps,
            terms.liquidation_threshold_bps,
        )
        logger.info(
            "Loan %d: LTV %s bps, health factor %s bps",
            loan_id,
            health.current_ltv_bps,
            health.health_factor_bps,
        )
        return Ok(health)

    # ------------------------------------------------------------------
    # Repay flow
    # ------------------------------------------------------------------

    def open_repay(self, loan_id: int) -> FlowSession:
        return self._flows.begin(REPAY_FLOW, loan_id)

    async def loan_borrow_asset(self, loan_id: int) -> Result:
        """The token a loan is repaid in, for parsing user amounts."""
        loan_result = await self._read_loan(loan_id)
        if not loan_result.ok:
            return loan_result
        loan, _ = loan_result.value
        asset = self.asset_at(loan.borrow_asset)
        if asset is None:
            return unavailable(f"Unknown borrow asset {loan.borrow_asset}")
        return Ok(asset)

    async def _read_loan(self, loan_id: int) -> Result:
        try:
            loan, total_owed = await asyncio.gather(
                self._marketplace.get_loan(loan_id),
                self._marketplace.total_owed(loan_id),
            )
        except (ContractRevert, ValueError) as e:
            return unavailable(f"Loan {loan_id} unavailable: {e}")
        except (RuntimeError, TimeoutError) as e:
            return transport_failure(e)

        if loan is None:
            return unavailable(f"Loan {loan_id} not found")
        self._repository.upsert(EntityType.LOAN, loan)
        return Ok((loan, total_owed))

    async def repay_status(self, session: FlowSession, amount: int) -> Result:
        """Reconcile ``amount`` against fresh loan, balance and price reads."""
        missing = self._require_wallet()
        if missing:
            return missing

        loan_result = await self._read_loan(session.subject_id)
        if not loan_result.ok:
            return self._flows.guard(session, loan_result)
        loan, total_owed = loan_result.value

        if loan.status is not LoanStatus.ACTIVE:
            return self._flows.guard(
                session,
                Failure(FailureKind.VALIDATION, f"Loan {loan.loan_id} is {loan.status.name.lower()}"),
            )

        asset = self.asset_at(loan.borrow_asset)
        if asset is None:
            return self._flows.guard(
                session, unavailable(f"Unknown borrow asset {loan.borrow_asset}")
            )

        try:
            balance, price = await asyncio.gather(
                self._erc20.balance_of(asset.address, self._wallet),
                self._prices.get_price(asset),
            )
        except (ContractRevert, ValueError) as e:
            return self._flows.guard(session, unavailable(f"Balance unavailable: {e}"))
        except (RuntimeError, TimeoutError) as e:
            return self._flows.guard(session, transport_failure(e))

        # Without a price there is nothing to prove freshness with.
        price_stale = True
        if price.ok:
            self._store_quote(price.value)
            price_stale = self._prices.is_stale(price.value)
        else:
            logger.info("No %s price for repay of loan %d: %s", asset.symbol, loan.loan_id, price.message)

        state = reconcile(
            total_owed,
            loan.amount_repaid,
            amount,
            balance,
            price_stale,
            self._prices.stale_remedy,
        )
        logger.info(
            "Loan %d: owed %d, repaid %d, remaining %d, entered %d → %s",
            loan.loan_id,
            state.total_owed,
            state.amount_already_repaid,
            state.remaining_owed,
            amount,
            state.status.value,
        )

        flow = self._flows.state(session)
        if flow is not None:
            flow.amount = amount
            flow.collateral_token = loan.borrow_asset
        return self._flows.guard(session, Ok(state))

    @staticmethod
    def _blocked(state: RepaymentState) -> Failure:
        if state.status is RepaymentStatus.STALE_PRICE:
            return Failure(FailureKind.STALE, state.message, state.remedy, retryable=True)
        return Failure(FailureKind.VALIDATION, state.message, state.remedy)

    async def repay(self, session: FlowSession, amount: int) -> Result:
        """Re-check, approve if needed, repay, then refetch the loan."""
        status = await self.repay_status(session, amount)
        if not status.ok:
            return status
        state: RepaymentState = status.value
        if not state.can_submit:
            return self._blocked(state)

        loan: Loan = self._repository.get(EntityType.LOAN, session.subject_id)
        approval = self._new_approval()
        flow = self._flows.state(session)
        if flow is not None:
            flow.approval = approval

        outcome = await approval.run(
            loan.borrow_asset,
            self._wallet,
            self._marketplace.marketplace,
            amount,
            self._marketplace.repay_call(loan.loan_id, amount, self._wallet),
            is_active=lambda: self._flows.is_active(session),
        )

        if outcome.ok:
            # Chain state changed regardless of whether the flow is still open.
            self._repository.invalidate(EntityType.LOAN, loan.loan_id)
            refreshed = await self._read_loan(loan.loan_id)
            if not refreshed.ok:
                logger.warning("Could not refetch loan %d: %s", loan.loan_id, refreshed.message)
            logger.info(
                "Repaid %d on loan %d (%s)", amount, loan.loan_id, outcome.value.tx_hash
            )

        result = self._flows.guard(session, outcome)
        if result.ok:
            self._flows.end(session)
        return result
