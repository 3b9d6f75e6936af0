"""Marketplace: offer quotes and acceptance, request funding, request/offer management.

Crypto and fiat offers share one collateral calculation; they differ in how
the borrow amount is denominated (token base units vs. local-currency cents)
and in which contract holds the collateral allowance.
"""
from __future__ import annotations

import asyncio
import logging

from ..chains.evm import ContractRevert
from ..chains.evm.abi import is_zero_address
from ..engine.collateral import (
    collateral_value_usd_cents,
    fiat_interest_cents,
    fiat_required_collateral,
    proportional_collateral,
    required_collateral,
)
from ..engine.ltv import duration_days_ceil, duration_days_floor
from ..models import (
    BPS_DENOMINATOR,
    Asset,
    CollateralRequirement,
    ContractCall,
    EntityType,
    Failure,
    FailureKind,
    FiatLenderOffer,
    FiatLenderOfferStatus,
    LenderOffer,
    LoanRequest,
    LoanRequestStatus,
    LTVTerms,
    OfferQuote,
    Ok,
    Remedy,
    Result,
    fiat_asset,
    transport_failure,
    unavailable,
)
from ..oracles import to_usd_cents
from .base import LendingService
from .flows import FlowSession

logger = logging.getLogger(__name__)

ACCEPT_OFFER_FLOW = "accept_offer"
ACCEPT_FIAT_OFFER_FLOW = "accept_fiat_offer"


def _with_fixed_minimum(
    ltv_based: CollateralRequirement,
    fixed: CollateralRequirement,
    collateral_price: int,
    collateral_decimals: int,
) -> CollateralRequirement:
    """A fixed-collateral offer still has to clear the LTV check on-chain."""
    if not fixed.known:
        return ltv_based
    if ltv_based.known and ltv_based.required_amount >= fixed.required_amount:
        return ltv_based
    return CollateralRequirement(
        known=True,
        required_amount=fixed.required_amount,
        required_value_usd_cents=collateral_value_usd_cents(
            fixed.required_amount, collateral_price, collateral_decimals
        ),
    )


class MarketplaceAggregator(LendingService):
    """Quotes and accepts lender offers for the configured wallet."""

    # ------------------------------------------------------------------
    # Lists
    # ------------------------------------------------------------------

    async def active_offers(self) -> Result:
        try:
            offers = await self._marketplace.list_lender_offers()
        except (RuntimeError, TimeoutError) as e:
            return transport_failure(e)
        self._repository.upsert_batch(EntityType.LENDER_OFFER, offers)
        now = self._prices.now()
        return Ok(
            [
                o
                for o in offers
                if o.status is LoanRequestStatus.PENDING
                and not o.is_fully_utilized
                and not o.is_expired(now)
            ]
        )

    async def active_fiat_offers(self) -> Result:
        if not self._rates.supported:
            return Failure(
                FailureKind.UNSUPPORTED, "Fiat loans are not available on this network"
            )
        try:
            offers = await self._marketplace.list_fiat_lender_offers()
        except (RuntimeError, TimeoutError) as e:
            return transport_failure(e)
        self._repository.upsert_batch(EntityType.FIAT_LENDER_OFFER, offers)
        now = self._prices.now()
        return Ok(
            [
                o
                for o in offers
                if o.status is FiatLenderOfferStatus.ACTIVE
                and o.remaining_amount_cents > 0
                and not o.is_expired(now)
            ]
        )

    async def pending_requests(self) -> Result:
        try:
            requests = await self._marketplace.list_loan_requests()
        except (RuntimeError, TimeoutError) as e:
            return transport_failure(e)
        self._repository.upsert_batch(EntityType.LOAN_REQUEST, requests)
        return Ok([r for r in requests if r.status is LoanRequestStatus.PENDING])

    # ------------------------------------------------------------------
    # Shared checks
    # ------------------------------------------------------------------

    def _check_offer(
        self, lender: str, active: bool, expired: bool, amount: int, remaining: int
    ) -> Failure | None:
        if not active:
            return Failure(FailureKind.VALIDATION, "This offer is no longer active")
        if expired:
            return Failure(FailureKind.VALIDATION, "This offer has expired")
        if self._wallet and lender.lower() == self._wallet.lower():
            return Failure(FailureKind.VALIDATION, "You cannot accept your own offer")
        if amount <= 0:
            return Failure(
                FailureKind.VALIDATION, "Enter an amount greater than zero.", Remedy.ADJUST_AMOUNT
            )
        if amount > remaining:
            return Failure(
                FailureKind.VALIDATION,
                f"Amount exceeds available ({remaining}).",
                Remedy.ADJUST_AMOUNT,
            )
        return None

    async def _terms_and_prices(self, collateral: Asset, days: int, *priced: Asset) -> Result:
        """Concurrent LTV and price reads; fails on any missing or stale input."""
        ltv_result, *price_results = await asyncio.gather(
            self._ltv.resolve(collateral, days),
            *(self._prices.get_price(a) for a in priced),
        )
        for result in (ltv_result, *price_results):
            if not result.ok:
                return result

        terms: LTVTerms = ltv_result.value
        if not terms.available:
            return unavailable(
                f"No LTV terms available for {collateral.symbol} at {days} days"
            )

        quotes = [r.value for r in price_results]
        for quote in quotes:
            self._store_quote(quote)
        stale = self._stale_failure(*quotes)
        if stale:
            return stale
        return Ok((terms, quotes))

    async def _balance_check(self, asset: Asset, required: int, purpose: str) -> Failure | None:
        """Wallet must hold ``required`` of ``asset``; zero and short balances differ."""
        try:
            balance = await self._erc20.balance_of(asset.address, self._wallet)
        except (ContractRevert, ValueError) as e:
            return unavailable(f"Balance unavailable: {e}")
        except (RuntimeError, TimeoutError) as e:
            return transport_failure(e)

        if balance <= 0:
            return Failure(
                FailureKind.VALIDATION,
                f"You have no {asset.symbol} {purpose}.",
                Remedy.GET_BALANCE,
            )
        if balance < required:
            return Failure(
                FailureKind.VALIDATION,
                f"Insufficient {asset.symbol}: have {balance}, need {required}.",
                Remedy.GET_BALANCE,
            )
        return None

    async def _collateral_check(self, quote: OfferQuote) -> Failure | None:
        return await self._balance_check(
            quote.collateral_asset,
            quote.requirement.required_amount,
            "to post as collateral",
        )

    # ------------------------------------------------------------------
    # Crypto offers
    # ------------------------------------------------------------------

    async def _read_offer(self, offer_id: int) -> Result:
        try:
            offer = await self._marketplace.get_lender_offer(offer_id)
        except (ContractRevert, ValueError) as e:
            return unavailable(f"Offer {offer_id} unavailable: {e}")
        except (RuntimeError, TimeoutError) as e:
            return transport_failure(e)
        if offer is None:
            return unavailable(f"Offer {offer_id} not found")
        self._repository.upsert(EntityType.LENDER_OFFER, offer)
        return Ok(offer)

    async def quote_offer(
        self, offer_id: int, borrow_amount: int, collateral_symbol: str | None = None
    ) -> Result:
        """``Ok(OfferQuote)`` for drawing ``borrow_amount`` from an offer."""
        offer_result = await self._read_offer(offer_id)
        if not offer_result.ok:
            return offer_result
        offer: LenderOffer = offer_result.value

        invalid = self._check_offer(
            offer.lender,
            offer.status is LoanRequestStatus.PENDING,
            offer.is_expired(self._prices.now()),
            borrow_amount,
            offer.remaining_amount,
        )
        if invalid:
            return invalid

        borrow = self.asset_at(offer.lend_asset)
        if borrow is None:
            return unavailable(f"Unknown lend asset {offer.lend_asset}")

        if not is_zero_address(offer.required_collateral_asset):
            collateral = self.asset_at(offer.required_collateral_asset)
            if collateral is None:
                return unavailable(f"Unknown collateral asset {offer.required_collateral_asset}")
            if collateral_symbol and collateral_symbol.upper() != collateral.symbol:
                return Failure(
                    FailureKind.VALIDATION,
                    f"This offer requires {collateral.symbol} as collateral",
                )
        else:
            if not collateral_symbol:
                return Failure(FailureKind.VALIDATION, "Choose a collateral token")
            collateral = self.asset(collateral_symbol)
            if collateral is None:
                return Failure(FailureKind.VALIDATION, f"Unknown token '{collateral_symbol}'")

        days = duration_days_ceil(offer.duration)
        inputs = await self._terms_and_prices(collateral, days, borrow, collateral)
        if not inputs.ok:
            return inputs
        terms, (borrow_quote, collateral_quote) = inputs.value

        requirement = required_collateral(
            borrow_amount,
            borrow_quote.price,
            collateral_quote.price,
            terms.max_ltv_bps,
            collateral.decimals,
            borrow.decimals,
        )
        if offer.min_collateral_amount > 0:
            requirement = _with_fixed_minimum(
                requirement,
                proportional_collateral(
                    offer.min_collateral_amount, borrow_amount, offer.lend_amount
                ),
                collateral_quote.price,
                collateral.decimals,
            )
        if not requirement.known:
            return unavailable(f"Unable to calculate required collateral: {requirement.reason}")

        return Ok(
            OfferQuote(
                offer_id=offer.offer_id,
                borrow_asset=borrow,
                collateral_asset=collateral,
                borrow_amount=borrow_amount,
                duration_days=days,
                terms=terms,
                requirement=requirement,
                interest_amount=borrow_amount * offer.interest_rate // BPS_DENOMINATOR,
            )
        )

    def open_accept_offer(self, offer_id: int) -> FlowSession:
        return self._flows.begin(ACCEPT_OFFER_FLOW, offer_id)

    async def offer_lend_asset(self, offer_id: int) -> Result:
        """The token an offer lends, for parsing user amounts."""
        offer_result = await self._read_offer(offer_id)
        if not offer_result.ok:
            return offer_result
        asset = self.asset_at(offer_result.value.lend_asset)
        if asset is None:
            return unavailable(f"Unknown lend asset {offer_result.value.lend_asset}")
        return Ok(asset)

    async def accept_offer(
        self,
        session: FlowSession,
        borrow_amount: int,
        collateral_symbol: str | None = None,
    ) -> Result:
        """Quote, check balance, approve collateral, accept the offer."""
        missing = self._require_wallet()
        if missing:
            return missing

        quoted = await self.quote_offer(session.subject_id, borrow_amount, collateral_symbol)
        if not quoted.ok:
            return self._flows.guard(session, quoted)
        quote: OfferQuote = quoted.value

        spender = self._marketplace.marketplace
        call = self._marketplace.accept_offer_call(
            quote.offer_id,
            quote.collateral_asset.address,
            quote.requirement.required_amount,
            borrow_amount,
            self._wallet,
        )
        return await self._approve_and_submit(
            session, quote, spender, call, EntityType.LENDER_OFFER
        )

    # ------------------------------------------------------------------
    # Fiat offers
    # ------------------------------------------------------------------

    async def _read_fiat_offer(self, offer_id: int) -> Result:
        if not self._rates.supported:
            return Failure(
                FailureKind.UNSUPPORTED, "Fiat loans are not available on this network"
            )
        try:
            offer = await self._marketplace.get_fiat_lender_offer(offer_id)
        except (ContractRevert, ValueError) as e:
            return unavailable(f"Fiat offer {offer_id} unavailable: {e}")
        except (RuntimeError, TimeoutError) as e:
            return transport_failure(e)
        if offer is None:
            return unavailable(f"Fiat offer {offer_id} not found")
        self._repository.upsert(EntityType.FIAT_LENDER_OFFER, offer)
        return Ok(offer)

    async def quote_fiat_offer(
        self, offer_id: int, borrow_amount_cents: int, collateral_symbol: str
    ) -> Result:
        """Quote a fiat draw: local cents → USD cents → collateral tokens."""
        offer_result = await self._read_fiat_offer(offer_id)
        if not offer_result.ok:
            return offer_result
        offer: FiatLenderOffer = offer_result.value

        invalid = self._check_offer(
            offer.lender,
            offer.status is FiatLenderOfferStatus.ACTIVE,
            offer.is_expired(self._prices.now()),
            borrow_amount_cents,
            offer.remaining_amount_cents,
        )
        if invalid:
            return invalid

        collateral = self.asset(collateral_symbol)
        if collateral is None:
            return Failure(FailureKind.VALIDATION, f"Unknown token '{collateral_symbol}'")

        rate_result = await self._rates.get_rate(offer.currency)
        if not rate_result.ok:
            return rate_result
        rate = rate_result.value
        if self._rates.is_stale(rate):
            return Failure(
                FailureKind.STALE,
                f"The {rate.currency} exchange rate is stale.",
                Remedy.WAIT_FOR_ORACLE,
                retryable=True,
            )

        days = duration_days_floor(offer.duration)
        inputs = await self._terms_and_prices(collateral, days, collateral)
        if not inputs.ok:
            return inputs
        terms, (collateral_quote,) = inputs.value

        usd_cents = to_usd_cents(borrow_amount_cents, rate.rate_per_usd)
        requirement = fiat_required_collateral(
            usd_cents, collateral_quote.price, terms.max_ltv_bps, collateral.decimals
        )
        if not requirement.known:
            return unavailable(f"Unable to calculate required collateral: {requirement.reason}")

        return Ok(
            OfferQuote(
                offer_id=offer.offer_id,
                borrow_asset=fiat_asset(offer.currency),
                collateral_asset=collateral,
                borrow_amount=borrow_amount_cents,
                duration_days=days,
                terms=terms,
                requirement=requirement,
                interest_amount=fiat_interest_cents(borrow_amount_cents, offer.interest_rate),
                borrow_value_usd_cents=usd_cents,
            )
        )

    def open_accept_fiat_offer(self, offer_id: int) -> FlowSession:
        return self._flows.begin(ACCEPT_FIAT_OFFER_FLOW, offer_id)

    async def accept_fiat_offer(
        self, session: FlowSession, borrow_amount_cents: int, collateral_symbol: str
    ) -> Result:
        missing = self._require_wallet()
        if missing:
            return missing

        quoted = await self.quote_fiat_offer(
            session.subject_id, borrow_amount_cents, collateral_symbol
        )
        if not quoted.ok:
            return self._flows.guard(session, quoted)
        quote: OfferQuote = quoted.value

        # Fiat collateral is escrowed by the bridge, not the marketplace.
        spender = self._marketplace.fiat_bridge
        call = self._marketplace.accept_fiat_offer_call(
            quote.offer_id,
            quote.collateral_asset.address,
            quote.requirement.required_amount,
            borrow_amount_cents,
            self._wallet,
        )
        return await self._approve_and_submit(
            session, quote, spender, call, EntityType.FIAT_LENDER_OFFER
        )

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    async def _approve_and_submit(
        self,
        session: FlowSession,
        quote: OfferQuote,
        spender: str,
        call: ContractCall,
        entity_type: EntityType,
    ) -> Result:
        short = await self._collateral_check(quote)
        if short:
            return self._flows.guard(session, short)

        flow = self._flows.state(session)
        if flow is None:
            return self._flows.guard(session, Ok(quote))
        flow.collateral_token = quote.collateral_asset.address
        flow.amount = quote.borrow_amount
        flow.approval = approval = self._new_approval()

        outcome = await approval.run(
            quote.collateral_asset.address,
            self._wallet,
            spender,
            quote.requirement.required_amount,
            call,
            is_active=lambda: self._flows.is_active(session),
        )
        if outcome.ok:
            self._repository.invalidate(entity_type, quote.offer_id)
            self._repository.invalidate(EntityType.LOAN)
            self._repository.invalidate(EntityType.FIAT_LOAN)
            refreshed = await (
                self._read_offer(quote.offer_id)
                if entity_type is EntityType.LENDER_OFFER
                else self._read_fiat_offer(quote.offer_id)
            )
            if not refreshed.ok:
                logger.warning("Could not refetch offer %d: %s", quote.offer_id, refreshed.message)
            logger.info(
                "Accepted offer %d: borrowed %d with %d %s (%s)",
                quote.offer_id,
                quote.borrow_amount,
                quote.requirement.required_amount,
                quote.collateral_asset.symbol,
                outcome.value.tx_hash,
            )

        result = self._flows.guard(session, outcome)
        if result.ok:
            self._flows.end(session)
        return result

    # ------------------------------------------------------------------
    # Requests and cancellations
    # ------------------------------------------------------------------

    async def create_loan_request(
        self,
        collateral_symbol: str,
        collateral_amount: int,
        borrow_symbol: str,
        borrow_amount: int,
        interest_rate_bps: int,
        duration_seconds: int,
    ) -> Result:
        """Post a loan request; collateral is escrowed by the marketplace."""
        missing = self._require_wallet()
        if missing:
            return missing
        collateral = self.asset(collateral_symbol)
        borrow = self.asset(borrow_symbol)
        if collateral is None or borrow is None:
            return Failure(FailureKind.VALIDATION, "Unknown collateral or borrow token")
        if collateral_amount <= 0 or borrow_amount <= 0:
            return Failure(
                FailureKind.VALIDATION, "Amounts must be greater than zero.", Remedy.ADJUST_AMOUNT
            )

        inputs = await self._terms_and_prices(
            collateral, duration_days_ceil(duration_seconds), borrow, collateral
        )
        if not inputs.ok:
            return inputs
        terms, (borrow_quote, collateral_quote) = inputs.value
        requirement = required_collateral(
            borrow_amount,
            borrow_quote.price,
            collateral_quote.price,
            terms.max_ltv_bps,
            collateral.decimals,
            borrow.decimals,
        )
        if requirement.known and collateral_amount < requirement.required_amount:
            return Failure(
                FailureKind.VALIDATION,
                f"Collateral below the required {requirement.required_amount} {collateral.symbol}.",
                Remedy.ADJUST_AMOUNT,
            )

        call = self._marketplace.create_request_call(
            collateral.address,
            collateral_amount,
            borrow.address,
            borrow_amount,
            interest_rate_bps,
            duration_seconds,
            self._wallet,
        )
        approval = self._new_approval()
        outcome = await approval.run(
            collateral.address,
            self._wallet,
            self._marketplace.marketplace,
            collateral_amount,
            call,
        )
        if outcome.ok:
            self._repository.invalidate(EntityType.LOAN_REQUEST)
        return outcome

    async def cancel_loan_request(self, request_id: int) -> Result:
        missing = self._require_wallet()
        if missing:
            return missing
        outcome = await self._preflight.submit_and_confirm(
            self._marketplace.cancel_request_call(request_id, self._wallet)
        )
        if outcome.ok:
            self._repository.invalidate(EntityType.LOAN_REQUEST, request_id)
        return outcome

    async def cancel_lender_offer(self, offer_id: int) -> Result:
        missing = self._require_wallet()
        if missing:
            return missing
        outcome = await self._preflight.submit_and_confirm(
            self._marketplace.cancel_offer_call(offer_id, self._wallet)
        )
        if outcome.ok:
            self._repository.invalidate(EntityType.LENDER_OFFER, offer_id)
        return outcome

    # ------------------------------------------------------------------
    # Lending
    # ------------------------------------------------------------------

    async def _read_request(self, request_id: int) -> Result:
        try:
            request = await self._marketplace.get_loan_request(request_id)
        except (ContractRevert, ValueError) as e:
            return unavailable(f"Loan request {request_id} unavailable: {e}")
        except (RuntimeError, TimeoutError) as e:
            return transport_failure(e)
        if request is None:
            return unavailable(f"Loan request {request_id} not found")
        self._repository.upsert(EntityType.LOAN_REQUEST, request)
        return Ok(request)

    async def fund_loan_request(self, request_id: int) -> Result:
        """Lend the requested amount against the borrower's escrowed collateral."""
        missing = self._require_wallet()
        if missing:
            return missing

        request_result = await self._read_request(request_id)
        if not request_result.ok:
            return request_result
        request: LoanRequest = request_result.value

        if request.status is not LoanRequestStatus.PENDING:
            return Failure(
                FailureKind.VALIDATION,
                f"Loan request {request_id} is {request.status.name.lower()}",
            )
        if request.is_expired(self._prices.now()):
            return Failure(FailureKind.VALIDATION, f"Loan request {request_id} has expired")
        if request.borrower.lower() == self._wallet.lower():
            return Failure(FailureKind.VALIDATION, "You cannot fund your own loan request.")

        borrow = self.asset_at(request.borrow_asset)
        collateral = self.asset_at(request.collateral_token)
        if borrow is None or collateral is None:
            return unavailable(f"Unknown asset on loan request {request_id}")

        price_results = await asyncio.gather(
            self._prices.get_price(borrow), self._prices.get_price(collateral)
        )
        for result in price_results:
            if not result.ok:
                return result
        quotes = [r.value for r in price_results]
        for quote in quotes:
            self._store_quote(quote)
        stale = self._stale_failure(*quotes)
        if stale:
            return stale

        short = await self._balance_check(borrow, request.borrow_amount, "to lend")
        if short:
            return short

        approval = self._new_approval()
        outcome = await approval.run(
            borrow.address,
            self._wallet,
            self._marketplace.marketplace,
            request.borrow_amount,
            self._marketplace.fund_request_call(request_id, self._wallet),
        )
        if outcome.ok:
            self._repository.invalidate(EntityType.LOAN_REQUEST, request_id)
            self._repository.invalidate(EntityType.LOAN)
            logger.info(
                "Funded loan request %d with %d %s (%s)",
                request_id,
                request.borrow_amount,
                borrow.symbol,
                outcome.value.tx_hash,
            )
        return outcome

    async def create_lender_offer(
        self,
        lend_symbol: str,
        lend_amount: int,
        collateral_symbol: str,
        interest_rate_bps: int,
        duration_seconds: int,
        min_collateral_amount: int | None = None,
    ) -> Result:
        """Post a lender offer; the lent tokens move to the marketplace.

        The minimum collateral defaults to what the LTV requires against the
        full repayment (principal plus flat interest). A caller-supplied
        minimum may be higher, never lower.
        """
        missing = self._require_wallet()
        if missing:
            return missing
        lend = self.asset(lend_symbol)
        collateral = self.asset(collateral_symbol)
        if lend is None or collateral is None:
            return Failure(FailureKind.VALIDATION, "Unknown lend or collateral token")
        if lend_amount <= 0 or duration_seconds <= 0:
            return Failure(
                FailureKind.VALIDATION,
                "Amount and duration must be greater than zero.",
                Remedy.ADJUST_AMOUNT,
            )

        inputs = await self._terms_and_prices(
            collateral, duration_days_ceil(duration_seconds), lend, collateral
        )
        if not inputs.ok:
            return inputs
        terms, (lend_quote, collateral_quote) = inputs.value

        repayment = lend_amount + lend_amount * interest_rate_bps // BPS_DENOMINATOR
        requirement = required_collateral(
            repayment,
            lend_quote.price,
            collateral_quote.price,
            terms.max_ltv_bps,
            collateral.decimals,
            lend.decimals,
        )
        if not requirement.known:
            return unavailable(requirement.reason)
        min_collateral = (
            requirement.required_amount if min_collateral_amount is None else min_collateral_amount
        )
        if min_collateral < requirement.required_amount:
            return Failure(
                FailureKind.VALIDATION,
                f"Minimum collateral below the required {requirement.required_amount} "
                f"{collateral.symbol}.",
                Remedy.ADJUST_AMOUNT,
            )

        short = await self._balance_check(lend, lend_amount, "to lend")
        if short:
            return short

        call = self._marketplace.create_offer_call(
            lend.address,
            lend_amount,
            collateral.address,
            min_collateral,
            interest_rate_bps,
            duration_seconds,
            self._wallet,
        )
        approval = self._new_approval()
        outcome = await approval.run(
            lend.address, self._wallet, self._marketplace.marketplace, lend_amount, call
        )
        if outcome.ok:
            self._repository.invalidate(EntityType.LENDER_OFFER)
            logger.info(
                "Created lender offer: %d %s against at least %d %s (%s)",
                lend_amount,
                lend.symbol,
                min_collateral,
                collateral.symbol,
                outcome.value.tx_hash,
            )
        return outcome
