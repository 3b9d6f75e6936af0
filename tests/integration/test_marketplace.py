"""Integration tests for offer quoting and acceptance."""
from __future__ import annotations

from typing import Callable
from unittest.mock import AsyncMock

import pytest

from src.config import AppConfig
from src.engine.collateral import fiat_required_collateral
from src.models import (
    Asset,
    EntityType,
    ExchangeRate,
    Failure,
    FailureKind,
    FiatLenderOffer,
    FiatLenderOfferStatus,
    LenderOffer,
    LoanRequest,
    LoanRequestStatus,
    LTVTerms,
    Ok,
    PriceQuote,
    Receipt,
    Remedy,
)
from src.services import MarketplaceAggregator

NOW = 1_700_000_000
USD = 10**8
ETH_PRICE = 3_000 * USD
WALLET = "0x" + "aa" * 20


@pytest.fixture()
def market(sample_app_config: AppConfig) -> MarketplaceAggregator:
    return MarketplaceAggregator(sample_app_config, clock=lambda: NOW)


def _wire(
    market: MarketplaceAggregator,
    quote_factory: Callable[..., PriceQuote],
    offer: LenderOffer | None = None,
    fiat_offer: FiatLenderOffer | None = None,
    max_ltv_bps: int = 7_500,
    balance: int = 10**20,
    price_age: int = 60,
) -> AsyncMock:
    """Mock every chain read; returns the submit mock."""
    prices = {"USDC": USD, "WETH": ETH_PRICE}

    def price_of(asset: Asset):
        return Ok(quote_factory(asset, prices[asset.symbol], age=price_age))

    def terms_for(asset: Asset, days: int):
        return Ok(LTVTerms(asset.address, days, max_ltv_bps, max_ltv_bps + 500))

    market._marketplace.get_lender_offer = AsyncMock(return_value=offer)
    market._marketplace.get_fiat_lender_offer = AsyncMock(return_value=fiat_offer)
    market._prices.get_price = AsyncMock(side_effect=price_of)
    market._ltv.resolve = AsyncMock(side_effect=terms_for)
    market._rates.get_rate = AsyncMock(
        return_value=Ok(ExchangeRate("NGN", 1_500 * USD, NOW - 600))
    )
    market._erc20.balance_of = AsyncMock(return_value=balance)
    market._erc20.allowance = AsyncMock(return_value=10**30)
    submit = AsyncMock(return_value=Ok(Receipt(tx_hash="0xaccept", success=True)))
    market._preflight.submit_and_confirm = submit
    return submit


# ---------------------------------------------------------------------------
# Quotes
# ---------------------------------------------------------------------------


class TestQuoteOffer:
    @pytest.mark.asyncio
    async def test_ltv_based_requirement(
        self,
        market: MarketplaceAggregator,
        quote_factory: Callable[..., PriceQuote],
        offer_factory: Callable[..., LenderOffer],
    ) -> None:
        _wire(market, quote_factory, offer=offer_factory())

        result = await market.quote_offer(4, 1_000_000, "WETH")

        assert result.ok
        quote = result.value
        assert quote.requirement.required_amount == 444444444444444
        assert quote.duration_days == 30
        assert quote.collateral_asset.symbol == "WETH"
        assert quote.interest_amount == 50_000
        resolved_asset, days = market._ltv.resolve.await_args.args
        assert resolved_asset.symbol == "WETH"
        assert days == 30

    @pytest.mark.asyncio
    async def test_partial_day_rounds_up(
        self,
        market: MarketplaceAggregator,
        quote_factory: Callable[..., PriceQuote],
        offer_factory: Callable[..., LenderOffer],
    ) -> None:
        _wire(market, quote_factory, offer=offer_factory(duration=30 * 86_400 + 1))
        result = await market.quote_offer(4, 1_000_000, "WETH")
        assert result.value.duration_days == 31

    @pytest.mark.asyncio
    async def test_fixed_collateral_minimum_wins_when_larger(
        self,
        market: MarketplaceAggregator,
        quote_factory: Callable[..., PriceQuote],
        offer_factory: Callable[..., LenderOffer],
        weth: Asset,
    ) -> None:
        offer = offer_factory(
            required_collateral_asset=weth.address, min_collateral_amount=10 * 10**18
        )
        _wire(market, quote_factory, offer=offer)

        result = await market.quote_offer(4, 1_000_000)

        # 10 WETH for 10,000 USDC, drawn 1 USDC at a time.
        assert result.value.requirement.required_amount == 10**15
        assert result.value.requirement.required_value_usd_cents == 300

    @pytest.mark.asyncio
    async def test_ltv_requirement_wins_when_larger(
        self,
        market: MarketplaceAggregator,
        quote_factory: Callable[..., PriceQuote],
        offer_factory: Callable[..., LenderOffer],
        weth: Asset,
    ) -> None:
        offer = offer_factory(required_collateral_asset=weth.address, min_collateral_amount=10**17)
        _wire(market, quote_factory, offer=offer)

        result = await market.quote_offer(4, 1_000_000)

        assert result.value.requirement.required_amount == 444444444444444

    @pytest.mark.asyncio
    async def test_fixed_collateral_token_enforced(
        self,
        market: MarketplaceAggregator,
        quote_factory: Callable[..., PriceQuote],
        offer_factory: Callable[..., LenderOffer],
        weth: Asset,
    ) -> None:
        offer = offer_factory(required_collateral_asset=weth.address, min_collateral_amount=1)
        _wire(market, quote_factory, offer=offer)
        result = await market.quote_offer(4, 1_000_000, "USDC")
        assert result.kind is FailureKind.VALIDATION
        assert "requires WETH" in result.message

    @pytest.mark.asyncio
    async def test_open_offer_needs_collateral_choice(
        self,
        market: MarketplaceAggregator,
        quote_factory: Callable[..., PriceQuote],
        offer_factory: Callable[..., LenderOffer],
    ) -> None:
        _wire(market, quote_factory, offer=offer_factory())
        result = await market.quote_offer(4, 1_000_000)
        assert result.kind is FailureKind.VALIDATION

    @pytest.mark.asyncio
    async def test_stale_price_blocks_quote(
        self,
        market: MarketplaceAggregator,
        quote_factory: Callable[..., PriceQuote],
        offer_factory: Callable[..., LenderOffer],
    ) -> None:
        _wire(market, quote_factory, offer=offer_factory(), price_age=901)
        result = await market.quote_offer(4, 1_000_000, "WETH")
        assert result.kind is FailureKind.STALE
        assert result.remedy is Remedy.WAIT_FOR_ORACLE
        assert "USDC" in result.message and "WETH" in result.message

    @pytest.mark.asyncio
    async def test_no_ltv_terms_is_unavailable(
        self,
        market: MarketplaceAggregator,
        quote_factory: Callable[..., PriceQuote],
        offer_factory: Callable[..., LenderOffer],
    ) -> None:
        _wire(market, quote_factory, offer=offer_factory(), max_ltv_bps=0)
        result = await market.quote_offer(4, 1_000_000, "WETH")
        assert result.kind is FailureKind.UNAVAILABLE
        assert "No LTV terms" in result.message


class TestOfferValidation:
    @pytest.mark.asyncio
    async def test_own_offer(
        self,
        market: MarketplaceAggregator,
        quote_factory: Callable[..., PriceQuote],
        offer_factory: Callable[..., LenderOffer],
    ) -> None:
        _wire(market, quote_factory, offer=offer_factory(lender=WALLET.upper().replace("0X", "0x")))
        result = await market.quote_offer(4, 1_000_000, "WETH")
        assert "your own offer" in result.message

    @pytest.mark.asyncio
    async def test_expired(
        self,
        market: MarketplaceAggregator,
        quote_factory: Callable[..., PriceQuote],
        offer_factory: Callable[..., LenderOffer],
    ) -> None:
        _wire(market, quote_factory, offer=offer_factory(expire_at=NOW - 1))
        result = await market.quote_offer(4, 1_000_000, "WETH")
        assert "expired" in result.message

    @pytest.mark.asyncio
    async def test_inactive(
        self,
        market: MarketplaceAggregator,
        quote_factory: Callable[..., PriceQuote],
        offer_factory: Callable[..., LenderOffer],
    ) -> None:
        _wire(market, quote_factory, offer=offer_factory(status=LoanRequestStatus.CANCELLED))
        result = await market.quote_offer(4, 1_000_000, "WETH")
        assert "no longer active" in result.message

    @pytest.mark.asyncio
    async def test_exceeds_remaining(
        self,
        market: MarketplaceAggregator,
        quote_factory: Callable[..., PriceQuote],
        offer_factory: Callable[..., LenderOffer],
    ) -> None:
        _wire(market, quote_factory, offer=offer_factory(remaining_amount=500_000))
        result = await market.quote_offer(4, 500_001, "WETH")
        assert result.kind is FailureKind.VALIDATION
        assert result.remedy is Remedy.ADJUST_AMOUNT
        market._ltv.resolve.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_zero_amount(
        self,
        market: MarketplaceAggregator,
        quote_factory: Callable[..., PriceQuote],
        offer_factory: Callable[..., LenderOffer],
    ) -> None:
        _wire(market, quote_factory, offer=offer_factory())
        result = await market.quote_offer(4, 0, "WETH")
        assert result.remedy is Remedy.ADJUST_AMOUNT

    @pytest.mark.asyncio
    async def test_missing_offer(
        self, market: MarketplaceAggregator, quote_factory: Callable[..., PriceQuote]
    ) -> None:
        _wire(market, quote_factory)
        result = await market.quote_offer(99, 1_000_000, "WETH")
        assert result.kind is FailureKind.UNAVAILABLE


# ---------------------------------------------------------------------------
# Fiat offers
# ---------------------------------------------------------------------------


class TestQuoteFiatOffer:
    @pytest.mark.asyncio
    async def test_local_cents_to_collateral(
        self,
        market: MarketplaceAggregator,
        quote_factory: Callable[..., PriceQuote],
        fiat_offer_factory: Callable[..., FiatLenderOffer],
    ) -> None:
        _wire(market, quote_factory, fiat_offer=fiat_offer_factory(), max_ltv_bps=5_000)

        result = await market.quote_fiat_offer(2, 1_500_000_00, "WETH")

        quote = result.value
        # 1.5M NGN at 1500 NGN/USD is $1000.
        assert quote.borrow_value_usd_cents == 100_000
        assert quote.requirement.required_value_usd_cents == 200_000
        expected = fiat_required_collateral(100_000, ETH_PRICE, 5_000, 18)
        assert quote.requirement.required_amount == expected.required_amount
        assert quote.borrow_asset.symbol == "NGN"
        assert quote.interest_amount == 150_000_00

    @pytest.mark.asyncio
    async def test_partial_day_rounds_down(
        self,
        market: MarketplaceAggregator,
        quote_factory: Callable[..., PriceQuote],
        fiat_offer_factory: Callable[..., FiatLenderOffer],
    ) -> None:
        _wire(market, quote_factory, fiat_offer=fiat_offer_factory())
        result = await market.quote_fiat_offer(2, 100_00, "WETH")
        assert result.value.duration_days == 30
        assert market._ltv.resolve.await_args.args[1] == 30

    @pytest.mark.asyncio
    async def test_stale_rate(
        self,
        market: MarketplaceAggregator,
        quote_factory: Callable[..., PriceQuote],
        fiat_offer_factory: Callable[..., FiatLenderOffer],
    ) -> None:
        _wire(market, quote_factory, fiat_offer=fiat_offer_factory())
        market._rates.get_rate = AsyncMock(
            return_value=Ok(ExchangeRate("NGN", 1_500 * USD, NOW - 3_601))
        )
        result = await market.quote_fiat_offer(2, 100_00, "WETH")
        assert result.kind is FailureKind.STALE
        assert "NGN" in result.message

    @pytest.mark.asyncio
    async def test_inactive_fiat_offer(
        self,
        market: MarketplaceAggregator,
        quote_factory: Callable[..., PriceQuote],
        fiat_offer_factory: Callable[..., FiatLenderOffer],
    ) -> None:
        _wire(
            market,
            quote_factory,
            fiat_offer=fiat_offer_factory(status=FiatLenderOfferStatus.ACCEPTED),
        )
        result = await market.quote_fiat_offer(2, 100_00, "WETH")
        assert "no longer active" in result.message


# ---------------------------------------------------------------------------
# Acceptance
# ---------------------------------------------------------------------------


class TestAcceptOffer:
    @pytest.mark.asyncio
    async def test_approves_marketplace_then_accepts(
        self,
        market: MarketplaceAggregator,
        quote_factory: Callable[..., PriceQuote],
        offer_factory: Callable[..., LenderOffer],
    ) -> None:
        submit = _wire(market, quote_factory, offer=offer_factory())
        market._erc20.allowance = AsyncMock(side_effect=[0, 10**30])
        session = market.open_accept_offer(4)

        result = await market.accept_offer(session, 1_000_000, "WETH")

        assert result.ok
        approve, accept = (c.args[0] for c in submit.await_args_list)
        assert approve.function == "approve"
        assert approve.args[0] == market._marketplace.marketplace
        assert accept.function == "acceptLenderOffer"
        assert accept.args[2] == 444444444444444
        assert not market.flows.is_active(session)

    @pytest.mark.asyncio
    async def test_no_collateral_balance(
        self,
        market: MarketplaceAggregator,
        quote_factory: Callable[..., PriceQuote],
        offer_factory: Callable[..., LenderOffer],
    ) -> None:
        submit = _wire(market, quote_factory, offer=offer_factory(), balance=0)
        result = await market.accept_offer(market.open_accept_offer(4), 1_000_000, "WETH")
        assert result.remedy is Remedy.GET_BALANCE
        assert "You have no WETH" in result.message
        submit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_insufficient_collateral_balance(
        self,
        market: MarketplaceAggregator,
        quote_factory: Callable[..., PriceQuote],
        offer_factory: Callable[..., LenderOffer],
    ) -> None:
        submit = _wire(market, quote_factory, offer=offer_factory(), balance=444444444444443)
        result = await market.accept_offer(market.open_accept_offer(4), 1_000_000, "WETH")
        assert result.message.startswith("Insufficient WETH")
        submit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_fiat_collateral_approved_to_bridge(
        self,
        market: MarketplaceAggregator,
        quote_factory: Callable[..., PriceQuote],
        fiat_offer_factory: Callable[..., FiatLenderOffer],
    ) -> None:
        submit = _wire(market, quote_factory, fiat_offer=fiat_offer_factory())
        market._erc20.allowance = AsyncMock(side_effect=[0, 10**30])

        result = await market.accept_fiat_offer(
            market.open_accept_fiat_offer(2), 100_00, "WETH"
        )

        assert result.ok
        approve, accept = (c.args[0] for c in submit.await_args_list)
        assert approve.args[0] == market._marketplace.fiat_bridge
        assert accept.to == market._marketplace.fiat_bridge
        assert accept.function == "acceptFiatLenderOffer"

    @pytest.mark.asyncio
    async def test_closed_flow_drops_result(
        self,
        market: MarketplaceAggregator,
        quote_factory: Callable[..., PriceQuote],
        offer_factory: Callable[..., LenderOffer],
    ) -> None:
        _wire(market, quote_factory, offer=offer_factory())
        session = market.open_accept_offer(4)
        market.open_accept_offer(5)

        result = await market.accept_offer(session, 1_000_000, "WETH")

        assert result.kind is FailureKind.ABANDONED

    @pytest.mark.asyncio
    async def test_flow_closed_during_approval_does_not_accept(
        self,
        market: MarketplaceAggregator,
        quote_factory: Callable[..., PriceQuote],
        offer_factory: Callable[..., LenderOffer],
    ) -> None:
        submit = _wire(market, quote_factory, offer=offer_factory())
        market._erc20.allowance = AsyncMock(side_effect=[0, 10**30])
        session = market.open_accept_offer(4)

        async def approve_then_close(call):
            market.close_flow(session)
            return Ok(Receipt(tx_hash="0xapprove", success=True))

        submit.side_effect = approve_then_close

        result = await market.accept_offer(session, 1_000_000, "WETH")

        assert result.kind is FailureKind.ABANDONED
        assert [c.args[0].function for c in submit.await_args_list] == ["approve"]

    @pytest.mark.asyncio
    async def test_accepted_offer_invalidates_loans(
        self,
        market: MarketplaceAggregator,
        quote_factory: Callable[..., PriceQuote],
        offer_factory: Callable[..., LenderOffer],
        loan_factory: Callable,
    ) -> None:
        _wire(market, quote_factory, offer=offer_factory())
        market.repository.upsert(EntityType.LOAN, loan_factory())

        await market.accept_offer(market.open_accept_offer(4), 1_000_000, "WETH")

        assert market.repository.values(EntityType.LOAN) == []
        assert market.repository.get(EntityType.LENDER_OFFER, 4) is not None


# ---------------------------------------------------------------------------
# Lists and cancellations
# ---------------------------------------------------------------------------


class TestListsAndCancellation:
    @pytest.mark.asyncio
    async def test_active_offers_filter(
        self,
        market: MarketplaceAggregator,
        offer_factory: Callable[..., LenderOffer],
    ) -> None:
        offers = [
            offer_factory(offer_id=1),
            offer_factory(offer_id=2, remaining_amount=0),
            offer_factory(offer_id=3, expire_at=NOW - 1),
            offer_factory(offer_id=4, status=LoanRequestStatus.CANCELLED),
        ]
        market._marketplace.list_lender_offers = AsyncMock(return_value=offers)

        result = await market.active_offers()

        assert [o.offer_id for o in result.value] == [1]
        assert len(market.repository.values(EntityType.LENDER_OFFER)) == 4

    @pytest.mark.asyncio
    async def test_cancel_offer_invalidates_cache(
        self,
        market: MarketplaceAggregator,
        quote_factory: Callable[..., PriceQuote],
        offer_factory: Callable[..., LenderOffer],
    ) -> None:
        submit = _wire(market, quote_factory)
        market.repository.upsert(EntityType.LENDER_OFFER, offer_factory())

        result = await market.cancel_lender_offer(4)

        assert result.ok
        assert submit.await_args.args[0].function == "cancelLenderOffer"
        assert market.repository.get(EntityType.LENDER_OFFER, 4) is None

    @pytest.mark.asyncio
    async def test_failed_cancel_keeps_cache(
        self,
        market: MarketplaceAggregator,
        quote_factory: Callable[..., PriceQuote],
        offer_factory: Callable[..., LenderOffer],
    ) -> None:
        submit = _wire(market, quote_factory)
        submit.return_value = Failure(FailureKind.SIMULATION_REVERT, "Not the offer owner")
        market.repository.upsert(EntityType.LENDER_OFFER, offer_factory())

        result = await market.cancel_lender_offer(4)

        assert not result.ok
        assert market.repository.get(EntityType.LENDER_OFFER, 4) is not None

    @pytest.mark.asyncio
    async def test_create_request_below_requirement(
        self, market: MarketplaceAggregator, quote_factory: Callable[..., PriceQuote]
    ) -> None:
        submit = _wire(market, quote_factory)
        result = await market.create_loan_request(
            "WETH", 444444444444443, "USDC", 1_000_000, 500, 30 * 86_400
        )
        assert result.remedy is Remedy.ADJUST_AMOUNT
        submit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_create_request_at_requirement(
        self, market: MarketplaceAggregator, quote_factory: Callable[..., PriceQuote]
    ) -> None:
        submit = _wire(market, quote_factory)
        result = await market.create_loan_request(
            "WETH", 444444444444444, "USDC", 1_000_000, 500, 30 * 86_400
        )
        assert result.ok
        assert submit.await_args.args[0].function == "createLoanRequest"


# ---------------------------------------------------------------------------
# Lending
# ---------------------------------------------------------------------------


class TestFundLoanRequest:
    @pytest.mark.asyncio
    async def test_approves_then_funds(
        self,
        market: MarketplaceAggregator,
        quote_factory: Callable[..., PriceQuote],
        request_factory: Callable[..., LoanRequest],
    ) -> None:
        submit = _wire(market, quote_factory)
        market._marketplace.get_loan_request = AsyncMock(return_value=request_factory())
        market._erc20.allowance = AsyncMock(side_effect=[0, 10**30])

        result = await market.fund_loan_request(3)

        assert result.ok
        approve, fund = (c.args[0] for c in submit.await_args_list)
        assert approve.function == "approve"
        assert approve.to == market.asset("USDC").address
        assert approve.args == (market._marketplace.marketplace, 1_010 * 10**6)
        assert fund.function == "fundLoanRequest"
        assert fund.args == (3,)
        assert market.repository.get(EntityType.LOAN_REQUEST, 3) is None

    @pytest.mark.asyncio
    async def test_own_request_rejected(
        self,
        market: MarketplaceAggregator,
        quote_factory: Callable[..., PriceQuote],
        request_factory: Callable[..., LoanRequest],
    ) -> None:
        submit = _wire(market, quote_factory)
        market._marketplace.get_loan_request = AsyncMock(
            return_value=request_factory(borrower=WALLET)
        )

        result = await market.fund_loan_request(3)

        assert result.kind is FailureKind.VALIDATION
        submit.assert_not_awaited()

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "overrides, message",
        [
            ({"status": LoanRequestStatus.FUNDED}, "is funded"),
            ({"expire_at": NOW - 1}, "has expired"),
        ],
    )
    async def test_request_no_longer_open(
        self,
        market: MarketplaceAggregator,
        quote_factory: Callable[..., PriceQuote],
        request_factory: Callable[..., LoanRequest],
        overrides: dict,
        message: str,
    ) -> None:
        submit = _wire(market, quote_factory)
        market._marketplace.get_loan_request = AsyncMock(
            return_value=request_factory(**overrides)
        )

        result = await market.fund_loan_request(3)

        assert message in result.message
        submit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_missing_request(
        self, market: MarketplaceAggregator, quote_factory: Callable[..., PriceQuote]
    ) -> None:
        _wire(market, quote_factory)
        market._marketplace.get_loan_request = AsyncMock(return_value=None)

        result = await market.fund_loan_request(99)

        assert result.kind is FailureKind.UNAVAILABLE

    @pytest.mark.asyncio
    async def test_stale_price_blocks_funding(
        self,
        market: MarketplaceAggregator,
        quote_factory: Callable[..., PriceQuote],
        request_factory: Callable[..., LoanRequest],
    ) -> None:
        submit = _wire(market, quote_factory, price_age=5_000)
        market._marketplace.get_loan_request = AsyncMock(return_value=request_factory())

        result = await market.fund_loan_request(3)

        assert result.kind is FailureKind.STALE
        submit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_insufficient_lend_balance(
        self,
        market: MarketplaceAggregator,
        quote_factory: Callable[..., PriceQuote],
        request_factory: Callable[..., LoanRequest],
    ) -> None:
        submit = _wire(market, quote_factory, balance=999 * 10**6)
        market._marketplace.get_loan_request = AsyncMock(return_value=request_factory())

        result = await market.fund_loan_request(3)

        assert result.remedy is Remedy.GET_BALANCE
        assert result.message.startswith("Insufficient USDC")
        submit.assert_not_awaited()


class TestCreateLenderOffer:
    @pytest.mark.asyncio
    async def test_minimum_collateral_covers_repayment(
        self, market: MarketplaceAggregator, quote_factory: Callable[..., PriceQuote]
    ) -> None:
        submit = _wire(market, quote_factory)
        market._erc20.allowance = AsyncMock(side_effect=[0, 10**30])

        result = await market.create_lender_offer("USDC", 1_000 * 10**6, "WETH", 500, 30 * 86_400)

        assert result.ok
        approve, create = (c.args[0] for c in submit.await_args_list)
        assert approve.function == "approve"
        assert create.function == "createLenderOffer"
        # 1050 USDC owed at 75% LTV against WETH at $3000.
        assert create.args == (
            market.asset("USDC").address,
            1_000 * 10**6,
            market.asset("WETH").address,
            466666666666666666,
            500,
            30 * 86_400,
        )

    @pytest.mark.asyncio
    async def test_higher_minimum_kept(
        self, market: MarketplaceAggregator, quote_factory: Callable[..., PriceQuote]
    ) -> None:
        submit = _wire(market, quote_factory)

        result = await market.create_lender_offer(
            "USDC", 1_000 * 10**6, "WETH", 500, 30 * 86_400, min_collateral_amount=10**18
        )

        assert result.ok
        assert submit.await_args.args[0].args[3] == 10**18

    @pytest.mark.asyncio
    async def test_minimum_below_ltv_rejected(
        self, market: MarketplaceAggregator, quote_factory: Callable[..., PriceQuote]
    ) -> None:
        submit = _wire(market, quote_factory)

        result = await market.create_lender_offer(
            "USDC", 1_000 * 10**6, "WETH", 500, 30 * 86_400, min_collateral_amount=10**17
        )

        assert result.kind is FailureKind.VALIDATION
        assert result.remedy is Remedy.ADJUST_AMOUNT
        submit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_no_lend_balance(
        self, market: MarketplaceAggregator, quote_factory: Callable[..., PriceQuote]
    ) -> None:
        submit = _wire(market, quote_factory, balance=0)

        result = await market.create_lender_offer("USDC", 1_000 * 10**6, "WETH", 500, 30 * 86_400)

        assert result.message == "You have no USDC to lend."
        submit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_offer_cache_invalidated(
        self,
        market: MarketplaceAggregator,
        quote_factory: Callable[..., PriceQuote],
        offer_factory: Callable[..., LenderOffer],
    ) -> None:
        _wire(market, quote_factory)
        market.repository.upsert(EntityType.LENDER_OFFER, offer_factory())

        await market.create_lender_offer("USDC", 1_000 * 10**6, "WETH", 500, 30 * 86_400)

        assert market.repository.values(EntityType.LENDER_OFFER) == []


class TestPrices:
    @pytest.mark.asyncio
    async def test_concurrent_reads_cached(
        self, market: MarketplaceAggregator, quote_factory: Callable[..., PriceQuote]
    ) -> None:
        _wire(market, quote_factory)

        result = await market.prices(["weth", "USDC"])

        assert list(result.value) == ["WETH", "USDC"]
        assert result.value["WETH"].value.price == ETH_PRICE
        assert len(market.repository.values(EntityType.PRICE_QUOTE)) == 2

    @pytest.mark.asyncio
    async def test_unknown_symbol_reads_nothing(
        self, market: MarketplaceAggregator, quote_factory: Callable[..., PriceQuote]
    ) -> None:
        _wire(market, quote_factory)
        result = await market.prices(["WETH", "DOGE"])
        assert result.kind is FailureKind.VALIDATION
        market._prices.get_price.assert_not_awaited()
