"""Command-line interface for the lending terms client."""
from __future__ import annotations

import argparse
import asyncio
import sys

from .config import load_config
from .logging_setup import configure_logging
from .models import (
    CollateralRequirement,
    Failure,
    FailureKind,
    LoanHealth,
    LoanRequest,
    OfferQuote,
    Remedy,
    RepaymentState,
    Result,
    fiat_asset,
    parse_amount,
    to_display,
    usd_cents_display,
)
from .services import DashboardAggregator, MarketplaceAggregator
from .services.base import LendingService


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse CLI parser."""
    parser = argparse.ArgumentParser(
        prog="lending-terms-client",
        description="Collateral, repayment and price checks for the lending marketplace",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to config.yaml (default: config.yaml in project root)",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )

    sub = parser.add_subparsers(dest="command")

    price = sub.add_parser("price", help="Show USD prices and their freshness")
    price.add_argument("symbols", nargs="+", metavar="SYMBOL")

    rate = sub.add_parser("rate", help="Show a fiat currency's rate per USD")
    rate.add_argument("currency")

    ltv = sub.add_parser("ltv", help="Show LTV terms for a collateral token and duration")
    ltv.add_argument("symbol")
    ltv.add_argument("days", type=int)

    for name, help_text in (
        ("quote", "Compute required collateral for drawing from an offer"),
        ("accept-offer", "Approve collateral and accept an offer"),
    ):
        p = sub.add_parser(name, help=help_text)
        p.add_argument("offer_id", type=int)
        p.add_argument("amount", help="Borrow amount in token units (or currency units with --fiat)")
        p.add_argument("--collateral", default=None, help="Collateral token symbol")
        p.add_argument("--fiat", action="store_true", help="Treat OFFER_ID as a fiat offer")

    for name, help_text in (
        ("repay-status", "Check whether a repayment can be submitted"),
        ("repay", "Approve and repay a loan"),
    ):
        p = sub.add_parser(name, help=help_text)
        p.add_argument("loan_id", type=int)
        p.add_argument("amount", help="Repay amount in token units, or 'max'")

    sub.add_parser("loans", help="List the wallet's loans and loan requests")

    health = sub.add_parser("health", help="Show a loan's LTV, health factor and liquidation price")
    health.add_argument("loan_id", type=int)

    sub.add_parser("requests", help="List pending loan requests")

    offers = sub.add_parser("offers", help="List active lender offers")
    offers.add_argument("--fiat", action="store_true", help="List fiat offers instead")

    refresh = sub.add_parser("refresh-price", help="Refresh a mock price feed")
    refresh.add_argument("symbol")
    refresh.add_argument(
        "--wait",
        action="store_true",
        help="Poll until the oracle publishes a fresh price instead",
    )

    cancel_req = sub.add_parser("cancel-request", help="Cancel a pending loan request")
    cancel_req.add_argument("request_id", type=int)

    cancel_off = sub.add_parser("cancel-offer", help="Cancel a lender offer")
    cancel_off.add_argument("offer_id", type=int)

    fund = sub.add_parser("fund-request", help="Approve and fund a pending loan request")
    fund.add_argument("request_id", type=int)

    create = sub.add_parser("create-offer", help="Approve and post a lender offer")
    create.add_argument("symbol", help="Token to lend")
    create.add_argument("amount", help="Lend amount in token units")
    create.add_argument("collateral", help="Collateral token symbol")
    create.add_argument("--interest-bps", type=int, required=True, help="Flat interest in bps")
    create.add_argument("--days", type=int, default=30, help="Loan duration (default: 30)")
    create.add_argument(
        "--min-collateral",
        default=None,
        help="Minimum collateral in token units (default: what the LTV requires)",
    )

    return parser


# ---------------------------------------------------------------------------
# Output helpers
# ---------------------------------------------------------------------------


def _print_failure(failure: Failure) -> int:
    print(f"✗ {failure.message}")
    if failure.remedy is not Remedy.NONE:
        print(f"  Next step: {failure.remedy.value.replace('_', ' ')}")
    return 1


def _requirement_line(req: CollateralRequirement, decimals: int, symbol: str) -> str:
    if not req.known:
        return f"unknown ({req.reason})"
    line = str(to_display(req.required_amount, decimals, symbol))
    value = req.display_value()
    if value is not None:
        line += f" (≈ {value})"
    return line


def _print_quote(quote: OfferQuote) -> None:
    borrow = quote.borrow_asset
    collateral = quote.collateral_asset
    print(f"Offer {quote.offer_id}")
    print(f"  Borrow:      {to_display(quote.borrow_amount, borrow.decimals, borrow.symbol)}")
    if quote.borrow_value_usd_cents is not None:
        print(f"  USD value:   {usd_cents_display(quote.borrow_value_usd_cents)}")
    print(f"  Duration:    {quote.duration_days} days")
    print(
        f"  Max LTV:     {quote.terms.max_ltv_bps / 100:.2f}% "
        f"(liquidation at {quote.terms.liquidation_threshold_bps / 100:.2f}%)"
    )
    print(
        "  Collateral:  "
        + _requirement_line(quote.requirement, collateral.decimals, collateral.symbol)
    )
    if quote.interest_amount is not None:
        print(f"  Interest:    {to_display(quote.interest_amount, borrow.decimals, borrow.symbol)}")


def _print_repayment(state: RepaymentState, decimals: int, symbol: str) -> None:
    print(f"  Total owed:  {to_display(state.total_owed, decimals, symbol)}")
    print(f"  Repaid:      {to_display(state.amount_already_repaid, decimals, symbol)}")
    print(f"  Remaining:   {to_display(state.remaining_owed, decimals, symbol)}")
    kind = "full" if state.is_full else "partial" if state.is_partial else "-"
    print(f"  Entered:     {to_display(state.entered_amount, decimals, symbol)} ({kind})")
    print(f"  Status:      {state.status.value}")
    if state.message:
        print(f"  {state.message}")


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


async def _price(service: MarketplaceAggregator, args: argparse.Namespace) -> int:
    result = await service.prices(args.symbols)
    if not result.ok:
        return _print_failure(result)
    status = 0
    for symbol, quote_result in result.value.items():
        if not quote_result.ok:
            print(f"{symbol}: {quote_result.message}")
            status = 1
            continue
        quote = quote_result.value
        stale = service.price_is_stale(quote)
        print(
            f"{symbol}: {quote.display()}  age {quote.age(service.now())}s"
            + ("  STALE" if stale else "")
        )
    return status


async def _rate(service: MarketplaceAggregator, args: argparse.Namespace) -> int:
    result = await service.exchange_rate(args.currency)
    if not result.ok:
        return _print_failure(result)
    rate = result.value
    stale = service.rate_is_stale(rate)
    print(
        f"1 USD = {rate.rate_per_usd / 1e8:,.4f} {rate.currency}" + ("  STALE" if stale else "")
    )
    return 0


async def _ltv(service: MarketplaceAggregator, args: argparse.Namespace) -> int:
    result = await service.ltv_terms(args.symbol, args.days)
    if not result.ok:
        return _print_failure(result)
    terms = result.value
    if not terms.available:
        print(f"No LTV terms available for {args.symbol.upper()} at {args.days} days")
        return 1
    print(
        f"{args.symbol.upper()} / {args.days}d: max LTV {terms.max_ltv_bps / 100:.2f}%, "
        f"liquidation threshold {terms.liquidation_threshold_bps / 100:.2f}%"
    )
    return 0


async def _offer_amount(service: MarketplaceAggregator, args: argparse.Namespace) -> int | Failure:
    if args.fiat:
        return parse_amount(args.amount, fiat_asset("USD").decimals)
    asset = await service.offer_lend_asset(args.offer_id)
    if not asset.ok:
        return asset
    return parse_amount(args.amount, asset.value.decimals)


async def _quote(service: MarketplaceAggregator, args: argparse.Namespace) -> int:
    amount = await _offer_amount(service, args)
    if isinstance(amount, Failure):
        return _print_failure(amount)

    if args.fiat:
        if not args.collateral:
            print("--collateral is required for fiat offers")
            return 1
        result = await service.quote_fiat_offer(args.offer_id, amount, args.collateral)
    else:
        result = await service.quote_offer(args.offer_id, amount, args.collateral)
    if not result.ok:
        return _print_failure(result)
    _print_quote(result.value)
    return 0


async def _accept(service: MarketplaceAggregator, args: argparse.Namespace) -> int:
    amount = await _offer_amount(service, args)
    if isinstance(amount, Failure):
        return _print_failure(amount)

    if args.fiat:
        if not args.collateral:
            print("--collateral is required for fiat offers")
            return 1
        session = service.open_accept_fiat_offer(args.offer_id)
        result = await service.accept_fiat_offer(session, amount, args.collateral)
    else:
        session = service.open_accept_offer(args.offer_id)
        result = await service.accept_offer(session, amount, args.collateral)
    if not result.ok:
        return _print_failure(result)
    print(f"✓ Offer {args.offer_id} accepted in transaction {result.value.tx_hash}")
    return 0


async def _repay(dashboard: DashboardAggregator, args: argparse.Namespace, submit: bool) -> int:
    asset_result = await dashboard.loan_borrow_asset(args.loan_id)
    if not asset_result.ok:
        return _print_failure(asset_result)
    asset = asset_result.value

    session = dashboard.open_repay(args.loan_id)
    if args.amount.lower() == "max":
        current = await dashboard.repay_status(session, 0)
        if not current.ok:
            return _print_failure(current)
        amount = current.value.remaining_owed
    else:
        amount = parse_amount(args.amount, asset.decimals)

    status = await dashboard.repay_status(session, amount)
    if not status.ok:
        return _print_failure(status)
    print(f"Loan {args.loan_id}")
    _print_repayment(status.value, asset.decimals, asset.symbol)
    if not submit:
        return 0 if status.value.can_submit else 1

    result = await dashboard.repay(session, amount)
    if not result.ok:
        return _print_failure(result)
    print(f"✓ Repaid in transaction {result.value.tx_hash}")
    return 0


async def _loans(dashboard: DashboardAggregator) -> int:
    borrowed, lent, requests = await asyncio.gather(
        dashboard.borrowed_loans(), dashboard.lent_loans(), dashboard.my_loan_requests()
    )
    for label, result in (("Borrowed", borrowed), ("Lent", lent)):
        if not result.ok:
            return _print_failure(result)
        print(f"{label} ({len(result.value)}):")
        for loan in result.value:
            asset = dashboard.asset_at(loan.borrow_asset)
            decimals, symbol = (asset.decimals, asset.symbol) if asset else (18, "")
            print(
                f"  #{loan.loan_id} {loan.status.name:<10} "
                f"principal {to_display(loan.principal_amount, decimals, symbol)}  "
                f"repaid {to_display(loan.amount_repaid, decimals, symbol)}"
            )

    if not requests.ok:
        return _print_failure(requests)
    print(f"Requests ({len(requests.value)}):")
    _print_requests(dashboard, requests.value)

    fiat = await dashboard.my_fiat_loans()
    if fiat.ok:
        print(f"Fiat loans ({len(fiat.value)}):")
        for loan in fiat.value:
            print(
                f"  #{loan.loan_id} {loan.status.name:<16} "
                f"{to_display(loan.fiat_amount_cents, 2, loan.currency)}"
            )
    elif fiat.kind is not FailureKind.UNSUPPORTED:
        return _print_failure(fiat)
    return 0


async def _health(dashboard: DashboardAggregator, args: argparse.Namespace) -> int:
    result = await dashboard.position_health(args.loan_id)
    if not result.ok:
        return _print_failure(result)
    health: LoanHealth = result.value
    ltv = "-" if health.current_ltv_bps is None else f"{health.current_ltv_bps / 100:.2f}%"
    factor = "-" if health.health_factor_bps is None else f"{health.health_factor_bps / 10_000:.2f}"
    print(f"Loan {args.loan_id}")
    print(f"  Collateral:  {usd_cents_display(health.collateral_value_usd_cents)}")
    print(f"  Owed:        {usd_cents_display(health.borrow_value_usd_cents)}")
    print(
        f"  LTV:         {ltv} (max {health.max_ltv_bps / 100:.2f}%, "
        f"liquidation at {health.liquidation_threshold_bps / 100:.2f}%)"
    )
    print(f"  Health:      {factor} ({'healthy' if health.is_healthy else 'liquidatable'})")
    if health.liquidation_price is not None:
        print(f"  Liquidation: collateral price ${health.liquidation_price / 1e8:,.2f}")
    if not health.is_safe:
        print("  Above the maximum LTV for new borrowing")
    return 0


def _print_requests(service: LendingService, requests: list[LoanRequest]) -> None:
    for request in requests:
        borrow = service.asset_at(request.borrow_asset)
        collateral = service.asset_at(request.collateral_token)
        b_dec, b_sym = (borrow.decimals, borrow.symbol) if borrow else (18, "")
        c_dec, c_sym = (collateral.decimals, collateral.symbol) if collateral else (18, "")
        print(
            f"  #{request.request_id} {request.status.name:<9} "
            f"{to_display(request.borrow_amount, b_dec, b_sym)} against "
            f"{to_display(request.collateral_amount, c_dec, c_sym)}, "
            f"{request.duration // 86400}d"
        )


async def _requests(service: MarketplaceAggregator) -> int:
    result = await service.pending_requests()
    if not result.ok:
        return _print_failure(result)
    _print_requests(service, result.value)
    return 0


async def _offers(service: MarketplaceAggregator, args: argparse.Namespace) -> int:
    if args.fiat:
        result = await service.active_fiat_offers()
        if not result.ok:
            return _print_failure(result)
        for offer in result.value:
            print(
                f"  #{offer.offer_id} {to_display(offer.remaining_amount_cents, 2, offer.currency)} "
                f"available, {offer.duration // 86400}d at {offer.interest_rate / 100:.2f}%"
            )
        return 0

    result = await service.active_offers()
    if not result.ok:
        return _print_failure(result)
    for offer in result.value:
        asset = service.asset_at(offer.lend_asset)
        decimals, symbol = (asset.decimals, asset.symbol) if asset else (18, "")
        print(
            f"  #{offer.offer_id} {to_display(offer.remaining_amount, decimals, symbol)} "
            f"available, {offer.duration // 86400}d at {offer.interest_rate / 100:.2f}%"
        )
    return 0


async def _create_offer(service: MarketplaceAggregator, args: argparse.Namespace) -> Result:
    lend = service.asset(args.symbol)
    collateral = service.asset(args.collateral)
    if lend is None or collateral is None:
        return Failure(FailureKind.VALIDATION, "Unknown lend or collateral token")
    min_collateral = (
        None
        if args.min_collateral is None
        else parse_amount(args.min_collateral, collateral.decimals)
    )
    return await service.create_lender_offer(
        lend.symbol,
        parse_amount(args.amount, lend.decimals),
        collateral.symbol,
        args.interest_bps,
        args.days * 86400,
        min_collateral_amount=min_collateral,
    )


async def _refresh(service: MarketplaceAggregator, args: argparse.Namespace) -> int:
    if args.wait:
        result = await service.wait_for_fresh_price(args.symbol)
    else:
        result = await service.refresh_price(args.symbol)
    if not result.ok:
        return _print_failure(result)
    print(f"✓ {args.symbol.upper()} price {result.value.display()} (updated {result.value.updated_at})")
    return 0


async def _run(args: argparse.Namespace) -> int:
    """Execute the selected command."""
    configure_logging(args.log_level)
    config = load_config(args.config)

    if args.command in ("repay-status", "repay", "loans", "health"):
        dashboard = DashboardAggregator(config)
        if args.command == "loans":
            return await _loans(dashboard)
        if args.command == "health":
            return await _health(dashboard, args)
        return await _repay(dashboard, args, submit=args.command == "repay")

    service = MarketplaceAggregator(config)
    if args.command == "price":
        return await _price(service, args)
    if args.command == "rate":
        return await _rate(service, args)
    if args.command == "ltv":
        return await _ltv(service, args)
    if args.command == "quote":
        return await _quote(service, args)
    if args.command == "accept-offer":
        return await _accept(service, args)
    if args.command == "requests":
        return await _requests(service)
    if args.command == "offers":
        return await _offers(service, args)
    if args.command == "refresh-price":
        return await _refresh(service, args)
    if args.command == "cancel-request":
        result = await service.cancel_loan_request(args.request_id)
    elif args.command == "cancel-offer":
        result = await service.cancel_lender_offer(args.offer_id)
    elif args.command == "fund-request":
        result = await service.fund_loan_request(args.request_id)
    elif args.command == "create-offer":
        result = await _create_offer(service, args)
    else:
        build_parser().print_help()
        return 1

    if not result.ok:
        return _print_failure(result)
    print(f"✓ Confirmed in transaction {result.value.tx_hash}")
    return 0


def main() -> None:
    """Entry point."""
    parser = build_parser()
    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    try:
        code = asyncio.run(_run(args))
    except ValueError as e:
        print(f"Error: {e}")
        sys.exit(2)
    sys.exit(code)
