"""Pure collateral and position-health math. No I/O.

All divisions floor, matching the contracts' integer arithmetic. Inputs that
make a requirement unknowable (missing price, zero LTV) produce an unknown
:class:`CollateralRequirement`, never a zero one.
"""
from __future__ import annotations

from ..models import BPS_DENOMINATOR, PRICE_SCALE, CollateralRequirement, LoanHealth

# USD cents → 8-decimal USD price units.
_CENTS_TO_PRICE_UNITS = PRICE_SCALE // 100


def collateral_value_usd_cents(amount: int, price: int, decimals: int) -> int:
    """Floor USD cents value of ``amount`` base units at an 8-decimal price."""
    return amount * price // (10**decimals * _CENTS_TO_PRICE_UNITS)


def _missing_inputs(
    ltv_bps: int, prices: tuple[int | None, ...], amount: int
) -> str | None:
    if ltv_bps <= 0:
        return "No LTV terms available for this collateral and duration"
    if ltv_bps > BPS_DENOMINATOR:
        return f"LTV {ltv_bps} bps is out of range"
    if any(p is None or p <= 0 for p in prices):
        return "Price unavailable"
    if amount < 0:
        return "Amount must not be negative"
    return None


def required_collateral(
    borrow_amount: int,
    borrow_price: int | None,
    collateral_price: int | None,
    ltv_bps: int,
    collateral_decimals: int,
    borrow_decimals: int,
) -> CollateralRequirement:
    """Collateral (base units) needed to borrow ``borrow_amount`` at ``ltv_bps``.

    required = borrow * borrowPrice * 10000 * 10^collDec
               / (ltv * collPrice * 10^borrowDec)
    """
    missing = _missing_inputs(ltv_bps, (borrow_price, collateral_price), borrow_amount)
    if missing:
        return CollateralRequirement.unknown(missing)

    numerator = (
        borrow_amount * borrow_price * BPS_DENOMINATOR * 10**collateral_decimals
    )
    denominator = ltv_bps * collateral_price * 10**borrow_decimals
    amount = numerator // denominator
    return CollateralRequirement(
        known=True,
        required_amount=amount,
        required_value_usd_cents=collateral_value_usd_cents(
            amount, collateral_price, collateral_decimals
        ),
    )


def proportional_collateral(
    offer_min_collateral: int, desired_borrow: int, offer_full_amount: int
) -> CollateralRequirement:
    """Share of an offer's fixed collateral for a partial draw."""
    if offer_full_amount <= 0:
        return CollateralRequirement.unknown("Offer amount is zero")
    if desired_borrow < 0:
        return CollateralRequirement.unknown("Amount must not be negative")
    return CollateralRequirement(
        known=True,
        required_amount=offer_min_collateral * desired_borrow // offer_full_amount,
    )


def max_borrowable(
    collateral_amount: int,
    borrow_price: int | None,
    collateral_price: int | None,
    ltv_bps: int,
    collateral_decimals: int,
    borrow_decimals: int,
) -> int | None:
    """Largest borrow (base units) that ``collateral_amount`` supports."""
    if _missing_inputs(ltv_bps, (borrow_price, collateral_price), collateral_amount):
        return None
    numerator = collateral_amount * collateral_price * ltv_bps * 10**borrow_decimals
    denominator = borrow_price * BPS_DENOMINATOR * 10**collateral_decimals
    return numerator // denominator


def satisfies_ltv(
    collateral_amount: int,
    borrow_amount: int,
    borrow_price: int,
    collateral_price: int,
    ltv_bps: int,
    collateral_decimals: int,
    borrow_decimals: int,
) -> bool:
    """Contract-side sufficiency check.

    The contract floors its own requirement with the same formula and compares
    the posted amount against it.
    """
    requirement = required_collateral(
        borrow_amount,
        borrow_price,
        collateral_price,
        ltv_bps,
        collateral_decimals,
        borrow_decimals,
    )
    return requirement.known and collateral_amount >= requirement.required_amount


def fiat_required_collateral(
    borrow_usd_cents: int,
    collateral_price: int | None,
    ltv_bps: int,
    collateral_decimals: int,
) -> CollateralRequirement:
    """Collateral for a fiat borrow already converted to USD cents.

    requiredValue = usdCents * 10000 / ltv, then divided by the token price.
    Done as one floor division so no precision is lost in between.
    """
    missing = _missing_inputs(ltv_bps, (collateral_price,), borrow_usd_cents)
    if missing:
        return CollateralRequirement.unknown(missing)

    numerator = (
        borrow_usd_cents * BPS_DENOMINATOR * _CENTS_TO_PRICE_UNITS * 10**collateral_decimals
    )
    amount = numerator // (ltv_bps * collateral_price)
    return CollateralRequirement(
        known=True,
        required_amount=amount,
        required_value_usd_cents=borrow_usd_cents * BPS_DENOMINATOR // ltv_bps,
    )


def fiat_interest_cents(borrow_cents: int, rate_bps: int) -> int:
    return borrow_cents * rate_bps // BPS_DENOMINATOR


# ---------------------------------------------------------------------------
# Position health
# ---------------------------------------------------------------------------


def current_ltv_bps(collateral_value_cents: int, borrow_value_cents: int) -> int | None:
    """Borrow value over collateral value; ``None`` when debt has no backing."""
    if borrow_value_cents <= 0:
        return 0
    if collateral_value_cents <= 0:
        return None
    return borrow_value_cents * BPS_DENOMINATOR // collateral_value_cents


def health_factor_bps(
    collateral_value_cents: int, borrow_value_cents: int, liquidation_threshold_bps: int
) -> int | None:
    """collateral * threshold / borrow, in bps; below 10000 is liquidatable.

    ``None`` when nothing is borrowed.
    """
    if borrow_value_cents <= 0:
        return None
    return collateral_value_cents * liquidation_threshold_bps // borrow_value_cents


def liquidation_price(
    collateral_amount: int,
    borrow_value_cents: int,
    liquidation_threshold_bps: int,
    collateral_decimals: int,
) -> int | None:
    """8-decimal collateral price at which the health factor reaches 1.0."""
    if collateral_amount <= 0 or liquidation_threshold_bps <= 0 or borrow_value_cents <= 0:
        return None
    numerator = (
        borrow_value_cents
        * _CENTS_TO_PRICE_UNITS
        * 10**collateral_decimals
        * BPS_DENOMINATOR
    )
    return numerator // (collateral_amount * liquidation_threshold_bps)


def loan_health(
    collateral_amount: int,
    collateral_price: int,
    collateral_decimals: int,
    borrow_amount: int,
    borrow_price: int,
    borrow_decimals: int,
    max_ltv_bps: int,
    liquidation_threshold_bps: int,
) -> LoanHealth:
    collateral_cents = collateral_value_usd_cents(
        collateral_amount, collateral_price, collateral_decimals
    )
    borrow_cents = collateral_value_usd_cents(borrow_amount, borrow_price, borrow_decimals)
    return LoanHealth(
        collateral_value_usd_cents=collateral_cents,
        borrow_value_usd_cents=borrow_cents,
        current_ltv_bps=current_ltv_bps(collateral_cents, borrow_cents),
        max_ltv_bps=max_ltv_bps,
        liquidation_threshold_bps=liquidation_threshold_bps,
        health_factor_bps=health_factor_bps(
            collateral_cents, borrow_cents, liquidation_threshold_bps
        ),
        liquidation_price=liquidation_price(
            collateral_amount, borrow_cents, liquidation_threshold_bps, collateral_decimals
        ),
    )
