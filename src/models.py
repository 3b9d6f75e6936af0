"""Data models — all frozen (immutable).

Amounts that can reach a contract are plain ``int`` in the asset's smallest
unit (wei, token base units, cents). Floating point only appears in
:class:`DisplayAmount`, which has no conversion back to ``int``.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation, localcontext
from enum import Enum, IntEnum
from typing import Any, Generic, TypeVar, Union

T = TypeVar("T")

PRICE_DECIMALS = 8
PRICE_SCALE = 10**PRICE_DECIMALS
BPS_DENOMINATOR = 10_000

PRICE_MAX_AGE_SECONDS = 900
EXCHANGE_RATE_MAX_AGE_SECONDS = 3600


# ---------------------------------------------------------------------------
# Assets
# ---------------------------------------------------------------------------


class AssetKind(str, Enum):
    CRYPTO = "crypto"
    FIAT = "fiat"


@dataclass(frozen=True)
class Asset:
    """Reference data for a token or fiat currency on one network."""

    address: str
    symbol: str
    decimals: int
    kind: AssetKind = AssetKind.CRYPTO


FIAT_CURRENCY_SYMBOLS: dict[str, str] = {
    "USD": "$",
    "NGN": "₦",
    "EUR": "€",
    "GBP": "£",
    "KES": "KSh",
    "GHS": "₵",
    "ZAR": "R",
}


def fiat_asset(currency: str) -> Asset:
    """Fiat currency as an asset denominated in cents."""
    code = currency.upper()
    if code not in FIAT_CURRENCY_SYMBOLS:
        raise ValueError(f"Unsupported fiat currency '{currency}'")
    return Asset(address=code, symbol=code, decimals=2, kind=AssetKind.FIAT)


@dataclass(frozen=True)
class DisplayAmount:
    """Approximate value for presentation only."""

    value: float
    symbol: str = ""

    def __str__(self) -> str:
        if self.symbol in FIAT_CURRENCY_SYMBOLS.values() or self.symbol == "$":
            return f"{self.symbol}{self.value:,.2f}"
        if self.value and abs(self.value) < 0.0001:
            return f"<0.0001 {self.symbol}".strip()
        return f"{self.value:,.4f} {self.symbol}".strip()


def to_display(amount: int, decimals: int, symbol: str = "") -> DisplayAmount:
    return DisplayAmount(value=amount / 10**decimals, symbol=symbol)


def usd_cents_display(cents: int) -> DisplayAmount:
    return DisplayAmount(value=cents / 100, symbol="$")


def parse_amount(text: str, decimals: int) -> int:
    """Exact base units for a user-entered decimal string like ``"12.5"``."""
    try:
        value = Decimal(text.strip().replace(",", ""))
    except InvalidOperation:
        raise ValueError(f"Invalid amount '{text}'") from None
    if not value.is_finite() or value < 0:
        raise ValueError(f"Invalid amount '{text}'")
    # uint256 has 78 digits; the default 28-digit context would round.
    with localcontext() as ctx:
        ctx.prec = 78
        scaled = value.scaleb(decimals)
    if scaled != scaled.to_integral_value():
        raise ValueError(f"'{text}' has more than {decimals} decimal places")
    return int(scaled)


# ---------------------------------------------------------------------------
# Results and failures
# ---------------------------------------------------------------------------


class FailureKind(str, Enum):
    UNAVAILABLE = "unavailable"
    STALE = "stale"
    VALIDATION = "validation"
    SIMULATION_REVERT = "simulation_revert"
    ONCHAIN_REVERT = "onchain_revert"
    TRANSPORT = "transport"
    UNSUPPORTED = "unsupported"
    ABANDONED = "abandoned"


class Remedy(str, Enum):
    """User action that can clear a blocking state."""

    NONE = "none"
    REFRESH_PRICE = "refresh_price"
    WAIT_FOR_ORACLE = "wait_for_oracle"
    GET_BALANCE = "get_balance"
    APPROVE_AGAIN = "approve_again"
    ADJUST_AMOUNT = "adjust_amount"
    RETRY = "retry"


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Failure:
    kind: FailureKind
    message: str
    remedy: Remedy = Remedy.NONE
    retryable: bool = False

    @property
    def ok(self) -> bool:
        return False

    @property
    def stale_price(self) -> bool:
        return self.remedy in (Remedy.REFRESH_PRICE, Remedy.WAIT_FOR_ORACLE)


Result = Union[Ok[Any], Failure]


def unavailable(message: str) -> Failure:
    return Failure(FailureKind.UNAVAILABLE, message)


def transport_failure(error: Exception) -> Failure:
    return Failure(
        FailureKind.TRANSPORT, f"RPC request failed: {error}", Remedy.RETRY, True
    )


# ---------------------------------------------------------------------------
# Oracle data
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PriceQuote:
    """USD price with 8 decimals, as reported by the asset's feed."""

    asset: Asset
    price: int
    updated_at: int
    feed_address: str = ""

    def age(self, now: int) -> int:
        return now - self.updated_at

    def is_stale(self, now: int, max_age: int = PRICE_MAX_AGE_SECONDS) -> bool:
        return now - self.updated_at > max_age

    def display(self) -> DisplayAmount:
        return DisplayAmount(value=self.price / PRICE_SCALE, symbol="$")


@dataclass(frozen=True)
class ExchangeRate:
    """Units of ``currency`` per one USD, 8 decimals."""

    currency: str
    rate_per_usd: int
    updated_at: int

    def is_stale(self, now: int, max_age: int = EXCHANGE_RATE_MAX_AGE_SECONDS) -> bool:
        if self.updated_at == 0:
            return True
        return now - self.updated_at > max_age


@dataclass(frozen=True)
class LTVTerms:
    asset_address: str
    duration_days: int
    max_ltv_bps: int
    liquidation_threshold_bps: int

    @property
    def available(self) -> bool:
        """Zero LTV means the (asset, duration) pair has no terms."""
        return self.max_ltv_bps > 0


# ---------------------------------------------------------------------------
# Lifecycle statuses (owned by the contracts, mirrored here)
# ---------------------------------------------------------------------------


class LoanRequestStatus(IntEnum):
    PENDING = 0
    FUNDED = 1
    EXPIRED = 2
    CANCELLED = 3

    def can_transition_to(self, other: LoanRequestStatus) -> bool:
        return other == self or other in _REQUEST_TRANSITIONS[self]


class LoanStatus(IntEnum):
    NULL = 0
    ACTIVE = 1
    REPAID = 2
    LIQUIDATED = 3
    DEFAULTED = 4

    def can_transition_to(self, other: LoanStatus) -> bool:
        return other == self or other in _LOAN_TRANSITIONS[self]


class FiatLoanStatus(IntEnum):
    PENDING_SUPPLIER = 0
    ACTIVE = 1
    REPAID = 2
    LIQUIDATED = 3
    CANCELLED = 4

    def can_transition_to(self, other: FiatLoanStatus) -> bool:
        return other == self or other in _FIAT_LOAN_TRANSITIONS[self]


class FiatLenderOfferStatus(IntEnum):
    ACTIVE = 0
    ACCEPTED = 1
    CANCELLED = 2
    EXPIRED = 3

    def can_transition_to(self, other: FiatLenderOfferStatus) -> bool:
        return other == self or other in _FIAT_OFFER_TRANSITIONS[self]


_REQUEST_TRANSITIONS = {
    LoanRequestStatus.PENDING: {
        LoanRequestStatus.FUNDED,
        LoanRequestStatus.EXPIRED,
        LoanRequestStatus.CANCELLED,
    },
    LoanRequestStatus.FUNDED: set(),
    LoanRequestStatus.EXPIRED: set(),
    LoanRequestStatus.CANCELLED: set(),
}

_LOAN_TRANSITIONS = {
    LoanStatus.NULL: {LoanStatus.ACTIVE},
    LoanStatus.ACTIVE: {LoanStatus.REPAID, LoanStatus.LIQUIDATED, LoanStatus.DEFAULTED},
    LoanStatus.REPAID: set(),
    LoanStatus.LIQUIDATED: set(),
    LoanStatus.DEFAULTED: set(),
}

_FIAT_LOAN_TRANSITIONS = {
    FiatLoanStatus.PENDING_SUPPLIER: {FiatLoanStatus.ACTIVE, FiatLoanStatus.CANCELLED},
    FiatLoanStatus.ACTIVE: {
        FiatLoanStatus.REPAID,
        FiatLoanStatus.LIQUIDATED,
        FiatLoanStatus.CANCELLED,
    },
    FiatLoanStatus.REPAID: set(),
    FiatLoanStatus.LIQUIDATED: set(),
    FiatLoanStatus.CANCELLED: set(),
}

_FIAT_OFFER_TRANSITIONS = {
    FiatLenderOfferStatus.ACTIVE: {
        FiatLenderOfferStatus.ACCEPTED,
        FiatLenderOfferStatus.CANCELLED,
        FiatLenderOfferStatus.EXPIRED,
    },
    FiatLenderOfferStatus.ACCEPTED: set(),
    FiatLenderOfferStatus.CANCELLED: set(),
    FiatLenderOfferStatus.EXPIRED: set(),
}


# ---------------------------------------------------------------------------
# Contract entities
# ---------------------------------------------------------------------------


class EntityType(str, Enum):
    LOAN_REQUEST = "loan_request"
    LENDER_OFFER = "lender_offer"
    LOAN = "loan"
    FIAT_LOAN = "fiat_loan"
    FIAT_LENDER_OFFER = "fiat_lender_offer"
    PRICE_QUOTE = "price_quote"
    EXCHANGE_RATE = "exchange_rate"


@dataclass(frozen=True)
class LoanRequest:
    request_id: int
    borrower: str
    collateral_amount: int
    collateral_token: str
    borrow_asset: str
    borrow_amount: int
    duration: int
    max_interest_rate: int
    interest_rate: int
    created_at: int
    expire_at: int
    status: LoanRequestStatus
    chain_id: int = 0

    @property
    def entity_key(self) -> int:
        return self.request_id

    def is_expired(self, now: int) -> bool:
        return self.expire_at != 0 and now > self.expire_at


@dataclass(frozen=True)
class LenderOffer:
    offer_id: int
    lender: str
    lend_asset: str
    lend_amount: int
    remaining_amount: int
    borrowed_amount: int
    required_collateral_asset: str
    min_collateral_amount: int
    duration: int
    interest_rate: int
    created_at: int
    expire_at: int
    status: LoanRequestStatus
    chain_id: int = 0

    @property
    def entity_key(self) -> int:
        return self.offer_id

    @property
    def is_fully_utilized(self) -> bool:
        return self.remaining_amount == 0

    def is_expired(self, now: int) -> bool:
        return self.expire_at != 0 and now > self.expire_at


@dataclass(frozen=True)
class Loan:
    loan_id: int
    request_id: int
    borrower: str
    lender: str
    collateral_asset: str
    collateral_amount: int
    collateral_released: int
    borrow_asset: str
    principal_amount: int
    interest_rate: int
    duration: int
    start_time: int
    due_date: int
    amount_repaid: int
    status: LoanStatus
    last_interest_update: int
    grace_period_end: int
    is_cross_chain: bool = False
    source_chain_id: int = 0
    target_chain_id: int = 0
    remote_chain_loan_id: int = 0

    @property
    def entity_key(self) -> int:
        return self.loan_id


@dataclass(frozen=True)
class FiatLoan:
    loan_id: int
    borrower: str
    supplier: str
    collateral_asset: str
    collateral_amount: int
    fiat_amount_cents: int
    currency: str
    interest_rate: int
    duration: int
    status: FiatLoanStatus
    created_at: int
    activated_at: int
    due_date: int
    grace_period_end: int
    claimable_amount_cents: int
    funds_withdrawn: bool
    repayment_deposit_id: str

    @property
    def entity_key(self) -> int:
        return self.loan_id


@dataclass(frozen=True)
class FiatLenderOffer:
    offer_id: int
    lender: str
    fiat_amount_cents: int
    remaining_amount_cents: int
    borrowed_amount_cents: int
    currency: str
    min_collateral_value_usd: int
    duration: int
    interest_rate: int
    created_at: int
    expire_at: int
    status: FiatLenderOfferStatus
    exchange_rate_at_creation: int
    chain_id: int = 0

    @property
    def entity_key(self) -> int:
        return self.offer_id

    def is_expired(self, now: int) -> bool:
        return self.expire_at != 0 and now > self.expire_at


# ---------------------------------------------------------------------------
# Derived state (never persisted)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CollateralRequirement:
    """Collateral needed for a borrow; ``known=False`` is never "zero needed"."""

    known: bool
    required_amount: int | None = None
    required_value_usd_cents: int | None = None
    reason: str = ""

    @classmethod
    def unknown(cls, reason: str) -> CollateralRequirement:
        return cls(known=False, reason=reason)

    def display_value(self) -> DisplayAmount | None:
        if self.required_value_usd_cents is None:
            return None
        return usd_cents_display(self.required_value_usd_cents)


@dataclass(frozen=True)
class LoanHealth:
    """Position health at current prices; ratios are in bps (10000 = 1.0)."""

    collateral_value_usd_cents: int
    borrow_value_usd_cents: int
    current_ltv_bps: int | None
    max_ltv_bps: int
    liquidation_threshold_bps: int
    health_factor_bps: int | None
    liquidation_price: int | None

    @property
    def is_healthy(self) -> bool:
        # No debt means nothing to liquidate.
        return self.health_factor_bps is None or self.health_factor_bps >= BPS_DENOMINATOR

    @property
    def is_safe(self) -> bool:
        return self.current_ltv_bps is not None and self.current_ltv_bps <= self.max_ltv_bps


class RepaymentStatus(str, Enum):
    READY = "ready"
    NO_BALANCE = "no_balance"
    INVALID_AMOUNT = "invalid_amount"
    EXCEEDS_REMAINING = "exceeds_remaining"
    INSUFFICIENT_BALANCE = "insufficient_balance"
    STALE_PRICE = "stale_price"
    NOTHING_OWED = "nothing_owed"


@dataclass(frozen=True)
class RepaymentState:
    total_owed: int
    amount_already_repaid: int
    remaining_owed: int
    entered_amount: int
    is_partial: bool
    has_sufficient_balance: bool
    status: RepaymentStatus
    remedy: Remedy = Remedy.NONE
    message: str = ""

    @property
    def can_submit(self) -> bool:
        return self.status is RepaymentStatus.READY

    @property
    def is_full(self) -> bool:
        return self.entered_amount > 0 and self.entered_amount == self.remaining_owed


# ---------------------------------------------------------------------------
# Transactions
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ContractCall:
    """A state-changing call; the same object is simulated and submitted."""

    to: str
    function: str
    args: tuple[Any, ...] = ()
    sender: str = ""
    value: int = 0


@dataclass(frozen=True)
class Receipt:
    tx_hash: str
    success: bool
    block_number: int = 0
    gas_used: int = 0
    raw: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)


@dataclass(frozen=True)
class OfferQuote:
    """Everything needed to accept an offer, computed from one set of reads."""

    offer_id: int
    borrow_asset: Asset
    collateral_asset: Asset
    borrow_amount: int
    duration_days: int
    terms: LTVTerms
    requirement: CollateralRequirement
    interest_amount: int | None = None
    borrow_value_usd_cents: int | None = None
