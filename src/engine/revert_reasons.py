"""Pure revert decoding: raw revert data / node messages → readable reasons."""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any

from eth_abi import decode
from eth_utils import function_signature_to_4byte_selector

ERROR_STRING_SELECTOR = "0x08c379a0"
PANIC_SELECTOR = "0x4e487b71"

PANIC_CODES: dict[int, str] = {
    0x01: "Assertion failed.",
    0x11: "Arithmetic overflow or underflow.",
    0x12: "Division or modulo by zero.",
    0x21: "Invalid enum value.",
    0x31: "Pop from an empty array.",
    0x32: "Array index out of bounds.",
    0x41: "Out of memory.",
}

ERROR_MESSAGES: dict[str, str] = {
    # ERC20 / OpenZeppelin
    "ERC20InsufficientBalance": "Insufficient token balance. You need more tokens to complete this transaction.",
    "ERC20InsufficientAllowance": "Insufficient allowance. Please approve the token first.",
    "SafeERC20FailedOperation": "Token transfer failed. Please check your balance and try again.",
    "OwnableUnauthorizedAccount": "You are not authorized to perform this action.",
    "OwnableInvalidOwner": "Invalid owner address.",
    "AccessControlUnauthorizedAccount": "You do not have the required role to perform this action.",
    "EnforcedPause": "The contract is currently paused for maintenance.",
    "ReentrancyGuardReentrantCall": "Transaction blocked due to reentrancy protection.",
    # Shared
    "InvalidAmount": "Invalid amount specified.",
    "InvalidDuration": "Invalid loan duration.",
    "InvalidInterestRate": "Interest rate outside allowed range.",
    "AssetNotEnabled": "This asset is not enabled for lending.",
    "LTVExceeded": "Borrow amount exceeds maximum LTV for this collateral.",
    "LoanNotFound": "Loan not found.",
    "PriceDataStale": "Price data is stale. Refresh the price feed or wait for the oracle to update.",
    "PriceFeedNotSet": "Price feed not configured for this token.",
    "InvalidPrice": "Invalid price returned from oracle.",
    # LoanMarketPlace
    "AlreadyApproved": "This has already been approved.",
    "AmountExceedsDebt": "Repayment amount exceeds the remaining debt. Enter a smaller amount.",
    "AmountMustBeGreaterThanZero": "Amount must be greater than zero.",
    "BorrowAssetNotSupported": "This borrow asset is not supported by the platform.",
    "CannotAcceptOwnOffer": "You cannot accept your own lending offer.",
    "CannotFundOwnRequest": "You cannot fund your own loan request.",
    "CollateralAssetRequired": "Collateral asset is required.",
    "CollateralNotSupported": "This collateral token is not supported.",
    "InsufficientCollateral": "Insufficient collateral provided. Increase your collateral amount.",
    "InvalidLoanID": "Invalid loan ID.",
    "LTVExceedsMaximum": "The loan-to-value ratio exceeds the maximum allowed for this collateral.",
    "LoanNotActive": "This loan is not active.",
    "NotTheBorrower": "Only the borrower can perform this action.",
    "NotTheLender": "Only the lender can perform this action.",
    "OfferNotAvailable": "This offer is no longer available.",
    "OfferNotPending": "This offer is not in pending status.",
    "OnlyBorrowerCanRepay": "Only the borrower can repay this loan.",
    "OnlyLenderCanCancel": "Only the lender can cancel this offer.",
    "Overpayment": "Payment amount exceeds the loan balance.",
    "RepaymentBelowMinimum": "Repayment amount is below the minimum required.",
    "RequestExpired": "This loan request has expired.",
    "RequestNotPending": "This request is not pending.",
    "RequestIsNotPending": "This request is not in pending status.",
    "LoanTooNew": "This loan was recently created. Wait before performing this action.",
    # FiatLoanBridge
    "AssetNotSupported": "This collateral asset is not supported. Select a different token.",
    "OfferNotActive": "This offer is no longer active.",
    "OfferExpired": "This offer has expired and can no longer be accepted.",
    "CannotAcceptOwn": "You cannot accept your own offer.",
    "OfferFullyUtilized": "This offer has been fully utilized. No remaining funds available.",
    "InsufficientOfferBalance": "The requested borrow amount exceeds the remaining offer balance.",
    "LTVTooHigh": "The loan-to-value ratio is too high. Provide more collateral.",
    "NotKYCVerified": "Your account has not been KYC verified.",
    "InsufficientSupplierBalance": "Insufficient supplier balance for this loan amount.",
    "LoanAlreadyRepaid": "This loan has already been fully repaid.",
    "InvalidLoanStatus": "The loan is not in the required status for this operation.",
    "CannotCancel": "This loan request cannot be cancelled in its current state.",
    "InsufficientBalance": "Insufficient balance to complete this operation.",
    "CurrencyNotSupported": "The selected currency is not supported.",
}

# Errors that carry arguments; everything else in ERROR_MESSAGES is ``Name()``.
_ERROR_ARG_TYPES: dict[str, tuple[str, ...]] = {
    "ERC20InsufficientBalance": ("address", "uint256", "uint256"),
    "ERC20InsufficientAllowance": ("address", "uint256", "uint256"),
    "SafeERC20FailedOperation": ("address",),
    "OwnableUnauthorizedAccount": ("address",),
    "OwnableInvalidOwner": ("address",),
    "AccessControlUnauthorizedAccount": ("address", "bytes32"),
}

REQUIRE_REASONS: dict[str, str] = {
    "Insufficient collateral": "The escrow does not have enough collateral to release.",
    "Amount must be > 0": "Amount must be greater than zero.",
    "Only for crypto loans": "This operation is only available for crypto loans.",
    "Caller is not the marketplace": "Only the marketplace contract can perform this action.",
    "Loan not found": "The specified loan was not found.",
    "Insufficient collateral value": "The collateral value is insufficient for this operation.",
    "Collateral already deposited": "Collateral has already been deposited for this offer. Check your existing loans.",
    "Price data is stale": "Price data is stale. Refresh the price feed or wait for the oracle to update.",
    "Price feed not updated": "Price feed has not been updated yet.",
    "Invalid price": "Invalid price data from oracle.",
}


def _selector_hex(signature: str) -> str:
    return "0x" + function_signature_to_4byte_selector(signature).hex()


KNOWN_ERRORS: dict[str, tuple[str, tuple[str, ...]]] = {
    _selector_hex(f"{name}({','.join(_ERROR_ARG_TYPES.get(name, ()))})"): (
        name,
        _ERROR_ARG_TYPES.get(name, ()),
    )
    for name in ERROR_MESSAGES
}


@dataclass(frozen=True)
class DecodedRevert:
    selector: str
    name: str | None = None
    args: tuple[Any, ...] = ()
    reason: str | None = None


def decode_revert_data(data: str | None) -> DecodedRevert | None:
    """Decode ``Error(string)``, ``Panic(uint256)`` or a known custom error."""
    if not data or len(data) < 10:
        return None
    selector = data[:10].lower()

    try:
        payload = bytes.fromhex(data[10:])
        if selector == ERROR_STRING_SELECTOR:
            (reason,) = decode(["string"], payload)
            return DecodedRevert(selector=selector, name="Error", reason=reason)
        if selector == PANIC_SELECTOR:
            (code,) = decode(["uint256"], payload)
            reason = PANIC_CODES.get(code, f"Panic error 0x{code:02x}.")
            return DecodedRevert(selector=selector, name="Panic", args=(code,), reason=reason)
        if selector in KNOWN_ERRORS:
            name, arg_types = KNOWN_ERRORS[selector]
            args = tuple(decode(list(arg_types), payload)) if arg_types else ()
            return DecodedRevert(selector=selector, name=name, args=args)
    except Exception:
        # Malformed payload; fall back to selector-only information.
        return DecodedRevert(selector=selector)
    return DecodedRevert(selector=selector)


def humanize_error_name(name: str, args: tuple[Any, ...] = ()) -> str:
    """``InsufficientOfferBalance`` → ``Insufficient offer balance``."""
    if name == "ERC20InsufficientBalance" and len(args) >= 3:
        return f"Insufficient balance. You have {args[1]} but need {args[2]}."
    words = re.sub(r"(?<=[a-z0-9])([A-Z])", r" \1", name).split()
    if not words:
        return name
    return " ".join([words[0]] + [w.lower() for w in words[1:]])


def map_require_reason(reason: str) -> str:
    """Exact match first, then case-insensitive containment, else unchanged."""
    if reason in REQUIRE_REASONS:
        return REQUIRE_REASONS[reason]
    lowered = reason.lower()
    for key, message in REQUIRE_REASONS.items():
        if key.lower() in lowered:
            return message
    return reason


_REASON_STRING_RE = re.compile(r"reverted with reason string ['\"](.+?)['\"]", re.IGNORECASE)
_EXECUTION_REVERTED_RE = re.compile(r"execution reverted:\s*(.+?)(?:\n|$)", re.IGNORECASE)
_FOLLOWING_REASON_RE = re.compile(
    r"reverted with the following reason:\s*(.+?)(?:\n|$)", re.IGNORECASE
)
_SELECTOR_RE = re.compile(r"0x[a-fA-F0-9]{8}(?![a-fA-F0-9])")


def explain_revert(data: str | None, message: str = "") -> str:
    """Most specific readable reason for a revert."""
    decoded = decode_revert_data(data)
    if decoded is not None:
        if decoded.name == "Error" and decoded.reason is not None:
            return map_require_reason(decoded.reason)
        if decoded.name == "Panic" and decoded.reason is not None:
            return decoded.reason
        if decoded.name:
            if decoded.name in ERROR_MESSAGES and not (
                decoded.name == "ERC20InsufficientBalance" and decoded.args
            ):
                return ERROR_MESSAGES[decoded.name]
            return humanize_error_name(decoded.name, decoded.args)

    for pattern in (_REASON_STRING_RE, _FOLLOWING_REASON_RE, _EXECUTION_REVERTED_RE):
        match = pattern.search(message or "")
        if match:
            reason = match.group(1).strip()
            if reason in ERROR_MESSAGES:
                return ERROR_MESSAGES[reason]
            return map_require_reason(reason)

    for sig in _SELECTOR_RE.findall(message or ""):
        known = KNOWN_ERRORS.get(sig.lower())
        if known:
            return ERROR_MESSAGES[known[0]]

    if message:
        mapped = map_require_reason(message)
        if mapped != message:
            return mapped
    return "Transaction simulation failed."


def is_stale_price_reason(*texts: str | None) -> bool:
    """True when any text points at stale oracle data."""
    for text in texts:
        if not text:
            continue
        lowered = text.lower()
        if "stale" in lowered or "price feed not updated" in lowered:
            return True
    return False
