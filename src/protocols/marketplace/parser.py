"""Pure parsing functions for marketplace and fiat-bridge reads — no I/O.

Each parser takes the decoded output tuple of the matching getter and returns
an entity, or ``None`` for an unused slot (the contracts return zeroed
structs for ids that were never written).
"""
from __future__ import annotations

from typing import Any

from ...chains.evm.abi import checksum, is_zero_address
from ...models import (
    FiatLenderOffer,
    FiatLenderOfferStatus,
    FiatLoan,
    FiatLoanStatus,
    LenderOffer,
    Loan,
    LoanRequest,
    LoanRequestStatus,
    LoanStatus,
)


def _address(value: Any) -> str:
    return checksum(value) if value else ""


def _bytes32_hex(value: Any) -> str:
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    return str(value)


def parse_loan_request(raw: tuple[Any, ...]) -> LoanRequest | None:
    if is_zero_address(raw[1]):
        return None
    return LoanRequest(
        request_id=int(raw[0]),
        borrower=_address(raw[1]),
        collateral_amount=int(raw[2]),
        collateral_token=_address(raw[3]),
        borrow_asset=_address(raw[4]),
        borrow_amount=int(raw[5]),
        duration=int(raw[6]),
        max_interest_rate=int(raw[7]),
        interest_rate=int(raw[8]),
        created_at=int(raw[9]),
        expire_at=int(raw[10]),
        status=LoanRequestStatus(int(raw[11])),
        chain_id=int(raw[12]),
    )


def parse_lender_offer(raw: tuple[Any, ...]) -> LenderOffer | None:
    if is_zero_address(raw[1]):
        return None
    return LenderOffer(
        offer_id=int(raw[0]),
        lender=_address(raw[1]),
        lend_asset=_address(raw[2]),
        lend_amount=int(raw[3]),
        remaining_amount=int(raw[4]),
        borrowed_amount=int(raw[5]),
        required_collateral_asset=_address(raw[6]),
        min_collateral_amount=int(raw[7]),
        duration=int(raw[8]),
        interest_rate=int(raw[9]),
        created_at=int(raw[10]),
        expire_at=int(raw[11]),
        status=LoanRequestStatus(int(raw[12])),
        chain_id=int(raw[13]),
    )


def parse_loan(raw: tuple[Any, ...]) -> Loan | None:
    status = LoanStatus(int(raw[14]))
    if status is LoanStatus.NULL or is_zero_address(raw[2]):
        return None
    return Loan(
        loan_id=int(raw[0]),
        request_id=int(raw[1]),
        borrower=_address(raw[2]),
        lender=_address(raw[3]),
        collateral_asset=_address(raw[4]),
        collateral_amount=int(raw[5]),
        collateral_released=int(raw[6]),
        borrow_asset=_address(raw[7]),
        principal_amount=int(raw[8]),
        interest_rate=int(raw[9]),
        duration=int(raw[10]),
        start_time=int(raw[11]),
        due_date=int(raw[12]),
        amount_repaid=int(raw[13]),
        status=status,
        last_interest_update=int(raw[15]),
        grace_period_end=int(raw[16]),
        is_cross_chain=bool(raw[17]),
        source_chain_id=int(raw[18]),
        target_chain_id=int(raw[19]),
        remote_chain_loan_id=int(raw[20]),
    )


def parse_fiat_loan(raw: tuple[Any, ...]) -> FiatLoan | None:
    """``getFiatLoan`` returns the struct as a single tuple output."""
    fields = raw[0] if len(raw) == 1 and isinstance(raw[0], (tuple, list)) else raw
    if is_zero_address(fields[1]):
        return None
    return FiatLoan(
        loan_id=int(fields[0]),
        borrower=_address(fields[1]),
        supplier=_address(fields[2]) if not is_zero_address(fields[2]) else "",
        collateral_asset=_address(fields[3]),
        collateral_amount=int(fields[4]),
        fiat_amount_cents=int(fields[5]),
        currency=str(fields[6]),
        interest_rate=int(fields[7]),
        duration=int(fields[8]),
        status=FiatLoanStatus(int(fields[9])),
        created_at=int(fields[10]),
        activated_at=int(fields[11]),
        due_date=int(fields[12]),
        grace_period_end=int(fields[13]),
        claimable_amount_cents=int(fields[14]),
        funds_withdrawn=bool(fields[15]),
        repayment_deposit_id=_bytes32_hex(fields[16]),
    )


def parse_fiat_lender_offer(raw: tuple[Any, ...]) -> FiatLenderOffer | None:
    if is_zero_address(raw[1]):
        return None
    return FiatLenderOffer(
        offer_id=int(raw[0]),
        lender=_address(raw[1]),
        fiat_amount_cents=int(raw[2]),
        remaining_amount_cents=int(raw[3]),
        borrowed_amount_cents=int(raw[4]),
        currency=str(raw[5]),
        min_collateral_value_usd=int(raw[6]),
        duration=int(raw[7]),
        interest_rate=int(raw[8]),
        created_at=int(raw[9]),
        expire_at=int(raw[10]),
        status=FiatLenderOfferStatus(int(raw[11])),
        exchange_rate_at_creation=int(raw[12]),
        chain_id=int(raw[13]),
    )


def parse_many(parse: Any, raws: list[tuple[Any, ...] | None]) -> list[Any]:
    """Apply ``parse`` to a batch read, dropping failed and empty slots."""
    entities = []
    for raw in raws:
        if raw is None:
            continue
        entity = parse(raw)
        if entity is not None:
            entities.append(entity)
    return entities
