"""Loan marketplace and fiat loan bridge adapter: reads entities and builds calls."""
from __future__ import annotations

import logging
from typing import Any, Callable

from ...config import NetworkConfig
from ...interfaces.chain import ChainClient
from ...models import (
    ContractCall,
    FiatLenderOffer,
    FiatLoan,
    LenderOffer,
    Loan,
    LoanRequest,
)
from . import parser

logger = logging.getLogger(__name__)


class MarketplaceAdapter:
    """Contract reads return entities; contract writes return :class:`ContractCall`.

    Nothing here submits a transaction; callers pass the built call through
    the preflight.
    """

    def __init__(self, chain_client: ChainClient, network: NetworkConfig) -> None:
        self._client = chain_client
        self._network = network
        self.marketplace = network.contract("loan_marketplace")
        self.fiat_bridge = network.contract("fiat_loan_bridge")

    # ------------------------------------------------------------------
    # Single reads
    # ------------------------------------------------------------------

    async def get_lender_offer(self, offer_id: int) -> LenderOffer | None:
        raw = await self._client.read(self.marketplace, "lenderOffers", offer_id)
        return parser.parse_lender_offer(raw)

    async def get_loan_request(self, request_id: int) -> LoanRequest | None:
        raw = await self._client.read(self.marketplace, "loanRequests", request_id)
        return parser.parse_loan_request(raw)

    async def get_loan(self, loan_id: int) -> Loan | None:
        raw = await self._client.read(self.marketplace, "loans", loan_id)
        return parser.parse_loan(raw)

    async def get_fiat_lender_offer(self, offer_id: int) -> FiatLenderOffer | None:
        raw = await self._client.read(self.fiat_bridge, "fiatLenderOffers", offer_id)
        return parser.parse_fiat_lender_offer(raw)

    async def total_owed(self, loan_id: int) -> int:
        """Principal plus accrued interest, as the marketplace computes it."""
        (amount,) = await self._client.read(
            self.marketplace, "calculateRepaymentAmount", loan_id
        )
        return int(amount)

    # ------------------------------------------------------------------
    # Enumeration
    # ------------------------------------------------------------------

    async def _list(
        self,
        contract: str,
        counter: str,
        getter: str,
        parse: Callable[[tuple[Any, ...]], Any],
    ) -> list[Any]:
        (next_id,) = await self._client.read(contract, counter)
        count = int(next_id)
        if count == 0:
            return []

        raws = await self._client.read_many(
            [(contract, getter, (i,)) for i in range(count)]
        )
        entities = parser.parse_many(parse, raws)
        logger.info("Read %d %s entries (%d slots)", len(entities), getter, count)
        return entities

    async def list_loan_requests(self) -> list[LoanRequest]:
        return await self._list(
            self.marketplace, "nextLoanRequestId", "loanRequests", parser.parse_loan_request
        )

    async def list_lender_offers(self) -> list[LenderOffer]:
        return await self._list(
            self.marketplace, "nextLenderOfferId", "lenderOffers", parser.parse_lender_offer
        )

    async def list_loans(self) -> list[Loan]:
        return await self._list(self.marketplace, "nextLoanId", "loans", parser.parse_loan)

    async def list_fiat_loans(self) -> list[FiatLoan]:
        return await self._list(
            self.fiat_bridge, "nextFiatLoanId", "getFiatLoan", parser.parse_fiat_loan
        )

    async def list_fiat_lender_offers(self) -> list[FiatLenderOffer]:
        return await self._list(
            self.fiat_bridge,
            "nextFiatLenderOfferId",
            "fiatLenderOffers",
            parser.parse_fiat_lender_offer,
        )

    # ------------------------------------------------------------------
    # Call builders
    # ------------------------------------------------------------------

    def repay_call(self, loan_id: int, amount: int, sender: str) -> ContractCall:
        return ContractCall(self.marketplace, "repayLoan", (loan_id, amount), sender)

    def accept_offer_call(
        self,
        offer_id: int,
        collateral_asset: str,
        collateral_amount: int,
        borrow_amount: int,
        sender: str,
    ) -> ContractCall:
        return ContractCall(
            self.marketplace,
            "acceptLenderOffer",
            (offer_id, collateral_asset, collateral_amount, borrow_amount),
            sender,
        )

    def accept_fiat_offer_call(
        self,
        offer_id: int,
        collateral_asset: str,
        collateral_amount: int,
        borrow_amount_cents: int,
        sender: str,
    ) -> ContractCall:
        return ContractCall(
            self.fiat_bridge,
            "acceptFiatLenderOffer",
            (offer_id, collateral_asset, collateral_amount, borrow_amount_cents),
            sender,
        )

    def create_request_call(
        self,
        collateral_token: str,
        collateral_amount: int,
        borrow_asset: str,
        borrow_amount: int,
        interest_rate_bps: int,
        duration_seconds: int,
        sender: str,
    ) -> ContractCall:
        return ContractCall(
            self.marketplace,
            "createLoanRequest",
            (
                collateral_token,
                collateral_amount,
                borrow_asset,
                borrow_amount,
                interest_rate_bps,
                duration_seconds,
            ),
            sender,
        )

    def cancel_request_call(self, request_id: int, sender: str) -> ContractCall:
        return ContractCall(self.marketplace, "cancelLoanRequest", (request_id,), sender)

    def cancel_offer_call(self, offer_id: int, sender: str) -> ContractCall:
        return ContractCall(self.marketplace, "cancelLenderOffer", (offer_id,), sender)

    def fund_request_call(self, request_id: int, sender: str) -> ContractCall:
        return ContractCall(self.marketplace, "fundLoanRequest", (request_id,), sender)

    def create_offer_call(
        self,
        lend_asset: str,
        lend_amount: int,
        required_collateral_asset: str,
        min_collateral_amount: int,
        interest_rate_bps: int,
        duration_seconds: int,
        sender: str,
    ) -> ContractCall:
        return ContractCall(
            self.marketplace,
            "createLenderOffer",
            (
                lend_asset,
                lend_amount,
                required_collateral_asset,
                min_collateral_amount,
                interest_rate_bps,
                duration_seconds,
            ),
            sender,
        )
