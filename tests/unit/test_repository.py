"""Unit tests for the entity repository."""
from __future__ import annotations

from typing import Callable

import pytest

from src.models import EntityType, Loan, LoanStatus
from src.store import EntityRepository


@pytest.fixture()
def repo() -> EntityRepository:
    return EntityRepository()


class TestUpsert:
    def test_insert_and_get(self, repo: EntityRepository, loan_factory: Callable[..., Loan]) -> None:
        loan = loan_factory()
        assert repo.upsert(EntityType.LOAN, loan) is True
        assert repo.get(EntityType.LOAN, 7) == loan
        assert len(repo) == 1

    def test_types_are_separate(self, repo: EntityRepository, loan_factory: Callable[..., Loan]) -> None:
        repo.upsert(EntityType.LOAN, loan_factory())
        assert repo.get(EntityType.FIAT_LOAN, 7) is None

    def test_forward_transition_applied(
        self, repo: EntityRepository, loan_factory: Callable[..., Loan]
    ) -> None:
        repo.upsert(EntityType.LOAN, loan_factory())
        assert repo.upsert(EntityType.LOAN, loan_factory(status=LoanStatus.REPAID)) is True
        assert repo.get(EntityType.LOAN, 7).status is LoanStatus.REPAID

    def test_out_of_order_read_rejected(
        self, repo: EntityRepository, loan_factory: Callable[..., Loan]
    ) -> None:
        repo.upsert(EntityType.LOAN, loan_factory(status=LoanStatus.REPAID))
        assert repo.upsert(EntityType.LOAN, loan_factory()) is False
        assert repo.get(EntityType.LOAN, 7).status is LoanStatus.REPAID

    def test_same_status_updates_fields(
        self, repo: EntityRepository, loan_factory: Callable[..., Loan]
    ) -> None:
        repo.upsert(EntityType.LOAN, loan_factory())
        repo.upsert(EntityType.LOAN, loan_factory(amount_repaid=100))
        assert repo.get(EntityType.LOAN, 7).amount_repaid == 100

    def test_explicit_key(self, repo: EntityRepository) -> None:
        repo.upsert(EntityType.EXCHANGE_RATE, object(), key="NGN")
        assert repo.get(EntityType.EXCHANGE_RATE, "NGN") is not None

    def test_keyless_entity_rejected(self, repo: EntityRepository) -> None:
        with pytest.raises(TypeError):
            repo.upsert(EntityType.PRICE_QUOTE, object())

    def test_batch(self, repo: EntityRepository, loan_factory: Callable[..., Loan]) -> None:
        repo.upsert(EntityType.LOAN, loan_factory(loan_id=1, status=LoanStatus.REPAID))
        applied = repo.upsert_batch(
            EntityType.LOAN, [loan_factory(loan_id=1), loan_factory(loan_id=2)]
        )
        assert applied == 1
        assert len(repo.values(EntityType.LOAN)) == 2


class TestInvalidate:
    def test_single_entry(self, repo: EntityRepository, loan_factory: Callable[..., Loan]) -> None:
        repo.upsert_batch(EntityType.LOAN, [loan_factory(loan_id=1), loan_factory(loan_id=2)])
        repo.invalidate(EntityType.LOAN, 1)
        assert repo.get(EntityType.LOAN, 1) is None
        assert repo.get(EntityType.LOAN, 2) is not None

    def test_whole_type(self, repo: EntityRepository, loan_factory: Callable[..., Loan]) -> None:
        repo.upsert_batch(EntityType.LOAN, [loan_factory(loan_id=1), loan_factory(loan_id=2)])
        repo.upsert(EntityType.EXCHANGE_RATE, object(), key="NGN")
        repo.invalidate(EntityType.LOAN)
        assert repo.values(EntityType.LOAN) == []
        assert len(repo) == 1

    def test_missing_key_is_noop(self, repo: EntityRepository) -> None:
        repo.invalidate(EntityType.LOAN, 99)
        assert len(repo) == 0

    def test_reinsert_after_invalidate_ignores_old_status(
        self, repo: EntityRepository, loan_factory: Callable[..., Loan]
    ) -> None:
        repo.upsert(EntityType.LOAN, loan_factory(status=LoanStatus.REPAID))
        repo.invalidate(EntityType.LOAN, 7)
        assert repo.upsert(EntityType.LOAN, loan_factory()) is True
