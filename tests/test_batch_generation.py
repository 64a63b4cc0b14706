from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import sessionmaker

from database import Base
from errors import UserNotFoundError, ValidationError
from models import Income, MonthlyBalance, User
from services import MonthlyBalanceService
from snapshots import SnapshotEngine


def make_session():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:", connect_args={"check_same_thread": False}
    )
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return SessionLocal()


def seed(session, *user_ids):
    for user_id in user_ids:
        session.add(User(id=user_id, username=user_id))
    session.commit()


def test_batch_generates_previous_month_for_every_user() -> None:
    session = make_session()
    seed(session, "alice", "bob")
    session.add(
        Income(user_id="alice", amount=Decimal("10.00"), received_date=date(2024, 2, 3))
    )
    session.commit()

    service = MonthlyBalanceService(session)
    summary = service.generate_for_all_users(today=date(2024, 3, 1))

    assert (summary.year, summary.month) == (2024, 2)
    assert summary.generated == 2
    assert summary.existing == 0
    assert summary.failed_user_ids == []
    assert service.find("alice", 2024, 2).closing_balance == Decimal("10.00")
    assert service.find("bob", 2024, 2).closing_balance == Decimal("0.00")


def test_batch_rerun_counts_existing_rows() -> None:
    session = make_session()
    seed(session, "alice", "bob")
    service = MonthlyBalanceService(session)

    service.generate_for_all_users(2024, 1)
    again = service.generate_for_all_users(2024, 1)

    assert again.generated == 0
    assert again.existing == 2
    assert len(session.scalars(select(MonthlyBalance)).all()) == 2


def test_one_failing_user_does_not_stop_the_batch(monkeypatch) -> None:
    session = make_session()
    seed(session, "alice", "bob", "carol")
    real_generate = SnapshotEngine.generate

    def flaky_generate(self, user_id, year, month):
        if user_id == "bob":
            raise RuntimeError("ledger unavailable")
        return real_generate(self, user_id, year, month)

    monkeypatch.setattr(SnapshotEngine, "generate", flaky_generate)
    summary = MonthlyBalanceService(session).generate_for_all_users(2024, 6)

    assert summary.failed_user_ids == ["bob"]
    assert summary.generated == 2
    assert summary.processed == 3
    users = {row.user_id for row in session.scalars(select(MonthlyBalance)).all()}
    assert users == {"alice", "carol"}


def test_batch_with_no_users_is_empty() -> None:
    session = make_session()
    summary = MonthlyBalanceService(session).generate_for_all_users(2024, 6)

    assert summary.generated == 0
    assert summary.failed_user_ids == []


def test_batch_rejects_bad_month() -> None:
    session = make_session()
    with pytest.raises(ValidationError):
        MonthlyBalanceService(session).generate_for_all_users(2024, 0)


def test_generate_for_user_requires_known_user() -> None:
    session = make_session()
    seed(session, "alice")
    service = MonthlyBalanceService(session)

    with pytest.raises(UserNotFoundError):
        service.generate_for_user("nobody", 2024, 1)
    with pytest.raises(ValidationError):
        service.generate_for_user("   ", 2024, 1)

    balance = service.generate_for_user("alice", today=date(2025, 1, 15))
    assert (balance.year, balance.month) == (2024, 12)


def test_read_helpers_and_paging() -> None:
    session = make_session()
    seed(session, "alice")
    service = MonthlyBalanceService(session)
    for month in (1, 2, 3):
        service.generate_for_user("alice", 2024, month)

    assert service.latest_for_user("alice").month == 3
    assert service.latest_for_user("nobody") is None
    assert service.previous_month_balance("alice", today=date(2024, 3, 20)).month == 2
    assert service.previous_month_balance("alice", today=date(2024, 9, 1)) is None

    page = service.list_for_user("alice", 0, 10)
    assert [row.month for row in page.items] == [3, 2, 1]
    assert page.total_elements == 3
    assert page.total_pages == 1

    with pytest.raises(ValidationError):
        service.list_for_user("alice", 0, 15)
