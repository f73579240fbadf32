from datetime import datetime, timedelta
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session

import services
from database import Base
from models import Expense, FinancialData, FinancialSummary, TransactionType
from schemas import EntryIn, EntryUpdateIn
from services import (
    AuthorizationDenied,
    ExpenseLedgerService,
    IncomeLedgerService,
    NotFound,
)


def test_first_expense_creates_negative_balance_summary(monkeypatch) -> None:
    monkeypatch.setattr(services, "now_timestamp", lambda: datetime(2025, 4, 2, 8, 30))
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        created = ExpenseLedgerService(session, 3).add(
            EntryIn(user_id=3, amount=Decimal("12.40"), category="Food")
        )

        projection = session.get(FinancialData, created.transaction_id)
        assert projection.type == TransactionType.expense
        assert projection.expense_id == created.entry_id
        assert projection.income_id is None

        summary = session.get(FinancialSummary, 3)
        assert summary.current_balance == Decimal("-12.40")
        assert summary.total_expenses == Decimal("12.40")
        assert summary.total_income == Decimal("0")
        assert summary.last_expense_date == datetime(2025, 4, 2, 8, 30)
        assert summary.last_income_date is None


def test_expense_mutations_keep_summary_in_step() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        IncomeLedgerService(session, 1).add(EntryIn(user_id=1, amount=Decimal("500")))
        expenses = ExpenseLedgerService(session, 1)
        rent = expenses.add(EntryIn(user_id=1, amount=Decimal("300"), category="Rent"))
        expenses.add(EntryIn(user_id=1, amount=Decimal("40"), category="Food"))

        session.expire_all()
        summary = session.get(FinancialSummary, 1)
        assert summary.current_balance == Decimal("160")
        assert summary.total_expenses == Decimal("340")

        expenses.update(
            rent.entry_id, EntryUpdateIn(amount=Decimal("320"), category="Rent")
        )
        session.expire_all()
        summary = session.get(FinancialSummary, 1)
        assert summary.current_balance == Decimal("140")
        assert summary.total_expenses == Decimal("360")
        assert session.get(FinancialData, rent.transaction_id).amount == Decimal("320")

        expenses.delete(rent.entry_id)
        session.expire_all()
        summary = session.get(FinancialSummary, 1)
        assert summary.current_balance == Decimal("460")
        assert summary.total_expenses == Decimal("40")
        assert session.get(Expense, rent.entry_id) is None
        assert session.get(FinancialData, rent.transaction_id) is None


def test_expense_errors_match_income_ledger() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        created = ExpenseLedgerService(session, 1).add(
            EntryIn(user_id=1, amount=Decimal("9.99"))
        )
        other = ExpenseLedgerService(session, 2)

        with pytest.raises(AuthorizationDenied):
            other.add(EntryIn(user_id=1, amount=Decimal("1")))
        with pytest.raises(AuthorizationDenied):
            other.delete(created.entry_id)
        with pytest.raises(NotFound) as excinfo:
            other.update(created.entry_id + 100, EntryUpdateIn(amount=Decimal("1")))
        assert str(excinfo.value) == "Expense not found"


def test_expenses_listed_newest_first(monkeypatch) -> None:
    stamps = iter(datetime(2025, 1, 1) + timedelta(days=n) for n in range(3))
    monkeypatch.setattr(services, "now_timestamp", lambda: next(stamps))
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        ledger = ExpenseLedgerService(session, 1)
        for note in ("first", "second", "third"):
            ledger.add(EntryIn(user_id=1, amount=Decimal("1"), description=note))

        listed = ledger.list_all(1)
        assert [e.description for e in listed] == ["third", "second", "first"]
