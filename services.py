from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Iterator, Optional, Union

from sqlalchemy import Select, delete, func, literal, select, update
from sqlalchemy.dialects import mysql, postgresql, sqlite
from sqlalchemy.engine import Engine, Row
from sqlalchemy.orm import Session

from config import get_settings
from database import atomic
from models import (
    Expense,
    FinancialData,
    FinancialSummary,
    Income,
    TransactionType,
    now_timestamp,
)
from schemas import EntryIn, EntryUpdateIn, HistoryFilters


logger = logging.getLogger(__name__)

SAVINGS_CATEGORIES = ("Savings", "Investment")
ZERO = Decimal("0")

LedgerEntry = Union[Income, Expense]


class AuthorizationDenied(PermissionError):
    pass


class NotFound(ValueError):
    pass


class InternalFailure(RuntimeError):
    def __init__(self, operation: str) -> None:
        super().__init__(f"{operation} failed")
        self.operation = operation


@dataclass(frozen=True)
class EntryCreated:
    entry_id: int
    transaction_id: int
    timestamp: datetime


def _as_decimal(value: object) -> Decimal:
    if value is None:
        return ZERO
    return Decimal(str(value))


def _describe(context: dict[str, object]) -> str:
    return " ".join(f"{key}={value}" for key, value in context.items())


def ensure_owner(
    requesting_user_id: int, target_user_id: Optional[int], action: str
) -> None:
    if target_user_id is None or int(requesting_user_id) != int(target_user_id):
        logger.warning(
            f"authorization_denied: action={action!r} "
            f"requesting_user_id={requesting_user_id} target_user_id={target_user_id}"
        )
        raise AuthorizationDenied(f"You are not authorized to {action}")


@contextmanager
def guarded(operation: str, **context: object) -> Iterator[None]:
    """Log unexpected errors with context and surface them as InternalFailure."""
    try:
        yield
    except (AuthorizationDenied, NotFound, InternalFailure):
        raise
    except Exception as exc:
        logger.error(
            f"{operation}_failed: {_describe(context)} error={exc}", exc_info=True
        )
        raise InternalFailure(operation) from exc


@contextmanager
def unit_of_work(session: Session, operation: str, **context: object) -> Iterator[None]:
    with guarded(operation, **context):
        with atomic(session):
            yield


def _bump_summary(
    session: Session,
    user_id: int,
    increments: dict[str, Decimal],
    timestamp: datetime,
    **assignments: object,
) -> None:
    values: dict[str, object] = {
        name: getattr(FinancialSummary, name) + delta
        for name, delta in increments.items()
    }
    values.update(assignments)
    values["updated_at"] = timestamp
    session.execute(
        update(FinancialSummary)
        .where(FinancialSummary.user_id == user_id)
        .values(**values)
    )


_UPSERT_DIALECTS = {
    "mysql": mysql.insert,
    "mariadb": mysql.insert,
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def summary_upsert(
    dialect_name: str,
    user_id: int,
    increments: dict[str, Decimal],
    timestamp: datetime,
    **assignments: object,
):
    """Single-statement insert of a summary row, or increment of the existing one."""
    try:
        insert = _UPSERT_DIALECTS[dialect_name]
    except KeyError:
        raise ValueError(f"No summary upsert for dialect {dialect_name!r}") from None

    table = FinancialSummary.__table__
    row: dict[str, object] = {
        "user_id": user_id,
        "current_balance": ZERO,
        "total_income": ZERO,
        "total_expenses": ZERO,
        "net_savings": ZERO,
        "created_at": timestamp,
        "updated_at": timestamp,
    }
    row.update(increments)
    row.update(assignments)

    changes: dict[str, object] = {
        name: table.c[name] + delta for name, delta in increments.items()
    }
    changes.update(assignments)
    changes["updated_at"] = timestamp

    stmt = insert(table).values(**row)
    if dialect_name in ("mysql", "mariadb"):
        return stmt.on_duplicate_key_update(**changes)
    return stmt.on_conflict_do_update(index_elements=[table.c.user_id], set_=changes)


def _upsert_summary(
    session: Session,
    user_id: int,
    increments: dict[str, Decimal],
    timestamp: datetime,
    **assignments: object,
) -> None:
    dialect_name = session.get_bind().dialect.name
    session.execute(
        summary_upsert(dialect_name, user_id, increments, timestamp, **assignments)
    )


def _locked_summary(session: Session, user_id: int) -> Optional[FinancialSummary]:
    return session.get(FinancialSummary, user_id, with_for_update=True)


def aggregate_totals(session: Session, user_id: int) -> dict[str, object]:
    """Recompute a user's totals from the income and expense tables."""
    total_income = (
        select(func.coalesce(func.sum(Income.amount), 0))
        .where(Income.user_id == user_id)
        .scalar_subquery()
    )
    total_expenses = (
        select(func.coalesce(func.sum(Expense.amount), 0))
        .where(Expense.user_id == user_id)
        .scalar_subquery()
    )
    total_savings = (
        select(func.coalesce(func.sum(Expense.amount), 0))
        .where(
            Expense.user_id == user_id,
            Expense.category.in_(SAVINGS_CATEGORIES),
        )
        .scalar_subquery()
    )
    last_income = (
        select(func.max(Income.timestamp))
        .where(Income.user_id == user_id)
        .scalar_subquery()
    )
    last_expense = (
        select(func.max(Expense.timestamp))
        .where(Expense.user_id == user_id)
        .scalar_subquery()
    )
    row = session.execute(
        select(
            total_income.label("total_income"),
            total_expenses.label("total_expenses"),
            total_savings.label("total_savings"),
            last_income.label("last_income_date"),
            last_expense.label("last_expense_date"),
        )
    ).one()

    income = _as_decimal(row.total_income)
    expenses = _as_decimal(row.total_expenses)
    return {
        "total_income": income,
        "total_expenses": expenses,
        "current_balance": income - expenses,
        "net_savings": _as_decimal(row.total_savings),
        "last_income_date": row.last_income_date,
        "last_expense_date": row.last_expense_date,
    }


def rebuild_financial_summary(session: Session, user_id: int) -> FinancialSummary:
    """Overwrite the cached summary row with freshly aggregated figures.

    `net_savings` is kept as-is because the ledger maintains it with its own
    rules that have no equivalent aggregation.
    """
    totals = aggregate_totals(session, user_id)
    summary = _locked_summary(session, user_id)
    if summary is None:
        summary = FinancialSummary(user_id=user_id, net_savings=ZERO)
        session.add(summary)
    summary.current_balance = totals["current_balance"]
    summary.total_income = totals["total_income"]
    summary.total_expenses = totals["total_expenses"]
    summary.last_income_date = totals["last_income_date"]
    summary.last_expense_date = totals["last_expense_date"]
    session.flush()
    return summary


class _LedgerService:
    model: type[LedgerEntry]
    kind: TransactionType
    link_attr: str

    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    @property
    def label(self) -> str:
        return self.kind.value

    @property
    def _link(self):
        return getattr(FinancialData, self.link_attr)

    def _load_owned(self, entry_id: int, action: str, *, lock: bool) -> LedgerEntry:
        entry = self.session.get(
            self.model, entry_id, with_for_update=True if lock else None
        )
        if entry is None:
            logger.warning(
                f"{self.label}_not_found: action={action!r} "
                f"{self.label}_id={entry_id} requesting_user_id={self.user_id}"
            )
            raise NotFound(f"{self.label.capitalize()} not found")
        ensure_owner(self.user_id, entry.user_id, f"{action} this {self.label}")
        return entry

    def get(self, entry_id: int) -> LedgerEntry:
        with guarded(f"get_{self.label}", requesting_user_id=self.user_id):
            return self._load_owned(entry_id, "view", lock=False)

    def list_all(self, user_id: int) -> list[LedgerEntry]:
        ensure_owner(self.user_id, user_id, f"view these {self.label}s")
        with guarded(f"list_{self.label}s", user_id=user_id):
            stmt = (
                select(self.model)
                .where(self.model.user_id == user_id)
                .order_by(self.model.timestamp.desc(), self.model.id.desc())
            )
            entries = list(self.session.scalars(stmt).all())
        logger.debug(f"{self.label}s_listed: user_id={user_id} count={len(entries)}")
        return entries

    def add(self, data: EntryIn) -> EntryCreated:
        ensure_owner(self.user_id, data.user_id, f"add {self.label} for this user")
        timestamp = now_timestamp()
        with unit_of_work(
            self.session, f"add_{self.label}", user_id=data.user_id
        ):
            entry = self.model(
                user_id=data.user_id,
                amount=data.amount,
                description=data.description,
                category=data.category,
                timestamp=timestamp,
                created_at=timestamp,
                updated_at=timestamp,
            )
            self.session.add(entry)
            self.session.flush()

            projection = FinancialData(
                user_id=data.user_id,
                type=self.kind,
                amount=data.amount,
                description=data.description,
                category=data.category,
                timestamp=timestamp,
                created_at=timestamp,
                updated_at=timestamp,
            )
            setattr(projection, self.link_attr, entry.id)
            self.session.add(projection)
            self.session.flush()

            self._summary_added(data.user_id, data.amount, timestamp)

        logger.info(
            f"{self.label}_added: user_id={data.user_id} {self.label}_id={entry.id}"
        )
        return EntryCreated(
            entry_id=entry.id, transaction_id=projection.id, timestamp=timestamp
        )

    def update(self, entry_id: int, data: EntryUpdateIn) -> LedgerEntry:
        timestamp = now_timestamp()
        with unit_of_work(
            self.session,
            f"update_{self.label}",
            requesting_user_id=self.user_id,
            **{f"{self.label}_id": entry_id},
        ):
            entry = self._load_owned(entry_id, "update", lock=True)
            delta = data.amount - entry.amount

            entry.amount = data.amount
            entry.description = data.description
            entry.category = data.category
            entry.updated_at = timestamp

            self.session.execute(
                update(FinancialData)
                .where(self._link == entry_id, FinancialData.type == self.kind)
                .values(
                    amount=data.amount,
                    description=data.description,
                    category=data.category,
                    updated_at=timestamp,
                )
            )
            self.session.flush()

            self._summary_updated(entry.user_id, delta, timestamp)

        logger.info(
            f"{self.label}_updated: user_id={entry.user_id} "
            f"{self.label}_id={entry_id} delta={delta}"
        )
        return entry

    def delete(self, entry_id: int) -> None:
        timestamp = now_timestamp()
        with unit_of_work(
            self.session,
            f"delete_{self.label}",
            requesting_user_id=self.user_id,
            **{f"{self.label}_id": entry_id},
        ):
            entry = self._load_owned(entry_id, "delete", lock=True)
            amount = entry.amount
            owner_id = entry.user_id

            # projection first, it references the entry
            self.session.execute(delete(FinancialData).where(self._link == entry_id))
            self.session.delete(entry)
            self.session.flush()

            self._summary_deleted(owner_id, amount, timestamp)

        logger.info(
            f"{self.label}_deleted: user_id={owner_id} {self.label}_id={entry_id}"
        )

    def _summary_added(
        self, user_id: int, amount: Decimal, timestamp: datetime
    ) -> None:
        raise NotImplementedError

    def _summary_updated(
        self, user_id: int, delta: Decimal, timestamp: datetime
    ) -> None:
        raise NotImplementedError

    def _summary_deleted(
        self, user_id: int, amount: Decimal, timestamp: datetime
    ) -> None:
        raise NotImplementedError


class IncomeLedgerService(_LedgerService):
    model = Income
    kind = TransactionType.income
    link_attr = "income_id"

    def _summary_added(
        self, user_id: int, amount: Decimal, timestamp: datetime
    ) -> None:
        _upsert_summary(
            self.session,
            user_id,
            {"current_balance": amount, "total_income": amount},
            timestamp,
            last_income_date=timestamp,
        )

    def _summary_updated(
        self, user_id: int, delta: Decimal, timestamp: datetime
    ) -> None:
        # total_income only moves on add and delete
        _bump_summary(
            self.session,
            user_id,
            {"current_balance": delta, "net_savings": delta},
            timestamp,
            last_income_date=timestamp,
        )

    def _summary_deleted(
        self, user_id: int, amount: Decimal, timestamp: datetime
    ) -> None:
        _bump_summary(
            self.session,
            user_id,
            {"current_balance": -amount, "total_income": -amount},
            timestamp,
        )


class ExpenseLedgerService(_LedgerService):
    model = Expense
    kind = TransactionType.expense
    link_attr = "expense_id"

    def _summary_added(
        self, user_id: int, amount: Decimal, timestamp: datetime
    ) -> None:
        _upsert_summary(
            self.session,
            user_id,
            {"current_balance": -amount, "total_expenses": amount},
            timestamp,
            last_expense_date=timestamp,
        )

    def _summary_updated(
        self, user_id: int, delta: Decimal, timestamp: datetime
    ) -> None:
        _bump_summary(
            self.session,
            user_id,
            {"current_balance": -delta, "total_expenses": delta},
            timestamp,
            last_expense_date=timestamp,
        )

    def _summary_deleted(
        self, user_id: int, amount: Decimal, timestamp: datetime
    ) -> None:
        _bump_summary(
            self.session,
            user_id,
            {"current_balance": amount, "total_expenses": -amount},
            timestamp,
        )


def _supports_parallel_reads(engine: Engine) -> bool:
    url = engine.url
    if url.get_backend_name() != "sqlite":
        return True
    # every connection to an in-memory database sees its own empty database
    database = url.database or ""
    return database not in ("", ":memory:") and "mode=memory" not in database


class ReportingService:
    def __init__(
        self, session: Session, user_id: int, *, parallel: Optional[bool] = None
    ) -> None:
        self.session = session
        self.user_id = user_id
        if parallel is None:
            parallel = get_settings().parallel_history and _supports_parallel_reads(
                session.get_bind().engine
            )
        self.parallel = parallel

    def summary(self, user_id: int) -> dict[str, object]:
        ensure_owner(self.user_id, user_id, "view this financial summary")
        with guarded("get_financial_summary", user_id=user_id):
            totals = aggregate_totals(self.session, user_id)
        logger.debug(
            f"financial_summary: user_id={user_id} "
            f"balance={totals['current_balance']}"
        )
        return totals

    def cached_summary(self, user_id: int) -> Optional[FinancialSummary]:
        ensure_owner(self.user_id, user_id, "view this financial summary")
        with guarded("get_cached_summary", user_id=user_id):
            return self.session.get(FinancialSummary, user_id, populate_existing=True)

    def reconcile(self, user_id: int) -> dict[str, object]:
        computed = self.summary(user_id)
        cached = self.cached_summary(user_id)
        cached_balance = cached.current_balance if cached else ZERO
        cached_income = cached.total_income if cached else ZERO
        cached_expenses = cached.total_expenses if cached else ZERO
        drift = cached_balance - computed["current_balance"]
        if drift:
            logger.warning(f"summary_drift: user_id={user_id} balance_drift={drift}")
        return {
            "cached_balance": cached_balance,
            "computed_balance": computed["current_balance"],
            "balance_drift": drift,
            "cached_total_income": cached_income,
            "computed_total_income": computed["total_income"],
            "cached_total_expenses": cached_expenses,
            "computed_total_expenses": computed["total_expenses"],
            "in_sync": drift == 0,
        }

    def rebuild_summary(self, user_id: int) -> FinancialSummary:
        ensure_owner(self.user_id, user_id, "rebuild this financial summary")
        with unit_of_work(self.session, "rebuild_summary", user_id=user_id):
            summary = rebuild_financial_summary(self.session, user_id)
        logger.info(
            f"summary_rebuilt: user_id={user_id} balance={summary.current_balance}"
        )
        return summary

    def history(self, user_id: int, filters: HistoryFilters) -> dict[str, object]:
        ensure_owner(self.user_id, user_id, "view this transaction history")
        with guarded("get_transaction_history", user_id=user_id):
            incomes, expenses = self._run_reads(
                [
                    self._history_statement(
                        Income, TransactionType.income, user_id, filters
                    ),
                    self._history_statement(
                        Expense, TransactionType.expense, user_id, filters
                    ),
                ]
            )

        rows: list[Row] = []
        if filters.type in (None, TransactionType.income.value):
            rows.extend(incomes)
        if filters.type in (None, TransactionType.expense.value):
            rows.extend(expenses)
        rows.sort(key=lambda row: row.timestamp, reverse=True)

        total = len(rows)
        page = rows[filters.offset : filters.offset + filters.limit]
        logger.debug(
            f"transaction_history: user_id={user_id} total={total} returned={len(page)}"
        )
        return {
            "transactions": [
                {
                    "id": row.id,
                    "type": row.type,
                    "amount": row.amount,
                    "description": row.description,
                    "category": row.category,
                    "timestamp": row.timestamp,
                    "created_at": row.created_at,
                    "updated_at": row.updated_at,
                }
                for row in page
            ],
            "pagination": {
                "total": total,
                "limit": filters.limit,
                "offset": filters.offset,
            },
        }

    def details(self, user_id: int, transaction_id: int) -> FinancialData:
        ensure_owner(self.user_id, user_id, "view this transaction")
        with guarded("get_transaction_details", user_id=user_id):
            row = self.session.scalar(
                select(FinancialData).where(
                    FinancialData.user_id == user_id,
                    FinancialData.id == transaction_id,
                )
            )
        if row is None:
            logger.warning(
                f"transaction_not_found: user_id={user_id} "
                f"transaction_id={transaction_id}"
            )
            raise NotFound("Transaction not found")
        return row

    @staticmethod
    def _history_statement(
        model: type[LedgerEntry],
        kind: TransactionType,
        user_id: int,
        filters: HistoryFilters,
    ) -> Select:
        stmt = (
            select(
                model.id.label("id"),
                literal(kind.value).label("type"),
                model.amount,
                model.description,
                model.category,
                model.timestamp,
                model.created_at,
                model.updated_at,
            )
            .where(model.user_id == user_id)
            .order_by(model.timestamp.desc(), model.id.desc())
        )
        if filters.start_date:
            stmt = stmt.where(model.timestamp >= filters.start_date)
        if filters.end_date:
            stmt = stmt.where(model.timestamp <= filters.end_date)
        if filters.category:
            stmt = stmt.where(model.category == filters.category)
        return stmt

    def _run_reads(self, statements: list[Select]) -> list[list[Row]]:
        if not self.parallel:
            return [list(self.session.execute(stmt).all()) for stmt in statements]

        engine = self.session.get_bind().engine

        def run(stmt: Select) -> list[Row]:
            with Session(engine) as session:
                return list(session.execute(stmt).all())

        with ThreadPoolExecutor(max_workers=len(statements)) as pool:
            return list(pool.map(run, statements))
