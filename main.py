import logging
from datetime import datetime
from decimal import Decimal
from typing import Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ValidationError
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

from auth import bearer_token, resolve_user_id
from config import get_settings
from database import SessionLocal
from models import (
    DEFAULT_CATEGORY,
    FinancialData,
    FinancialSummary,
    TransactionType,
    format_timestamp,
)
from schemas import EntryIn, EntryUpdateIn, HistoryFilters
from services import (
    AuthorizationDenied,
    ExpenseLedgerService,
    IncomeLedgerService,
    InternalFailure,
    LedgerEntry,
    NotFound,
    ReportingService,
    ensure_owner,
)

settings = get_settings()
logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Finance Ledger")


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def current_user_id(authorization: Optional[str] = Header(default=None)) -> int:
    token = bearer_token(authorization)
    user_id = resolve_user_id(token) if token else None
    if user_id is None:
        raise HTTPException(status_code=401, detail="Authentication required")
    return user_id


def jsonable(value):
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, datetime):
        return format_timestamp(value)
    if isinstance(value, TransactionType):
        return value.value
    if isinstance(value, dict):
        return {key: jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [jsonable(item) for item in value]
    return value


def envelope(
    status_code: int,
    *,
    data: object = None,
    message: Optional[str] = None,
    error: Optional[str] = None,
) -> JSONResponse:
    body: dict[str, object] = {"success": 200 <= status_code < 300}
    if message is not None:
        body["message"] = message
    if data is not None:
        body["data"] = jsonable(data)
    if error is not None:
        body["error"] = error
    return JSONResponse(status_code=status_code, content=body)


def entry_payload(entry: LedgerEntry, kind: TransactionType) -> dict[str, object]:
    return {
        "id": entry.id,
        "user_id": entry.user_id,
        "amount": entry.amount,
        "description": entry.description or "",
        "category": entry.category or DEFAULT_CATEGORY,
        "timestamp": entry.timestamp,
        "created_at": entry.created_at,
        "updated_at": entry.updated_at,
        "type": kind,
    }


def transaction_payload(row: FinancialData) -> dict[str, object]:
    return {
        "id": row.id,
        "type": row.type,
        "amount": row.amount,
        "description": row.description,
        "category": row.category,
        "timestamp": row.timestamp,
        "created_at": row.created_at,
        "updated_at": row.updated_at,
    }


def summary_payload(summary: FinancialSummary) -> dict[str, object]:
    return {
        "user_id": summary.user_id,
        "current_balance": summary.current_balance,
        "total_income": summary.total_income,
        "total_expenses": summary.total_expenses,
        "net_savings": summary.net_savings,
        "last_income_date": summary.last_income_date,
        "last_expense_date": summary.last_expense_date,
        "created_at": summary.created_at,
        "updated_at": summary.updated_at,
    }


async def json_body(request: Request) -> dict:
    try:
        payload = await request.json()
    except ValueError as exc:
        raise HTTPException(
            status_code=400, detail="Request body must be JSON"
        ) from exc
    if not isinstance(payload, dict):
        raise HTTPException(
            status_code=400, detail="Request body must be a JSON object"
        )
    return payload


def payload_owner(payload: dict) -> Optional[int]:
    try:
        return int(payload.get("user_id"))
    except (TypeError, ValueError):
        return None


def validate_payload(schema: type[BaseModel], payload: dict):
    try:
        return schema.model_validate(payload)
    except ValidationError as exc:
        detail = "; ".join(
            f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}"
            for err in exc.errors()
        )
        raise HTTPException(status_code=400, detail=detail) from exc


def filters_from_request(request: Request) -> HistoryFilters:
    params = {
        key: request.query_params.get(key)
        for key in ("start_date", "end_date", "type", "category", "limit", "offset")
        if request.query_params.get(key) is not None
    }
    return validate_payload(HistoryFilters, params)


@app.exception_handler(AuthorizationDenied)
async def authorization_denied_handler(request: Request, exc: AuthorizationDenied):
    return envelope(403, message=str(exc))


@app.exception_handler(NotFound)
async def not_found_handler(request: Request, exc: NotFound):
    return envelope(404, message=str(exc))


@app.exception_handler(InternalFailure)
async def internal_failure_handler(request: Request, exc: InternalFailure):
    cause = exc.__cause__ or exc
    return envelope(
        500,
        message="Internal server error",
        error=str(cause) if settings.expose_errors else None,
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return envelope(exc.status_code, message=str(exc.detail))


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    return envelope(400, message="Invalid request parameters")


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.error(
        f"unhandled_error: path={request.url.path} error={exc}", exc_info=exc
    )
    return envelope(
        500,
        message="Internal server error",
        error=str(exc) if settings.expose_errors else None,
    )


@app.get("/health")
def health():
    return {"ok": True}


@app.post("/api/incomes")
async def add_income(
    request: Request,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    payload = await json_body(request)
    ensure_owner(user_id, payload_owner(payload), "add income for this user")
    data = validate_payload(EntryIn, payload)
    created = IncomeLedgerService(db, user_id).add(data)
    return envelope(
        201,
        message="Income added successfully",
        data={
            "income_id": created.entry_id,
            "transaction_id": created.transaction_id,
            "timestamp": created.timestamp,
        },
    )


@app.get("/api/incomes/{owner_id}")
def list_incomes(
    owner_id: int,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    entries = IncomeLedgerService(db, user_id).list_all(owner_id)
    return envelope(
        200, data=[entry_payload(entry, TransactionType.income) for entry in entries]
    )


@app.put("/api/incomes/{income_id}")
async def update_income(
    income_id: int,
    request: Request,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    data = validate_payload(EntryUpdateIn, await json_body(request))
    entry = IncomeLedgerService(db, user_id).update(income_id, data)
    return envelope(
        200,
        message="Income updated successfully",
        data=entry_payload(entry, TransactionType.income),
    )


@app.delete("/api/incomes/{income_id}")
def delete_income(
    income_id: int,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    IncomeLedgerService(db, user_id).delete(income_id)
    return envelope(200, message="Income deleted successfully")


@app.post("/api/expenses")
async def add_expense(
    request: Request,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    payload = await json_body(request)
    ensure_owner(user_id, payload_owner(payload), "add expense for this user")
    data = validate_payload(EntryIn, payload)
    created = ExpenseLedgerService(db, user_id).add(data)
    return envelope(
        201,
        message="Expense added successfully",
        data={
            "expense_id": created.entry_id,
            "transaction_id": created.transaction_id,
            "timestamp": created.timestamp,
        },
    )


@app.get("/api/expenses/{owner_id}")
def list_expenses(
    owner_id: int,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    entries = ExpenseLedgerService(db, user_id).list_all(owner_id)
    return envelope(
        200, data=[entry_payload(entry, TransactionType.expense) for entry in entries]
    )


@app.put("/api/expenses/{expense_id}")
async def update_expense(
    expense_id: int,
    request: Request,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    data = validate_payload(EntryUpdateIn, await json_body(request))
    entry = ExpenseLedgerService(db, user_id).update(expense_id, data)
    return envelope(
        200,
        message="Expense updated successfully",
        data=entry_payload(entry, TransactionType.expense),
    )


@app.delete("/api/expenses/{expense_id}")
def delete_expense(
    expense_id: int,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    ExpenseLedgerService(db, user_id).delete(expense_id)
    return envelope(200, message="Expense deleted successfully")


@app.get("/api/financial/{owner_id}/summary")
def financial_summary(
    owner_id: int,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    return envelope(200, data=ReportingService(db, user_id).summary(owner_id))


@app.get("/api/financial/{owner_id}/summary/reconciliation")
def summary_reconciliation(
    owner_id: int,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    return envelope(200, data=ReportingService(db, user_id).reconcile(owner_id))


@app.post("/api/financial/{owner_id}/summary/rebuild")
def rebuild_summary(
    owner_id: int,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    summary = ReportingService(db, user_id).rebuild_summary(owner_id)
    return envelope(
        200, message="Summary rebuilt successfully", data=summary_payload(summary)
    )


@app.get("/api/financial/{owner_id}/transactions")
def transaction_history(
    owner_id: int,
    request: Request,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    filters = filters_from_request(request)
    return envelope(200, data=ReportingService(db, user_id).history(owner_id, filters))


@app.get("/api/financial/{owner_id}/transactions/{transaction_id}")
def transaction_details(
    owner_id: int,
    transaction_id: int,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    row = ReportingService(db, user_id).details(owner_id, transaction_id)
    return envelope(200, data=transaction_payload(row))


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
