from datetime import date, datetime
from decimal import Decimal
from typing import Annotated, Optional

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, field_validator

from models import DEFAULT_CATEGORY, TIMESTAMP_FORMAT


def _clean_category(value: object) -> object:
    if value is None:
        return DEFAULT_CATEGORY
    if not isinstance(value, str):
        return value
    value = value.strip()
    return value or DEFAULT_CATEGORY


Category = Annotated[str, BeforeValidator(_clean_category), Field(max_length=100)]


class EntryIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    user_id: int
    amount: Decimal = Field(..., ge=0, max_digits=12, decimal_places=2)
    description: Optional[str] = Field(default=None, max_length=1000)
    category: Category = DEFAULT_CATEGORY


class EntryUpdateIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    amount: Decimal = Field(..., ge=0, max_digits=12, decimal_places=2)
    description: Optional[str] = Field(default=None, max_length=1000)
    category: Category = DEFAULT_CATEGORY


def parse_timestamp_bound(value: str) -> datetime:
    """Accept `YYYY-MM-DD` (midnight) or `YYYY-MM-DD HH:MM:SS`."""
    value = value.strip()
    try:
        return datetime.strptime(value, TIMESTAMP_FORMAT)
    except ValueError:
        pass
    try:
        parsed = date.fromisoformat(value)
    except ValueError as exc:
        raise ValueError(
            "Dates must be YYYY-MM-DD or YYYY-MM-DD HH:MM:SS"
        ) from exc
    return datetime(parsed.year, parsed.month, parsed.day)


class HistoryFilters(BaseModel):
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    type: Optional[str] = None
    category: Optional[str] = None
    limit: int = Field(default=50, ge=0)
    offset: int = Field(default=0, ge=0)

    @field_validator("start_date", "end_date", mode="before")
    @classmethod
    def _parse_bound(cls, value):
        if value is None or isinstance(value, datetime):
            return value
        if isinstance(value, str):
            if not value.strip():
                return None
            return parse_timestamp_bound(value)
        return value

    @field_validator("type", "category", mode="before")
    @classmethod
    def _blank_is_none(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value
