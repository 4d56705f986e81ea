"""Typed models for the order-to-booking pipeline."""

from __future__ import annotations

from datetime import datetime
from typing import Any, List, Literal, Optional, Sequence, Union

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator

BookingStatus = Literal["confirmed", "pending"]


def _stringify(value: Any) -> Optional[str]:
    if value is None:
        return None
    return value if isinstance(value, str) else str(value)


# ---------------------------------------------------------------------------
# Raw Shopify order (read-only input)
# ---------------------------------------------------------------------------


class OrderAttribute(BaseModel):
    """A `{name, value}` pair from note_attributes or line item properties."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    name: Optional[str] = None
    value: Optional[str] = None

    @field_validator("value", mode="before")
    @classmethod
    def _coerce_value(cls, value: Any) -> Optional[str]:
        return _stringify(value)


class RawCustomer(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None


class RawLineItem(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    name: Optional[str] = None
    quantity: int = 0
    price: Optional[str] = None
    vendor: Optional[str] = None
    product_id: Optional[Union[int, str]] = None
    properties: List[OrderAttribute] = Field(default_factory=list)

    @field_validator("price", mode="before")
    @classmethod
    def _coerce_price(cls, value: Any) -> Optional[str]:
        return _stringify(value)

    @field_validator("quantity", mode="before")
    @classmethod
    def _coerce_quantity(cls, value: Any) -> int:
        return 0 if value is None else value

    @field_validator("properties", mode="before")
    @classmethod
    def _ensure_properties(cls, value: Optional[Sequence[Any]]) -> List[Any]:
        return list(value or [])


class RawOrder(BaseModel):
    """A Shopify order as returned by the Admin REST API."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    id: Union[int, str]
    order_number: Optional[Union[int, str]] = None
    name: Optional[str] = None
    email: Optional[str] = None
    customer: Optional[RawCustomer] = None
    line_items: List[RawLineItem] = Field(default_factory=list)
    note_attributes: List[OrderAttribute] = Field(default_factory=list)
    created_at: Optional[str] = None
    financial_status: Optional[str] = None
    fulfillment_status: Optional[str] = None

    @field_validator("line_items", "note_attributes", mode="before")
    @classmethod
    def _ensure_list(cls, value: Optional[Sequence[Any]]) -> List[Any]:
        return list(value or [])

    @property
    def first_line_item(self) -> Optional[RawLineItem]:
        return self.line_items[0] if self.line_items else None


class Metafield(BaseModel):
    """Shopify product metafield."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    namespace: Optional[str] = None
    key: Optional[str] = None
    value: Optional[str] = None

    @field_validator("value", mode="before")
    @classmethod
    def _coerce_value(cls, value: Any) -> Optional[str]:
        return _stringify(value)


# ---------------------------------------------------------------------------
# Pipeline intermediates
# ---------------------------------------------------------------------------


class CowlendarMetadata(BaseModel):
    model_config = ConfigDict(frozen=True)

    event_schedule_text: Optional[str] = None
    internal_id: Optional[str] = None
    integrity_token: Optional[str] = None


class ParsedSchedule(BaseModel):
    """Structured event schedule. `event_date is None` implies every other
    field except `timezone` is None and `timezone == "UTC"`."""

    model_config = ConfigDict(frozen=True)

    event_date: Optional[str] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    timezone: str = "UTC"
    start_datetime: Optional[datetime] = None
    end_datetime: Optional[datetime] = None


class ProviderResolution(BaseModel):
    model_config = ConfigDict(frozen=True)

    host: Optional[str] = None
    vendor: Optional[str] = None

    @computed_field  # type: ignore[misc]
    @property
    def provider(self) -> Optional[str]:
        return self.host or self.vendor or None


# ---------------------------------------------------------------------------
# Canonical booking
# ---------------------------------------------------------------------------


class BookingCustomer(BaseModel):
    model_config = ConfigDict(frozen=True)

    first_name: str = ""
    last_name: str = ""
    email: str = ""
    phone: str = ""

    @computed_field  # type: ignore[misc]
    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class LineItemSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: Optional[str] = None
    quantity: int = 0
    price: Optional[str] = None
    vendor: Optional[str] = None
    product_id: Optional[Union[int, str]] = None


class CanonicalBooking(BaseModel):
    """One bookable event order, normalized. Immutable once built."""

    model_config = ConfigDict(frozen=True)

    order_id: Union[int, str]
    order_number: Optional[Union[int, str]] = None
    order_name: Optional[str] = None
    customer: BookingCustomer = Field(default_factory=BookingCustomer)
    event_name: str
    host: Optional[str] = None
    vendor: Optional[str] = None
    provider: Optional[str] = None
    event_date: Optional[str] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    timezone: str = "UTC"
    start_datetime: Optional[datetime] = None
    end_datetime: Optional[datetime] = None
    cowlendar_id: Optional[str] = None
    cowlendar_integrity: Optional[str] = None
    created_at: Optional[str] = None
    financial_status: Optional[str] = None
    fulfillment_status: Optional[str] = None
    status: BookingStatus = "pending"
    line_items: List[LineItemSummary] = Field(default_factory=list)


class BookingFilter(BaseModel):
    """Caller-supplied filter; every present field must match (AND)."""

    provider: Optional[str] = None
    customer_email: Optional[str] = None
    event_date: Optional[str] = None
    date_from: Optional[str] = None
    date_to: Optional[str] = None
    cowlendar_id: Optional[str] = None
    limit: Optional[int] = Field(None, ge=1)
