"""
Transaction and Catalog Records

Typed views over the opaque documents delivered by the change feed. The
billing application stores bills as ``{id, date, items[], total}`` and
products as ``{id, name, category, price, quantity}``; both the camelCase
document keys and snake_case names are accepted.

Money is held as Decimal quantized to two fractional digits so that sums over
many bills never drift.
"""

from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Iterable, List, Mapping, Optional, Tuple, Type, TypeVar

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

from billing_analytics.exceptions import MalformedRecord
from billing_analytics.quality import AnomalyLog, AnomalyType

CENTS = Decimal("0.01")
ZERO = Decimal("0.00")

RecordT = TypeVar("RecordT", bound=BaseModel)


def to_money(value: Any) -> Decimal:
    """Quantize a numeric value to two fractional digits"""
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except InvalidOperation as e:
        raise ValueError(f"not a numeric amount: {value!r}") from e
    if not amount.is_finite():
        raise ValueError("amount must be a finite number")
    try:
        return amount.quantize(CENTS, rounding=ROUND_HALF_UP)
    except InvalidOperation as e:
        # more digits than the decimal context holds at cent precision
        raise ValueError("amount is out of range") from e


class LineItem(BaseModel):
    """One product line of a bill, denormalized at billing time"""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    product_id: str = Field(min_length=1, validation_alias=AliasChoices("product_id", "productId"))
    product_name: str = Field(default="", validation_alias=AliasChoices("product_name", "productName"))
    unit_price: Decimal = Field(
        default=ZERO,
        ge=0,
        validation_alias=AliasChoices("unit_price", "unitPrice", "price"),
    )
    quantity: int = Field(gt=0)
    line_revenue: Optional[Decimal] = Field(
        default=None,
        validation_alias=AliasChoices("line_revenue", "lineRevenue", "subtotal"),
    )

    @field_validator("unit_price", "line_revenue")
    @classmethod
    def quantize_money(cls, v: Optional[Decimal]) -> Optional[Decimal]:
        return None if v is None else to_money(v)

    @model_validator(mode="after")
    def default_line_revenue(self) -> "LineItem":
        if self.line_revenue is None:
            # frozen model: bypass pydantic's __setattr__ guard during validation
            object.__setattr__(self, "line_revenue", to_money(self.unit_price * self.quantity))
        return self


class TransactionRecord(BaseModel):
    """A bill: calendar date key, line items and grand total"""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    id: Optional[str] = None
    date_key: str = Field(validation_alias=AliasChoices("date_key", "dateKey", "date"))
    items: Tuple[LineItem, ...] = ()
    total: Decimal

    @field_validator("date_key", mode="before")
    @classmethod
    def normalize_date_key(cls, v: Any) -> str:
        """Accept calendar dates only; timestamps would bucket by timezone"""
        if isinstance(v, datetime):
            raise ValueError("date key must be a calendar date, not a timestamp")
        if isinstance(v, date):
            return v.isoformat()
        if isinstance(v, str):
            return date.fromisoformat(v.strip()).isoformat()
        raise ValueError("date key must be an ISO calendar date string")

    @field_validator("total")
    @classmethod
    def quantize_total(cls, v: Decimal) -> Decimal:
        return to_money(v)

    @property
    def calendar_date(self) -> date:
        return date.fromisoformat(self.date_key)


class CatalogRecord(BaseModel):
    """A product in the catalog with its current stock level"""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    id: str = Field(min_length=1)
    name: str = ""
    category: str = ""
    price: Optional[Decimal] = Field(default=None, ge=0)
    quantity: int = Field(ge=0)

    @field_validator("price")
    @classmethod
    def quantize_price(cls, v: Optional[Decimal]) -> Optional[Decimal]:
        return None if v is None else to_money(v)


# =============================================================================
# PARSING
# =============================================================================

def _record_id(raw: Any) -> Optional[str]:
    if isinstance(raw, BaseModel):
        return getattr(raw, "id", None)
    if isinstance(raw, Mapping):
        value = raw.get("id")
        return None if value is None else str(value)
    return None


def parse_record(model: Type[RecordT], collection: str, raw: Any) -> RecordT:
    """
    Validate one opaque feed record.

    Args:
        model: Record model to validate against
        collection: Collection the record was delivered on
        raw: Mapping (or already-built model instance)

    Returns:
        The validated record

    Raises:
        MalformedRecord: If a required field is missing or invalid
    """
    try:
        return model.model_validate(raw)
    except ValidationError as e:
        errors = [
            {"field": ".".join(str(part) for part in err["loc"]), "error": err["msg"]}
            for err in e.errors()
        ]
        raise MalformedRecord(
            f"Invalid {model.__name__} in {collection}",
            collection=collection,
            record_id=_record_id(raw),
            errors=errors,
        ) from e


def parse_snapshot(
    model: Type[RecordT],
    collection: str,
    raw_records: Iterable[Any],
    anomalies: AnomalyLog,
) -> List[RecordT]:
    """Validate a full snapshot, skipping and logging malformed records"""
    records: List[RecordT] = []
    for raw in raw_records:
        try:
            records.append(parse_record(model, collection, raw))
        except MalformedRecord as e:
            anomalies.record(
                collection,
                e.record_id,
                AnomalyType.MALFORMED_RECORD,
                e.message,
                errors=e.errors,
            )
    return records
