"""Stock movement data models."""

from dataclasses import dataclass, field, fields
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional, Dict, Any

from ..utils.timestamps import ensure_utc, parse_timestamp, isoformat


class MovementType(str, Enum):
    """Direction of a movement, serialized as ``"entry"`` / ``"exit"``."""

    ENTRY = "entry"
    EXIT = "exit"

    @classmethod
    def parse(cls, value: Any, accept_legacy: bool = True) -> "MovementType":
        """
        Parse a movement type, optionally accepting the older
        ``purchase`` / ``sale`` spellings.

        Raises:
            ValueError: If the value is not a known movement type
        """
        if isinstance(value, cls):
            return value

        text = str(value or "").strip().lower()
        if accept_legacy and text in LEGACY_TYPE_NAMES:
            return LEGACY_TYPE_NAMES[text]

        try:
            return cls(text)
        except ValueError:
            raise ValueError(f"Movement type must be 'entry' or 'exit', got {value!r}")


LEGACY_TYPE_NAMES = {
    "purchase": MovementType.ENTRY,
    "sale": MovementType.EXIT,
}


@dataclass
class Counterparty:
    """Free-text supplier (entries) or customer (exits) details."""

    name: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    notes: Optional[str] = None

    def is_empty(self) -> bool:
        return not any(getattr(self, f.name) for f in fields(self))

    def to_dict(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "Counterparty":
        data = data or {}
        return cls(
            name=data.get("name"),
            phone=data.get("phone"),
            email=data.get("email"),
            notes=data.get("notes")
        )


@dataclass
class MovementInput:
    """What a caller submits to record a movement.

    Values are left unvalidated here; the ledger checks them in a fixed
    order so that each failure is reported the same way every time.
    """

    product_id: str
    type: Any
    quantity: Any
    occurred_at: Optional[datetime] = None
    supplier: Counterparty = field(default_factory=Counterparty)
    customer: Counterparty = field(default_factory=Counterparty)
    reason: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MovementInput":
        """Create instance from dictionary."""
        return cls(
            product_id=data["product_id"],
            type=data["type"],
            quantity=data["quantity"],
            occurred_at=parse_timestamp(data.get("occurred_at")),
            supplier=Counterparty.from_dict(data.get("supplier")),
            customer=Counterparty.from_dict(data.get("customer")),
            reason=data.get("reason")
        )


@dataclass(frozen=True)
class Movement:
    """An immutable entry in the movement log.

    ``product_name`` and ``price`` are copied from the product when the
    movement is recorded so the history stays readable after the product is
    edited or deleted.
    """

    id: str
    owner_id: str
    product_id: str
    product_name: str
    price: Decimal
    type: MovementType
    quantity: int
    occurred_at: datetime
    user_id: str
    user_name: str
    supplier: Counterparty = field(default_factory=Counterparty)
    customer: Counterparty = field(default_factory=Counterparty)
    reason: Optional[str] = None

    @property
    def signed_quantity(self) -> int:
        """Quantity with the sign it applies to stock."""
        return self.quantity if self.type == MovementType.ENTRY else -self.quantity

    @property
    def value(self) -> Decimal:
        return self.price * self.quantity

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "id": self.id,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "price": str(self.price),
            "type": self.type.value,
            "quantity": self.quantity,
            "occurred_at": isoformat(self.occurred_at),
            "supplier": self.supplier.to_dict(),
            "customer": self.customer.to_dict(),
            "reason": self.reason,
            "user_id": self.user_id,
            "user_name": self.user_name
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], owner_id: Optional[str] = None) -> "Movement":
        """Create instance from dictionary (as produced by ``to_dict``)."""
        return cls(
            id=data["id"],
            owner_id=owner_id or data.get("owner_id") or data["user_id"],
            product_id=data["product_id"],
            product_name=data["product_name"],
            price=Decimal(str(data["price"])),
            type=MovementType.parse(data["type"]),
            quantity=int(data["quantity"]),
            occurred_at=parse_timestamp(data["occurred_at"]),
            user_id=data["user_id"],
            user_name=data["user_name"],
            supplier=Counterparty.from_dict(data.get("supplier")),
            customer=Counterparty.from_dict(data.get("customer")),
            reason=data.get("reason")
        )


@dataclass
class MovementFilter:
    """Optional narrowing of movement queries.

    ``start`` and ``end`` are inclusive. ``category`` matches the product's
    current category.
    """

    start: Optional[datetime] = None
    end: Optional[datetime] = None
    category: Optional[str] = None

    def __post_init__(self):
        if self.start is not None:
            self.start = ensure_utc(self.start)
        if self.end is not None:
            self.end = ensure_utc(self.end)
        if self.start and self.end and self.start > self.end:
            raise ValueError("Filter start must not be after end")
        if self.category is not None:
            self.category = self.category.strip() or None

    @property
    def is_empty(self) -> bool:
        return self.start is None and self.end is None and self.category is None
