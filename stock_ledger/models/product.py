"""Product catalog data model."""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Optional, Dict, Any

from ..utils.money import to_decimal, optional_decimal
from ..utils.timestamps import utc_now, parse_timestamp, isoformat

# Largest quantity the 32-bit quantity columns hold.
MAX_QUANTITY = 2**31 - 1


@dataclass
class Product:
    """A catalog product owned by a single account."""

    id: str
    owner_id: str
    name: str
    category: str
    quantity: int
    price: Decimal
    description: str = ""
    cost: Optional[Decimal] = None
    supplier: str = ""
    image_url: Optional[str] = None
    # Quantity the movement history is counted from; shifts with direct edits.
    opening_quantity: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        """Validate and normalize data."""
        self.name = (self.name or "").strip()
        self.category = (self.category or "").strip()
        self.description = self.description or ""
        self.supplier = self.supplier or ""

        if not self.name:
            raise ValueError("Product name cannot be empty")

        if not self.category:
            raise ValueError("Product category cannot be empty")

        if isinstance(self.quantity, bool) or not isinstance(self.quantity, int):
            raise ValueError("Quantity must be an integer")

        if self.quantity < 0:
            raise ValueError("Quantity cannot be negative")

        if self.quantity > MAX_QUANTITY:
            raise ValueError(f"Quantity cannot exceed {MAX_QUANTITY}")

        self.price = to_decimal(self.price)
        if self.price < 0:
            raise ValueError("Price cannot be negative")

        self.cost = optional_decimal(self.cost)
        if self.cost is not None and self.cost < 0:
            raise ValueError("Cost cannot be negative")

        if self.opening_quantity is None:
            self.opening_quantity = self.quantity

        if self.created_at is None:
            self.created_at = utc_now()
        if self.updated_at is None:
            self.updated_at = self.created_at

    @property
    def stock_value(self) -> Decimal:
        """On-hand value at sale price."""
        return self.price * self.quantity

    @property
    def estimated_profit(self) -> Decimal:
        """Margin on the units on hand; zero unless both price and cost are positive."""
        if self.cost and self.cost > 0 and self.price > 0:
            return (self.price - self.cost) * self.quantity
        return Decimal("0.00")

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "quantity": self.quantity,
            "price": str(self.price),
            "cost": str(self.cost) if self.cost is not None else None,
            "supplier": self.supplier,
            "image_url": self.image_url,
            "created_at": isoformat(self.created_at),
            "updated_at": isoformat(self.updated_at)
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Product":
        """Create instance from dictionary."""
        return cls(
            id=data["id"],
            owner_id=data["owner_id"],
            name=data["name"],
            category=data["category"],
            quantity=data["quantity"],
            price=data["price"],
            description=data.get("description", ""),
            cost=data.get("cost"),
            supplier=data.get("supplier", ""),
            image_url=data.get("image_url"),
            opening_quantity=data.get("opening_quantity"),
            created_at=parse_timestamp(data.get("created_at")),
            updated_at=parse_timestamp(data.get("updated_at"))
        )
