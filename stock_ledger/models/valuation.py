"""Stock valuation projection."""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Dict, Any, List, Optional

from ..utils.timestamps import utc_now, isoformat


@dataclass
class CategoryBreakdown:
    """On-hand value and movement figures for one product category."""

    category: str
    product_count: int = 0
    stock_value: Decimal = Decimal("0.00")
    entry_value: Decimal = Decimal("0.00")
    exit_quantity: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category": self.category,
            "product_count": self.product_count,
            "stock_value": str(self.stock_value),
            "entry_value": str(self.entry_value),
            "exit_quantity": self.exit_quantity
        }


@dataclass
class ProductValue:
    product_id: str
    name: str
    category: str
    quantity: int
    stock_value: Decimal

    def to_dict(self) -> Dict[str, Any]:
        return {
            "product_id": self.product_id,
            "name": self.name,
            "category": self.category,
            "quantity": self.quantity,
            "stock_value": str(self.stock_value)
        }


@dataclass
class DailyMovements:
    """Entry value and units sold on one UTC calendar day."""

    day: date
    entry_value: Decimal = Decimal("0.00")
    exit_quantity: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "day": self.day.isoformat(),
            "entry_value": str(self.entry_value),
            "exit_quantity": self.exit_quantity
        }


@dataclass
class StockValuation:
    """Read-only figures derived from a caller's products and movements.

    ``by_category`` is sorted by category name, ``top_products`` by stock
    value (highest first) and ``daily`` by day, one entry per day of the
    series window including days without movements.
    """

    stock_value: Decimal = Decimal("0.00")
    estimated_profit: Decimal = Decimal("0.00")
    entry_value: Decimal = Decimal("0.00")
    exit_quantity: int = 0
    product_count: int = 0
    movement_count: int = 0
    by_category: List[CategoryBreakdown] = field(default_factory=list)
    top_products: List[ProductValue] = field(default_factory=list)
    daily: List[DailyMovements] = field(default_factory=list)
    computed_at: Optional[datetime] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if self.computed_at is None:
            self.computed_at = utc_now()

    def category(self, name: str) -> Optional[CategoryBreakdown]:
        return next((c for c in self.by_category if c.category == name), None)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "stock_value": str(self.stock_value),
            "estimated_profit": str(self.estimated_profit),
            "entry_value": str(self.entry_value),
            "exit_quantity": self.exit_quantity,
            "product_count": self.product_count,
            "movement_count": self.movement_count,
            "by_category": [c.to_dict() for c in self.by_category],
            "top_products": [p.to_dict() for p in self.top_products],
            "daily": [d.to_dict() for d in self.daily],
            "computed_at": isoformat(self.computed_at),
            "metadata": self.metadata
        }

    def get_summary(self) -> str:
        """Get a human-readable summary."""
        lines = [
            f"Products:          {self.product_count}",
            f"Stock value:       {self.stock_value}",
            f"Estimated profit:  {self.estimated_profit}",
            f"Movements:         {self.movement_count}",
            f"Entry value:       {self.entry_value}",
            f"Units sold:        {self.exit_quantity}"
        ]

        if self.by_category:
            lines.append("\nBy category:")
            for c in self.by_category:
                lines.append(
                    f"  {c.category:<20} value={c.stock_value:<12} "
                    f"entries={c.entry_value:<12} sold={c.exit_quantity}"
                )

        if self.top_products:
            lines.append("\nTop products by stock value:")
            for p in self.top_products:
                lines.append(f"  {p.name:<30} {p.stock_value}")

        if self.daily:
            lines.append(f"\nDaily ({self.daily[0].day} to {self.daily[-1].day}):")
            for d in self.daily:
                lines.append(f"  {d.day}  entries={d.entry_value:<12} sold={d.exit_quantity}")

        return "\n".join(lines)
