"""Consistency audit result data models."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Dict, Any, Optional

from ..utils.timestamps import utc_now, isoformat


@dataclass
class AuditDiscrepancy:
    """A product whose stored quantity disagrees with its movement history."""

    product_id: str
    product_name: str
    owner_id: str
    stored_quantity: int
    expected_quantity: int
    timestamp: datetime = field(default_factory=utc_now)

    @property
    def difference(self) -> int:
        return self.stored_quantity - self.expected_quantity

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "product_id": self.product_id,
            "product_name": self.product_name,
            "owner_id": self.owner_id,
            "stored_quantity": self.stored_quantity,
            "expected_quantity": self.expected_quantity,
            "difference": self.difference,
            "timestamp": self.timestamp.isoformat()
        }


@dataclass
class AuditResult:
    """Represents the result of a ledger consistency audit."""

    consistent: bool = True
    checked_count: int = 0
    discrepancies: List[AuditDiscrepancy] = field(default_factory=list)
    duration: float = 0.0  # seconds
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if self.start_time is None:
            self.start_time = utc_now()

    def add_discrepancy(
        self,
        product_id: str,
        product_name: str,
        owner_id: str,
        stored_quantity: int,
        expected_quantity: int
    ):
        """Record a mismatching product."""
        self.discrepancies.append(AuditDiscrepancy(
            product_id=product_id,
            product_name=product_name,
            owner_id=owner_id,
            stored_quantity=stored_quantity,
            expected_quantity=expected_quantity
        ))
        self.consistent = False

    def finalize(self):
        """Finalize the audit result with end time and duration."""
        self.end_time = utc_now()
        if self.start_time:
            self.duration = (self.end_time - self.start_time).total_seconds()

    @property
    def inconsistent_count(self) -> int:
        return len(self.discrepancies)

    @property
    def consistent_count(self) -> int:
        return self.checked_count - self.inconsistent_count

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "consistent": self.consistent,
            "checked_count": self.checked_count,
            "consistent_count": self.consistent_count,
            "inconsistent_count": self.inconsistent_count,
            "duration": round(self.duration, 2),
            "start_time": isoformat(self.start_time),
            "end_time": isoformat(self.end_time),
            "discrepancies": [d.to_dict() for d in self.discrepancies],
            "metadata": self.metadata
        }

    def get_summary(self) -> str:
        """Get a human-readable summary."""
        summary_lines = [
            f"Audit completed in {self.duration:.2f}s",
            f"Products checked: {self.checked_count}",
            f"Consistent: {self.consistent_count}",
            f"Inconsistent: {self.inconsistent_count}"
        ]

        if self.discrepancies:
            summary_lines.append(f"\nDiscrepancies ({len(self.discrepancies)}):")
            for d in self.discrepancies[:5]:
                summary_lines.append(
                    f"  - {d.product_name} ({d.product_id}): stored {d.stored_quantity}, "
                    f"expected {d.expected_quantity}"
                )
            if len(self.discrepancies) > 5:
                summary_lines.append(f"  ... and {len(self.discrepancies) - 5} more")

        return "\n".join(summary_lines)
