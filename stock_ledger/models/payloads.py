"""Request bodies accepted by the HTTP API."""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

from .movement import Counterparty, MovementInput


class ProductCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str
    category: str
    quantity: int = 0
    price: Decimal
    description: str = ""
    cost: Optional[Decimal] = None
    supplier: str = ""
    image_url: Optional[str] = None

    def to_data(self) -> Dict[str, Any]:
        return self.model_dump()


class ProductUpdate(BaseModel):
    """Partial edit; only the fields sent are changed."""

    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = None
    category: Optional[str] = None
    quantity: Optional[int] = None
    price: Optional[Decimal] = None
    description: Optional[str] = None
    cost: Optional[Decimal] = None
    supplier: Optional[str] = None
    image_url: Optional[str] = None

    def to_changes(self) -> Dict[str, Any]:
        return self.model_dump(exclude_unset=True)


class CounterpartyPayload(BaseModel):
    name: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    notes: Optional[str] = None

    def to_counterparty(self) -> Counterparty:
        return Counterparty(**self.model_dump())


class MovementCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    product_id: str
    type: str = Field(..., description="'entry' or 'exit'")
    # Left loose so the ledger reports InvalidQuantity for 0, -3, 2.5 or "3".
    quantity: Any
    occurred_at: Optional[datetime] = None
    supplier: Optional[CounterpartyPayload] = None
    customer: Optional[CounterpartyPayload] = None
    reason: Optional[str] = None

    def to_input(self) -> MovementInput:
        return MovementInput(
            product_id=self.product_id,
            type=self.type,
            quantity=self.quantity,
            occurred_at=self.occurred_at,
            supplier=self.supplier.to_counterparty() if self.supplier else Counterparty(),
            customer=self.customer.to_counterparty() if self.customer else Counterparty(),
            reason=self.reason
        )
