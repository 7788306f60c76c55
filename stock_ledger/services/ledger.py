"""Stock ledger: keeps product quantities consistent with the movement log.

Recording a movement is a single transaction:
  1. Read the product (row-locked where the database supports it).
  2. Validate quantity, type and available stock.
  3. Compare-and-set the new quantity against the value read in step 1.
  4. Append the movement with a snapshot of the product's name and price.

Either both writes commit or neither does.
"""

import uuid
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, Iterator, List, Optional, Tuple

from ..models.identity import CallerIdentity
from ..models.movement import Movement, MovementFilter, MovementInput, MovementType
from ..models.product import MAX_QUANTITY, Product
from ..models.valuation import CategoryBreakdown, DailyMovements, ProductValue, StockValuation
from ..storage.database import Database
from ..storage.repository import LedgerStore
from ..utils.config import get_config
from ..utils.exceptions import (
    ConcurrentUpdateError,
    InsufficientStockError,
    InvalidMovementTypeError,
    InvalidQuantityError,
    LedgerError,
    ProductNotFoundError,
)
from ..utils.logger import get_ledger_logger
from ..utils.money import from_cents
from ..utils.timestamps import ensure_utc, utc_now


def validate_quantity(quantity: Any) -> int:
    """
    Accept only positive integers up to ``MAX_QUANTITY``.

    Raises:
        InvalidQuantityError: For zero, negatives, bools, non-integers and
            quantities too large to store
    """
    if (
        isinstance(quantity, bool)
        or not isinstance(quantity, int)
        or quantity <= 0
        or quantity > MAX_QUANTITY
    ):
        raise InvalidQuantityError(
            f"Quantity must be a positive integer up to {MAX_QUANTITY}, got {quantity!r}",
            details={"quantity": repr(quantity)}
        )
    return quantity


def apply_movement(current: int, movement_type: MovementType, quantity: int) -> int:
    """New on-hand quantity after a movement, never below zero."""
    if movement_type == MovementType.ENTRY:
        new_quantity = current + quantity
    else:
        new_quantity = current - quantity
    return max(0, new_quantity)


class StockLedger:
    """Command and query operations over products and their movement log."""

    def __init__(self, store: LedgerStore):
        self.store = store
        self.config = get_config()
        self.logger = get_ledger_logger()

    @classmethod
    def from_database(cls, database: Database) -> "StockLedger":
        return cls(LedgerStore(database))

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def record_movement(self, caller: CallerIdentity, movement_input: MovementInput) -> Movement:
        """
        Record an entry or exit and adjust the product's quantity.

        Args:
            caller: Identity the movement is attributed to and scoped by
            movement_input: Product, type, quantity and optional details

        Returns:
            The stored movement

        Raises:
            ProductNotFoundError: Unknown product, or owned by another account
            InvalidQuantityError: Quantity is not a positive integer
            InvalidMovementTypeError: Type is neither entry nor exit
            InsufficientStockError: Exit larger than the quantity on hand
            ConcurrentUpdateError: The product changed during the transaction
            PersistenceError: The database could not complete the write
        """
        try:
            with self.store.transaction() as session:
                product = self.store.get_product(
                    session, caller.id, movement_input.product_id, for_update=True
                )
                if product is None:
                    raise ProductNotFoundError(
                        f"Product not found: {movement_input.product_id}",
                        details={"product_id": movement_input.product_id}
                    )

                quantity = validate_quantity(movement_input.quantity)

                try:
                    movement_type = MovementType.parse(
                        movement_input.type,
                        accept_legacy=self.config.ledger.accept_legacy_type_names
                    )
                except ValueError as e:
                    raise InvalidMovementTypeError(str(e), details={"type": repr(movement_input.type)})

                if movement_type == MovementType.EXIT and product.quantity < quantity:
                    raise InsufficientStockError(
                        f"Insufficient stock for {product.name}: "
                        f"requested {quantity}, available {product.quantity}",
                        details={
                            "product_id": product.id,
                            "requested": quantity,
                            "available": product.quantity
                        }
                    )

                now = utc_now()
                new_quantity = apply_movement(product.quantity, movement_type, quantity)
                if new_quantity > MAX_QUANTITY:
                    raise InvalidQuantityError(
                        f"Entry of {quantity} would take {product.name} above {MAX_QUANTITY} units",
                        details={
                            "product_id": product.id,
                            "quantity": quantity,
                            "available": product.quantity
                        }
                    )

                swapped = self.store.compare_and_set_quantity(
                    session,
                    caller.id,
                    product.id,
                    expected=product.quantity,
                    new=new_quantity,
                    updated_at=now
                )
                if not swapped:
                    raise ConcurrentUpdateError(
                        f"Product {product.id} was modified concurrently, movement not recorded",
                        details={"product_id": product.id, "expected_quantity": product.quantity}
                    )

                movement = Movement(
                    id=str(uuid.uuid4()),
                    owner_id=caller.id,
                    product_id=product.id,
                    product_name=product.name,
                    price=product.price,
                    type=movement_type,
                    quantity=quantity,
                    occurred_at=ensure_utc(movement_input.occurred_at) if movement_input.occurred_at else now,
                    user_id=caller.id,
                    user_name=caller.name,
                    supplier=movement_input.supplier,
                    customer=movement_input.customer,
                    reason=movement_input.reason
                )
                self.store.insert_movement(session, movement)

        except LedgerError as e:
            self.logger.warning(
                f"Movement rejected ({e.code}) for product {movement_input.product_id} "
                f"by {caller.id}: {e.message}"
            )
            raise

        self.logger.info(
            f"Recorded {movement.type.value} of {movement.quantity} x {movement.product_name} "
            f"({movement.product_id}): {product.quantity} → {new_quantity} [by {caller.name}]"
        )
        return movement

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def list_movements(
        self,
        caller: CallerIdentity,
        movement_filter: Optional[MovementFilter] = None
    ) -> Iterator[Movement]:
        """
        Lazily yield the caller's movements, most recent first.

        Movements sharing a timestamp are ordered by id (descending), so the
        order is total and stable for a fixed data set.
        """
        with self.store.transaction() as session:
            yield from self.store.iter_movements(
                session,
                caller.id,
                movement_filter,
                batch_size=self.config.ledger.list_batch_size
            )

    def compute_stock_valuation(
        self,
        caller: CallerIdentity,
        movement_filter: Optional[MovementFilter] = None,
        days: Optional[int] = None
    ) -> StockValuation:
        """
        Derive stock value, estimated profit, entry value and units sold,
        with per-category, top-product and per-day breakdowns.

        The filter's date range narrows the movement figures; its category
        narrows both product and movement figures.

        Args:
            caller: Whose products and movements are valued
            movement_filter: Optional date range and/or category
            days: Length of the daily series when the filter does not give
                both ends (defaults to ``ledger.daily_series_days``)
        """
        ledger_config = self.config.ledger
        category = movement_filter.category if movement_filter else None
        first_day, last_day = daily_window(
            movement_filter,
            days or ledger_config.daily_series_days,
            utc_now().date(),
            max_days=ledger_config.daily_series_max_days
        )
        series_filter = MovementFilter(
            start=_later(movement_filter.start if movement_filter else None,
                         datetime.combine(first_day, time.min, tzinfo=timezone.utc)),
            end=_earlier(movement_filter.end if movement_filter else None,
                         datetime.combine(last_day, time.max, tzinfo=timezone.utc)),
            category=category
        )

        with self.store.transaction() as session:
            products = self.store.list_products(session, caller.id, category=category)
            movement_count, entry_cents, exit_quantity = self.store.movement_aggregates(
                session, caller.id, movement_filter
            )
            category_movements = self.store.movement_aggregates_by_category(
                session, caller.id, movement_filter
            )
            daily = self._daily_series(session, caller, series_filter, first_day, last_day)

        stock_value = sum((p.stock_value for p in products), Decimal("0.00"))
        estimated_profit = sum((p.estimated_profit for p in products), Decimal("0.00"))

        valuation = StockValuation(
            stock_value=stock_value,
            estimated_profit=estimated_profit,
            entry_value=from_cents(entry_cents),
            exit_quantity=exit_quantity,
            product_count=len(products),
            movement_count=movement_count,
            by_category=category_breakdown(products, category_movements),
            top_products=top_products(products, ledger_config.top_products_limit),
            daily=daily
        )
        if category:
            valuation.metadata["category"] = category

        self.logger.debug(
            f"Valuation for {caller.id}: stock={stock_value} profit={estimated_profit} "
            f"movements={movement_count} days={len(daily)}"
        )
        return valuation

    def _daily_series(
        self,
        session,
        caller: CallerIdentity,
        series_filter: MovementFilter,
        first_day: date,
        last_day: date
    ) -> List[DailyMovements]:
        buckets = {}
        day = first_day
        while day <= last_day:
            buckets[day] = DailyMovements(day=day)
            day += timedelta(days=1)

        for movement in self.store.iter_movements(
            session, caller.id, series_filter, batch_size=self.config.ledger.list_batch_size
        ):
            bucket = buckets.get(movement.occurred_at.date())
            if bucket is None:
                continue
            if movement.type == MovementType.ENTRY:
                bucket.entry_value += movement.value
            else:
                bucket.exit_quantity += movement.quantity

        return list(buckets.values())


def _later(a: Optional[datetime], b: datetime) -> datetime:
    return b if a is None else max(a, b)


def _earlier(a: Optional[datetime], b: datetime) -> datetime:
    return b if a is None else min(a, b)


def daily_window(
    movement_filter: Optional[MovementFilter],
    days: int,
    today: date,
    max_days: int = 366
) -> Tuple[date, date]:
    """
    First and last UTC day of the daily series.

    A filter with both ends covers exactly its range. With one end the series
    runs ``days`` days from it (or up to today from a start); with none it is
    the last ``days`` days ending today. Never longer than ``max_days``.
    """
    start = movement_filter.start.date() if movement_filter and movement_filter.start else None
    end = movement_filter.end.date() if movement_filter and movement_filter.end else None

    if start and end:
        first, last = start, end
    elif start:
        first, last = start, max(start, today)
    elif end:
        first, last = end - timedelta(days=days - 1), end
    else:
        first, last = today - timedelta(days=days - 1), today

    if (last - first).days + 1 > max_days:
        first = last - timedelta(days=max_days - 1)
    return first, last


def category_breakdown(
    products: List[Product],
    category_movements: Dict[str, Tuple[int, int]]
) -> List[CategoryBreakdown]:
    """Merge on-hand value per category with entry value and units sold per category."""
    categories: Dict[str, CategoryBreakdown] = {}

    for product in products:
        breakdown = categories.setdefault(product.category, CategoryBreakdown(category=product.category))
        breakdown.product_count += 1
        breakdown.stock_value += product.stock_value

    for name, (entry_cents, exit_quantity) in category_movements.items():
        breakdown = categories.setdefault(name, CategoryBreakdown(category=name))
        breakdown.entry_value = from_cents(entry_cents)
        breakdown.exit_quantity = exit_quantity

    return [categories[name] for name in sorted(categories)]


def top_products(products: List[Product], limit: int) -> List[ProductValue]:
    """Highest stock value first; ties by name."""
    ranked = sorted(products, key=lambda p: (-p.stock_value, p.name))[:limit]
    return [
        ProductValue(
            product_id=p.id,
            name=p.name,
            category=p.category,
            quantity=p.quantity,
            stock_value=p.stock_value
        )
        for p in ranked
    ]
