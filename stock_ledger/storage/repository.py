"""Row <-> dataclass mapping and queries for the ledger.

Every conversion between stored rows and ``Product`` / ``Movement`` goes
through the functions in this module.
"""

from datetime import datetime
from typing import Dict, Iterator, List, Optional, Tuple

from sqlalchemy import BigInteger, Select, and_, case, cast, func, select, update, delete
from sqlalchemy.orm import Session

from .database import Database
from .tables import ProductRow, MovementRow
from ..models.movement import Counterparty, Movement, MovementFilter, MovementType
from ..models.product import Product
from ..utils.money import to_cents, from_cents
from ..utils.timestamps import utc_now


# ---------------------------------------------------------------------------
# Mapping
# ---------------------------------------------------------------------------

def product_from_row(row: ProductRow) -> Product:
    return Product(
        id=row.id,
        owner_id=row.owner_id,
        name=row.name,
        description=row.description,
        category=row.category,
        quantity=row.quantity,
        price=from_cents(row.price_cents),
        cost=from_cents(row.cost_cents),
        supplier=row.supplier,
        image_url=row.image_url,
        opening_quantity=row.opening_quantity,
        created_at=row.created_at,
        updated_at=row.updated_at
    )


def product_values(product: Product) -> Dict[str, object]:
    return {
        "id": product.id,
        "owner_id": product.owner_id,
        "name": product.name,
        "description": product.description,
        "category": product.category,
        "quantity": product.quantity,
        "opening_quantity": product.opening_quantity,
        "price_cents": to_cents(product.price),
        "cost_cents": to_cents(product.cost) if product.cost is not None else None,
        "supplier": product.supplier,
        "image_url": product.image_url,
        "created_at": product.created_at,
        "updated_at": product.updated_at
    }


def movement_from_row(row: MovementRow) -> Movement:
    return Movement(
        id=row.id,
        owner_id=row.owner_id,
        product_id=row.product_id,
        product_name=row.product_name,
        price=from_cents(row.price_cents),
        type=MovementType(row.type),
        quantity=row.quantity,
        occurred_at=row.occurred_at,
        user_id=row.user_id,
        user_name=row.user_name,
        supplier=Counterparty(
            name=row.supplier_name,
            phone=row.supplier_phone,
            email=row.supplier_email,
            notes=row.supplier_notes
        ),
        customer=Counterparty(
            name=row.customer_name,
            phone=row.customer_phone,
            email=row.customer_email,
            notes=row.customer_notes
        ),
        reason=row.reason
    )


def movement_row(movement: Movement) -> MovementRow:
    return MovementRow(
        id=movement.id,
        owner_id=movement.owner_id,
        product_id=movement.product_id,
        product_name=movement.product_name,
        price_cents=to_cents(movement.price),
        type=movement.type.value,
        quantity=movement.quantity,
        occurred_at=movement.occurred_at,
        recorded_at=utc_now(),
        user_id=movement.user_id,
        user_name=movement.user_name,
        supplier_name=movement.supplier.name,
        supplier_phone=movement.supplier.phone,
        supplier_email=movement.supplier.email,
        supplier_notes=movement.supplier.notes,
        customer_name=movement.customer.name,
        customer_phone=movement.customer.phone,
        customer_email=movement.customer.email,
        customer_notes=movement.customer.notes,
        reason=movement.reason
    )


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------

class LedgerStore:
    """Per-entity access to products and movements.

    Methods take the caller's session so that the ledger can group several
    of them into one transaction.
    """

    def __init__(self, database: Database):
        self.database = database

    def transaction(self):
        return self.database.transaction()

    # -- products ----------------------------------------------------------

    def add_product(self, session: Session, product: Product) -> None:
        session.add(ProductRow(**product_values(product)))
        session.flush()

    def get_product(
        self,
        session: Session,
        owner_id: str,
        product_id: str,
        for_update: bool = False
    ) -> Optional[Product]:
        """Fetch one of the owner's products, locking the row if asked."""
        stmt = select(ProductRow).where(
            ProductRow.id == product_id,
            ProductRow.owner_id == owner_id
        )
        if for_update:
            stmt = stmt.with_for_update()
        row = session.scalars(stmt).first()
        return product_from_row(row) if row else None

    def list_products(
        self,
        session: Session,
        owner_id: Optional[str] = None,
        category: Optional[str] = None,
        search: Optional[str] = None
    ) -> List[Product]:
        """Newest first. ``owner_id=None`` lists every account's products."""
        stmt = select(ProductRow)
        if owner_id is not None:
            stmt = stmt.where(ProductRow.owner_id == owner_id)
        if category:
            stmt = stmt.where(ProductRow.category == category)
        if search:
            stmt = stmt.where(func.lower(ProductRow.name).contains(search.lower(), autoescape=True))
        stmt = stmt.order_by(ProductRow.created_at.desc(), ProductRow.id.desc())
        return [product_from_row(row) for row in session.scalars(stmt)]

    def list_categories(self, session: Session, owner_id: str) -> List[str]:
        stmt = (
            select(ProductRow.category)
            .where(ProductRow.owner_id == owner_id, ProductRow.category != "")
            .distinct()
            .order_by(ProductRow.category)
        )
        return list(session.scalars(stmt))

    def replace_product(self, session: Session, product: Product, expected_quantity: int) -> bool:
        """
        Overwrite the stored attributes of a product.

        Guarded on the quantity read earlier so a direct edit cannot silently
        undo a movement recorded in between.

        Returns:
            False when the product is gone or its quantity changed
        """
        values = product_values(product)
        values.pop("id")
        values.pop("owner_id")
        values.pop("created_at")
        result = session.execute(
            update(ProductRow)
            .where(
                ProductRow.id == product.id,
                ProductRow.owner_id == product.owner_id,
                ProductRow.quantity == expected_quantity
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def delete_product(self, session: Session, owner_id: str, product_id: str) -> bool:
        result = session.execute(
            delete(ProductRow)
            .where(ProductRow.id == product_id, ProductRow.owner_id == owner_id)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def compare_and_set_quantity(
        self,
        session: Session,
        owner_id: str,
        product_id: str,
        expected: int,
        new: int,
        updated_at: datetime
    ) -> bool:
        """
        Set the quantity only if it still equals ``expected``.

        Returns:
            False when another writer changed (or deleted) the product since
            it was read
        """
        result = session.execute(
            update(ProductRow)
            .where(
                ProductRow.id == product_id,
                ProductRow.owner_id == owner_id,
                ProductRow.quantity == expected
            )
            .values(quantity=new, updated_at=updated_at)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    # -- movements ---------------------------------------------------------

    def insert_movement(self, session: Session, movement: Movement) -> None:
        session.add(movement_row(movement))
        session.flush()

    def _filter_movements(
        self,
        stmt: Select,
        owner_id: str,
        movement_filter: Optional[MovementFilter],
        join_products: bool = False
    ) -> Select:
        """Scope ``stmt`` to the owner and filter; joins the product's current row when needed."""
        stmt = stmt.where(MovementRow.owner_id == owner_id)
        category = movement_filter.category if movement_filter is not None else None

        if movement_filter is not None:
            if movement_filter.start is not None:
                stmt = stmt.where(MovementRow.occurred_at >= movement_filter.start)
            if movement_filter.end is not None:
                stmt = stmt.where(MovementRow.occurred_at <= movement_filter.end)

        if join_products or category is not None:
            stmt = stmt.join(
                ProductRow,
                and_(
                    ProductRow.id == MovementRow.product_id,
                    ProductRow.owner_id == MovementRow.owner_id
                )
            )
        if category is not None:
            stmt = stmt.where(ProductRow.category == category)

        return stmt

    def _movements_stmt(self, owner_id: str, movement_filter: Optional[MovementFilter]) -> Select:
        return self._filter_movements(select(MovementRow), owner_id, movement_filter)

    def iter_movements(
        self,
        session: Session,
        owner_id: str,
        movement_filter: Optional[MovementFilter] = None,
        batch_size: int = 100
    ) -> Iterator[Movement]:
        """Most recent first; ties on ``occurred_at`` are broken by id, descending."""
        stmt = (
            self._movements_stmt(owner_id, movement_filter)
            .order_by(MovementRow.occurred_at.desc(), MovementRow.id.desc())
            .execution_options(yield_per=batch_size)
        )
        for row in session.scalars(stmt):
            yield movement_from_row(row)

    def count_movements(self, session: Session, owner_id: Optional[str] = None) -> int:
        stmt = select(func.count()).select_from(MovementRow)
        if owner_id is not None:
            stmt = stmt.where(MovementRow.owner_id == owner_id)
        return session.scalar(stmt)

    @staticmethod
    def _entry_cents(columns):
        # 64-bit product so large quantities at high prices cannot overflow.
        return func.coalesce(
            func.sum(case(
                (columns.type == MovementType.ENTRY.value,
                 cast(columns.quantity, BigInteger) * columns.price_cents),
                else_=0
            )),
            0
        )

    @staticmethod
    def _exit_quantity(columns):
        return func.coalesce(
            func.sum(case((columns.type == MovementType.EXIT.value, columns.quantity), else_=0)),
            0
        )

    def movement_aggregates(
        self,
        session: Session,
        owner_id: str,
        movement_filter: Optional[MovementFilter] = None
    ) -> Tuple[int, int, int]:
        """
        Returns:
            (movement count, entry value in cents, exit quantity)
        """
        inner = self._movements_stmt(owner_id, movement_filter).subquery()
        stmt = select(
            func.count(),
            self._entry_cents(inner.c),
            self._exit_quantity(inner.c)
        ).select_from(inner)
        count, entry_cents, exit_quantity = session.execute(stmt).one()
        return int(count), int(entry_cents), int(exit_quantity)

    def movement_aggregates_by_category(
        self,
        session: Session,
        owner_id: str,
        movement_filter: Optional[MovementFilter] = None
    ) -> Dict[str, Tuple[int, int]]:
        """
        Entry value (cents) and exit quantity per current product category.

        Movements whose product was deleted have no category and are left out.
        """
        stmt = self._filter_movements(
            select(
                ProductRow.category,
                self._entry_cents(MovementRow),
                self._exit_quantity(MovementRow)
            ).select_from(MovementRow),
            owner_id,
            movement_filter,
            join_products=True
        ).group_by(ProductRow.category)
        return {
            category: (int(entry_cents), int(exit_quantity))
            for category, entry_cents, exit_quantity in session.execute(stmt)
        }

    def net_quantities(self, session: Session, owner_id: Optional[str] = None) -> Dict[str, int]:
        """Sum of entries minus exits per product id."""
        signed = case(
            (MovementRow.type == MovementType.ENTRY.value, MovementRow.quantity),
            else_=-MovementRow.quantity
        )
        stmt = select(MovementRow.product_id, func.sum(signed)).group_by(MovementRow.product_id)
        if owner_id is not None:
            stmt = stmt.where(MovementRow.owner_id == owner_id)
        return {product_id: int(total) for product_id, total in session.execute(stmt)}
