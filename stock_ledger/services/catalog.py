"""Product catalog management for a single account."""

import dataclasses
import uuid
from typing import Any, Dict, List, Optional

from ..models.identity import CallerIdentity
from ..models.product import Product
from ..storage.repository import LedgerStore
from ..utils.exceptions import (
    ConcurrentUpdateError,
    InvalidProductError,
    ProductNotFoundError,
)
from ..utils.logger import get_ledger_logger
from ..utils.timestamps import utc_now

EDITABLE_FIELDS = {
    "name",
    "description",
    "category",
    "quantity",
    "price",
    "cost",
    "supplier",
    "image_url",
}


class ProductCatalog:
    """Create, edit, list and delete the caller's products."""

    def __init__(self, store: LedgerStore):
        self.store = store
        self.logger = get_ledger_logger()

    def create_product(self, caller: CallerIdentity, data: Dict[str, Any]) -> Product:
        """
        Add a product to the caller's catalog.

        Raises:
            InvalidProductError: Missing or invalid attributes
        """
        self._reject_unknown_fields(data)

        try:
            product = Product(
                id=str(uuid.uuid4()),
                owner_id=caller.id,
                name=data.get("name"),
                category=data.get("category"),
                quantity=data.get("quantity", 0),
                price=data.get("price"),
                description=data.get("description", ""),
                cost=data.get("cost"),
                supplier=data.get("supplier", ""),
                image_url=data.get("image_url")
            )
        except ValueError as e:
            raise InvalidProductError(str(e), details={"fields": sorted(data)})

        with self.store.transaction() as session:
            self.store.add_product(session, product)

        self.logger.info(
            f"Product created: {product.name} ({product.id}) qty={product.quantity} by {caller.id}"
        )
        return product

    def get_product(self, caller: CallerIdentity, product_id: str) -> Product:
        with self.store.transaction() as session:
            product = self.store.get_product(session, caller.id, product_id)

        if product is None:
            raise ProductNotFoundError(
                f"Product not found: {product_id}",
                details={"product_id": product_id}
            )
        return product

    def list_products(
        self,
        caller: CallerIdentity,
        category: Optional[str] = None,
        search: Optional[str] = None
    ) -> List[Product]:
        """Newest first, optionally by exact category and/or name substring."""
        with self.store.transaction() as session:
            return self.store.list_products(session, caller.id, category=category, search=search)

    def list_categories(self, caller: CallerIdentity) -> List[str]:
        with self.store.transaction() as session:
            return self.store.list_categories(session, caller.id)

    def update_product(self, caller: CallerIdentity, product_id: str, changes: Dict[str, Any]) -> Product:
        """
        Apply a direct edit.

        A quantity edit moves the opening quantity by the same amount, so the
        stored quantity still equals the opening quantity plus the movement
        history.

        Raises:
            ProductNotFoundError: Unknown product
            InvalidProductError: Invalid attributes
            ConcurrentUpdateError: A movement changed the quantity meanwhile
        """
        self._reject_unknown_fields(changes)

        with self.store.transaction() as session:
            current = self.store.get_product(session, caller.id, product_id, for_update=True)
            if current is None:
                raise ProductNotFoundError(
                    f"Product not found: {product_id}",
                    details={"product_id": product_id}
                )

            try:
                updated = dataclasses.replace(current, **changes, updated_at=utc_now())
            except ValueError as e:
                raise InvalidProductError(str(e), details={"fields": sorted(changes)})

            delta = updated.quantity - current.quantity
            if delta:
                updated.opening_quantity = current.opening_quantity + delta

            if not self.store.replace_product(session, updated, expected_quantity=current.quantity):
                raise ConcurrentUpdateError(
                    f"Product {product_id} was modified concurrently, edit not applied",
                    details={"product_id": product_id}
                )

        self.logger.info(
            f"Product updated: {updated.name} ({product_id}) fields={sorted(changes)} by {caller.id}"
        )
        return updated

    def delete_product(self, caller: CallerIdentity, product_id: str) -> None:
        """Delete a product. Its movements stay in the log."""
        with self.store.transaction() as session:
            deleted = self.store.delete_product(session, caller.id, product_id)

        if not deleted:
            raise ProductNotFoundError(
                f"Product not found: {product_id}",
                details={"product_id": product_id}
            )

        self.logger.info(f"Product deleted: {product_id} by {caller.id}")

    def _reject_unknown_fields(self, data: Dict[str, Any]):
        unknown = set(data) - EDITABLE_FIELDS
        if unknown:
            raise InvalidProductError(
                f"Unknown product fields: {', '.join(sorted(unknown))}",
                details={"fields": sorted(unknown)}
            )
