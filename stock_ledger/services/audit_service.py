"""Ledger consistency audit.

For every product the stored quantity must equal its opening quantity plus
all recorded entries minus all recorded exits. The audit only reads; it
reports mismatches and leaves repairs to an operator.
"""

from typing import Optional

from ..models.audit_result import AuditResult
from ..storage.repository import LedgerStore
from ..utils.logger import get_audit_logger, get_error_logger


class AuditService:
    """Checks stored quantities against the movement log."""

    def __init__(self, store: LedgerStore):
        self.store = store
        self.logger = get_audit_logger()
        self.error_logger = get_error_logger()

    def run_audit(self, owner_id: Optional[str] = None) -> AuditResult:
        """
        Audit one account's products, or every account's when ``owner_id`` is None.

        Products and movement totals are read in one transaction so that a
        movement committed mid-audit cannot produce a false mismatch on
        databases with snapshot reads.
        """
        result = AuditResult()
        scope = owner_id or "all accounts"
        self.logger.info(f"Consistency audit started ({scope})")

        with self.store.transaction() as session:
            products = self.store.list_products(session, owner_id)
            net = self.store.net_quantities(session, owner_id)

        result.checked_count = len(products)

        for product in products:
            expected = product.opening_quantity + net.get(product.id, 0)
            if product.quantity != expected:
                result.add_discrepancy(
                    product_id=product.id,
                    product_name=product.name,
                    owner_id=product.owner_id,
                    stored_quantity=product.quantity,
                    expected_quantity=expected
                )
                self.error_logger.error(
                    f"Ledger mismatch for {product.name} ({product.id}, owner {product.owner_id}): "
                    f"stored {product.quantity}, expected {expected}"
                )

        result.metadata["scope"] = scope
        result.finalize()

        if result.consistent:
            self.logger.info(f"Consistency audit passed: {result.checked_count} products checked")
        else:
            self.logger.warning(
                f"Consistency audit found {result.inconsistent_count} mismatch(es) "
                f"in {result.checked_count} products"
            )
        return result
