"""Tests for the stock ledger: recording movements, listing and valuation."""

import dataclasses
import inspect
import threading
from datetime import date, datetime, timezone
from decimal import Decimal

import pytest
from sqlalchemy.exc import OperationalError

from stock_ledger.models.movement import Counterparty, MovementFilter, MovementInput, MovementType
from stock_ledger.models.product import MAX_QUANTITY
from stock_ledger.services.catalog import ProductCatalog
from stock_ledger.services.ledger import StockLedger, apply_movement, daily_window, validate_quantity
from stock_ledger.storage.database import Database
from stock_ledger.storage.repository import LedgerStore
from stock_ledger.utils.exceptions import (
    ConcurrentUpdateError,
    InsufficientStockError,
    InvalidMovementTypeError,
    InvalidQuantityError,
    PersistenceError,
    ProductNotFoundError,
)

from conftest import ledger_balance


def at(day, hour=12):
    return datetime(2024, 5, day, hour, 0, tzinfo=timezone.utc)


class TestHelpers:
    """Tests for quantity validation and arithmetic."""

    def test_validate_quantity_accepts_positive_int(self):
        assert validate_quantity(5) == 5

    @pytest.mark.parametrize("quantity", [0, -3, 2.5, "3", True, None, 2**31, 10**20])
    def test_validate_quantity_rejects(self, quantity):
        with pytest.raises(InvalidQuantityError):
            validate_quantity(quantity)

    def test_apply_movement(self):
        assert apply_movement(10, MovementType.ENTRY, 5) == 15
        assert apply_movement(10, MovementType.EXIT, 10) == 0

    def test_apply_movement_never_negative(self):
        assert apply_movement(2, MovementType.EXIT, 5) == 0


class TestRecordMovement:
    """Tests for StockLedger.record_movement."""

    def test_entry_exit_and_rejected_exit(self, ledger, catalog, caller, product_p1):
        """Entry 5, exit 12, then an exit of 4 that must be rejected."""
        entry = ledger.record_movement(caller, MovementInput(
            product_id=product_p1.id, type="entry", quantity=5, supplier=Counterparty(name="Acme")
        ))
        assert catalog.get_product(caller, product_p1.id).quantity == 15
        assert entry.type == MovementType.ENTRY
        assert entry.supplier.name == "Acme"

        ledger.record_movement(caller, MovementInput(
            product_id=product_p1.id, type="exit", quantity=12, customer=Counterparty(name="Jane")
        ))
        assert catalog.get_product(caller, product_p1.id).quantity == 3

        with pytest.raises(InsufficientStockError) as exc_info:
            ledger.record_movement(caller, MovementInput(product_id=product_p1.id, type="exit", quantity=4))

        assert exc_info.value.details == {"product_id": product_p1.id, "requested": 4, "available": 3}
        assert catalog.get_product(caller, product_p1.id).quantity == 3
        assert len(list(ledger.list_movements(caller))) == 2

        valuation = ledger.compute_stock_valuation(caller)
        assert valuation.stock_value == Decimal("60.00")
        assert valuation.estimated_profit == Decimal("24.00")
        assert valuation.entry_value == Decimal("100.00")
        assert valuation.exit_quantity == 12

    def test_movement_snapshot_and_attribution(self, ledger, caller, product_p1):
        movement = ledger.record_movement(caller, MovementInput(
            product_id=product_p1.id, type="exit", quantity=2, reason="Balcao"
        ))

        assert movement.product_name == "P1"
        assert movement.price == Decimal("20.00")
        assert movement.user_id == caller.id
        assert movement.user_name == caller.name
        assert movement.owner_id == caller.id
        assert movement.reason == "Balcao"
        assert movement.occurred_at.tzinfo is not None

    def test_exit_of_entire_stock(self, ledger, catalog, caller, product_p1):
        ledger.record_movement(caller, MovementInput(product_id=product_p1.id, type="exit", quantity=10))

        assert catalog.get_product(caller, product_p1.id).quantity == 0

    def test_explicit_occurred_at_is_kept(self, ledger, caller, product_p1):
        movement = ledger.record_movement(caller, MovementInput(
            product_id=product_p1.id, type="entry", quantity=1, occurred_at=datetime(2024, 1, 2, 9, 30)
        ))

        assert movement.occurred_at == datetime(2024, 1, 2, 9, 30, tzinfo=timezone.utc)

    @pytest.mark.parametrize("quantity", [0, -3, 2.5, True, "3"])
    def test_invalid_quantity_changes_nothing(self, ledger, catalog, caller, product_p1, quantity):
        with pytest.raises(InvalidQuantityError):
            ledger.record_movement(caller, MovementInput(product_id=product_p1.id, type="entry", quantity=quantity))

        assert catalog.get_product(caller, product_p1.id).quantity == 10
        assert list(ledger.list_movements(caller)) == []

    def test_invalid_type(self, ledger, caller, product_p1):
        with pytest.raises(InvalidMovementTypeError):
            ledger.record_movement(caller, MovementInput(product_id=product_p1.id, type="transfer", quantity=1))

    def test_legacy_type_names(self, ledger, catalog, caller, product_p1):
        purchase = ledger.record_movement(caller, MovementInput(product_id=product_p1.id, type="purchase", quantity=3))
        sale = ledger.record_movement(caller, MovementInput(product_id=product_p1.id, type="sale", quantity=1))

        assert purchase.type == MovementType.ENTRY
        assert sale.type == MovementType.EXIT
        assert catalog.get_product(caller, product_p1.id).quantity == 12

    def test_unknown_product(self, ledger, caller):
        with pytest.raises(ProductNotFoundError):
            ledger.record_movement(caller, MovementInput(product_id="missing", type="entry", quantity=1))

    def test_other_owners_product_is_not_found(self, ledger, catalog, caller, other_caller, product_p1):
        with pytest.raises(ProductNotFoundError):
            ledger.record_movement(other_caller, MovementInput(product_id=product_p1.id, type="exit", quantity=1))

        assert catalog.get_product(caller, product_p1.id).quantity == 10

    def test_deleted_product_is_not_found(self, ledger, catalog, caller, product_p1):
        catalog.delete_product(caller, product_p1.id)

        with pytest.raises(ProductNotFoundError):
            ledger.record_movement(caller, MovementInput(product_id=product_p1.id, type="entry", quantity=1))

    def test_huge_quantity_is_invalid(self, ledger, catalog, caller, product_p1):
        with pytest.raises(InvalidQuantityError):
            ledger.record_movement(caller, MovementInput(product_id=product_p1.id, type="entry", quantity=10**20))

        assert catalog.get_product(caller, product_p1.id).quantity == 10

    def test_entry_beyond_storable_quantity_is_rejected(self, ledger, catalog, caller):
        product = catalog.create_product(caller, {"name": "Parafuso", "category": "Ferragens",
                                                  "quantity": MAX_QUANTITY - 1, "price": "0.10"})

        with pytest.raises(InvalidQuantityError) as exc_info:
            ledger.record_movement(caller, MovementInput(product_id=product.id, type="entry", quantity=5))

        assert exc_info.value.details["available"] == MAX_QUANTITY - 1
        assert catalog.get_product(caller, product.id).quantity == MAX_QUANTITY - 1
        assert list(ledger.list_movements(caller)) == []

        ledger.record_movement(caller, MovementInput(product_id=product.id, type="entry", quantity=1))
        assert catalog.get_product(caller, product.id).quantity == MAX_QUANTITY


class TestValidationOrder:
    """The first failing check decides the error."""

    def test_not_found_before_invalid_quantity(self, ledger, caller):
        with pytest.raises(ProductNotFoundError):
            ledger.record_movement(caller, MovementInput(product_id="missing", type="bogus", quantity=0))

    def test_invalid_quantity_before_invalid_type(self, ledger, caller, product_p1):
        with pytest.raises(InvalidQuantityError):
            ledger.record_movement(caller, MovementInput(product_id=product_p1.id, type="bogus", quantity=-3))

    def test_invalid_type_before_insufficient_stock(self, ledger, caller, product_p1):
        with pytest.raises(InvalidMovementTypeError):
            ledger.record_movement(caller, MovementInput(product_id=product_p1.id, type="bogus", quantity=500))

    def test_invalid_quantity_on_oversized_exit(self, ledger, caller, product_p1):
        with pytest.raises(InvalidQuantityError):
            ledger.record_movement(caller, MovementInput(product_id=product_p1.id, type="exit", quantity=2.5))


class TestAtomicity:
    """Quantity change and movement append commit together or not at all."""

    def test_failed_movement_insert_rolls_back_quantity(self, ledger, catalog, caller, product_p1, monkeypatch):
        def failing_insert(session, movement):
            raise OperationalError("INSERT INTO movements", {}, Exception("disk I/O error"))

        monkeypatch.setattr(ledger.store, "insert_movement", failing_insert)

        with pytest.raises(PersistenceError):
            ledger.record_movement(caller, MovementInput(product_id=product_p1.id, type="exit", quantity=4))

        monkeypatch.undo()
        assert catalog.get_product(caller, product_p1.id).quantity == 10
        assert list(ledger.list_movements(caller)) == []

    def test_unexpected_error_rolls_back_quantity(self, ledger, catalog, caller, product_p1, monkeypatch):
        def failing_insert(session, movement):
            raise RuntimeError("boom")

        monkeypatch.setattr(ledger.store, "insert_movement", failing_insert)

        with pytest.raises(RuntimeError, match="boom"):
            ledger.record_movement(caller, MovementInput(product_id=product_p1.id, type="entry", quantity=4))

        monkeypatch.undo()
        assert catalog.get_product(caller, product_p1.id).quantity == 10

    def test_stale_read_is_rejected(self, ledger, catalog, caller, product_p1, monkeypatch):
        """A quantity that changed after it was read fails the compare-and-set."""
        original_get_product = ledger.store.get_product

        def stale_get_product(session, owner_id, product_id, for_update=False):
            product = original_get_product(session, owner_id, product_id, for_update=for_update)
            return dataclasses.replace(product, quantity=product.quantity + 100)

        monkeypatch.setattr(ledger.store, "get_product", stale_get_product)

        with pytest.raises(ConcurrentUpdateError):
            ledger.record_movement(caller, MovementInput(product_id=product_p1.id, type="exit", quantity=50))

        monkeypatch.undo()
        assert catalog.get_product(caller, product_p1.id).quantity == 10
        assert list(ledger.list_movements(caller)) == []

    def test_concurrent_exits_cannot_oversell(self, tmp_path, caller):
        """Two exits of 6 against 10 units: at most one may succeed."""
        database = Database(f"sqlite:///{tmp_path / 'ledger.db'}")
        database.create_all()
        store = LedgerStore(database)
        ledger = StockLedger(store)
        catalog = ProductCatalog(store)
        product = catalog.create_product(caller, {"name": "P1", "category": "X", "quantity": 10, "price": "20.00"})

        barrier = threading.Barrier(2)
        successes, failures = [], []

        def sell():
            barrier.wait()
            try:
                successes.append(ledger.record_movement(
                    caller, MovementInput(product_id=product.id, type="exit", quantity=6)
                ))
            except (InsufficientStockError, PersistenceError) as e:
                failures.append(e)

        threads = [threading.Thread(target=sell) for _ in range(2)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        quantity = catalog.get_product(caller, product.id).quantity
        assert len(successes) <= 1
        assert len(successes) + len(failures) == 2
        assert quantity == 10 - 6 * len(successes)
        assert quantity == ledger_balance(ledger, caller, product.id, opening=10)
        database.dispose()


class TestLedgerCompleteness:
    """Stored quantity always equals the opening quantity plus the log."""

    def test_quantity_matches_log_after_mixed_movements(self, ledger, catalog, caller, product_p1):
        steps = [("entry", 5), ("exit", 3), ("exit", 20), ("entry", 1), ("exit", 13), ("exit", 1)]
        for movement_type, quantity in steps:
            try:
                ledger.record_movement(caller, MovementInput(
                    product_id=product_p1.id, type=movement_type, quantity=quantity
                ))
            except InsufficientStockError:
                pass

        quantity = catalog.get_product(caller, product_p1.id).quantity
        assert quantity == 0
        assert quantity == ledger_balance(ledger, caller, product_p1.id, opening=10)


class TestListMovements:
    """Tests for StockLedger.list_movements."""

    @pytest.fixture
    def history(self, ledger, catalog, caller, sample_products):
        cola, suco, fone = sample_products
        ledger.record_movement(caller, MovementInput(product_id=cola.id, type="exit", quantity=2, occurred_at=at(3)))
        ledger.record_movement(caller, MovementInput(product_id=fone.id, type="entry", quantity=1, occurred_at=at(1)))
        ledger.record_movement(caller, MovementInput(product_id=suco.id, type="exit", quantity=1, occurred_at=at(5)))
        ledger.record_movement(caller, MovementInput(product_id=cola.id, type="entry", quantity=6, occurred_at=at(4)))
        return sample_products

    def test_returns_lazy_iterator(self, ledger, caller):
        assert inspect.isgenerator(ledger.list_movements(caller))

    def test_most_recent_first(self, ledger, caller, history):
        occurred = [m.occurred_at for m in ledger.list_movements(caller)]

        assert occurred == [at(5), at(4), at(3), at(1)]

    def test_ties_ordered_by_id_descending(self, ledger, caller, product_p1):
        for _ in range(3):
            ledger.record_movement(caller, MovementInput(
                product_id=product_p1.id, type="entry", quantity=1, occurred_at=at(2)
            ))

        ids = [m.id for m in ledger.list_movements(caller)]
        assert ids == sorted(ids, reverse=True)

    def test_date_range_is_inclusive(self, ledger, caller, history):
        movements = list(ledger.list_movements(caller, MovementFilter(start=at(3), end=at(4))))

        assert [m.occurred_at for m in movements] == [at(4), at(3)]

    def test_category_filter(self, ledger, caller, history):
        movements = list(ledger.list_movements(caller, MovementFilter(category="Eletronicos")))

        assert [m.product_name for m in movements] == ["Fone Bluetooth"]

    def test_other_owner_sees_nothing(self, ledger, caller, other_caller, history):
        assert list(ledger.list_movements(other_caller)) == []

    def test_deleted_product_history_is_kept(self, ledger, catalog, caller, product_p1):
        ledger.record_movement(caller, MovementInput(product_id=product_p1.id, type="exit", quantity=2))
        catalog.update_product(caller, product_p1.id, {"name": "P1 renamed", "price": "25.00"})
        catalog.delete_product(caller, product_p1.id)

        movements = list(ledger.list_movements(caller))

        assert len(movements) == 1
        assert movements[0].product_name == "P1"
        assert movements[0].price == Decimal("20.00")

    def test_reads_have_no_side_effects(self, ledger, catalog, caller, history):
        before = [p.quantity for p in catalog.list_products(caller)]
        first = list(ledger.list_movements(caller))
        first_valuation = ledger.compute_stock_valuation(caller)

        second = list(ledger.list_movements(caller))
        second_valuation = ledger.compute_stock_valuation(caller)

        assert first == second
        assert first_valuation.stock_value == second_valuation.stock_value
        assert [p.quantity for p in catalog.list_products(caller)] == before


class TestStockValuation:
    """Tests for StockLedger.compute_stock_valuation."""

    def test_empty_catalog(self, ledger, caller):
        valuation = ledger.compute_stock_valuation(caller)

        assert valuation.stock_value == Decimal("0.00")
        assert valuation.estimated_profit == Decimal("0.00")
        assert valuation.entry_value == Decimal("0.00")
        assert valuation.exit_quantity == 0

    def test_profit_only_counts_products_with_cost(self, ledger, caller, sample_products):
        valuation = ledger.compute_stock_valuation(caller)

        # 24 * 8.50 + 6 * 12.00 + 3 * 150.00
        assert valuation.stock_value == Decimal("726.00")
        # 24 * 3.50 + 3 * 60.00; Suco de Uva has no cost
        assert valuation.estimated_profit == Decimal("264.00")
        assert valuation.product_count == 3

    def test_category_narrows_products_and_movements(self, ledger, caller, sample_products):
        cola, suco, fone = sample_products
        ledger.record_movement(caller, MovementInput(product_id=cola.id, type="exit", quantity=4))
        ledger.record_movement(caller, MovementInput(product_id=fone.id, type="entry", quantity=2))

        valuation = ledger.compute_stock_valuation(caller, MovementFilter(category="Eletronicos"))

        assert valuation.stock_value == Decimal("750.00")
        assert valuation.estimated_profit == Decimal("300.00")
        assert valuation.entry_value == Decimal("300.00")
        assert valuation.exit_quantity == 0
        assert valuation.metadata["category"] == "Eletronicos"

    def test_date_range_narrows_movement_figures(self, ledger, caller, sample_products):
        cola = sample_products[0]
        ledger.record_movement(caller, MovementInput(product_id=cola.id, type="exit", quantity=4, occurred_at=at(1)))
        ledger.record_movement(caller, MovementInput(product_id=cola.id, type="exit", quantity=5, occurred_at=at(10)))
        ledger.record_movement(caller, MovementInput(product_id=cola.id, type="entry", quantity=2, occurred_at=at(11)))

        valuation = ledger.compute_stock_valuation(caller, MovementFilter(start=at(5), end=at(10)))

        assert valuation.exit_quantity == 5
        assert valuation.entry_value == Decimal("0.00")
        assert valuation.movement_count == 1
        # On-hand figures ignore the date range: 17 * 8.50 + 6 * 12.00 + 3 * 150.00
        assert valuation.stock_value == Decimal("666.50")

    def test_entry_value_uses_price_snapshot(self, ledger, catalog, caller, product_p1):
        ledger.record_movement(caller, MovementInput(product_id=product_p1.id, type="entry", quantity=2))
        catalog.update_product(caller, product_p1.id, {"price": "30.00"})
        ledger.record_movement(caller, MovementInput(product_id=product_p1.id, type="entry", quantity=1))

        valuation = ledger.compute_stock_valuation(caller)

        assert valuation.entry_value == Decimal("70.00")

    def test_breakdown_by_category(self, ledger, caller, sample_products):
        cola, suco, fone = sample_products
        ledger.record_movement(caller, MovementInput(product_id=cola.id, type="exit", quantity=4))
        ledger.record_movement(caller, MovementInput(product_id=fone.id, type="entry", quantity=2))

        valuation = ledger.compute_stock_valuation(caller)

        assert [c.category for c in valuation.by_category] == ["Bebidas", "Eletronicos"]
        bebidas = valuation.category("Bebidas")
        # 20 * 8.50 + 6 * 12.00
        assert bebidas.stock_value == Decimal("242.00")
        assert bebidas.product_count == 2
        assert bebidas.exit_quantity == 4
        assert bebidas.entry_value == Decimal("0.00")
        eletronicos = valuation.category("Eletronicos")
        assert eletronicos.stock_value == Decimal("750.00")
        assert eletronicos.entry_value == Decimal("300.00")
        assert eletronicos.exit_quantity == 0

    def test_category_filter_narrows_breakdown(self, ledger, caller, sample_products):
        valuation = ledger.compute_stock_valuation(caller, MovementFilter(category="Bebidas"))

        assert [c.category for c in valuation.by_category] == ["Bebidas"]
        assert [p.name for p in valuation.top_products] == ["Cola 2L", "Suco de Uva"]

    def test_top_products_by_stock_value(self, ledger, caller, sample_products, monkeypatch):
        valuation = ledger.compute_stock_valuation(caller)

        assert [p.name for p in valuation.top_products] == ["Fone Bluetooth", "Cola 2L", "Suco de Uva"]
        assert valuation.top_products[0].stock_value == Decimal("450.00")

        monkeypatch.setattr(ledger.config.ledger, "top_products_limit", 2)
        valuation = ledger.compute_stock_valuation(caller)

        assert [p.name for p in valuation.top_products] == ["Fone Bluetooth", "Cola 2L"]

    def test_daily_series_over_filter_range(self, ledger, caller, sample_products):
        cola, suco, fone = sample_products
        ledger.record_movement(caller, MovementInput(product_id=cola.id, type="exit", quantity=4, occurred_at=at(1)))
        ledger.record_movement(caller, MovementInput(product_id=fone.id, type="entry", quantity=2, occurred_at=at(3)))
        ledger.record_movement(caller, MovementInput(product_id=cola.id, type="exit", quantity=1, occurred_at=at(4)))

        valuation = ledger.compute_stock_valuation(caller, MovementFilter(start=at(1, hour=0), end=at(3, hour=23)))

        assert [d.day for d in valuation.daily] == [date(2024, 5, 1), date(2024, 5, 2), date(2024, 5, 3)]
        assert valuation.daily[0].exit_quantity == 4
        assert valuation.daily[1].exit_quantity == 0
        assert valuation.daily[1].entry_value == Decimal("0.00")
        assert valuation.daily[2].entry_value == Decimal("300.00")

    def test_daily_series_defaults_to_recent_days(self, ledger, caller, sample_products):
        ledger.record_movement(caller, MovementInput(product_id=sample_products[0].id, type="exit", quantity=2))

        valuation = ledger.compute_stock_valuation(caller)

        assert len(valuation.daily) == ledger.config.ledger.daily_series_days
        assert valuation.daily[-1].exit_quantity == 2
        assert len(ledger.compute_stock_valuation(caller, days=7).daily) == 7


class TestDailyWindow:
    """Tests for the daily series window."""

    today = date(2024, 5, 10)

    def test_no_filter_ends_today(self):
        assert daily_window(None, 7, self.today) == (date(2024, 5, 4), date(2024, 5, 10))

    def test_both_ends_cover_exact_range(self):
        assert daily_window(MovementFilter(start=at(1), end=at(3)), 30, self.today) == (date(2024, 5, 1), date(2024, 5, 3))

    def test_start_only_runs_to_today(self):
        assert daily_window(MovementFilter(start=at(8)), 30, self.today) == (date(2024, 5, 8), date(2024, 5, 10))

    def test_start_after_today_is_one_day(self):
        assert daily_window(MovementFilter(start=at(20)), 30, self.today) == (date(2024, 5, 20), date(2024, 5, 20))

    def test_end_only_counts_back(self):
        assert daily_window(MovementFilter(end=at(10)), 3, self.today) == (date(2024, 5, 8), date(2024, 5, 10))

    def test_capped_at_max_days(self):
        first, last = daily_window(MovementFilter(start=datetime(2020, 1, 1), end=at(10)), 30, self.today, max_days=366)

        assert last == date(2024, 5, 10)
        assert (last - first).days + 1 == 366
