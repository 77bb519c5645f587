import pytest
from decimal import Decimal
from uuid import uuid4

from app.common.exceptions import InsufficientStockError, NotFoundError, ValidationError
from app.database.database import transaction
from app.modules.inventory.service import (
    StockLedger, StockItem, StockDirection, MovementMeta, RESTOCK_REFERENCE, aggregate_demand
)
from app.modules.products.models import InventoryMovement, MovementType


def movements_for(db_session, reference):
    return db_session.query(InventoryMovement).filter(InventoryMovement.reference == reference).all()


class TestValidateAvailability:

    def test_enough_stock_passes(self, db_session, make_product):
        product = make_product(stock="5")
        StockLedger(db_session).validate_availability([StockItem(product.id, Decimal("5"))])

    def test_names_every_short_item(self, db_session, make_product):
        cement = make_product(name="Cemento", stock="1")
        rebar = make_product(name="Varilla 3/8", stock="2")
        sand = make_product(name="Arena", stock="50")

        with pytest.raises(InsufficientStockError) as exc_info:
            StockLedger(db_session).validate_availability([
                StockItem(cement.id, Decimal("4")),
                StockItem(rebar.id, Decimal("3")),
                StockItem(sand.id, Decimal("1")),
            ])

        shortages = exc_info.value.shortages
        assert [s.product_name for s in shortages] == ["Cemento", "Varilla 3/8"]
        assert "Cemento" in exc_info.value.message
        assert "Varilla 3/8" in exc_info.value.message
        assert "Arena" not in exc_info.value.message

    def test_demand_is_aggregated_per_product(self, db_session, make_product):
        product = make_product(stock="5")
        with pytest.raises(InsufficientStockError):
            StockLedger(db_session).validate_availability([
                StockItem(product.id, Decimal("3")),
                StockItem(product.id, Decimal("3")),
            ])

    def test_unknown_product(self, db_session):
        with pytest.raises(NotFoundError):
            StockLedger(db_session).validate_availability([StockItem(uuid4(), Decimal("1"))])

    def test_aggregate_demand_keeps_order(self):
        a, b = uuid4(), uuid4()
        demand = aggregate_demand([StockItem(a, Decimal("1")), StockItem(b, Decimal("2")), StockItem(a, Decimal("0.5"))])
        assert list(demand.keys()) == [a, b]
        assert demand[a] == Decimal("1.5")


class TestAdjust:

    def test_subtract_with_movements(self, db_session, make_product):
        product = make_product(name="Cemento", stock="10")
        ledger = StockLedger(db_session)

        with transaction(db_session):
            ledger.adjust(
                [StockItem(product.id, Decimal("3"), "Cemento"), StockItem(product.id, Decimal("2"), "Cemento")],
                StockDirection.SUBTRACT,
                MovementMeta(MovementType.SALIDA, "FAC-2026-001", notes="Factura FAC-2026-001"),
            )

        db_session.refresh(product)
        assert product.stock == Decimal("5")
        rows = movements_for(db_session, "FAC-2026-001")
        assert len(rows) == 2
        assert {r.movement_type for r in rows} == {"SALIDA"}
        assert all(r.product_name == "Cemento" for r in rows)

    def test_add_without_movement_metadata_writes_no_rows(self, db_session, make_product):
        product = make_product(stock="1")
        with transaction(db_session):
            StockLedger(db_session).adjust([StockItem(product.id, Decimal("4"))], StockDirection.ADD)

        db_session.refresh(product)
        assert product.stock == Decimal("5")
        assert db_session.query(InventoryMovement).count() == 0

    def test_subtract_never_goes_negative(self, db_session, make_product):
        product = make_product(stock="2")
        with pytest.raises(InsufficientStockError):
            with transaction(db_session):
                StockLedger(db_session).adjust(
                    [StockItem(product.id, Decimal("3"))],
                    StockDirection.SUBTRACT,
                    MovementMeta(MovementType.SALIDA, "FAC-X"),
                )

        db_session.refresh(product)
        assert product.stock == Decimal("2")
        assert movements_for(db_session, "FAC-X") == []

    def test_non_positive_quantity_rejected(self, db_session, make_product):
        product = make_product(stock="2")
        with pytest.raises(ValidationError):
            StockLedger(db_session).adjust([StockItem(product.id, Decimal("0"))], StockDirection.ADD)

    def test_movement_name_taken_from_product(self, db_session, make_product):
        product = make_product(name="Pintura blanca", stock="3")
        with transaction(db_session):
            StockLedger(db_session).adjust(
                [StockItem(product.id, Decimal("1"))],
                StockDirection.ADD,
                MovementMeta(MovementType.ENTRADA, "NC-2026-001"),
            )
        assert movements_for(db_session, "NC-2026-001")[0].product_name == "Pintura blanca"

    def test_remove_movements(self, db_session, make_product):
        product = make_product(stock="10")
        ledger = StockLedger(db_session)
        with transaction(db_session):
            ledger.adjust([StockItem(product.id, Decimal("1"))], StockDirection.SUBTRACT, MovementMeta(MovementType.SALIDA, "FAC-1"))
            ledger.adjust([StockItem(product.id, Decimal("1"))], StockDirection.SUBTRACT, MovementMeta(MovementType.SALIDA, "FAC-2"))

        with transaction(db_session):
            assert ledger.remove_movements("FAC-1") == 1

        assert movements_for(db_session, "FAC-1") == []
        assert len(movements_for(db_session, "FAC-2")) == 1


class TestRestock:

    def test_restock_adds_stock_and_logs_entry(self, db_session, make_product):
        product = make_product(stock="10")
        updated = StockLedger(db_session).restock(product.id, Decimal("5"), "Compra proveedor")

        assert updated.stock == Decimal("15")
        rows = movements_for(db_session, RESTOCK_REFERENCE)
        assert len(rows) == 1
        assert rows[0].movement_type == MovementType.ENTRADA.value
        assert rows[0].quantity == Decimal("5")
        assert rows[0].notes == "Compra proveedor"

    def test_restock_requires_positive_quantity(self, db_session, make_product):
        product = make_product(stock="10")
        with pytest.raises(ValidationError):
            StockLedger(db_session).restock(product.id, Decimal("0"))

    def test_restock_unknown_product(self, db_session):
        with pytest.raises(NotFoundError):
            StockLedger(db_session).restock(uuid4(), Decimal("1"))


class TestMovementsRouter:

    def test_list_movements_filters(self, client, db_session, make_product):
        cement = make_product(name="Cemento", stock="10")
        paint = make_product(name="Pintura", stock="10")
        ledger = StockLedger(db_session)
        ledger.restock(cement.id, Decimal("2"))
        ledger.restock(paint.id, Decimal("3"))

        response = client.get("/inventory/movements")
        assert response.status_code == 200
        assert response.json()["total"] == 2

        response = client.get("/inventory/movements", params={"product_id": str(cement.id)})
        body = response.json()
        assert body["total"] == 1
        assert body["movements"][0]["product_name"] == "Cemento"
        assert body["movements"][0]["movement_type"] == "ENTRADA"

        response = client.get("/inventory/movements", params={"movement_type": "SALIDA"})
        assert response.json()["total"] == 0
