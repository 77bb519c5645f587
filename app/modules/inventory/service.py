from collections import OrderedDict
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Dict, Iterable, List, Optional, Union
from uuid import UUID
import logging

from sqlalchemy import update, delete, func
from sqlalchemy.orm import Session

from app.common.exceptions import InsufficientStockError, NotFoundError, StockShortage, ValidationError
from app.common.validators import quantity as to_quantity
from app.database.database import transaction
from app.modules.products.models import Product, InventoryMovement, MovementType

logger = logging.getLogger(__name__)

RESTOCK_REFERENCE = "Reabastecimiento"


class StockDirection(str, Enum):
    ADD = "add"
    SUBTRACT = "subtract"


@dataclass
class StockItem:
    product_id: UUID
    quantity: Decimal
    product_name: Optional[str] = None


@dataclass
class MovementMeta:
    """Datos del movimiento a registrar junto con el ajuste de stock."""
    movement_type: MovementType
    reference: str
    date: Union[date, datetime, None] = None
    notes: Optional[str] = None


def aggregate_demand(items: Iterable[StockItem]) -> "OrderedDict[UUID, Decimal]":
    """Sum requested quantities per product, keeping first-seen order."""
    demand: "OrderedDict[UUID, Decimal]" = OrderedDict()
    for item in items:
        demand[item.product_id] = demand.get(item.product_id, Decimal("0")) + to_quantity(item.quantity)
    return demand


class StockLedger:
    """
    Stock counters and the movement history.

    Every method runs inside the caller's transaction; nothing here commits
    except `restock`, which is a standalone operation.
    """

    def __init__(self, db: Session):
        self.db = db

    def validate_availability(self, items: Iterable[StockItem]) -> None:
        """
        Check every product can cover its aggregated demand.

        Rows are locked so a concurrent sale waits for this transaction.
        Raises a single InsufficientStockError naming every shortage.
        """
        demand = aggregate_demand(items)
        if not demand:
            return

        products = self._lock_products(list(demand.keys()))
        shortages = []
        for product_id, requested in demand.items():
            product = products[product_id]
            if product.stock < requested:
                shortages.append(StockShortage(product.id, product.name, product.stock, requested))

        if shortages:
            raise InsufficientStockError(shortages)

    def adjust(
        self,
        items: Iterable[StockItem],
        direction: StockDirection,
        movement: Optional[MovementMeta] = None,
    ) -> None:
        """
        Apply a signed stock change for each item.

        Subtractions are guarded (`stock >= qty`) so stock never goes
        negative even without a previous `validate_availability`. When
        `movement` is given one movement row is written per item.
        """
        items = list(items)
        shortages = []
        touched = set()

        for item in items:
            qty = to_quantity(item.quantity)
            if qty <= 0:
                raise ValidationError("La cantidad debe ser mayor a 0")

            if direction == StockDirection.ADD:
                stmt = (
                    update(Product)
                    .where(Product.id == item.product_id)
                    .values(stock=Product.stock + qty)
                )
            else:
                stmt = (
                    update(Product)
                    .where(Product.id == item.product_id, Product.stock >= qty)
                    .values(stock=Product.stock - qty)
                )
            updated = self.db.execute(
                stmt.returning(Product.id).execution_options(synchronize_session=False)
            ).scalar_one_or_none()
            touched.add(item.product_id)

            if updated is None:
                product = self.db.get(Product, item.product_id, populate_existing=True)
                if product is None:
                    raise NotFoundError(f"Producto {item.product_name or item.product_id} no encontrado")
                shortages.append(StockShortage(product.id, product.name, product.stock, qty))

        self._expire_products(touched)

        if shortages:
            raise InsufficientStockError(shortages)

        if movement is not None:
            self._record_movements(items, movement)

        logger.debug(f"Stock {direction.value} applied to {len(items)} items")

    def remove_movements(self, reference: str) -> int:
        """Delete every movement row written under `reference`."""
        result = self.db.execute(
            delete(InventoryMovement)
            .where(InventoryMovement.reference == reference)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    def restock(self, product_id: UUID, qty: Decimal, notes: Optional[str] = None) -> Product:
        """Manual restock: adds stock and logs an ENTRADA movement."""
        qty = to_quantity(qty)
        if qty <= 0:
            raise ValidationError("La cantidad a reabastecer debe ser mayor a 0")

        with transaction(self.db):
            product = self.db.get(Product, product_id)
            if product is None:
                raise NotFoundError("Producto no encontrado")
            self.adjust(
                [StockItem(product_id=product.id, quantity=qty, product_name=product.name)],
                StockDirection.ADD,
                MovementMeta(MovementType.ENTRADA, RESTOCK_REFERENCE, notes=notes or "Reabastecimiento manual"),
            )

        self.db.refresh(product)
        logger.info(f"Product {product.sku} restocked with {qty}; stock now {product.stock}")
        return product

    def get_movements(
        self,
        product_id: Optional[UUID] = None,
        reference: Optional[str] = None,
        movement_type: Optional[MovementType] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> Dict:
        query = self.db.query(InventoryMovement)
        if product_id:
            query = query.filter(InventoryMovement.product_id == product_id)
        if reference:
            query = query.filter(InventoryMovement.reference == reference)
        if movement_type:
            query = query.filter(InventoryMovement.movement_type == movement_type.value)

        total = query.with_entities(func.count(InventoryMovement.id)).scalar()
        movements = (
            query.order_by(InventoryMovement.date.desc(), InventoryMovement.created_at.desc())
            .offset(offset)
            .limit(limit)
            .all()
        )
        return {"movements": movements, "total": total, "limit": limit, "offset": offset}

    def _lock_products(self, product_ids: List[UUID]) -> Dict[UUID, Product]:
        products = (
            self.db.query(Product)
            .filter(Product.id.in_(product_ids))
            .populate_existing()
            .with_for_update()
            .all()
        )
        found = {p.id: p for p in products}
        missing = [str(pid) for pid in product_ids if pid not in found]
        if missing:
            raise NotFoundError(f"Producto(s) no encontrado(s): {', '.join(missing)}")
        return found

    def _record_movements(self, items: List[StockItem], movement: MovementMeta) -> None:
        names = self._product_names([i.product_id for i in items if not i.product_name])
        when = movement.date
        if isinstance(when, date) and not isinstance(when, datetime):
            when = datetime.combine(when, datetime.now().time())

        for item in items:
            row = InventoryMovement(
                product_id=item.product_id,
                product_name=item.product_name or names.get(item.product_id, ""),
                movement_type=movement.movement_type.value,
                quantity=to_quantity(item.quantity),
                reference=movement.reference,
                notes=movement.notes,
            )
            if when is not None:
                row.date = when
            self.db.add(row)
        self.db.flush()

    def _product_names(self, product_ids: List[UUID]) -> Dict[UUID, str]:
        if not product_ids:
            return {}
        rows = self.db.query(Product.id, Product.name).filter(Product.id.in_(product_ids)).all()
        return {row.id: row.name for row in rows}

    def _expire_products(self, product_ids) -> None:
        # Los UPDATE directos no sincronizan la identity map
        for obj in list(self.db.identity_map.values()):
            if isinstance(obj, Product) and obj.id in product_ids:
                self.db.expire(obj, ["stock"])
