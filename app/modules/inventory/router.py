from fastapi import APIRouter, Query
from typing import Optional
from uuid import UUID

from app.dependencies.dbDependecies import db_dependency
from app.core.config import settings
from app.modules.inventory.service import StockLedger
from app.modules.inventory.schemas import InventoryMovementList, MovementType
from app.modules.products.models import MovementType as MovementKind

movements_router = APIRouter(prefix="/inventory", tags=["Inventory Movements"])


@movements_router.get("/movements", response_model=InventoryMovementList)
def list_movements(
    db: db_dependency,
    product_id: Optional[UUID] = Query(None, description="Filtrar por producto"),
    reference: Optional[str] = Query(None, description="Número de factura o nota de crédito"),
    movement_type: Optional[MovementType] = Query(None),
    limit: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    offset: int = Query(0, ge=0),
):
    """Historial de movimientos de inventario, más recientes primero."""
    ledger = StockLedger(db)
    kind = MovementKind(movement_type.value) if movement_type else None
    return ledger.get_movements(product_id, reference, kind, limit, offset)
