from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from typing import Optional
from uuid import UUID

from app.common.cache import invalidate_views
from app.common.exceptions import LedgerError
from app.common.results import to_http_exception
from app.core.config import settings
from app.database.database import get_db
from app.modules.inventory.schemas import RestockRequest
from app.modules.inventory.service import StockLedger
from app.modules.products.service import ProductService
from app.modules.products.schemas import ProductCreate, ProductUpdate, ProductOut, ProductList

router = APIRouter(prefix="/products", tags=["Products"])


@router.post("/", response_model=ProductOut, status_code=status.HTTP_201_CREATED)
def create_product(product: ProductCreate, db: Session = Depends(get_db)):
    """Crear un producto con su existencia inicial"""
    try:
        created = ProductService(db).create_product(product)
    except LedgerError as e:
        raise to_http_exception(e)
    invalidate_views("/inventory")
    return created


@router.get("/", response_model=ProductList)
def list_products(
    search: Optional[str] = Query(None, description="Buscar por nombre o SKU"),
    category: Optional[str] = Query(None),
    low_stock: bool = Query(False, description="Solo productos con stock bajo"),
    include_inactive: bool = Query(False),
    limit: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db)
):
    return ProductService(db).list_products(search, category, low_stock, include_inactive, limit, offset)


@router.get("/{product_id}", response_model=ProductOut)
def get_product(product_id: UUID, db: Session = Depends(get_db)):
    try:
        return ProductService(db).get_product(product_id)
    except LedgerError as e:
        raise to_http_exception(e)


@router.patch("/{product_id}", response_model=ProductOut)
def update_product(product_id: UUID, product: ProductUpdate, db: Session = Depends(get_db)):
    """Actualizar datos maestros; la existencia solo cambia por movimientos"""
    try:
        updated = ProductService(db).update_product(product_id, product)
    except LedgerError as e:
        raise to_http_exception(e)
    invalidate_views("/inventory")
    return updated


@router.post("/{product_id}/stock", response_model=ProductOut)
def restock_product(product_id: UUID, payload: RestockRequest, db: Session = Depends(get_db)):
    """
    Reabastecimiento manual.

    Suma la cantidad a la existencia y registra un movimiento ENTRADA
    con referencia "Reabastecimiento".
    """
    try:
        product = StockLedger(db).restock(product_id, payload.quantity, payload.notes)
    except LedgerError as e:
        raise to_http_exception(e)
    invalidate_views("/inventory")
    return product
