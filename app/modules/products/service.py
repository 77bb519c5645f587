from sqlalchemy.orm import Session
from sqlalchemy import func, or_
from uuid import UUID
from typing import Optional
import logging

from app.common.exceptions import NotFoundError, ValidationError
from app.database.database import transaction
from .models import Product
from .schemas import ProductCreate, ProductUpdate

logger = logging.getLogger(__name__)


class ProductService:
    """Datos maestros de productos consumidos por el ledger."""

    def __init__(self, db: Session):
        self.db = db

    def create_product(self, data: ProductCreate) -> Product:
        if self.db.query(Product).filter(Product.sku == data.sku).first():
            raise ValidationError(f"Ya existe un producto con el SKU {data.sku}")

        with transaction(self.db):
            product = Product(**data.model_dump())
            self.db.add(product)
            self.db.flush()

        self.db.refresh(product)
        logger.info(f"Product created: {product.sku} ({product.name})")
        return product

    def get_product(self, product_id: UUID) -> Product:
        product = self.db.get(Product, product_id)
        if not product:
            raise NotFoundError("Producto no encontrado")
        return product

    def list_products(
        self,
        search: Optional[str] = None,
        category: Optional[str] = None,
        low_stock_only: bool = False,
        include_inactive: bool = False,
        limit: int = 100,
        offset: int = 0,
    ) -> dict:
        query = self.db.query(Product)
        if not include_inactive:
            query = query.filter(Product.is_active.is_(True))
        if search:
            pattern = f"%{search}%"
            query = query.filter(or_(Product.name.ilike(pattern), Product.sku.ilike(pattern)))
        if category:
            query = query.filter(Product.category == category)
        if low_stock_only:
            query = query.filter(Product.stock <= Product.min_stock)

        total = query.with_entities(func.count(Product.id)).scalar()
        products = query.order_by(Product.name).offset(offset).limit(limit).all()
        return {"products": products, "total": total, "limit": limit, "offset": offset}

    def update_product(self, product_id: UUID, data: ProductUpdate) -> Product:
        with transaction(self.db):
            product = self.get_product(product_id)
            for field, value in data.model_dump(exclude_unset=True).items():
                setattr(product, field, value)

        self.db.refresh(product)
        return product
