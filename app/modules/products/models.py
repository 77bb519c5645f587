from app.database.database import Base
from sqlalchemy import Column, String, Boolean, DateTime, ForeignKey, Numeric, Text, Uuid, CheckConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.common.mixins import IdentityMixin, TimestampMixin
import enum


class MovementType(enum.Enum):
    ENTRADA = "ENTRADA"  # Entrada de mercancía (reabastecimiento, devolución)
    SALIDA = "SALIDA"    # Salida por venta
    AJUSTE = "AJUSTE"    # Ajuste manual


class Product(Base, IdentityMixin, TimestampMixin):
    __tablename__ = "products"

    name = Column(String(100), nullable=False)
    sku = Column(String(50), nullable=False, unique=True)
    category = Column(String(50), nullable=False, default="General")
    description = Column(String(255), nullable=True)
    unit = Column(String(20), nullable=False, default="Unidad")
    price = Column(Numeric(15, 2), nullable=False, default=0)  # Precio de venta
    cost = Column(Numeric(15, 2), nullable=False, default=0)   # Costo unitario
    stock = Column(Numeric(12, 3), nullable=False, default=0)
    min_stock = Column(Numeric(12, 3), nullable=False, default=0)  # Umbral para alertas
    is_active = Column(Boolean, default=True, nullable=False)

    movements = relationship("InventoryMovement", back_populates="product")

    __table_args__ = (
        CheckConstraint("stock >= 0", name="ck_product_stock_non_negative"),
    )

    @property
    def is_low_stock(self) -> bool:
        return self.stock <= self.min_stock


class InventoryMovement(Base, IdentityMixin):
    """Historial de movimientos de inventario (solo inserción)."""
    __tablename__ = "inventory_movements"

    product_id = Column(Uuid, ForeignKey("products.id"), nullable=False, index=True)
    product_name = Column(String(100), nullable=False)  # Snapshot

    movement_type = Column(String(20), nullable=False, index=True)  # ENTRADA, SALIDA, AJUSTE
    quantity = Column(Numeric(12, 3), nullable=False)
    reference = Column(String(100), nullable=True, index=True)  # Número de factura / nota de crédito
    notes = Column(Text, nullable=True)
    date = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    product = relationship("Product", back_populates="movements")
