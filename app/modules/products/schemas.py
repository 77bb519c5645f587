from pydantic import BaseModel, Field, field_validator
from uuid import UUID
from typing import Optional, List
from decimal import Decimal
from datetime import datetime


class ProductCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    sku: str = Field(..., min_length=1, max_length=50, description="Código único del producto")
    category: str = Field("General", max_length=50)
    description: Optional[str] = Field(None, max_length=255)
    unit: str = Field("Unidad", max_length=20)
    price: Decimal = Field(..., ge=0, description="Precio de venta")
    cost: Decimal = Field(Decimal("0"), ge=0, description="Costo unitario")
    stock: Decimal = Field(Decimal("0"), ge=0, description="Existencia inicial")
    min_stock: Decimal = Field(Decimal("0"), ge=0, description="Umbral de alerta de stock bajo")

    @field_validator('sku')
    @classmethod
    def normalize_sku(cls, v):
        return v.strip().upper()


class ProductUpdate(BaseModel):
    """La existencia no se edita aquí: solo cambia por facturas, notas de crédito o reabastecimiento."""
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    category: Optional[str] = Field(None, max_length=50)
    description: Optional[str] = Field(None, max_length=255)
    unit: Optional[str] = Field(None, max_length=20)
    price: Optional[Decimal] = Field(None, ge=0)
    cost: Optional[Decimal] = Field(None, ge=0)
    min_stock: Optional[Decimal] = Field(None, ge=0)
    is_active: Optional[bool] = None


class ProductOut(BaseModel):
    id: UUID
    name: str
    sku: str
    category: str
    description: Optional[str]
    unit: str
    price: Decimal
    cost: Decimal
    stock: Decimal
    min_stock: Decimal
    is_low_stock: bool
    is_active: bool
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class ProductList(BaseModel):
    """Respuesta paginada de productos"""
    products: List[ProductOut]
    total: int
    limit: int
    offset: int
