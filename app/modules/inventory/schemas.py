from pydantic import BaseModel, Field
from typing import Optional, List
from uuid import UUID
from datetime import datetime
from decimal import Decimal
from enum import Enum


class MovementType(str, Enum):
    ENTRADA = "ENTRADA"
    SALIDA = "SALIDA"
    AJUSTE = "AJUSTE"


# Movement schemas
class InventoryMovementOut(BaseModel):
    id: UUID
    product_id: UUID
    product_name: str
    movement_type: MovementType
    quantity: Decimal
    reference: Optional[str]
    notes: Optional[str]
    date: datetime
    created_at: datetime

    class Config:
        from_attributes = True


class InventoryMovementList(BaseModel):
    movements: List[InventoryMovementOut]
    total: int
    limit: int
    offset: int


class RestockRequest(BaseModel):
    quantity: Decimal = Field(..., gt=0, description="Cantidad a ingresar al inventario")
    notes: Optional[str] = Field(None, max_length=255, description="Notas del reabastecimiento")
