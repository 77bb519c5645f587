"""
Esquemas Pydantic para el módulo de Clientes
"""

from pydantic import BaseModel, Field, field_validator
from decimal import Decimal
from typing import Optional, List
from uuid import UUID
from datetime import datetime
from enum import Enum

from app.common.validators import validate_rnc, normalize_rnc


class PersonType(str, Enum):
    FISICA = "Persona Física"
    JURIDICA = "Persona Jurídica"


class ContactType(str, Enum):
    CLIENT = "Cliente"
    PROVIDER = "Proveedor"
    EMPLOYEE = "Empleado"
    OTHER = "Otro"


class ClientCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200, description="Nombre o razón social")
    email: Optional[str] = Field(None, max_length=100)
    phone: Optional[str] = Field(None, max_length=50)
    address: Optional[str] = Field(None, max_length=255)
    rnc: Optional[str] = Field(None, max_length=20, description="RNC (9 dígitos) o cédula (11 dígitos)")
    person_type: PersonType = PersonType.JURIDICA
    contact_type: ContactType = ContactType.CLIENT
    credit_limit: Decimal = Field(Decimal("0"), ge=0)
    notes: Optional[str] = None

    @field_validator('rnc')
    @classmethod
    def validate_rnc_format(cls, v):
        if v is None or not v.strip():
            return None
        if not validate_rnc(v):
            raise ValueError('El RNC debe tener 9 dígitos o la cédula 11 dígitos')
        return normalize_rnc(v)

    @field_validator('email')
    @classmethod
    def normalize_email(cls, v):
        return v.strip().lower() if v else None


class ClientOut(BaseModel):
    id: UUID
    name: str
    email: Optional[str]
    phone: Optional[str]
    address: Optional[str]
    rnc: Optional[str]
    person_type: PersonType
    contact_type: ContactType
    credit_limit: Decimal
    notes: Optional[str]
    created_at: datetime

    class Config:
        from_attributes = True


class ClientList(BaseModel):
    clients: List[ClientOut]
    total: int
