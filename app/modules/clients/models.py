"""
Modelos SQLAlchemy para el módulo de Clientes

Datos maestros mínimos que el ledger copia (desnormaliza) en cada factura
y nota de crédito al momento de emitirla.
"""

from app.database.database import Base
from sqlalchemy import Column, String, Numeric, Text
from app.common.mixins import IdentityMixin, TimestampMixin
import enum


class PersonType(enum.Enum):
    FISICA = "Persona Física"
    JURIDICA = "Persona Jurídica"


class ContactType(enum.Enum):
    CLIENT = "Cliente"
    PROVIDER = "Proveedor"
    EMPLOYEE = "Empleado"
    OTHER = "Otro"


class Client(Base, IdentityMixin, TimestampMixin):
    __tablename__ = "clients"

    name = Column(String(200), nullable=False, index=True)
    email = Column(String(100), nullable=True, unique=True)
    phone = Column(String(50), nullable=True)
    address = Column(String(255), nullable=True)
    rnc = Column(String(20), nullable=True, index=True)  # RNC o cédula
    person_type = Column(String(20), nullable=False, default=PersonType.JURIDICA.value)
    contact_type = Column(String(20), nullable=False, default=ContactType.CLIENT.value)
    credit_limit = Column(Numeric(15, 2), nullable=False, default=0)
    notes = Column(Text, nullable=True)
