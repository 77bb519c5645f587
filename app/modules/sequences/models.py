from app.database.database import Base
from sqlalchemy import Column, Integer, String, UniqueConstraint
from app.common.mixins import IdentityMixin, TimestampMixin


class NcfSequence(Base, IdentityMixin, TimestampMixin):
    """
    Contador por tipo de documento (B01, B04, FAC-2026, NC-2026, ...).

    `current_value` es el último número emitido. Solo se modifica mediante
    el incremento atómico del asignador o por la resincronización.
    """
    __tablename__ = "ncf_sequences"

    key = Column(String(20), nullable=False)
    current_value = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        UniqueConstraint("key", name="uq_ncf_sequence_key"),
    )
