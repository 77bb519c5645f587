"""
Asignación de secuencias fiscales (NCF) y numeración interna de documentos.

Cada tipo de documento tiene un contador (`ncf_sequences.key`) que solo se
incrementa con un UPDATE ... RETURNING atómico dentro de la transacción del
llamador. Si el contador quedó por detrás de los documentos reales, la
resincronización lo alinea con el máximo en uso.
"""
from datetime import date
from typing import Dict, List, Optional
from uuid import uuid4
import logging
import re

from sqlalchemy import update, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.common.exceptions import SequenceConflictError, ValidationError
from app.core.config import settings
from app.database.database import transaction, is_unique_violation
from app.modules.sequences.models import NcfSequence
from app.modules.invoices.models import Invoice, CreditNote

logger = logging.getLogger(__name__)

NCF_SEQUENCE_DIGITS = 8


def format_ncf(ncf_type: str, value: int) -> str:
    return f"{ncf_type}{value:0{NCF_SEQUENCE_DIGITS}d}"


def number_key(prefix: str, year: int) -> str:
    return f"{prefix}-{year}"


def format_document_number(prefix: str, year: int, value: int) -> str:
    return f"{prefix}-{year}-{value:03d}"


def parse_trailing_number(value: Optional[str]) -> Optional[int]:
    """'FAC-2026-014' -> 14, 'B0100000007' (sin tipo) -> None si no termina en dígitos."""
    if not value:
        return None
    match = re.search(r'(\d+)$', value)
    return int(match.group(1)) if match else None


class SequenceAllocator:
    """Incremento atómico de contadores por tipo de documento."""

    def __init__(self, db: Session):
        self.db = db

    def allocate(self, key: str) -> int:
        """Devuelve el siguiente valor del contador `key` (crea el contador si no existe)."""
        value = self._increment_returning(key)
        if value is None:
            self.ensure_counter(key)
            value = self._increment_returning(key)
        logger.debug(f"Allocated sequence {key} -> {value}")
        return value

    def next_ncf(self, ncf_type: str) -> str:
        return format_ncf(ncf_type, self.allocate(ncf_type))

    def next_document_number(self, prefix: str, year: Optional[int] = None) -> str:
        year = year or date.today().year
        value = self.allocate(number_key(prefix, year))
        return format_document_number(prefix, year, value)

    def _increment_returning(self, key: str) -> Optional[int]:
        stmt = (
            update(NcfSequence)
            .where(NcfSequence.key == key)
            .values(current_value=NcfSequence.current_value + 1)
            .returning(NcfSequence.current_value)
            .execution_options(synchronize_session=False)
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def ensure_counter(self, key: str) -> None:
        dialect = self.db.get_bind().dialect.name
        if dialect == "postgresql":
            from sqlalchemy.dialects.postgresql import insert
        elif dialect == "sqlite":
            from sqlalchemy.dialects.sqlite import insert
        else:
            exists = self.db.execute(select(NcfSequence.id).where(NcfSequence.key == key)).first()
            if not exists:
                self.db.add(NcfSequence(key=key, current_value=0))
                self.db.flush()
            return

        stmt = insert(NcfSequence).values(id=uuid4(), key=key, current_value=0)
        self.db.execute(stmt.on_conflict_do_nothing(index_elements=["key"]))


class SequenceService:
    """Administración y resincronización de contadores."""

    def __init__(self, db: Session):
        self.db = db

    def list_sequences(self) -> List[NcfSequence]:
        """Asegura que existan los tipos NCF estándar y devuelve todos los contadores."""
        with transaction(self.db):
            allocator = SequenceAllocator(self.db)
            for ncf_type in settings.NCF_TYPES:
                allocator.ensure_counter(ncf_type)
        return self.db.query(NcfSequence).order_by(NcfSequence.key).all()

    def set_sequence(self, key: str, value: int) -> NcfSequence:
        """Ajuste manual del último valor emitido."""
        if value < 0:
            raise ValidationError("El valor de la secuencia no puede ser negativo")
        with transaction(self.db):
            self._set_counter(key, value)
        logger.info(f"Sequence {key} manually set to {value}")
        return self.db.query(NcfSequence).filter(NcfSequence.key == key).one()

    def sync_sequences(self) -> int:
        """
        Alinear todos los contadores con el máximo número realmente en uso.

        Retorna cuántos contadores cambiaron. Un contador sin documentos
        vuelve a 0.
        """
        with transaction(self.db):
            targets = self._max_values_in_use()
            existing = {s.key: s for s in self.db.query(NcfSequence).all()}
            for key in existing:
                targets.setdefault(key, 0)

            changed = 0
            for key, max_value in sorted(targets.items()):
                current = existing.get(key)
                if current is not None and current.current_value == max_value:
                    continue
                if current is None and max_value == 0:
                    continue
                self._set_counter(key, max_value)
                changed += 1

        if changed:
            logger.info(f"Synchronized {changed} sequence counters")
        return changed

    def resync(self, key: str) -> int:
        """Resincronizar un solo contador tras un conflicto de unicidad."""
        with transaction(self.db):
            max_value = self._max_values_in_use().get(key, 0)
            self._set_counter(key, max_value)
        logger.warning(f"Sequence {key} resynchronized to {max_value}; next value {max_value + 1}")
        return max_value

    def _set_counter(self, key: str, value: int) -> None:
        counter = self.db.query(NcfSequence).filter(NcfSequence.key == key).with_for_update().first()
        if counter is None:
            self.db.add(NcfSequence(key=key, current_value=value))
        else:
            counter.current_value = value
        self.db.flush()

    def _max_values_in_use(self) -> Dict[str, int]:
        """Escanea facturas y notas de crédito y calcula el máximo por contador."""
        maxima: Dict[str, int] = {}

        def track(key: str, value: Optional[int]) -> None:
            if value is not None and value > maxima.get(key, 0):
                maxima[key] = value

        ncf_rows = self.db.execute(select(Invoice.ncf).where(Invoice.ncf.is_not(None))).scalars().all()
        ncf_rows += self.db.execute(select(CreditNote.ncf)).scalars().all()
        for ncf in ncf_rows:
            ncf_type = ncf[:3]
            track(ncf_type, parse_trailing_number(ncf[3:]))

        number_rows = self.db.execute(select(Invoice.number)).scalars().all()
        number_rows += self.db.execute(select(CreditNote.number)).scalars().all()
        for number in number_rows:
            parts = number.rsplit("-", 1)
            if len(parts) == 2:
                track(parts[0], parse_trailing_number(parts[1]))

        return maxima


def handle_sequence_conflict(db: Session, error: IntegrityError, *keys: Optional[str]) -> None:
    """
    Tratar un IntegrityError ocurrido al persistir un documento numerado.

    La transacción fallida ya fue revertida. Si es una violación de unicidad
    se resincronizan los contadores involucrados y se lanza
    SequenceConflictError (reintentable); cualquier otro error se propaga.
    """
    if not is_unique_violation(error):
        raise error

    keys = [key for key in keys if key]
    logger.warning(f"Unique violation while issuing document numbers for {keys}: {str(error.orig)}")
    service = SequenceService(db)
    for key in keys:
        service.resync(key)
    raise SequenceConflictError(keys[0] if keys else None) from error
