from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.common.exceptions import LedgerError
from app.common.results import to_http_exception
from app.common.cache import invalidate_views
from app.database.database import get_db
from app.modules.sequences.service import SequenceService
from app.modules.sequences.schemas import SequenceList, SequenceOut, SequenceSet, SequenceSyncResult

router = APIRouter(prefix="/sequences", tags=["Sequences"])


@router.get("/", response_model=SequenceList)
def list_sequences(db: Session = Depends(get_db)):
    """Listar contadores NCF y de numeración interna"""
    service = SequenceService(db)
    return {"sequences": service.list_sequences()}


@router.put("/{key}", response_model=SequenceOut)
def set_sequence(key: str, payload: SequenceSet, db: Session = Depends(get_db)):
    """
    Ajustar manualmente el último valor emitido de un contador.

    Útil al migrar talonarios existentes; el próximo documento usará el valor + 1.
    """
    service = SequenceService(db)
    try:
        sequence = service.set_sequence(key.upper(), payload.current_value)
    except LedgerError as e:
        raise to_http_exception(e)
    invalidate_views("/settings")
    return sequence


@router.post("/sync", response_model=SequenceSyncResult)
def sync_sequences(db: Session = Depends(get_db)):
    """Alinear todos los contadores con los documentos existentes"""
    service = SequenceService(db)
    updated = service.sync_sequences()
    invalidate_views("/settings")
    return {"success": True, "updated": updated}
