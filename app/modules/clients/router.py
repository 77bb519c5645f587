"""
Router para el módulo de Clientes
"""

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from typing import Optional
from uuid import UUID

from app.common.exceptions import LedgerError
from app.common.results import to_http_exception
from app.core.config import settings
from app.database.database import get_db
from app.modules.clients.service import ClientService
from app.modules.clients.schemas import ClientCreate, ClientOut, ClientList

router = APIRouter(
    prefix="/clients",
    tags=["Clients"],
    responses={404: {"description": "Not found"}}
)


@router.post("/", response_model=ClientOut, status_code=status.HTTP_201_CREATED)
def create_client(client_data: ClientCreate, db: Session = Depends(get_db)):
    """
    Crear un nuevo cliente

    - **name**: Nombre o razón social (requerido)
    - **rnc**: RNC o cédula, se guarda sin guiones
    """
    try:
        return ClientService(db).create_client(client_data)
    except LedgerError as e:
        raise to_http_exception(e)


@router.get("/", response_model=ClientList)
def list_clients(
    search: Optional[str] = Query(None, description="Búsqueda por nombre, RNC o email"),
    limit: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db)
):
    return ClientService(db).list_clients(search, limit, offset)


@router.get("/{client_id}", response_model=ClientOut)
def get_client(client_id: UUID, db: Session = Depends(get_db)):
    try:
        return ClientService(db).get_client(client_id)
    except LedgerError as e:
        raise to_http_exception(e)
