"""
Servicio de Clientes
"""

from sqlalchemy.orm import Session
from sqlalchemy import func, or_
from typing import Optional
from uuid import UUID
import logging

from app.common.exceptions import NotFoundError, ValidationError
from app.database.database import transaction
from app.modules.clients.models import Client
from app.modules.clients.schemas import ClientCreate

logger = logging.getLogger(__name__)


class ClientService:

    def __init__(self, db: Session):
        self.db = db

    def create_client(self, data: ClientCreate) -> Client:
        if data.email and self.db.query(Client).filter(Client.email == data.email).first():
            raise ValidationError(f"Ya existe un cliente con el email {data.email}")

        payload = data.model_dump()
        payload["person_type"] = data.person_type.value
        payload["contact_type"] = data.contact_type.value
        with transaction(self.db):
            client = Client(**payload)
            self.db.add(client)
            self.db.flush()

        self.db.refresh(client)
        logger.info(f"Client created: {client.name}")
        return client

    def get_client(self, client_id: UUID) -> Client:
        client = self.db.get(Client, client_id)
        if not client:
            raise NotFoundError("Cliente no encontrado")
        return client

    def list_clients(self, search: Optional[str] = None, limit: int = 100, offset: int = 0) -> dict:
        query = self.db.query(Client)
        if search:
            pattern = f"%{search}%"
            query = query.filter(or_(Client.name.ilike(pattern), Client.rnc.ilike(pattern), Client.email.ilike(pattern)))

        total = query.with_entities(func.count(Client.id)).scalar()
        clients = query.order_by(Client.name).offset(offset).limit(limit).all()
        return {"clients": clients, "total": total}
