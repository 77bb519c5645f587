"""
Tests para el módulo de Clientes
"""

import pytest
from uuid import uuid4

from pydantic import ValidationError as SchemaValidationError

from app.common.exceptions import NotFoundError, ValidationError
from app.modules.clients.schemas import ClientCreate
from app.modules.clients.service import ClientService


class TestClientSchema:

    def test_rnc_is_normalized(self):
        client = ClientCreate(name="Ferretería Monterrey SRL", rnc="1-31-23456-7")
        assert client.rnc == "131234567"

    def test_cedula_accepted(self):
        assert ClientCreate(name="Juan Pérez", rnc="001-1234567-8").rnc == "00112345678"

    def test_invalid_rnc(self):
        with pytest.raises(SchemaValidationError):
            ClientCreate(name="Cliente", rnc="12345")

    def test_blank_rnc_is_none(self):
        assert ClientCreate(name="Cliente", rnc="  ").rnc is None


class TestClientService:

    def test_create_and_search(self, db_session):
        service = ClientService(db_session)
        service.create_client(ClientCreate(name="Ferretería Monterrey SRL", rnc="131234567", email="Ventas@Monterrey.do"))
        service.create_client(ClientCreate(name="Colmado La Esquina"))

        result = service.list_clients(search="monterrey")
        assert result["total"] == 1
        assert result["clients"][0].email == "ventas@monterrey.do"

    def test_duplicate_email(self, db_session):
        service = ClientService(db_session)
        service.create_client(ClientCreate(name="A", email="a@b.do"))
        with pytest.raises(ValidationError):
            service.create_client(ClientCreate(name="B", email="a@b.do"))

    def test_missing_client(self, db_session):
        with pytest.raises(NotFoundError):
            ClientService(db_session).get_client(uuid4())


class TestClientEndpoints:

    def test_create_get(self, client):
        response = client.post("/clients/", json={"name": "Constructora Cibao", "rnc": "101-00000-1"})
        assert response.status_code == 201
        body = response.json()
        assert body["rnc"] == "101000001"
        assert body["person_type"] == "Persona Jurídica"

        assert client.get(f"/clients/{body['id']}").json()["name"] == "Constructora Cibao"

    def test_invalid_rnc_is_422(self, client):
        assert client.post("/clients/", json={"name": "X", "rnc": "abc"}).status_code == 422

    def test_missing_is_404(self, client):
        assert client.get(f"/clients/{uuid4()}").status_code == 404
