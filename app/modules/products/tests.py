"""
Tests para el módulo de Productos
"""

import pytest
from decimal import Decimal
from uuid import uuid4

from app.common.exceptions import NotFoundError, ValidationError
from app.modules.products.schemas import ProductCreate, ProductUpdate
from app.modules.products.service import ProductService


@pytest.fixture
def sample_product_data():
    return {
        "name": "Varilla 3/8",
        "sku": " var-038 ",
        "category": "Construcción",
        "price": "325.00",
        "cost": "250.00",
        "stock": "40",
        "min_stock": "10",
    }


class TestProductService:

    def test_create_normalizes_sku(self, db_session, sample_product_data):
        product = ProductService(db_session).create_product(ProductCreate(**sample_product_data))
        assert product.sku == "VAR-038"
        assert product.stock == Decimal("40")
        assert product.is_low_stock is False

    def test_duplicate_sku_rejected(self, db_session, sample_product_data):
        service = ProductService(db_session)
        service.create_product(ProductCreate(**sample_product_data))
        with pytest.raises(ValidationError):
            service.create_product(ProductCreate(**sample_product_data))

    def test_low_stock_filter(self, db_session, make_product):
        make_product(name="Arena", stock="2", min_stock="5")
        make_product(name="Cemento", stock="50", min_stock="5")

        result = ProductService(db_session).list_products(low_stock_only=True)
        assert result["total"] == 1
        assert result["products"][0].name == "Arena"

    def test_update_does_not_touch_stock(self, db_session, make_product):
        product = make_product(stock="7")
        updated = ProductService(db_session).update_product(product.id, ProductUpdate(price="150.00", min_stock="10"))
        assert updated.price == Decimal("150.00")
        assert updated.stock == Decimal("7")
        assert updated.is_low_stock is True

    def test_missing_product(self, db_session):
        with pytest.raises(NotFoundError):
            ProductService(db_session).get_product(uuid4())


class TestProductEndpoints:

    def test_create_and_get(self, client, sample_product_data):
        response = client.post("/products/", json=sample_product_data)
        assert response.status_code == 201
        product_id = response.json()["id"]

        response = client.get(f"/products/{product_id}")
        assert response.status_code == 200
        assert response.json()["sku"] == "VAR-038"

    def test_duplicate_sku_is_400(self, client, sample_product_data):
        client.post("/products/", json=sample_product_data)
        response = client.post("/products/", json=sample_product_data)
        assert response.status_code == 400

    def test_search(self, client, make_product):
        make_product(name="Pintura blanca")
        make_product(name="Cemento gris")
        body = client.get("/products/", params={"search": "pintura"}).json()
        assert body["total"] == 1
        assert body["products"][0]["name"] == "Pintura blanca"

    def test_restock(self, client, make_product):
        product = make_product(stock="3", min_stock="5")
        response = client.post(f"/products/{product.id}/stock", json={"quantity": "10", "notes": "Compra"})
        assert response.status_code == 200
        body = response.json()
        assert Decimal(body["stock"]) == Decimal("13")
        assert body["is_low_stock"] is False

        movements = client.get("/inventory/movements", params={"product_id": str(product.id)}).json()
        assert movements["total"] == 1
        assert movements["movements"][0]["reference"] == "Reabastecimiento"

    def test_restock_rejects_non_positive(self, client, make_product):
        product = make_product()
        response = client.post(f"/products/{product.id}/stock", json={"quantity": "0"})
        assert response.status_code == 422

    def test_restock_missing_product(self, client):
        response = client.post(f"/products/{uuid4()}/stock", json={"quantity": "1"})
        assert response.status_code == 404
