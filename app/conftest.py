"""
Fixtures compartidos por los tests de los módulos.

Cada test usa su propio archivo SQLite (tmp_path); la app de FastAPI se
conecta a esa base sobreescribiendo la dependencia `get_db`.
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("ENVIRONMENT", "test")

from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from app.database.database import Base, build_engine, get_db
from app.main import app
from app.common import cache
from app.modules.clients.models import Client
from app.modules.products.models import Product


@pytest.fixture
def engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'ledger.db'}")
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def client(session_factory):
    """TestClient apuntando a la base del test"""
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture(autouse=True)
def clear_invalidation_listeners():
    yield
    cache._listeners.clear()


@pytest.fixture
def sample_client(db_session):
    customer = Client(name="Ferretería Monterrey SRL", rnc="131234567", address="Av. Duarte 45, Santiago")
    db_session.add(customer)
    db_session.commit()
    db_session.refresh(customer)
    return customer


@pytest.fixture
def make_product(db_session):
    counter = {"n": 0}

    def _make(name="Producto", stock="10", price="100.00", min_stock="0"):
        counter["n"] += 1
        product = Product(
            name=name,
            sku=f"SKU-{counter['n']:03d}",
            price=Decimal(price),
            cost=Decimal("0"),
            stock=Decimal(stock),
            min_stock=Decimal(min_stock),
        )
        db_session.add(product)
        db_session.commit()
        db_session.refresh(product)
        return product

    return _make


@pytest.fixture
def sample_product(make_product):
    return make_product(name="Cemento gris 42.5kg", stock="10", price="100.00")
