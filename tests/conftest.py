"""
Pytest configuration and fixtures for the stock ledger tests.
"""
import os
from types import SimpleNamespace

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Set test environment before importing app modules
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SECRET_KEY"] = "test-secret-key-for-unit-tests-only"

from app.database import Base, get_db, import_models  # noqa: E402
from app.models.company import Company  # noqa: E402
from app.models.product import Product  # noqa: E402
from app.models.store import Store  # noqa: E402
from app.models.supplier import Supplier  # noqa: E402
from app.services import auth_service  # noqa: E402

import_models()

TEST_PASSWORD = "s3cret-pass"


@pytest.fixture
def engine():
    """In-memory SQLite shared across connections, with foreign keys enforced."""
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    @event.listens_for(eng, "connect")
    def _enable_foreign_keys(dbapi_conn, _record):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    Base.metadata.create_all(bind=eng)
    yield eng
    Base.metadata.drop_all(bind=eng)
    eng.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def seed(db):
    """One company with a main store, a warehouse, a product, a supplier and a user."""
    company = Company(name="Acme Retail")
    other_company = Company(name="Other Co")
    db.add_all([company, other_company])
    db.flush()

    main_store = Store(company_id=company.id, name="Downtown", is_main=True)
    warehouse = Store(company_id=company.id, name="Warehouse")
    foreign_store = Store(company_id=other_company.id, name="Elsewhere")
    product = Product(company_id=company.id, name="Espresso Beans", sku="ESP-001", price=12.5, cost=7.0)
    other_product = Product(company_id=company.id, name="Paper Cups", sku="CUP-100", price=3.0)
    supplier = Supplier(company_id=company.id, name="Bean Bros")
    db.add_all([main_store, warehouse, foreign_store, product, other_product, supplier])
    db.commit()

    user = auth_service.create_user(
        db, "clerk", TEST_PASSWORD, display_name="Casey Clerk", company_id=company.id
    )
    return SimpleNamespace(
        company=company,
        other_company=other_company,
        main_store=main_store,
        warehouse=warehouse,
        foreign_store=foreign_store,
        product=product,
        other_product=other_product,
        supplier=supplier,
        user=user,
    )


@pytest.fixture
def client(db, seed):
    """Authenticated TestClient bound to the test session."""
    from fastapi.testclient import TestClient

    from app.main import app

    def _override_get_db():
        yield db

    app.dependency_overrides[get_db] = _override_get_db
    test_client = TestClient(app)
    response = test_client.post("/api/v1/auth/login", json={"username": "clerk", "password": TEST_PASSWORD})
    assert response.status_code == 200
    yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def anon_client(db):
    from fastapi.testclient import TestClient

    from app.main import app

    def _override_get_db():
        yield db

    app.dependency_overrides[get_db] = _override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()
