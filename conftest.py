# conftest.py
import os

# settings are read at import time; pin a throwaway database and UTC day boundaries
os.environ.setdefault("APP_SECRET", "test-secret")
os.environ["DB_URL"] = os.environ.get("SWMS_TEST_DB_URL", "sqlite+pysqlite:///:memory:")
os.environ["TZ"] = "UTC"

from datetime import datetime, time, timedelta, timezone
from decimal import Decimal
from types import SimpleNamespace

import jwt
import pytest
from fastapi.testclient import TestClient

from swms.config import settings
from swms.db import Base, SessionLocal, engine
from swms.main import app
from swms.models import MaterialType, Site, Vendor, VendorType, Warehouse, WarehouseType
from swms.schemas.transactions import TransactionIn
from swms.util.timeutil import today


@pytest.fixture()
def db():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    s = SessionLocal()
    try:
        yield s
    finally:
        s.close()


@pytest.fixture()
def reference(db):
    """Seed the read-only registry: one site, two zones, scrap + waste materials, two buyers."""
    site = Site(code="S1", name="Pyeongtaek")
    db.add(site)
    db.flush()
    yard = Warehouse(site_id=site.id, code="Y1", name="Yard A", type=WarehouseType.YARD, capacity=Decimal("100"))
    shed = Warehouse(site_id=site.id, code="I1", name="Shed B", type=WarehouseType.INDOOR)
    copper = MaterialType(code="CU", name="Copper", category="SCRAP", unit_price=Decimal("1000"))
    sludge = MaterialType(code="SL", name="Sludge", category="폐기물")
    buyer = Vendor(code="V1", name="Hanil Metal", type=VendorType.BUYER)
    other = Vendor(code="V2", name="Daesung Recycling", type=VendorType.BUYER)
    db.add_all([yard, shed, copper, sludge, buyer, other])
    db.commit()
    return SimpleNamespace(site=site.id, yard=yard.id, shed=shed.id, copper=copper.id, sludge=sludge.id,
                           buyer=buyer.id, other_vendor=other.id)


@pytest.fixture()
def tx(reference):
    """Build a TransactionIn against the seeded registry; keywords override."""
    def _make(quantity, **kw):
        data = dict(site_id=reference.site, warehouse_id=reference.yard, material_type_id=reference.copper,
                    quantity=None if quantity is None else Decimal(str(quantity)))
        data.update(kw)
        return TransactionIn(**data)
    return _make


@pytest.fixture()
def day_at():
    """UTC datetime at ``hour:minute`` on the day ``days_ago`` days before today."""
    def _at(days_ago=0, hour=12, minute=0):
        d = today() - timedelta(days=days_ago)
        return datetime.combine(d, time(hour, minute), tzinfo=timezone.utc)
    return _at


@pytest.fixture()
def base_url():
    return ""


@pytest.fixture()
def client(db):
    with TestClient(app) as c:
        yield c


@pytest.fixture()
def auth_headers():
    tok = jwt.encode({"sub": "tester", "iss": settings.JWT_ISS}, settings.APP_SECRET, algorithm="HS256")
    return {"Authorization": f"Bearer {tok}"}
