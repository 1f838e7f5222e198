# conftest.py
import os

os.environ.setdefault("APP_SECRET", "test-secret")
os.environ.setdefault("DB_URL", "sqlite://")
os.environ.setdefault("APP_ENV", "dev")

from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import tableside.models  # noqa: F401
from tableside.db import Base, get_db
from tableside.main import app
from tableside.models.core import (
    Addon, ChargeMode, DiningTable, ItemVariant, MenuCategory, MenuItem, OutletSettings, TableStatus,
    TaxComponent, TaxGroup,
)
from tableside.services.catalog import DbCatalog
from tableside.services.effects import Broadcast, EffectDispatcher, PrintJob, get_dispatcher
from tableside.util.security import create_token

OUTLET = "outlet-1"
FLOOR = "ground"


class RecordingDispatcher(EffectDispatcher):
    """Keeps effects instead of delivering them."""

    def __init__(self):
        super().__init__(None, None)
        self.effects = []

    async def dispatch(self, effects):
        self.effects.extend(effects)

    def events(self, name=None):
        return [e for e in self.effects if isinstance(e, Broadcast) and (name is None or e.event == name)]

    def prints(self, kind=None):
        return [e for e in self.effects if isinstance(e, PrintJob) and (kind is None or e.kind == kind)]

    def clear(self):
        self.effects.clear()


@pytest.fixture()
def engine():
    eng = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    Base.metadata.create_all(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture()
def db(engine):
    Session = sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)
    s = Session()
    yield s
    s.close()


@pytest.fixture()
def catalog(db):
    return DbCatalog(db)


@pytest.fixture()
def menu(db):
    """One outlet: 10% dine-in service charge, GST 5% (2.5 + 2.5), kitchen/bar/tandoor items, three tables."""
    db.add(OutletSettings(
        outlet_id=OUTLET, name="Test Outlet",
        service_charge_mode=ChargeMode.PERCENT, service_charge_value=10, service_charge_dine_in_only=True,
        packing_charge_mode=ChargeMode.FLAT, packing_charge_value=20, delivery_charge=40,
    ))
    gst = TaxGroup(outlet_id=OUTLET, name="GST 5%")
    db.add(gst); db.flush()
    db.add_all([
        TaxComponent(group_id=gst.id, code="CGST", name="CGST", rate=2.5),
        TaxComponent(group_id=gst.id, code="SGST", name="SGST", rate=2.5),
    ])

    mains = MenuCategory(outlet_id=OUTLET, name="Mains", station="kitchen")
    drinks = MenuCategory(outlet_id=OUTLET, name="Drinks", station="bar")
    db.add_all([mains, drinks]); db.flush()

    thali = MenuItem(outlet_id=OUTLET, category_id=mains.id, name="Royal Thali", base_price=1000, tax_group_id=gst.id)
    paneer = MenuItem(outlet_id=OUTLET, category_id=mains.id, name="Paneer Tikka", base_price=250, tax_group_id=gst.id)
    naan = MenuItem(outlet_id=OUTLET, category_id=mains.id, name="Butter Naan", base_price=60,
                    tax_group_id=gst.id, station="tandoor")
    soda = MenuItem(outlet_id=OUTLET, category_id=drinks.id, name="Lime Soda", base_price=90, tax_group_id=gst.id)
    water = MenuItem(outlet_id=OUTLET, category_id=drinks.id, name="Mineral Water", base_price=40)
    soup = MenuItem(outlet_id=OUTLET, category_id=mains.id, name="Seasonal Soup", base_price=150,
                    tax_group_id=gst.id, is_active=False)
    db.add_all([thali, paneer, naan, soda, water, soup]); db.flush()

    full = ItemVariant(item_id=paneer.id, label="Full", price=400)
    cheese = Addon(outlet_id=OUTLET, name="Extra Cheese", price=30)
    db.add_all([full, cheese])

    tables = [DiningTable(outlet_id=OUTLET, floor_id=FLOOR, code=f"T{n}", capacity=4, status=TableStatus.AVAILABLE)
              for n in (1, 2, 3)]
    db.add_all(tables)
    db.commit()

    return SimpleNamespace(
        outlet_id=OUTLET, floor_id=FLOOR, gst_id=gst.id,
        thali=thali.id, paneer=paneer.id, paneer_full=full.id, naan=naan.id, soda=soda.id, water=water.id,
        soup=soup.id, cheese=cheese.id,
        t1=tables[0].id, t2=tables[1].id, t3=tables[2].id,
    )


@pytest.fixture()
def recorder():
    return RecordingDispatcher()


@pytest.fixture()
def client(db, recorder):
    def _get_db():
        yield db

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_dispatcher] = lambda: recorder
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture()
def auth_headers():
    tok = create_token("captain-1", "captain")
    return {"Authorization": f"Bearer {tok}"}
