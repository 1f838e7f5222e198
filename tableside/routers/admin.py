import uuid

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from tableside.config import settings
from tableside.db import get_db
from tableside.models.core import (
    ChargeMode, DiningTable, MenuCategory, MenuItem, OutletSettings, TableStatus, TaxComponent, TaxGroup,
)
from tableside.util.security import create_token

router = APIRouter(prefix="/admin", tags=["admin"])


@router.post("/dev-bootstrap")
def dev_bootstrap(db: Session = Depends(get_db)):
    """Seed a demo outlet with a menu, GST 5% and a floor of tables. Dev only."""
    if settings.APP_ENV != "dev":
        raise HTTPException(403, detail="Not allowed")

    # Outlet + charges
    os_ = db.query(OutletSettings).first()
    if not os_:
        os_ = OutletSettings(
            outlet_id=str(uuid.uuid4()),
            name="Demo Outlet",
            service_charge_mode=ChargeMode.PERCENT,
            service_charge_value=10,
            packing_charge_mode=ChargeMode.FLAT,
            packing_charge_value=20,
            delivery_charge=40,
        )
        db.add(os_); db.flush()
    outlet_id = os_.outlet_id

    # Tax
    gst = db.query(TaxGroup).filter(TaxGroup.outlet_id == outlet_id).first()
    if not gst:
        gst = TaxGroup(outlet_id=outlet_id, name="GST 5%")
        db.add(gst); db.flush()
        db.add(TaxComponent(group_id=gst.id, code="CGST", name="CGST", rate=2.5))
        db.add(TaxComponent(group_id=gst.id, code="SGST", name="SGST", rate=2.5))

    # Menu: one kitchen category, one bar category
    if not db.query(MenuCategory).filter(MenuCategory.outlet_id == outlet_id).first():
        food = MenuCategory(outlet_id=outlet_id, name="Mains", station="kitchen")
        drinks = MenuCategory(outlet_id=outlet_id, name="Drinks", station="bar")
        db.add_all([food, drinks]); db.flush()
        db.add_all([
            MenuItem(outlet_id=outlet_id, category_id=food.id, name="Paneer Tikka", base_price=250, tax_group_id=gst.id),
            MenuItem(outlet_id=outlet_id, category_id=food.id, name="Butter Naan", base_price=60,
                     tax_group_id=gst.id, station="tandoor"),
            MenuItem(outlet_id=outlet_id, category_id=drinks.id, name="Fresh Lime Soda", base_price=90, tax_group_id=gst.id),
        ])

    # Tables
    floor_id = "ground"
    if not db.query(DiningTable).filter(DiningTable.outlet_id == outlet_id).first():
        for n in range(1, 7):
            db.add(DiningTable(outlet_id=outlet_id, floor_id=floor_id, code=f"T{n}", capacity=4,
                               status=TableStatus.AVAILABLE))

    db.commit()
    return {
        "outlet_id": outlet_id,
        "floor_id": floor_id,
        "tax_group_id": gst.id,
        "access_token": create_token("dev-admin", "admin"),
        "token_type": "bearer",
    }
