"""
Read-only view of menu, tax and outlet-charge configuration.

Menu and tax authoring live in another service. The engine only needs prices,
tax components and preparation stations, so it talks to a small `Catalog`
protocol: `DbCatalog` reads the local catalog tables, `HttpCatalog` asks the menu
service at CATALOG_URL. Either way an unreachable or broken source surfaces as
DependencyError, while an unknown or inactive item is the caller's mistake and
surfaces as ValidationError.
"""
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Protocol

import httpx
from fastapi import Depends
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from tableside.config import settings
from tableside.db import get_db
from tableside.errors import DependencyError, ValidationError
from tableside.models.core import (
    Addon, ChargeMode, ItemVariant, MenuCategory, MenuItem, OutletSettings, TaxComponent, TaxGroup
)

logger = logging.getLogger(__name__)

DEFAULT_STATION = "kitchen"


@dataclass
class AddonInfo:
    addon_id: str
    name: str
    price: Decimal


@dataclass
class ItemInfo:
    item_id: str
    name: str
    unit_price: Decimal
    tax_group_id: str | None
    station: str
    variant_id: str | None = None
    variant_name: str | None = None
    addons: list[AddonInfo] = field(default_factory=list)


@dataclass
class TaxComponentInfo:
    code: str
    name: str
    rate: Decimal


@dataclass
class ChargeConfig:
    service_charge_mode: ChargeMode = ChargeMode.NONE
    service_charge_value: Decimal = Decimal("0")
    service_charge_dine_in_only: bool = True
    packing_charge_mode: ChargeMode = ChargeMode.NONE
    packing_charge_value: Decimal = Decimal("0")
    delivery_charge: Decimal = Decimal("0")


class Catalog(Protocol):
    def resolve_item(self, outlet_id: str, item_id: str, variant_id: str | None = None,
                     addon_ids: list[str] | None = None) -> ItemInfo: ...

    def station_for(self, outlet_id: str, item_id: str) -> str: ...

    def tax_components(self, tax_group_id: str) -> list[TaxComponentInfo]: ...

    def charge_config(self, outlet_id: str) -> ChargeConfig: ...


# ── Local tables ────────────────────────────────────────────────────────────
class DbCatalog:
    def __init__(self, db: Session):
        self.db = db

    def resolve_item(self, outlet_id, item_id, variant_id=None, addon_ids=None) -> ItemInfo:
        try:
            mi = self.db.get(MenuItem, item_id)
            if not mi or mi.outlet_id != outlet_id:
                raise ValidationError("unknown menu item", {"item_id": item_id})
            if not mi.is_active:
                raise ValidationError("menu item is not available", {"item_id": item_id})

            info = ItemInfo(
                item_id=mi.id, name=mi.name, unit_price=Decimal(mi.base_price),
                tax_group_id=mi.tax_group_id, station=self._station(mi),
            )
            if variant_id:
                v = self.db.get(ItemVariant, variant_id)
                if not v or v.item_id != mi.id:
                    raise ValidationError("unknown variant for item", {"item_id": item_id, "variant_id": variant_id})
                info.variant_id, info.variant_name, info.unit_price = v.id, v.label, Decimal(v.price)

            for aid in addon_ids or []:
                a = self.db.get(Addon, aid)
                if not a or a.outlet_id != outlet_id:
                    raise ValidationError("unknown addon", {"addon_id": aid})
                info.addons.append(AddonInfo(addon_id=a.id, name=a.name, price=Decimal(a.price or 0)))
            return info
        except SQLAlchemyError as e:
            raise DependencyError("menu catalog unavailable", {"item_id": item_id}) from e

    def station_for(self, outlet_id, item_id) -> str:
        try:
            mi = self.db.get(MenuItem, item_id)
            return self._station(mi) if mi else DEFAULT_STATION
        except SQLAlchemyError as e:
            raise DependencyError("menu catalog unavailable", {"item_id": item_id}) from e

    def _station(self, mi: MenuItem) -> str:
        if mi.station:
            return mi.station
        cat = self.db.get(MenuCategory, mi.category_id) if mi.category_id else None
        return (cat.station if cat else None) or DEFAULT_STATION

    def tax_components(self, tax_group_id) -> list[TaxComponentInfo]:
        try:
            g = self.db.get(TaxGroup, tax_group_id)
            if not g or not g.is_active:
                raise DependencyError("tax group not configured", {"tax_group_id": tax_group_id})
            rows = (self.db.query(TaxComponent)
                    .filter(TaxComponent.group_id == tax_group_id)
                    .order_by(TaxComponent.code)
                    .all())
            return [TaxComponentInfo(code=c.code, name=c.name, rate=Decimal(c.rate)) for c in rows]
        except SQLAlchemyError as e:
            raise DependencyError("tax configuration unavailable", {"tax_group_id": tax_group_id}) from e

    def charge_config(self, outlet_id) -> ChargeConfig:
        try:
            os_ = self.db.query(OutletSettings).filter(OutletSettings.outlet_id == outlet_id).first()
        except SQLAlchemyError as e:
            raise DependencyError("outlet configuration unavailable", {"outlet_id": outlet_id}) from e
        if not os_:
            return ChargeConfig()
        return ChargeConfig(
            service_charge_mode=os_.service_charge_mode,
            service_charge_value=Decimal(os_.service_charge_value or 0),
            service_charge_dine_in_only=bool(os_.service_charge_dine_in_only),
            packing_charge_mode=os_.packing_charge_mode,
            packing_charge_value=Decimal(os_.packing_charge_value or 0),
            delivery_charge=Decimal(os_.delivery_charge or 0),
        )


# ── Menu service over HTTP ──────────────────────────────────────────────────
class HttpCatalog:
    """
    Client for the menu service.

    GET /outlets/{outlet}/items/{item}   -> {id, name, base_price, is_active, tax_group_id,
                                             station, category_station, variants: [{id, label, price}]}
    GET /outlets/{outlet}/addons/{addon} -> {id, name, price}
    GET /tax-groups/{group}              -> {id, is_active, components: [{code, name, rate}]}
    GET /outlets/{outlet}/charges        -> ChargeConfig fields
    """

    def __init__(self, base_url: str, timeout: float = 3.0, transport: httpx.BaseTransport | None = None):
        self.client = httpx.Client(base_url=base_url, timeout=timeout, transport=transport)

    def close(self):
        self.client.close()

    def _get(self, path: str, missing: str | None = None, ref: dict | None = None) -> dict | None:
        try:
            r = self.client.get(path)
            if r.status_code == 404 and missing:
                raise ValidationError(missing, ref or {})
            r.raise_for_status()
            return r.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("catalog request failed: GET %s (%s)", path, e)
            raise DependencyError("menu catalog unavailable", {"path": path}) from e

    def resolve_item(self, outlet_id, item_id, variant_id=None, addon_ids=None) -> ItemInfo:
        data = self._get(f"/outlets/{outlet_id}/items/{item_id}", "unknown menu item", {"item_id": item_id})
        if not data.get("is_active", True):
            raise ValidationError("menu item is not available", {"item_id": item_id})

        info = ItemInfo(
            item_id=data["id"], name=data["name"], unit_price=Decimal(str(data["base_price"])),
            tax_group_id=data.get("tax_group_id"),
            station=data.get("station") or data.get("category_station") or DEFAULT_STATION,
        )
        if variant_id:
            v = next((v for v in data.get("variants", []) if v["id"] == variant_id), None)
            if not v:
                raise ValidationError("unknown variant for item", {"item_id": item_id, "variant_id": variant_id})
            info.variant_id, info.variant_name, info.unit_price = v["id"], v["label"], Decimal(str(v["price"]))

        for aid in addon_ids or []:
            a = self._get(f"/outlets/{outlet_id}/addons/{aid}", "unknown addon", {"addon_id": aid})
            info.addons.append(AddonInfo(addon_id=a["id"], name=a["name"], price=Decimal(str(a.get("price", 0)))))
        return info

    def station_for(self, outlet_id, item_id) -> str:
        data = self._get(f"/outlets/{outlet_id}/items/{item_id}")
        return data.get("station") or data.get("category_station") or DEFAULT_STATION

    def tax_components(self, tax_group_id) -> list[TaxComponentInfo]:
        data = self._get(f"/tax-groups/{tax_group_id}")
        if not data.get("is_active", True):
            raise DependencyError("tax group not configured", {"tax_group_id": tax_group_id})
        return [
            TaxComponentInfo(code=c["code"], name=c.get("name", c["code"]), rate=Decimal(str(c["rate"])))
            for c in data.get("components", [])
        ]

    def charge_config(self, outlet_id) -> ChargeConfig:
        data = self._get(f"/outlets/{outlet_id}/charges")
        return ChargeConfig(
            service_charge_mode=ChargeMode(data.get("service_charge_mode", "none")),
            service_charge_value=Decimal(str(data.get("service_charge_value", 0))),
            service_charge_dine_in_only=bool(data.get("service_charge_dine_in_only", True)),
            packing_charge_mode=ChargeMode(data.get("packing_charge_mode", "none")),
            packing_charge_value=Decimal(str(data.get("packing_charge_value", 0))),
            delivery_charge=Decimal(str(data.get("delivery_charge", 0))),
        )


def get_catalog(db: Session = Depends(get_db)):
    if not settings.CATALOG_URL:
        yield DbCatalog(db)
        return
    catalog = HttpCatalog(settings.CATALOG_URL, settings.CATALOG_TIMEOUT)
    try:
        yield catalog
    finally:
        catalog.close()
