from sqlalchemy import (
    String, ForeignKey, Boolean, Numeric, Enum, Text, DateTime, Integer, JSON, Index, UniqueConstraint, text
)
from sqlalchemy.orm import Mapped, mapped_column
from enum import Enum as PyEnum
from datetime import datetime
from decimal import Decimal
from tableside.db import Base
from tableside.models.common import IdMixin, TSMMixin

# ── Enums ───────────────────────────────────────────────────────────────────
class TableStatus(PyEnum):
    AVAILABLE = "available"
    OCCUPIED = "occupied"
    RUNNING = "running"
    RESERVED = "reserved"
    BILLING = "billing"
    CLEANING = "cleaning"
    BLOCKED = "blocked"

class OrderType(PyEnum):
    DINE_IN = "dine_in"
    TAKEAWAY = "takeaway"
    DELIVERY = "delivery"

class OrderStatus(PyEnum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PREPARING = "preparing"
    READY = "ready"
    SERVED = "served"
    BILLED = "billed"
    PAID = "paid"
    CANCELLED = "cancelled"

class ItemStatus(PyEnum):
    PENDING = "pending"
    SENT = "sent"
    PREPARING = "preparing"
    READY = "ready"
    SERVED = "served"
    CANCELLED = "cancelled"

class KOTStatus(PyEnum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    PREPARING = "preparing"
    READY = "ready"
    SERVED = "served"
    CANCELLED = "cancelled"

class KOTItemStatus(PyEnum):
    PENDING = "pending"
    PREPARING = "preparing"
    READY = "ready"
    SERVED = "served"
    CANCELLED = "cancelled"

class DiscountType(PyEnum):
    PERCENTAGE = "percentage"
    FLAT = "flat"

class ChargeMode(PyEnum):
    NONE = "none"
    PERCENT = "percent"
    FLAT = "flat"

class PayMode(PyEnum):
    CASH = "cash"
    CARD = "card"
    UPI = "upi"
    WALLET = "wallet"
    CREDIT = "credit"
    COMPLIMENTARY = "complimentary"
    SPLIT = "split"

class InvoicePayStatus(PyEnum):
    PENDING = "pending"
    PARTIAL = "partial"
    PAID = "paid"

TERMINAL_ORDER_STATUSES = (OrderStatus.PAID, OrderStatus.CANCELLED)
ACTIVE_KOT_STATUSES = (KOTStatus.PENDING, KOTStatus.ACCEPTED, KOTStatus.PREPARING, KOTStatus.READY)

# ── Outlet settings (service / packing / delivery charges) ──────────────────
class OutletSettings(Base, IdMixin, TSMMixin):
    __tablename__ = "outlet_settings"
    outlet_id: Mapped[str] = mapped_column(String(36), unique=True)
    name: Mapped[str] = mapped_column(String(200))
    service_charge_mode: Mapped[ChargeMode] = mapped_column(Enum(ChargeMode), default=ChargeMode.NONE)
    service_charge_value: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=0)
    service_charge_dine_in_only: Mapped[bool] = mapped_column(Boolean, default=True)
    packing_charge_mode: Mapped[ChargeMode] = mapped_column(Enum(ChargeMode), default=ChargeMode.NONE)
    packing_charge_value: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=0)
    delivery_charge: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=0)
    invoice_footer: Mapped[str | None] = mapped_column(String(200), default="Thank you!")

# ── Menu catalog (read-only here; authored by the menu service) ─────────────
class TaxGroup(Base, IdMixin, TSMMixin):
    __tablename__ = "tax_group"
    outlet_id: Mapped[str | None] = mapped_column(String(36))
    name: Mapped[str] = mapped_column(String(60))  # e.g. "GST 5%"
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

class TaxComponent(Base, IdMixin, TSMMixin):
    __tablename__ = "tax_component"
    group_id: Mapped[str] = mapped_column(String(36), ForeignKey("tax_group.id"))
    code: Mapped[str] = mapped_column(String(20))   # CGST / SGST / IGST / VAT / CESS
    name: Mapped[str] = mapped_column(String(60))
    rate: Mapped[Decimal] = mapped_column(Numeric(5, 2))

class MenuCategory(Base, IdMixin, TSMMixin):
    __tablename__ = "menu_category"
    outlet_id: Mapped[str] = mapped_column(String(36))
    name: Mapped[str] = mapped_column(String(120))
    station: Mapped[str] = mapped_column(String(30), default="kitchen")  # kitchen / bar / tandoor ...

class MenuItem(Base, IdMixin, TSMMixin):
    __tablename__ = "menu_item"
    outlet_id: Mapped[str] = mapped_column(String(36))
    category_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("menu_category.id"))
    name: Mapped[str] = mapped_column(String(160))
    base_price: Mapped[Decimal] = mapped_column(Numeric(10, 2))
    tax_group_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("tax_group.id"))
    station: Mapped[str | None] = mapped_column(String(30))  # overrides the category station
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

class ItemVariant(Base, IdMixin, TSMMixin):
    __tablename__ = "item_variant"
    item_id: Mapped[str] = mapped_column(String(36), ForeignKey("menu_item.id"))
    label: Mapped[str] = mapped_column(String(80))
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2))

class Addon(Base, IdMixin, TSMMixin):
    __tablename__ = "addon"
    outlet_id: Mapped[str] = mapped_column(String(36))
    name: Mapped[str] = mapped_column(String(120))
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=0)

# ── Tables, sessions & floor shifts ─────────────────────────────────────────
class DiningTable(Base, IdMixin, TSMMixin):
    __tablename__ = "dining_table"
    outlet_id: Mapped[str] = mapped_column(String(36))
    floor_id: Mapped[str | None] = mapped_column(String(36))
    code: Mapped[str] = mapped_column(String(30))
    capacity: Mapped[int] = mapped_column(Integer, default=2)
    status: Mapped[TableStatus] = mapped_column(Enum(TableStatus), default=TableStatus.AVAILABLE)
    __table_args__ = (
        UniqueConstraint("outlet_id", "code", name="uq_dining_table_code"),
    )

class FloorShift(Base, IdMixin, TSMMixin):
    __tablename__ = "floor_shift"
    outlet_id: Mapped[str] = mapped_column(String(36))
    floor_id: Mapped[str] = mapped_column(String(36))
    opened_by: Mapped[str] = mapped_column(String(36))
    opened_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    opening_float: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0)
    closed_by: Mapped[str | None] = mapped_column(String(36))
    closed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    expected_cash: Mapped[Decimal | None] = mapped_column(Numeric(12, 2))
    actual_cash: Mapped[Decimal | None] = mapped_column(Numeric(12, 2))
    close_note: Mapped[str | None] = mapped_column(Text)

class TableSession(Base, IdMixin, TSMMixin):
    __tablename__ = "table_session"
    table_id: Mapped[str] = mapped_column(String(36), ForeignKey("dining_table.id"))
    floor_id: Mapped[str | None] = mapped_column(String(36))
    shift_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("floor_shift.id"))
    order_id: Mapped[str | None] = mapped_column(String(36))
    guest_count: Mapped[int] = mapped_column(Integer, default=1)
    opened_by: Mapped[str] = mapped_column(String(36))
    opened_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    closed_by: Mapped[str | None] = mapped_column(String(36))
    closed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    __table_args__ = (
        # one open session per table
        Index(
            "uq_table_session_open", "table_id", unique=True,
            sqlite_where=text("closed_at IS NULL"), postgresql_where=text("closed_at IS NULL"),
        ),
    )

# ── Orders / items / KOT ────────────────────────────────────────────────────
class Order(Base, IdMixin, TSMMixin):
    __tablename__ = "order"
    outlet_id: Mapped[str] = mapped_column(String(36))
    order_no: Mapped[int] = mapped_column(Integer)
    order_type: Mapped[OrderType] = mapped_column(Enum(OrderType))
    status: Mapped[OrderStatus] = mapped_column(Enum(OrderStatus), default=OrderStatus.PENDING)
    table_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("dining_table.id"))
    session_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("table_session.id"))
    floor_id: Mapped[str | None] = mapped_column(String(36))
    guest_count: Mapped[int] = mapped_column(Integer, default=1)
    is_interstate: Mapped[bool] = mapped_column(Boolean, default=False)
    service_charge_enabled: Mapped[bool | None] = mapped_column(Boolean)  # None -> outlet default
    note: Mapped[str | None] = mapped_column(Text)

    price_adjustment: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0)
    subtotal: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0)
    discount_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0)
    tax_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0)
    service_charge: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0)
    packaging_charge: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0)
    delivery_charge: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0)
    round_off: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0)
    paid_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0)
    due_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0)

    opened_by: Mapped[str | None] = mapped_column(String(36))
    opened_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    billed_by: Mapped[str | None] = mapped_column(String(36))
    billed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    cancelled_by: Mapped[str | None] = mapped_column(String(36))
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    cancel_reason: Mapped[str | None] = mapped_column(Text)

class OrderItem(Base, IdMixin, TSMMixin):
    __tablename__ = "order_item"
    order_id: Mapped[str] = mapped_column(String(36), ForeignKey("order.id"))
    item_id: Mapped[str] = mapped_column(String(36))
    variant_id: Mapped[str | None] = mapped_column(String(36))
    item_name: Mapped[str] = mapped_column(String(160))
    variant_name: Mapped[str | None] = mapped_column(String(80))
    quantity: Mapped[int] = mapped_column(Integer)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(10, 2))
    addon_total: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=0)
    line_total: Mapped[Decimal] = mapped_column(Numeric(12, 2))
    tax_group_id: Mapped[str | None] = mapped_column(String(36))
    station: Mapped[str | None] = mapped_column(String(30))
    special_instructions: Mapped[str | None] = mapped_column(Text)
    status: Mapped[ItemStatus] = mapped_column(Enum(ItemStatus), default=ItemStatus.PENDING)
    kot_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("kot_ticket.id"))
    created_by: Mapped[str | None] = mapped_column(String(36))
    cancel_reason: Mapped[str | None] = mapped_column(Text)
    cancelled_by: Mapped[str | None] = mapped_column(String(36))
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

class OrderItemAddon(Base, IdMixin, TSMMixin):
    __tablename__ = "order_item_addon"
    order_item_id: Mapped[str] = mapped_column(String(36), ForeignKey("order_item.id"))
    addon_id: Mapped[str] = mapped_column(String(36))
    name: Mapped[str] = mapped_column(String(120))
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=0)

class KotTicket(Base, IdMixin, TSMMixin):
    __tablename__ = "kot_ticket"
    order_id: Mapped[str] = mapped_column(String(36), ForeignKey("order.id"))
    outlet_id: Mapped[str] = mapped_column(String(36))
    kot_no: Mapped[str] = mapped_column(String(30))
    station: Mapped[str] = mapped_column(String(30))
    table_code: Mapped[str | None] = mapped_column(String(30))
    status: Mapped[KOTStatus] = mapped_column(Enum(KOTStatus), default=KOTStatus.PENDING)
    created_by: Mapped[str | None] = mapped_column(String(36))
    accepted_by: Mapped[str | None] = mapped_column(String(36))
    accepted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    preparing_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    ready_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    served_by: Mapped[str | None] = mapped_column(String(36))
    served_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    cancel_reason: Mapped[str | None] = mapped_column(Text)
    reprint_count: Mapped[int] = mapped_column(Integer, default=0)

class KotItem(Base, IdMixin, TSMMixin):
    __tablename__ = "kot_item"
    kot_id: Mapped[str] = mapped_column(String(36), ForeignKey("kot_ticket.id"))
    order_item_id: Mapped[str] = mapped_column(String(36), ForeignKey("order_item.id"))
    item_name: Mapped[str] = mapped_column(String(160))
    variant_name: Mapped[str | None] = mapped_column(String(80))
    quantity: Mapped[int] = mapped_column(Integer)
    addons_text: Mapped[str | None] = mapped_column(Text)
    special_instructions: Mapped[str | None] = mapped_column(Text)
    status: Mapped[KOTItemStatus] = mapped_column(Enum(KOTItemStatus), default=KOTItemStatus.PENDING)

# ── Discounts / invoices / payments ─────────────────────────────────────────
class OrderDiscount(Base, IdMixin, TSMMixin):
    __tablename__ = "order_discount"
    order_id: Mapped[str] = mapped_column(String(36), ForeignKey("order.id"))
    discount_type: Mapped[DiscountType] = mapped_column(Enum(DiscountType))
    value: Mapped[Decimal] = mapped_column(Numeric(10, 2))
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0)
    reason: Mapped[str | None] = mapped_column(Text)
    applied_by: Mapped[str | None] = mapped_column(String(36))

class Invoice(Base, IdMixin, TSMMixin):
    __tablename__ = "invoice"
    outlet_id: Mapped[str] = mapped_column(String(36))
    order_id: Mapped[str] = mapped_column(String(36), ForeignKey("order.id"))
    invoice_no: Mapped[str] = mapped_column(String(60), unique=True)
    invoice_dt: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    subtotal: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0)
    discount_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0)
    taxable_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0)
    tax_breakdown: Mapped[dict | None] = mapped_column(JSON)  # {code: {name, rate, taxable_amount, tax_amount}}
    total_tax: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0)
    service_charge: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0)
    packaging_charge: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0)
    delivery_charge: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0)
    round_off: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0)
    grand_total: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0)
    payment_status: Mapped[InvoicePayStatus] = mapped_column(Enum(InvoicePayStatus), default=InvoicePayStatus.PENDING)
    is_cancelled: Mapped[bool] = mapped_column(Boolean, default=False)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    cancelled_by: Mapped[str | None] = mapped_column(String(36))
    cancel_reason: Mapped[str | None] = mapped_column(Text)
    generated_by: Mapped[str | None] = mapped_column(String(36))

class Payment(Base, IdMixin, TSMMixin):
    __tablename__ = "payment"
    order_id: Mapped[str] = mapped_column(String(36), ForeignKey("order.id"))
    invoice_id: Mapped[str] = mapped_column(String(36), ForeignKey("invoice.id"))
    payment_no: Mapped[str] = mapped_column(String(40))
    mode: Mapped[PayMode] = mapped_column(Enum(PayMode))
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2))
    card_last_four: Mapped[str | None] = mapped_column(String(4))
    card_type: Mapped[str | None] = mapped_column(String(30))
    transaction_id: Mapped[str | None] = mapped_column(String(120))
    reference_number: Mapped[str | None] = mapped_column(String(120))
    upi_id: Mapped[str | None] = mapped_column(String(120))
    wallet_name: Mapped[str | None] = mapped_column(String(60))
    bank_name: Mapped[str | None] = mapped_column(String(120))
    notes: Mapped[str | None] = mapped_column(Text)
    received_by: Mapped[str | None] = mapped_column(String(36))
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

class SplitPayment(Base, IdMixin, TSMMixin):
    __tablename__ = "split_payment"
    payment_id: Mapped[str] = mapped_column(String(36), ForeignKey("payment.id"))
    mode: Mapped[PayMode] = mapped_column(Enum(PayMode))
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2))
    transaction_id: Mapped[str | None] = mapped_column(String(120))
    reference_number: Mapped[str | None] = mapped_column(String(120))
    card_last_four: Mapped[str | None] = mapped_column(String(4))
    upi_id: Mapped[str | None] = mapped_column(String(120))
    notes: Mapped[str | None] = mapped_column(Text)

# ── Audit ───────────────────────────────────────────────────────────────────
class AuditLog(Base, IdMixin, TSMMixin):
    __tablename__ = "audit_log"
    actor_user_id: Mapped[str] = mapped_column(String(36))
    entity: Mapped[str] = mapped_column(String(60))
    entity_id: Mapped[str] = mapped_column(String(36))
    action: Mapped[str] = mapped_column(String(60))
    reason: Mapped[str | None] = mapped_column(Text)  # reason for void/override/cancel
    before: Mapped[str | None] = mapped_column(Text)
    after: Mapped[str | None] = mapped_column(Text)
