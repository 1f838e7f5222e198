# Importing the module registers tables with Base for create_all()
from .core import (  # noqa: F401
    # Enums
    TableStatus, OrderType, OrderStatus, ItemStatus, KOTStatus, KOTItemStatus,
    DiscountType, ChargeMode, PayMode, InvoicePayStatus,
    TERMINAL_ORDER_STATUSES, ACTIVE_KOT_STATUSES,

    # Outlet settings & menu catalog
    OutletSettings, TaxGroup, TaxComponent, MenuCategory, MenuItem, ItemVariant, Addon,

    # Tables, sessions & shifts
    DiningTable, FloorShift, TableSession,

    # Orders / KOT
    Order, OrderItem, OrderItemAddon, KotTicket, KotItem,

    # Billing & payments
    OrderDiscount, Invoice, Payment, SplitPayment,

    # Audit
    AuditLog,
)

__all__ = [
    # Enums
    "TableStatus", "OrderType", "OrderStatus", "ItemStatus", "KOTStatus", "KOTItemStatus",
    "DiscountType", "ChargeMode", "PayMode", "InvoicePayStatus",
    "TERMINAL_ORDER_STATUSES", "ACTIVE_KOT_STATUSES",

    # Outlet settings & menu catalog
    "OutletSettings", "TaxGroup", "TaxComponent", "MenuCategory", "MenuItem", "ItemVariant", "Addon",

    # Tables, sessions & shifts
    "DiningTable", "FloorShift", "TableSession",

    # Orders / KOT
    "Order", "OrderItem", "OrderItemAddon", "KotTicket", "KotItem",

    # Billing & payments
    "OrderDiscount", "Invoice", "Payment", "SplitPayment",

    # Audit
    "AuditLog",
]
