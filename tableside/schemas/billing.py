from decimal import Decimal
from pydantic import BaseModel, Field
from typing import Optional, Literal, List

DiscountTypeLiteral = Literal["percentage", "flat"]
PayModeLiteral = Literal["cash", "card", "upi", "wallet", "credit", "complimentary"]

class DiscountIn(BaseModel):
    discount_type: DiscountTypeLiteral
    value: Decimal
    reason: Optional[str] = None

class BillIn(BaseModel):
    discount: Optional[DiscountIn] = None
    apply_service_charge: Optional[bool] = None

class CancelInvoiceIn(BaseModel):
    reason: Optional[str] = None

class PaymentIn(BaseModel):
    invoice_id: str
    mode: PayModeLiteral
    amount: Decimal
    card_last_four: Optional[str] = Field(default=None, max_length=4)
    card_type: Optional[str] = None
    transaction_id: Optional[str] = None
    reference_number: Optional[str] = None
    upi_id: Optional[str] = None
    wallet_name: Optional[str] = None
    bank_name: Optional[str] = None
    notes: Optional[str] = None

class SplitPartIn(BaseModel):
    mode: PayModeLiteral
    amount: Decimal
    transaction_id: Optional[str] = None
    reference_number: Optional[str] = None
    card_last_four: Optional[str] = Field(default=None, max_length=4)
    upi_id: Optional[str] = None
    notes: Optional[str] = None

class SplitPaymentIn(BaseModel):
    invoice_id: str
    splits: List[SplitPartIn]
    notes: Optional[str] = None
