from pydantic import BaseModel, Field
from typing import Optional, Literal, List

OrderTypeLiteral = Literal["dine_in", "takeaway", "delivery"]
OrderStatusLiteral = Literal["pending", "confirmed", "preparing", "ready", "served", "billed", "paid", "cancelled"]

class OrderIn(BaseModel):
    outlet_id: str
    order_type: OrderTypeLiteral = "dine_in"
    table_id: Optional[str] = None
    session_id: Optional[str] = None
    guest_count: int = Field(default=1, ge=1)
    is_interstate: bool = False
    note: Optional[str] = None

class OrderItemIn(BaseModel):
    item_id: str
    quantity: int = Field(default=1, ge=1)
    variant_id: Optional[str] = None
    addon_ids: List[str] = []
    special_instructions: Optional[str] = None

class ItemsIn(BaseModel):
    items: List[OrderItemIn]

class QuantityIn(BaseModel):
    quantity: int = Field(ge=1)

class CancelItemIn(BaseModel):
    reason: str = Field(min_length=1)
    approved_by: Optional[str] = None

class CancelIn(BaseModel):
    reason: Optional[str] = None
