from pydantic import BaseModel, Field
from typing import Optional, Literal

TableStatusLiteral = Literal["available", "occupied", "running", "reserved", "billing", "cleaning", "blocked"]

class TableIn(BaseModel):
    outlet_id: str
    code: str
    floor_id: Optional[str] = None
    capacity: int = Field(default=2, ge=1)

class SessionIn(BaseModel):
    guest_count: int = Field(default=1, ge=1)

class TableStatusIn(BaseModel):
    status: TableStatusLiteral
    reason: Optional[str] = None

class ShiftOpenIn(BaseModel):
    outlet_id: str
    floor_id: str
    opening_float: float = 0.0

class ShiftCloseIn(BaseModel):
    actual_cash: Optional[float] = None
    expected_cash: Optional[float] = None
    note: Optional[str] = None

class TransferIn(BaseModel):
    to_table_id: str
