from datetime import date, datetime
from typing import Optional
from pydantic import BaseModel, field_validator

from services.currency import PAYMENT_METHODS


class ExpenseBase(BaseModel):
    amount: float
    date: date
    description: Optional[str] = ""
    payment_method: Optional[str] = None
    category_id: str

    @field_validator("payment_method")
    @classmethod
    def known_payment_method(cls, v: Optional[str]) -> Optional[str]:
        if v in (None, ""):
            return None
        if v not in PAYMENT_METHODS:
            raise ValueError(f"Payment method must be one of: {', '.join(PAYMENT_METHODS)}")
        return v


class ExpenseCreate(ExpenseBase):
    pass


class ExpenseUpdate(ExpenseBase):
    pass


class ExpenseRead(BaseModel):
    id: str
    amount: float
    date: date
    description: Optional[str] = None
    payment_method: Optional[str] = None
    is_disabled: bool
    category_id: str
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True
