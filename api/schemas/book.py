from datetime import datetime
from typing import Optional
from pydantic import BaseModel, field_validator

from services.currency import is_valid_currency

INVALID_CURRENCY = "Invalid currency code. Please use a valid ISO 4217 currency code (e.g., USD, EUR, GBP)"


class BookBase(BaseModel):
    name: str
    description: Optional[str] = None
    currency: str = "USD"

    @field_validator("name")
    @classmethod
    def name_length(cls, v: str) -> str:
        v = v.strip()
        if len(v) < 1 or len(v) > 100:
            raise ValueError("Book name must be 1-100 characters")
        return v

    @field_validator("currency")
    @classmethod
    def currency_code(cls, v: str) -> str:
        v = v.strip().upper()
        if not is_valid_currency(v):
            raise ValueError(INVALID_CURRENCY)
        return v


class BookCreate(BookBase):
    pass


class BookUpdate(BookBase):
    pass


class BookRead(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    currency: str
    is_archived: bool
    user_id: str
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True
