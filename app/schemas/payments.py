from decimal import Decimal
from datetime import datetime

from pydantic import BaseModel, Field


class CreatePaymentIntentRequest(BaseModel):
    package_id: str


class ConfirmPaymentRequest(BaseModel):
    payment_intent_id: str


class TokenPackageCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: str | None = Field(None, max_length=500)
    tokens: int = Field(..., ge=1)
    price: Decimal = Field(..., ge=0)
    currency: str = "USD"
    is_active: bool = True
    is_popular: bool = False
    is_limited: bool = False
    max_purchases: int | None = Field(None, ge=1)
    expires_at: datetime | None = None
    bonus_tokens: int = Field(0, ge=0)
    discount_percentage: int = Field(0, ge=0, le=100)
    features: list[str] = []


class TokenPackageUpdate(BaseModel):
    name: str | None = Field(None, min_length=1, max_length=100)
    description: str | None = Field(None, max_length=500)
    tokens: int | None = Field(None, ge=1)
    price: Decimal | None = Field(None, ge=0)
    currency: str | None = None
    is_active: bool | None = None
    is_popular: bool | None = None
    is_limited: bool | None = None
    max_purchases: int | None = Field(None, ge=1)
    expires_at: datetime | None = None
    bonus_tokens: int | None = Field(None, ge=0)
    discount_percentage: int | None = Field(None, ge=0, le=100)
    features: list[str] | None = None
