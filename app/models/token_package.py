"""
TokenPackage: priced catalog entry sold through Stripe.
Package values are copied into Payment.meta at purchase time.
"""
from datetime import datetime, timezone
from decimal import Decimal
from uuid import uuid4

from sqlalchemy import Boolean, Column, DateTime, Integer, Numeric, String, Text

from app.db.base import Base, JSONType


def _aware(dt: datetime | None) -> datetime | None:
    if dt is not None and dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


class TokenPackage(Base):
    __tablename__ = "token_packages"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    name = Column(String, unique=True, nullable=False)
    description = Column(Text, nullable=False, default="")
    tokens = Column(Integer, nullable=False)
    price = Column(Numeric(10, 2), nullable=False)
    currency = Column(String, nullable=False, default="USD")
    is_active = Column(Boolean, nullable=False, default=True)
    is_popular = Column(Boolean, nullable=False, default=False)
    is_limited = Column(Boolean, nullable=False, default=False)
    max_purchases = Column(Integer, nullable=True)  # per user; null = unlimited
    expires_at = Column(DateTime(timezone=True), nullable=True)
    bonus_tokens = Column(Integer, nullable=False, default=0)
    discount_percentage = Column(Integer, nullable=False, default=0)
    features = Column(JSONType, nullable=False, default=list)
    meta = Column("metadata", JSONType, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    @property
    def total_tokens(self) -> int:
        return (self.tokens or 0) + (self.bonus_tokens or 0)

    @property
    def final_price(self) -> Decimal:
        price = Decimal(str(self.price or 0))
        if self.discount_percentage and self.discount_percentage > 0:
            return price * (Decimal(100) - Decimal(self.discount_percentage)) / Decimal(100)
        return price

    @property
    def savings_amount(self) -> Decimal:
        return Decimal(str(self.price or 0)) - self.final_price

    @property
    def amount_cents(self) -> int:
        """Final price in minor units, rounded half-up."""
        return int((self.final_price * 100).quantize(Decimal("1"), rounding="ROUND_HALF_UP"))

    def is_expired(self, now: datetime | None = None) -> bool:
        if self.expires_at is None:
            return False
        now = now or datetime.now(timezone.utc)
        return now > _aware(self.expires_at)

    def is_available(self, now: datetime | None = None) -> bool:
        return bool(self.is_active) and not self.is_expired(now)

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "tokens": self.tokens,
            "bonus_tokens": self.bonus_tokens,
            "total_tokens": self.total_tokens,
            "price": float(self.price or 0),
            "final_price": round(float(self.final_price), 2),
            "savings_amount": round(float(self.savings_amount), 2),
            "currency": self.currency,
            "discount_percentage": self.discount_percentage,
            "is_active": self.is_active,
            "is_popular": self.is_popular,
            "is_limited": self.is_limited,
            "max_purchases": self.max_purchases,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "features": self.features or [],
        }
