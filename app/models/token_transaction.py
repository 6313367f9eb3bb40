from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Column, DateTime, Integer, String, Text, UniqueConstraint

from app.db.base import Base, JSONType

TYPE_PURCHASE = "purchase"
TYPE_SPEND = "spend"
TYPE_REFUND = "refund"
TYPE_BONUS = "bonus"
TYPE_EXPIRED = "expired"
TYPE_ADMIN_ADJUSTMENT = "admin_adjustment"
TRANSACTION_TYPES = (TYPE_PURCHASE, TYPE_SPEND, TYPE_REFUND, TYPE_BONUS, TYPE_EXPIRED, TYPE_ADMIN_ADJUSTMENT)

CATEGORIES = ("ai_generation", "image_upload", "admin_bonus", "purchase", "refund", "expiration", "other")


class TokenTransaction(Base):
    """Append-only ledger entry. Positive amount = credit, negative = debit."""

    __tablename__ = "token_transactions"
    __table_args__ = (
        # One purchase credit per payment, one spend/refund per image
        UniqueConstraint("payment_id", "type", name="uq_token_tx_payment_type"),
        UniqueConstraint("image_id", "type", name="uq_token_tx_image_type"),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    user_id = Column(String, nullable=False, index=True)
    type = Column(String, nullable=False)
    amount = Column(Integer, nullable=False)
    description = Column(Text, nullable=False)
    category = Column(String, nullable=False, default="other")
    payment_id = Column(String, nullable=True, index=True)
    package_id = Column(String, nullable=True)
    image_id = Column(String, nullable=True, index=True)
    status = Column(String, nullable=False, default="completed")

    # Generation context
    ai_provider = Column(String, nullable=True)
    generation_type = Column(String, nullable=True)
    image_count = Column(Integer, nullable=True)
    image_size = Column(String, nullable=True)
    prompt = Column(Text, nullable=True)

    # Request context
    session_id = Column(String, nullable=True)
    user_agent = Column(String, nullable=True)
    ip_address = Column(String, nullable=True)

    meta = Column("metadata", JSONType, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc), index=True)

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "type": self.type,
            "amount": self.amount,
            "description": self.description,
            "category": self.category,
            "payment_id": self.payment_id,
            "package_id": self.package_id,
            "image_id": self.image_id,
            "ai_provider": self.ai_provider,
            "image_size": self.image_size,
            "prompt": self.prompt,
            "metadata": self.meta or {},
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
