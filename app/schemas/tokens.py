from typing import Any

from pydantic import BaseModel


class SpendRequest(BaseModel):
    amount: int
    description: str
    category: str = "ai_generation"
    ai_provider: str | None = None
    generation_type: str | None = None
    image_count: int | None = None
    image_size: str | None = None
    prompt: str | None = None


class AddRequest(BaseModel):
    amount: int
    description: str
    type: str = "bonus"
    category: str = "admin_bonus"
    package_id: str | None = None
    metadata: dict[str, Any] | None = None
