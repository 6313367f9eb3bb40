from typing import Any

from pydantic import BaseModel


class GenerateRequest(BaseModel):
    # Validated by the provider (type, length, banned terms)
    prompt: Any = None
    style: str | None = None
    size: str | None = None
    model: str | None = None
    quality: str | None = None


class ProviderRequest(BaseModel):
    provider: str | None = None
