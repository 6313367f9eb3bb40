from pydantic import BaseModel


class RoleUpdate(BaseModel):
    role: str


class TokenGrant(BaseModel):
    # Negative amounts remove tokens; the balance never goes below zero
    amount: int
    description: str | None = None
