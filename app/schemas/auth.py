from pydantic import BaseModel, Field


class RegisterRequest(BaseModel):
    # Presence and password length are checked by UserService (400 with message)
    name: str = Field("", max_length=100)
    username: str = Field("", max_length=50)
    email: str = Field("", max_length=255)
    password: str = ""


class LoginRequest(BaseModel):
    """`login` is an email or a username."""
    login: str
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: dict
