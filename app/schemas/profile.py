from datetime import date

from pydantic import BaseModel, Field


class SocialLinks(BaseModel):
    twitter: str | None = None
    instagram: str | None = None
    linkedin: str | None = None
    github: str | None = None


class AiPreferences(BaseModel):
    default_style: str | None = None
    default_size: str | None = None
    favorite_prompts: list[str] | None = None


class Preferences(BaseModel):
    language: str | None = None
    theme: str | None = None
    email_notifications: dict[str, bool] | None = None
    ai_preferences: AiPreferences | None = None


class ProfileUpdate(BaseModel):
    name: str | None = Field(None, max_length=100)
    bio: str | None = Field(None, max_length=500)
    website: str | None = None
    location: str | None = None
    phone: str | None = None
    date_of_birth: date | None = None
    gender: str | None = None
    social_links: SocialLinks | None = None
    preferences: Preferences | None = None


class PasswordChange(BaseModel):
    current_password: str
    new_password: str
