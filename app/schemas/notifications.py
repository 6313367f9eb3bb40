from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

NotificationType = Literal["email", "push", "in_app", "sms"]
NotificationCategory = Literal["system", "payment", "token", "image_generation", "security", "marketing", "admin"]
NotificationPriority = Literal["low", "normal", "high", "urgent"]


class PushTokenRequest(BaseModel):
    token: str


class PreferencesUpdate(BaseModel):
    email: bool | None = None
    push: bool | None = None
    in_app: bool | None = None
    marketing: bool | None = None


class NotificationContent(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    message: str = Field(..., min_length=1, max_length=1000)
    type: NotificationType = "in_app"
    category: NotificationCategory = "admin"
    data: dict[str, Any] | None = None
    priority: NotificationPriority = "normal"
    scheduled_for: datetime | None = None
    send_email: bool = False
    send_push: bool = False

    def options(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "message": self.message,
            "type_": self.type,
            "category": self.category,
            "data": self.data,
            "priority": self.priority,
            "scheduled_for": self.scheduled_for,
            "send_email": self.send_email,
            "send_push": self.send_push,
        }


class AdminSendRequest(NotificationContent):
    user_id: str


class AdminBulkSendRequest(NotificationContent):
    user_ids: list[str] = Field(..., min_length=1)
