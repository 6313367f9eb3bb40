"""
Firebase Cloud Messaging channel.

Credentials come from FIREBASE_SERVICE_ACCOUNT_KEY (service account JSON) or
FIREBASE_PROJECT_ID (application default credentials). Without either the
client logs pushes and reports success.
"""
import json
import logging
import time
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any

import firebase_admin
from firebase_admin import credentials, messaging
from firebase_admin.exceptions import FirebaseError

from app.core.config import settings

logger = logging.getLogger(__name__)

APP_NAME = "push"
DEFAULT_CLICK_ACTION = "FLUTTER_NOTIFICATION_CLICK"


@dataclass
class PushResult:
    success: bool
    sent: int = 0
    failed_tokens: list[str] = field(default_factory=list)
    mock: bool = False


def _init_app() -> firebase_admin.App | None:
    try:
        return firebase_admin.get_app(APP_NAME)
    except ValueError:
        pass
    if settings.firebase_service_account_key:
        cred = credentials.Certificate(json.loads(settings.firebase_service_account_key))
        return firebase_admin.initialize_app(cred, name=APP_NAME)
    if settings.firebase_project_id:
        return firebase_admin.initialize_app(options={"projectId": settings.firebase_project_id}, name=APP_NAME)
    return None


class PushClient:
    def __init__(self, app: firebase_admin.App | None = None, ttl_seconds: int | None = None) -> None:
        self._app = app
        self._resolved = app is not None
        self.ttl_seconds = ttl_seconds or settings.push_ttl_seconds

    @property
    def app(self) -> firebase_admin.App | None:
        if not self._resolved:
            try:
                self._app = _init_app()
            except (ValueError, FirebaseError) as e:
                logger.error("firebase_init_failed", extra={"channel": "push", "error": str(e)})
                self._app = None
            self._resolved = True
        return self._app

    @property
    def configured(self) -> bool:
        return self.app is not None

    def build_message(
        self,
        title: str,
        body: str,
        data: dict[str, Any] | None = None,
        priority: str = "normal",
        badge: int = 1,
        image_url: str | None = None,
        click_action: str | None = None,
        token: str | None = None,
        topic: str | None = None,
    ) -> messaging.Message:
        high = priority in ("high", "urgent")
        payload = {k: str(v) for k, v in (data or {}).items() if v is not None}
        payload["clickAction"] = click_action or DEFAULT_CLICK_ACTION
        payload["timestamp"] = str(int(time.time() * 1000))
        return messaging.Message(
            notification=messaging.Notification(title=title, body=body, image=image_url),
            data=payload,
            android=messaging.AndroidConfig(
                priority="high" if high else "normal",
                ttl=timedelta(seconds=self.ttl_seconds),
                notification=messaging.AndroidNotification(
                    click_action=click_action,
                    icon="ic_notification",
                    color="#4CAF50",
                    sound="default",
                    channel_id="default",
                ),
            ),
            apns=messaging.APNSConfig(
                headers={
                    "apns-priority": "10" if high else "5",
                    "apns-expiration": str(int(time.time()) + self.ttl_seconds),
                },
                payload=messaging.APNSPayload(aps=messaging.Aps(badge=badge, sound="default", category="GENERAL")),
            ),
            token=token,
            topic=topic,
        )

    def send_to_tokens(self, tokens: list[str], title: str, body: str, **kwargs: Any) -> PushResult:
        """Send to each device token; tokens that fail are returned for removal."""
        if not self.configured:
            logger.info("push_mock_sent", extra={"channel": "push", "amount": len(tokens)})
            return PushResult(success=True, sent=len(tokens), mock=True)

        sent = 0
        failed: list[str] = []
        for token in tokens:
            try:
                messaging.send(self.build_message(title, body, token=token, **kwargs), app=self.app)
                sent += 1
            except (FirebaseError, ValueError) as e:
                logger.warning("push_send_failed", extra={"channel": "push", "error": str(e)})
                failed.append(token)
        return PushResult(success=sent > 0, sent=sent, failed_tokens=failed)

    def send_to_topic(self, topic: str, title: str, body: str, **kwargs: Any) -> PushResult:
        if not self.configured:
            logger.info("push_mock_topic_sent", extra={"channel": "push"})
            return PushResult(success=True, sent=1, mock=True)
        try:
            messaging.send(self.build_message(title, body, topic=topic, **kwargs), app=self.app)
        except (FirebaseError, ValueError) as e:
            logger.warning("push_topic_failed", extra={"channel": "push", "error": str(e)})
            return PushResult(success=False)
        return PushResult(success=True, sent=1)
