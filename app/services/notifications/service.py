"""
NotificationService: in-app notification records with email/push fan-out.

send_notification() persists a pending row and queues delivery on the
Celery worker; deliver() runs the channels. A delivery where every attempted
channel fails counts one attempt; the notification stays pending (and is
retried) until the attempt ceiling marks it failed.
"""
import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Any

from celery.exceptions import CeleryError
from kombu.exceptions import KombuError
from sqlalchemy import func
from sqlalchemy.orm import Session

from app.core.celery_app import celery_app
from app.core.config import settings
from app.core.errors import BadRequestError, NotFoundError
from app.models.notification import (
    Notification,
    STATUS_FAILED,
    STATUS_PENDING,
    STATUS_READ,
    STATUS_SENT,
    UNREAD_STATUSES,
)
from app.models.user import User
from app.services.notifications.email import EmailClient, EmailDeliveryError
from app.services.notifications.push import PushClient
from app.utils.metrics import notifications_delivered_total

logger = logging.getLogger(__name__)

DELIVER_TASK = "app.workers.tasks.notifications.deliver_notification"
BULK_TASK = "app.workers.tasks.notifications.send_bulk"

PREFERENCE_KEYS = ("email", "push", "in_app", "marketing")
STATS_PERIOD_DAYS = {"7d": 7, "30d": 30, "90d": 90}


class NotificationService:
    def __init__(
        self,
        db: Session,
        email_client: EmailClient | None = None,
        push_client: PushClient | None = None,
    ) -> None:
        self.db = db
        self._email = email_client
        self._push = push_client

    @property
    def email(self) -> EmailClient:
        if self._email is None:
            self._email = EmailClient()
        return self._email

    @property
    def push(self) -> PushClient:
        if self._push is None:
            self._push = PushClient()
        return self._push

    # ------------------------------------------------------------------
    # Create & deliver
    # ------------------------------------------------------------------

    def send_notification(
        self,
        user_id: str,
        title: str,
        message: str,
        type_: str = "in_app",
        category: str = "system",
        data: dict[str, Any] | None = None,
        priority: str = "normal",
        scheduled_for: datetime | None = None,
        send_email: bool = False,
        send_push: bool = False,
        email_template: str | None = None,
        email_data: dict[str, Any] | None = None,
    ) -> Notification:
        if not title or not message:
            raise BadRequestError("Title and message are required")
        data = data or {}
        notification = Notification(
            user_id=user_id,
            type=type_,
            category=category,
            title=title[:200],
            message=message[:1000],
            data=data,
            priority=priority,
            scheduled_for=scheduled_for,
            status=STATUS_PENDING,
            meta={
                "send_email": send_email,
                "send_push": send_push,
                "email_template": email_template,
                "email_data": email_data or {},
                "batch_id": data.get("batch_id"),
            },
        )
        self.db.add(notification)
        self.db.commit()
        self.db.refresh(notification)

        if scheduled_for is None or _aware(scheduled_for) <= datetime.now(timezone.utc):
            self.enqueue_delivery(notification.id)
        return notification

    def enqueue_delivery(self, notification_id: str, countdown: int | None = None) -> bool:
        """Queue delivery. The notification row is already committed, so a broker outage is logged, not raised."""
        try:
            celery_app.send_task(DELIVER_TASK, args=[notification_id], countdown=countdown)
        except (KombuError, CeleryError) as e:
            logger.error("notification_enqueue_failed", extra={"notification_id": notification_id, "error": str(e)})
            return False
        return True

    def deliver(self, notification: Notification) -> dict[str, Any]:
        """
        Run the requested channels once. Terminal notifications are left untouched.
        Returns {"status", "channels": {channel: bool}}.
        """
        if notification.status != STATUS_PENDING:
            return {"status": notification.status, "channels": {}}

        meta = notification.meta or {}
        user = self.db.query(User).filter(User.id == notification.user_id).one_or_none()
        channels: dict[str, bool] = {}

        if user is not None:
            if meta.get("send_email") and user.wants("email"):
                channels["email"] = self._deliver_email(user, notification)
            if meta.get("send_push") and user.push_tokens and user.wants("push"):
                channels["push"] = self._deliver_push(user, notification)

        if user is None:
            logger.warning("notification_user_missing", extra={"notification_id": notification.id, "user_id": notification.user_id})
            notification.increment_attempts(settings.notification_max_attempts)
        elif not channels or any(channels.values()):
            notification.mark_as_sent()
        else:
            notification.increment_attempts(settings.notification_max_attempts)

        self.db.add(notification)
        self.db.commit()

        logger.info(
            "notification_delivered" if notification.status == STATUS_SENT else "notification_delivery_failed",
            extra={
                "notification_id": notification.id,
                "user_id": notification.user_id,
                "attempts": notification.delivery_attempts,
                "channel": ",".join(channels) or "in_app",
            },
        )
        return {"status": notification.status, "channels": channels}

    def _deliver_email(self, user: User, notification: Notification) -> bool:
        meta = notification.meta or {}
        lines = [f"Hi {user.username},", "", notification.message]
        for key, value in (meta.get("email_data") or {}).items():
            lines.append(f"{key}: {value}")
        try:
            self.email.send(user.email, notification.title, "\n".join(lines), notification.priority)
        except EmailDeliveryError:
            notifications_delivered_total.labels(channel="email", status="failed").inc()
            return False
        notifications_delivered_total.labels(channel="email", status="sent").inc()
        return True

    def _deliver_push(self, user: User, notification: Notification) -> bool:
        data = {"notificationId": notification.id, "category": notification.category, **(notification.data or {})}
        result = self.push.send_to_tokens(
            list(user.push_tokens),
            notification.title,
            notification.message,
            data=data,
            priority=notification.priority,
        )
        if result.failed_tokens:
            user.push_tokens = [t for t in user.push_tokens if t not in result.failed_tokens]
            self.db.add(user)
            logger.info(
                "push_tokens_removed",
                extra={"user_id": user.id, "amount": len(result.failed_tokens)},
            )
        notifications_delivered_total.labels(channel="push", status="sent" if result.success else "failed").inc()
        return result.success

    # ------------------------------------------------------------------
    # User-facing queries
    # ------------------------------------------------------------------

    def list_for_user(
        self,
        user_id: str,
        page: int = 1,
        limit: int = 20,
        category: str | None = None,
        status: str | None = None,
        unread_only: bool = False,
    ) -> tuple[list[Notification], int]:
        q = self.db.query(Notification).filter(Notification.user_id == user_id)
        if category:
            q = q.filter(Notification.category == category)
        if unread_only:
            q = q.filter(Notification.status.in_(UNREAD_STATUSES))
        elif status:
            q = q.filter(Notification.status == status)
        total = q.count()
        rows = q.order_by(Notification.created_at.desc()).offset((page - 1) * limit).limit(limit).all()
        return rows, total

    def unread_count(self, user_id: str) -> int:
        return (
            self.db.query(Notification)
            .filter(Notification.user_id == user_id, Notification.status.in_(UNREAD_STATUSES))
            .count()
        )

    def _get_owned(self, notification_id: str, user_id: str) -> Notification:
        notification = (
            self.db.query(Notification)
            .filter(Notification.id == notification_id, Notification.user_id == user_id)
            .one_or_none()
        )
        if not notification:
            raise NotFoundError("Notification not found")
        return notification

    def mark_as_read(self, notification_id: str, user_id: str) -> Notification:
        notification = self._get_owned(notification_id, user_id)
        notification.mark_as_read()
        self.db.add(notification)
        self.db.commit()
        self.db.refresh(notification)
        return notification

    def mark_all_as_read(self, user_id: str) -> int:
        updated = (
            self.db.query(Notification)
            .filter(Notification.user_id == user_id, Notification.status.in_(UNREAD_STATUSES))
            .update(
                {Notification.status: STATUS_READ, Notification.read_at: datetime.now(timezone.utc)},
                synchronize_session=False,
            )
        )
        self.db.commit()
        return updated

    def delete(self, notification_id: str, user_id: str) -> None:
        notification = self._get_owned(notification_id, user_id)
        self.db.delete(notification)
        self.db.commit()

    # ------------------------------------------------------------------
    # Push tokens & preferences
    # ------------------------------------------------------------------

    def get_user(self, user_id: str) -> User:
        user = self.db.query(User).filter(User.id == user_id).one_or_none()
        if not user:
            raise NotFoundError("User not found")
        return user

    def add_push_token(self, user_id: str, token: str) -> list[str]:
        if not token or not token.strip():
            raise BadRequestError("Push token is required")
        user = self.get_user(user_id)
        tokens = list(user.push_tokens or [])
        if token not in tokens:
            tokens.append(token)
            user.push_tokens = tokens
            self.db.add(user)
            self.db.commit()
        return tokens

    def remove_push_token(self, user_id: str, token: str) -> list[str]:
        user = self.get_user(user_id)
        tokens = [t for t in (user.push_tokens or []) if t != token]
        user.push_tokens = tokens
        self.db.add(user)
        self.db.commit()
        return tokens

    def get_preferences(self, user_id: str) -> dict[str, bool]:
        return dict(self.get_user(user_id).notification_preferences or {})

    def update_preferences(self, user_id: str, updates: dict[str, Any]) -> dict[str, bool]:
        user = self.get_user(user_id)
        prefs = dict(user.notification_preferences or {})
        for key in PREFERENCE_KEYS:
            if updates.get(key) is not None:
                prefs[key] = bool(updates[key])
        user.notification_preferences = prefs
        self.db.add(user)
        self.db.commit()
        return prefs

    # ------------------------------------------------------------------
    # Helpers for common events
    # ------------------------------------------------------------------

    def welcome(self, user_id: str) -> Notification:
        return self.send_notification(
            user_id,
            title="Welcome!",
            message="Your account is ready. Start generating images now!",
            category="system",
            data={"action": "navigate", "route": "/dashboard"},
            priority="high",
            send_email=True,
            send_push=True,
            email_template="welcome",
        )

    def payment_success(self, user_id: str, tokens: int, amount: int, currency: str = "usd") -> Notification:
        return self.send_notification(
            user_id,
            title="Payment successful",
            message=f"{tokens} tokens were added to your account.",
            category="payment",
            data={"tokens": tokens, "amount": amount, "action": "navigate", "route": "/dashboard"},
            priority="high",
            send_email=True,
            send_push=True,
            email_template="paymentSuccess",
            email_data={"tokens": tokens, "amount": f"{amount / 100:.2f} {currency.upper()}"},
        )

    def low_tokens(self, user_id: str, remaining_tokens: int) -> Notification:
        return self.send_notification(
            user_id,
            title="Low token balance",
            message=f"Your token balance is low: {remaining_tokens} tokens. Buy a new package to keep generating.",
            category="token",
            data={"remaining_tokens": remaining_tokens, "action": "navigate", "route": "/buy-tokens"},
            priority="high",
            send_email=True,
            send_push=True,
            email_template="lowTokens",
            email_data={"remaining_tokens": remaining_tokens},
        )

    def image_generated(self, user_id: str, image_ids: list[str]) -> Notification:
        return self.send_notification(
            user_id,
            title="Image ready",
            message=f"{len(image_ids)} image(s) generated successfully.",
            category="image_generation",
            data={"image_count": len(image_ids), "image_ids": image_ids, "action": "navigate", "route": "/images"},
            send_push=True,
        )

    def security_alert(self, user_id: str, activity: str, ip_address: str | None = None) -> Notification:
        return self.send_notification(
            user_id,
            title="Security alert",
            message=f"Unusual activity on your account: {activity}",
            category="security",
            data={"activity": activity, "ip_address": ip_address, "action": "navigate", "route": "/profile/security"},
            priority="high",
            send_email=True,
            send_push=True,
            email_template="securityAlert",
            email_data={"activity": activity, "ip_address": ip_address},
        )

    def admin_message(self, user_id: str, title: str, message: str, data: dict | None = None) -> Notification:
        return self.send_notification(user_id, title=title, message=message, category="admin", data=data, send_email=True)

    def send_bulk(self, user_ids: list[str], batch_id: str | None = None, **options: Any) -> dict[str, Any]:
        """One notification per user; a failure for one user does not stop the batch."""
        batch_id = batch_id or f"batch_{int(time.time() * 1000)}"
        data = {**(options.pop("data", None) or {}), "batch_id": batch_id}
        sent = 0
        for user_id in user_ids:
            try:
                self.send_notification(user_id, data=data, **options)
                sent += 1
            except Exception:
                self.db.rollback()
                logger.exception("bulk_notification_failed", extra={"user_id": user_id})
        return {"batch_id": batch_id, "total": len(user_ids), "sent": sent, "failed": len(user_ids) - sent}

    def queue_bulk(self, user_ids: list[str], **options: Any) -> dict[str, Any]:
        batch_id = f"batch_{int(time.time() * 1000)}"
        celery_app.send_task(BULK_TASK, args=[user_ids], kwargs={"batch_id": batch_id, **options})
        return {"batch_id": batch_id, "total": len(user_ids), "queued": True}

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def process_scheduled(self, now: datetime | None = None) -> int:
        """Queue delivery for pending notifications whose time has come."""
        now = now or datetime.now(timezone.utc)
        ids = [
            row.id
            for row in self.db.query(Notification.id)
            .filter(
                Notification.status == STATUS_PENDING,
                Notification.scheduled_for.isnot(None),
                Notification.scheduled_for <= now,
            )
            .all()
        ]
        for notification_id in ids:
            self.enqueue_delivery(notification_id)
        if ids:
            logger.info("scheduled_notifications_queued", extra={"amount": len(ids)})
        return len(ids)

    def cleanup_old(self, days_old: int = 90) -> int:
        """Delete read/failed notifications older than days_old."""
        cutoff = datetime.now(timezone.utc) - timedelta(days=days_old)
        deleted = (
            self.db.query(Notification)
            .filter(Notification.created_at < cutoff, Notification.status.in_((STATUS_READ, STATUS_FAILED)))
            .delete(synchronize_session=False)
        )
        self.db.commit()
        logger.info("notifications_cleaned_up", extra={"amount": deleted})
        return deleted

    # ------------------------------------------------------------------
    # Admin
    # ------------------------------------------------------------------

    def list_all(
        self,
        page: int = 1,
        limit: int = 50,
        user_id: str | None = None,
        category: str | None = None,
        status: str | None = None,
        type_: str | None = None,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
    ) -> tuple[list[Notification], int]:
        q = self.db.query(Notification)
        if user_id:
            q = q.filter(Notification.user_id == user_id)
        if category:
            q = q.filter(Notification.category == category)
        if status:
            q = q.filter(Notification.status == status)
        if type_:
            q = q.filter(Notification.type == type_)
        if start_date:
            q = q.filter(Notification.created_at >= start_date)
        if end_date:
            q = q.filter(Notification.created_at <= end_date)
        total = q.count()
        rows = q.order_by(Notification.created_at.desc()).offset((page - 1) * limit).limit(limit).all()
        return rows, total

    def stats(self, period: str = "30d") -> dict[str, Any]:
        since = datetime.now(timezone.utc) - timedelta(days=STATS_PERIOD_DAYS.get(period, 30))

        def grouped(column) -> list[dict]:
            rows = (
                self.db.query(column.label("key"), func.count(Notification.id).label("count"))
                .filter(Notification.created_at >= since)
                .group_by(column)
                .order_by(column)
                .all()
            )
            return [{"id": str(r.key), "count": r.count} for r in rows]

        return {
            "total_notifications": self.db.query(Notification).filter(Notification.created_at >= since).count(),
            "by_status": grouped(Notification.status),
            "by_category": grouped(Notification.category),
            "by_type": grouped(Notification.type),
            "daily_notifications": grouped(func.date(Notification.created_at)),
        }


def _aware(dt: datetime) -> datetime:
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)
