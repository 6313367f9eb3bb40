from datetime import datetime

from fastapi import APIRouter, Body, Depends, Query
from sqlalchemy.orm import Session

from app.core.config import settings
from app.db.session import get_db
from app.models.user import User
from app.schemas.notifications import (
    AdminBulkSendRequest,
    AdminSendRequest,
    PreferencesUpdate,
    PushTokenRequest,
)
from app.services.auth.jwt import get_current_user, require_admin
from app.services.notifications.service import NotificationService
from app.utils.pagination import pagination

router = APIRouter(prefix="/api/notifications", tags=["notifications"])

# Larger batches are handed to the worker instead of being created inline
BULK_INLINE_LIMIT = 100


@router.get("")
def list_notifications(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    category: str | None = None,
    status: str | None = None,
    unread_only: bool = False,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    svc = NotificationService(db)
    rows, total = svc.list_for_user(current_user.id, page, limit, category, status, unread_only)
    return {
        "notifications": [n.as_dict() for n in rows],
        "pagination": pagination(page, limit, total),
        "unread_count": svc.unread_count(current_user.id),
    }


@router.get("/unread-count")
def unread_count(current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return {"count": NotificationService(db).unread_count(current_user.id)}


@router.patch("/mark-all-read")
def mark_all_read(current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    updated = NotificationService(db).mark_all_as_read(current_user.id)
    return {"message": "All notifications marked as read", "modified_count": updated}


@router.post("/push-token")
def add_push_token(
    body: PushTokenRequest = Body(...),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    NotificationService(db).add_push_token(current_user.id, body.token)
    return {"message": "Push token registered successfully"}


@router.delete("/push-token/{token}")
def remove_push_token(token: str, current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    NotificationService(db).remove_push_token(current_user.id, token)
    return {"message": "Push token removed successfully"}


@router.get("/preferences")
def get_preferences(current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return {"preferences": NotificationService(db).get_preferences(current_user.id)}


@router.put("/preferences")
def update_preferences(
    body: PreferencesUpdate = Body(...),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    prefs = NotificationService(db).update_preferences(current_user.id, body.model_dump(exclude_none=True))
    return {"message": "Notification preferences updated", "preferences": prefs}


# ---------- Admin ----------
@router.post("/admin/send")
def admin_send(
    body: AdminSendRequest = Body(...),
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    svc = NotificationService(db)
    svc.get_user(body.user_id)
    notification = svc.send_notification(body.user_id, **body.options())
    return {"message": "Notification sent successfully", "notification": notification.as_dict()}


@router.post("/admin/bulk-send")
def admin_bulk_send(
    body: AdminBulkSendRequest = Body(...),
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    svc = NotificationService(db)
    options = body.options()
    if len(body.user_ids) > BULK_INLINE_LIMIT:
        options["scheduled_for"] = options["scheduled_for"].isoformat() if options["scheduled_for"] else None
        return {"message": "Bulk notification queued", **svc.queue_bulk(body.user_ids, **options)}
    result = svc.send_bulk(body.user_ids, **options)
    return {"message": "Bulk notification sent", **result}


@router.get("/admin/all")
def admin_list(
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    user_id: str | None = None,
    category: str | None = None,
    status: str | None = None,
    type: str | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    rows, total = NotificationService(db).list_all(
        page, limit, user_id, category, status, type, start_date, end_date
    )
    return {"notifications": [n.as_dict() for n in rows], "pagination": pagination(page, limit, total)}


@router.get("/admin/stats")
def admin_stats(
    period: str = Query("30d"),
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    return NotificationService(db).stats(period)


@router.delete("/admin/cleanup")
def admin_cleanup(
    days_old: int = Query(settings.notification_retention_days, ge=1),
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    deleted = NotificationService(db).cleanup_old(days_old)
    return {"message": f"Cleaned up {deleted} old notifications", "deleted_count": deleted}


@router.patch("/{notification_id}/read")
def mark_read(notification_id: str, current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    notification = NotificationService(db).mark_as_read(notification_id, current_user.id)
    return {"message": "Notification marked as read", "notification": notification.as_dict()}


@router.delete("/{notification_id}")
def delete_notification(
    notification_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    NotificationService(db).delete(notification_id, current_user.id)
    return {"message": "Notification deleted successfully"}
