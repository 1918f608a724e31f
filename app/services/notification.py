"""
APQP/PPAP Project Tracking
Notification Service.

Central service for creating and querying notifications, plus the
post-commit outbox the approval engine uses to hand off its side effects.

Flow:
    engine transaction ── enqueue(NotificationRequest) ──► NotificationOutbox
    db.session.commit()
    outbox.flush() ──► NotificationService.dispatch() per request
                       (in-app Notification + templated email)

A failing request is rolled back on its own, logged, and dropped; it never
reaches the engine's caller and is not retried.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from html import escape

from flask import current_app
from sqlalchemy import select

from app.models import db
from app.models.notification import Notification
from app.models.organization import User
from app.models.project import ItemDetail
from app.services.email_service import EmailService, render_item_rows, render_note_block

logger = logging.getLogger(__name__)

TEMPLATE_KINDS = frozenset({"submitted", "rejected", "approved"})

_TITLES = {
    "submitted": "{count} item(s) waiting for your approval",
    "rejected": "Item rejected: {item_name}",
    "approved": "Item approved: {item_name}",
}


@dataclass(frozen=True)
class NotificationRequest:
    """What the engine wants said, to whom. Rendering happens at dispatch time."""

    recipient_id: int
    template_kind: str
    item_detail_id: int
    note: str | None = None
    actor: str | None = None
    # Consolidated "submitted" notifications list every item of the batch
    extra_item_ids: tuple[int, ...] = ()

    @property
    def item_ids(self) -> tuple[int, ...]:
        return (self.item_detail_id,) + tuple(
            i for i in self.extra_item_ids if i != self.item_detail_id
        )


class NotificationOutbox:
    """Collects notification requests during a transaction; flushed after commit."""

    def __init__(self):
        self._pending: list[NotificationRequest] = []

    def __len__(self):
        return len(self._pending)

    @property
    def pending(self) -> list[NotificationRequest]:
        return list(self._pending)

    def enqueue(self, request: NotificationRequest) -> None:
        if request.template_kind not in TEMPLATE_KINDS:
            raise ValueError(f"Unknown notification template: {request.template_kind}")
        if request.recipient_id is None:
            return
        key = (request.recipient_id, request.template_kind, request.item_detail_id)
        if any((r.recipient_id, r.template_kind, r.item_detail_id) == key for r in self._pending):
            return
        self._pending.append(request)

    def discard(self) -> None:
        self._pending.clear()

    def flush(self) -> int:
        """Dispatch every pending request. Returns the number delivered."""
        requests, self._pending = self._pending, []
        if not requests:
            return 0
        if not current_app.config.get("NOTIFICATIONS_ENABLED", True):
            logger.info("Notifications disabled; dropped %d request(s)", len(requests))
            return 0

        delivered = 0
        for req in requests:
            try:
                NotificationService.dispatch(req)
                delivered += 1
            except Exception:
                db.session.rollback()
                logger.exception(
                    "Notification dispatch failed",
                    extra={
                        "event_type": f"notify_{req.template_kind}",
                        "item_detail_id": req.item_detail_id,
                        "approver_id": req.recipient_id,
                    },
                )
        return delivered


class NotificationService:
    """Stateless service class for notification operations."""

    # ── Dispatch ──────────────────────────────────────────────────────────

    @staticmethod
    def dispatch(req: NotificationRequest) -> Notification | None:
        """
        Deliver one request: in-app notification plus templated email.

        Returns:
            The committed Notification, or None when the recipient is gone
            or inactive.
        """
        recipient = db.session.get(User, req.recipient_id)
        if recipient is None or recipient.status != "active":
            logger.info("Notification skipped: recipient %s unavailable", req.recipient_id)
            return None

        items = db.session.execute(
            select(ItemDetail).where(ItemDetail.id.in_(req.item_ids)).order_by(ItemDetail.id)
        ).scalars().all()
        if not items:
            logger.info("Notification skipped: item %s no longer exists", req.item_detail_id)
            return None

        first = items[0]
        title = _TITLES[req.template_kind].format(count=len(items), item_name=first.item_name)
        message = "; ".join(i.item_name for i in items)
        if req.note:
            message += f": {req.note}"

        notif = Notification(
            recipient_id=recipient.id,
            title=title[:300],
            message=message,
            category=req.template_kind,
            item_detail_id=first.id,
        )
        db.session.add(notif)
        db.session.flush()

        if recipient.email:
            EmailService.send_from_template(
                to_email=recipient.email,
                to_name=recipient.full_name or None,
                template_name=req.template_kind,
                context=_email_context(recipient, items, req),
                category=req.template_kind,
                notification_id=notif.id,
            )

        db.session.commit()
        logger.info(
            "Notification dispatched",
            extra={
                "event_type": f"notify_{req.template_kind}",
                "item_detail_id": first.id,
                "approver_id": recipient.id,
            },
        )
        return notif

    # ── Query ─────────────────────────────────────────────────────────────

    @staticmethod
    def list_for_recipient(recipient_id, unread_only=False, limit=50, offset=0):
        """
        Retrieve notifications for a recipient, newest first.
        """
        q = Notification.query.filter_by(recipient_id=recipient_id)
        if unread_only:
            q = q.filter_by(is_read=False)
        total = q.count()
        items = (
            q.order_by(Notification.created_at.desc(), Notification.id.desc())
            .offset(offset).limit(limit).all()
        )
        return items, total

    @staticmethod
    def unread_count(recipient_id):
        """Return count of unread notifications."""
        return Notification.query.filter_by(recipient_id=recipient_id, is_read=False).count()

    # ── Actions ───────────────────────────────────────────────────────────

    @staticmethod
    def mark_read(notification_id):
        """Mark a single notification as read."""
        notif = db.session.get(Notification, notification_id)
        if notif:
            notif.mark_read()
            db.session.commit()
        return notif

    @staticmethod
    def mark_all_read(recipient_id):
        """Mark all notifications for a recipient as read."""
        now = datetime.now(timezone.utc)
        count = (
            Notification.query.filter_by(recipient_id=recipient_id, is_read=False)
            .update({"is_read": True, "read_at": now}, synchronize_session="fetch")
        )
        db.session.commit()
        return count


# ── Private helpers ────────────────────────────────────────────────────────


def _actor_name(actor: str | None) -> str:
    if not actor:
        return ""
    user = User.find_by_actor(actor)
    return (user.full_name or user.emp_code) if user else actor


def _email_context(recipient: User, items: list[ItemDetail], req: NotificationRequest) -> dict:
    project = items[0].project
    return {
        "recipient_name": escape(recipient.first_name or recipient.emp_code),
        "actor_name": escape(_actor_name(req.actor)),
        "note_block": render_note_block(req.note),
        "item_count": len(items),
        "project_code": escape(project.code) if project else "",
        "model": escape(project.model or "") if project else "",
        "part_no": escape(project.part_no or "") if project else "",
        "part_name": escape(project.part_name or "") if project else "",
        "item_rows": render_item_rows(
            {
                "item_name": i.item_name,
                "item_type": i.item_type,
                "start_date": i.start_date.isoformat() if i.start_date else "",
                "end_date": i.end_date.isoformat() if i.end_date else "",
            }
            for i in items
        ),
        "app_url": current_app.config.get("APP_BASE_URL", ""),
    }
