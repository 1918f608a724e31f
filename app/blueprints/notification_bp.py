"""
APQP/PPAP Project Tracking
Notification Blueprint.

Provides:
    - In-app notification inbox per user (list, unread count, mark read)
    - Email log viewing for delivery audit

Notifications are written by the approval engine's post-commit outbox; this
blueprint only reads them and flips their read flag.
"""

from __future__ import annotations

import logging

from flask import Blueprint, jsonify, request

from app.blueprints import paginate_query
from app.models import db
from app.models.notification import EmailLog, Notification
from app.services.notification import NotificationService
from app.utils.errors import E, api_error

logger = logging.getLogger(__name__)

notification_bp = Blueprint("notification", __name__, url_prefix="/api/v1")


# ═══════════════════════════════════════════════════════════════════════════
#  NOTIFICATION INBOX
# ═══════════════════════════════════════════════════════════════════════════

@notification_bp.route("/notifications", methods=["GET"])
def list_notifications():
    """List a recipient's notifications, newest first."""
    recipient_id = request.args.get("recipient_id", type=int)
    if recipient_id is None:
        return api_error(E.VALIDATION_REQUIRED, "recipient_id is required")

    unread_only = request.args.get("unread_only", "false").lower() == "true"
    limit = request.args.get("limit", 50, type=int)
    offset = request.args.get("offset", 0, type=int)

    items, total = NotificationService.list_for_recipient(
        recipient_id, unread_only=unread_only, limit=limit, offset=offset,
    )
    return jsonify({
        "items": [n.to_dict() for n in items],
        "total": total,
        "unread": NotificationService.unread_count(recipient_id),
        "limit": limit,
        "offset": offset,
    })


@notification_bp.route("/notifications/<int:nid>", methods=["GET"])
def get_notification(nid):
    """Get a single notification by ID."""
    notif = db.session.get(Notification, nid)
    if not notif:
        return api_error(E.NOT_FOUND, "Notification not found")
    return jsonify(notif.to_dict())


@notification_bp.route("/notifications/<int:nid>/read", methods=["PUT"])
def mark_notification_read(nid):
    notif = NotificationService.mark_read(nid)
    if not notif:
        return api_error(E.NOT_FOUND, "Notification not found")
    return jsonify(notif.to_dict())


@notification_bp.route("/notifications/read-all", methods=["PUT"])
def mark_all_notifications_read():
    data = request.get_json(silent=True) or {}
    recipient_id = data.get("recipient_id")
    if not recipient_id:
        return api_error(E.VALIDATION_REQUIRED, "recipient_id is required")
    count = NotificationService.mark_all_read(recipient_id)
    return jsonify({"updated": count})


# ═══════════════════════════════════════════════════════════════════════════
#  EMAIL LOGS
# ═══════════════════════════════════════════════════════════════════════════

@notification_bp.route("/email-logs", methods=["GET"])
def list_email_logs():
    """List email send logs with pagination."""
    status = request.args.get("status")
    category = request.args.get("category")

    q = EmailLog.query
    if status:
        q = q.filter_by(status=status)
    if category:
        q = q.filter_by(category=category)

    page = paginate_query(q.order_by(EmailLog.created_at.desc(), EmailLog.id.desc()))
    page["items"] = [e.to_dict() for e in page["items"]]
    return jsonify(page)
