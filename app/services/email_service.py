"""
APQP/PPAP Project Tracking
Email Service.

Provides email sending with template support for approval notifications.
When SMTP is not configured, emails are logged but not sent (dev/test mode).

Uses:
    - Flask-Mail compatible config (MAIL_SERVER, MAIL_PORT, etc.)
    - Falls back to logging-only mode when SMTP is not configured
    - All emails are recorded in EmailLog for audit

Configuration (env vars):
    MAIL_SERVER     SMTP host (default: None → log-only mode)
    MAIL_PORT       SMTP port (default: 587)
    MAIL_USE_TLS    Use TLS (default: true)
    MAIL_USERNAME   SMTP username
    MAIL_PASSWORD   SMTP password
    MAIL_DEFAULT_SENDER  Default from address
    APP_BASE_URL    Link rendered in the "Open Project Tracking" button
"""

from __future__ import annotations

import logging
import smtplib
from datetime import datetime, timezone
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from html import escape
from typing import Any

from flask import current_app

from app.models import db
from app.models.notification import EmailLog

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
#  Email Templates
# ═══════════════════════════════════════════════════════════════════════════

_PROJECT_HEADER = """
            <div style="background: #ffffff; border: 1px solid #e0e6ed; border-radius: 10px; padding: 20px;">
                <div style="font-size: 18px; font-weight: bold; color: #1f2d3d;">Project Detail</div>
                <hr style="border: none; border-top: 1px dashed #d1d5db; margin: 15px 0;">
                <table width="100%" cellpadding="10" cellspacing="0" style="border-collapse: collapse;">
                    <tr>
                        <td style="border: 1px solid #e5e7eb;"><div style="font-size: 12px;">PROJECT CODE</div>
                            <div style="font-weight: bold; color: #2563eb;">#{project_code}</div></td>
                        <td style="border: 1px solid #e5e7eb;"><div style="font-size: 12px;">MODEL</div>
                            <div style="font-weight: bold; color: #2563eb;">{model}</div></td>
                    </tr>
                    <tr>
                        <td style="border: 1px solid #e5e7eb;"><div style="font-size: 12px;">PART NO</div>
                            <div style="font-weight: bold; color: #2563eb;">{part_no}</div></td>
                        <td style="border: 1px solid #e5e7eb;"><div style="font-size: 12px;">PART NAME</div>
                            <div style="font-weight: bold; color: #2563eb;">{part_name}</div></td>
                    </tr>
                </table>
            </div>
            <table width="100%" cellpadding="10" cellspacing="0"
                   style="border-collapse: collapse; border: 1px solid #e5e7eb; margin-top: 16px;">
                <thead><tr style="background: #f3f4f6;">
                    <th>Item Name</th><th>Item Type</th><th>Start Date</th><th>End Date</th>
                </tr></thead>
                <tbody>{item_rows}</tbody>
            </table>
            <div style="margin-top: 20px;">
                <a href="{app_url}" style="display: inline-block; padding: 10px 20px; background: #2563eb;
                   color: #fff; text-decoration: none; border-radius: 6px; font-weight: bold;">Open Project Tracking</a>
            </div>
"""

_TEMPLATES: dict[str, dict[str, str]] = {
    "submitted": {
        "subject": "Project Control Notification : waiting Leader Approval",
        "html": """
        <div style="font-family: Arial, sans-serif; max-width: 680px; margin: 0 auto;">
            <h3 style="color: #1f2d3d;">Dear, K.{recipient_name}</h3>
            <h4>You have {item_count} item(s) waiting for your
                <b style="color: #089633;">Approval</b>.</h4>
        """ + _PROJECT_HEADER + """
        </div>
        """,
    },
    "rejected": {
        "subject": "Project Control Notification : Your project item has been rejected",
        "html": """
        <div style="font-family: Arial, sans-serif; max-width: 680px; margin: 0 auto;">
            <h3 style="color: #1f2d3d;">Dear, K.{recipient_name}</h3>
            <h4>This project item has been <b style="color: #dc2626;">rejected</b> by {actor_name}</h4>
            {note_block}
        """ + _PROJECT_HEADER + """
        </div>
        """,
    },
    "approved": {
        "subject": "Project Control Notification : File Approved",
        "html": """
        <div style="font-family: Arial, sans-serif; max-width: 680px; margin: 0 auto;">
            <h3 style="color: #1f2d3d;">Dear, K.{recipient_name}</h3>
            <h4>This project item has been <b style="color: #10b981;">Approved</b> by {actor_name}</h4>
        """ + _PROJECT_HEADER + """
        </div>
        """,
    },
}


def render_item_rows(items) -> str:
    """Render ``<tr>`` rows for the item table of a template.

    ``items`` is an iterable of dicts with item_name, item_type, start_date
    and end_date keys.
    """
    rows = []
    for item in items:
        cells = "".join(
            f"<td>{escape(str(item.get(key) or ''))}</td>"
            for key in ("item_name", "item_type", "start_date", "end_date")
        )
        rows.append(f"<tr>{cells}</tr>")
    return "".join(rows)


def render_note_block(note: str | None) -> str:
    if not (note or "").strip():
        return ""
    return (
        '<div style="margin-top: 15px; padding: 12px; background: #fee2e2; '
        'border-left: 4px solid #dc2626; color: #7f1d1d; font-size: 13px;">'
        f"<b>Reason for Rejection:</b><br>{escape(note)}</div>"
    )


class EmailService:
    """
    Email sending service with template support.

    In development/test mode (no MAIL_SERVER configured), emails are
    logged to the database but not actually sent via SMTP.
    """

    @staticmethod
    def is_configured() -> bool:
        """Check if SMTP is configured."""
        return bool(current_app.config.get("MAIL_SERVER"))

    @staticmethod
    def get_template(template_name: str) -> dict[str, str] | None:
        """Get an email template by name."""
        return _TEMPLATES.get(template_name)

    @classmethod
    def send(
        cls,
        *,
        to_email: str,
        to_name: str | None = None,
        subject: str,
        html_body: str,
        template_name: str | None = None,
        category: str = "system",
        notification_id: int | None = None,
    ) -> EmailLog:
        """
        Send an email and log it.

        If SMTP is not configured, the email is logged with status='sent'
        (in dev mode) to simulate sending without actual delivery.

        SMTP errors propagate to the caller after the log row is marked
        failed; the notification dispatcher decides what to do with them.

        Returns:
            The EmailLog record for this email.
        """
        log = EmailLog(
            recipient_email=to_email,
            recipient_name=to_name,
            subject=subject,
            template_name=template_name,
            category=category,
            status="queued",
            notification_id=notification_id,
        )
        db.session.add(log)
        db.session.flush()

        if not cls.is_configured():
            # Dev/test mode: log only
            log.status = "sent"
            log.sent_at = datetime.now(timezone.utc)
            logger.info(
                "Email (dev mode): to=%s subject='%s' template=%s",
                to_email, subject, template_name,
            )
            return log

        try:
            cls._send_smtp(to_email=to_email, to_name=to_name,
                           subject=subject, html_body=html_body)
        except (smtplib.SMTPException, OSError) as exc:
            log.status = "failed"
            log.error_message = str(exc)[:1000]
            logger.error("Email failed: to=%s error=%s", to_email, exc)
            raise

        log.status = "sent"
        log.sent_at = datetime.now(timezone.utc)
        logger.info("Email sent: to=%s subject='%s'", to_email, subject)
        return log

    @classmethod
    def send_from_template(
        cls,
        *,
        to_email: str,
        to_name: str | None = None,
        template_name: str,
        context: dict[str, Any],
        category: str = "system",
        notification_id: int | None = None,
    ) -> EmailLog | None:
        """
        Send an email using a named template.

        Template variables are interpolated from the context dict.
        """
        template = cls.get_template(template_name)
        if not template:
            logger.warning("Email template not found: %s", template_name)
            return None

        subject = template["subject"].format_map(_SafeDict(context))
        html_body = template["html"].format_map(_SafeDict(context))

        return cls.send(
            to_email=to_email,
            to_name=to_name,
            subject=subject,
            html_body=html_body,
            template_name=template_name,
            category=category,
            notification_id=notification_id,
        )

    @staticmethod
    def _send_smtp(*, to_email: str, to_name: str | None,
                   subject: str, html_body: str) -> None:
        """Actually send via SMTP."""
        cfg = current_app.config
        server = cfg.get("MAIL_SERVER")
        port = cfg.get("MAIL_PORT", 587)
        use_tls = cfg.get("MAIL_USE_TLS", True)
        username = cfg.get("MAIL_USERNAME")
        password = cfg.get("MAIL_PASSWORD")
        sender = cfg.get("MAIL_DEFAULT_SENDER", f"noreply@{server}")

        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = sender
        msg["To"] = f"{to_name} <{to_email}>" if to_name else to_email
        msg.attach(MIMEText(html_body, "html", "utf-8"))

        with smtplib.SMTP(server, port, timeout=30) as smtp:
            if use_tls:
                smtp.starttls()
            if username and password:
                smtp.login(username, password)
            smtp.send_message(msg)


class _SafeDict(dict):
    """Dict that returns {key} for missing keys instead of raising."""

    def __missing__(self, key):
        return f"{{{key}}}"
