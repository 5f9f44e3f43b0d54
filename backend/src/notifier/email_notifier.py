from __future__ import annotations

import asyncio
from html import escape

import resend
import structlog

from backend.src.config import Settings
from backend.src.contracts.models import (
    AdminSummary,
    ChangeRecord,
    CourseSnapshot,
    Direction,
    Subscriber,
)
from backend.src.notifier.web_inbox_notifier import trigger_labels

logger = structlog.get_logger(__name__)

_DIRECTION_HEADINGS: dict[Direction, str] = {
    Direction.OPENED: "Now open",
    Direction.CLOSED: "Now closed",
}

_ADMIN_HEADINGS: dict[str, str] = {
    "added": "Added",
    "opened": "Opened",
    "closed": "Closed",
    "removed": "Removed",
}


def build_batch_subject(records: list[ChangeRecord]) -> str:
    if len(records) == 1:
        record = records[0]
        status = "open" if record.direction == Direction.OPENED else "closed"
        return f"{record.item.course_name} is now {status}"
    return f"{len(records)} updates to the courses you watch"


def build_admin_subject(summary: AdminSummary) -> str:
    return f"Catalog changes: {summary.total} updates"


def _course_row(item: CourseSnapshot, note: str = "") -> str:
    schedule = " | ".join(escape(part) for part in (item.days, item.time) if part)
    note_html = f'<br><span style="color:#6b7280;font-size:12px;">{escape(note)}</span>' if note else ""
    return (
        '<tr><td style="padding:8px 0;border-bottom:1px solid #e5e7eb;">'
        f"<strong>{escape(item.course_name)}</strong> "
        f"({escape(item.course_code)} - section {escape(item.section)})<br>"
        f'<span style="color:#374151;font-size:13px;">{schedule}</span>'
        f"{note_html}"
        "</td></tr>"
    )


def _section(heading: str, rows: list[str]) -> str:
    if not rows:
        return ""
    return (
        f'<h2 style="margin:20px 0 8px;font-size:16px;color:#1a1a2e;">{escape(heading)} ({len(rows)})</h2>'
        f'<table width="100%" cellpadding="0" cellspacing="0">{"".join(rows)}</table>'
    )


def _wrap(title: str, body: str, footer: str) -> str:
    return f"""\
<!DOCTYPE html>
<html lang="en">
<head><meta charset="utf-8"><meta name="viewport" content="width=device-width,initial-scale=1"></head>
<body style="margin:0;padding:0;background:#f4f4f5;font-family:Arial,Helvetica,sans-serif;">
<table width="100%" cellpadding="0" cellspacing="0" style="background:#f4f4f5;padding:24px 0;">
<tr><td align="center">
<table width="600" cellpadding="0" cellspacing="0" style="background:#ffffff;border-radius:8px;overflow:hidden;">
  <tr><td style="background:#1a1a2e;padding:20px 24px;color:#ffffff;font-size:20px;font-weight:bold;">
    {escape(title)}
  </td></tr>
  <tr><td style="padding:24px;">{body}</td></tr>
  <tr><td style="padding:16px 24px;background:#f9fafb;border-top:1px solid #e5e7eb;font-size:12px;color:#9ca3af;text-align:center;">
    {footer}
  </td></tr>
</table>
</td></tr>
</table>
</body>
</html>"""


def render_batch_email_html(
    records: list[ChangeRecord],
    username: str,
    frontend_url: str,
) -> str:
    """Render one email covering every change in a subscriber's batch, grouped by direction."""
    sections = []
    for direction in (Direction.OPENED, Direction.CLOSED):
        rows = [
            _course_row(r.item, trigger_labels(r.trigger_sources))
            for r in records
            if r.direction == direction
        ]
        sections.append(_section(_DIRECTION_HEADINGS[direction], rows))

    greeting = f"<p>Hi {escape(username)},</p>" if username else ""
    body = (
        f"{greeting}<p>Sections you follow changed status:</p>"
        f"{''.join(sections)}"
        f'<p style="margin-top:24px;"><a href="{escape(frontend_url)}/watchlist" '
        'style="display:inline-block;background:#1a1a2e;color:#ffffff;text-decoration:none;'
        'padding:12px 32px;border-radius:6px;font-size:16px;font-weight:600;">Open watchlist</a></p>'
    )
    footer = (
        "You received this because you watch these courses.<br>"
        f'<a href="{escape(frontend_url)}/profile" style="color:#6b7280;">Notification settings</a>'
    )
    return _wrap("Course Alert", body, footer)


def render_admin_summary_html(summary: AdminSummary, frontend_url: str) -> str:
    sections = [
        _section(_ADMIN_HEADINGS[kind], [_course_row(item) for item in items])
        for kind, items in (
            ("added", summary.added),
            ("opened", summary.opened),
            ("closed", summary.closed),
            ("removed", summary.removed),
        )
    ]
    body = f"<p>{summary.total} catalog changes in the latest sync.</p>{''.join(sections)}"
    footer = (
        "You receive this because catalog-wide alerts are enabled.<br>"
        f'<a href="{escape(frontend_url)}/admin/settings" style="color:#6b7280;">Admin settings</a>'
    )
    return _wrap("Course Alert - Admin summary", body, footer)


class EmailNotifier:
    """Channel notifier that sends batched emails through the Resend API.

    One attempt per pass; a failed send is logged and reported, the next
    pass reflects whatever is still true.
    """

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        resend.api_key = settings.resend_api_key

    async def send(self, subscriber: Subscriber, records: list[ChangeRecord]) -> bool:
        log = logger.bind(
            user_id=subscriber.id,
            email=subscriber.email,
            channel="email",
        )
        html = render_batch_email_html(records, subscriber.username, self._settings.frontend_url)
        sent = await self._deliver(subscriber.email, build_batch_subject(records), html, log)
        if sent:
            log.info("email_batch_sent", count=len(records))
        return sent

    async def send_admin_summary(self, admin: Subscriber, summary: AdminSummary) -> bool:
        log = logger.bind(user_id=admin.id, email=admin.email, channel="admin_email")
        html = render_admin_summary_html(summary, self._settings.frontend_url)
        sent = await self._deliver(admin.email, build_admin_subject(summary), html, log)
        if sent:
            log.info("admin_summary_sent", count=summary.total)
        return sent

    async def _deliver(
        self,
        to: str,
        subject: str,
        html: str,
        log: structlog.stdlib.BoundLogger,
    ) -> bool:
        try:
            await asyncio.to_thread(
                resend.Emails.send,
                {
                    "from": self._settings.resend_from_email,
                    "to": [to],
                    "subject": subject,
                    "html": html,
                },
            )
        except Exception as exc:  # noqa: BLE001
            log.error("email_send_failed", error=str(exc))
            return False
        return True
