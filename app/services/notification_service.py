"""
Check-in Notification Dispatcher
Delivers milestone reminders and window-open notices. Returns success/failure instead of raising so the
reminder sweep can leave a failed milestone unfired and retry it next run.
"""

import logging
from typing import Optional

from ..config import FRONTEND_URL
from ..email_service import send_email
from ..email_templates import (
    checkin_closing_soon_template,
    checkin_window_closed_template,
    checkin_window_open_template,
)
from ..models import User

logger = logging.getLogger(__name__)

MILESTONE_HOURS_LEFT = {"closing_24h": 24, "closing_1h": 1}


class NotificationDispatcher:
    """Interface: send(milestone, assignment_id, recipient) -> bool"""

    async def send(self, milestone: str, assignment_id: str, recipient: User, assignment=None) -> bool:
        raise NotImplementedError


def checkin_url(assignment_id: str) -> str:
    return f"{FRONTEND_URL}/client-portal/check-in/{assignment_id}"


def format_close_label(assignment) -> str:
    return f"{assignment.close_at:%A, %d %B at %H:%M} UTC"


class EmailNotificationDispatcher(NotificationDispatcher):
    """Email reminders via Resend + MJML"""

    async def send(self, milestone: str, assignment_id: str, recipient: User, assignment=None) -> bool:
        if not recipient.email:
            logger.debug(f"⚠️ No email address for {milestone} notification on {assignment_id}")
            return False

        coach_name: Optional[str] = recipient.coach.full_name if recipient.coach else None
        form_title = (assignment.title if assignment else None) or "Check-in"
        week = assignment.week if assignment else None
        close_label = format_close_label(assignment) if assignment else "soon"

        if milestone in MILESTONE_HOURS_LEFT:
            hours_left = MILESTONE_HOURS_LEFT[milestone]
            subject = f"Reminder: {form_title} closes in {'1 hour' if hours_left == 1 else '24 hours'}"
            mjml_content = checkin_closing_soon_template(
                client_name=recipient.full_name or "",
                form_title=form_title,
                close_label=close_label,
                hours_left=hours_left,
                checkin_url=checkin_url(assignment_id),
                coach_name=coach_name,
                week=week,
            )
        elif milestone == "window_open":
            subject = f"Your check-in is open: {form_title}"
            mjml_content = checkin_window_open_template(
                client_name=recipient.full_name or "",
                form_title=form_title,
                close_label=close_label,
                checkin_url=checkin_url(assignment_id),
                coach_name=coach_name,
                week=week,
            )
        elif milestone == "closed_2h":
            subject = f"Missed check-in: {form_title}"
            mjml_content = checkin_window_closed_template(
                client_name=recipient.full_name or "",
                form_title=form_title,
                close_label=close_label,
                checkin_url=checkin_url(assignment_id),
                coach_name=coach_name,
                week=week,
            )
        else:
            logger.error(f"❌ Unknown reminder milestone: {milestone}")
            return False

        try:
            logger.info(f"📧 Sending {milestone} reminder for {assignment_id} to {recipient.email}")
            await send_email(
                to=recipient.email,
                subject=subject,
                mjml_content=mjml_content,
                reference_id=f"{assignment_id}:{milestone}",
            )
            return True
        except Exception as e:
            logger.error(f"❌ Failed to send {milestone} reminder to {recipient.email}: {e}")
            return False
