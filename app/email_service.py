"""
Email Service using Resend
Check-in reminder emails are written in MJML and compiled to HTML here
"""

import asyncio
import logging
from typing import Optional

import resend
from mjml import mjml_to_html

from .config import EMAIL_FROM_ADDRESS, RESEND_API_KEY

logger = logging.getLogger(__name__)

resend.api_key = RESEND_API_KEY


class EmailDeliveryError(Exception):
    """Resend is not configured or rejected the message"""


def compile_mjml_to_html(mjml_content: str) -> str:
    # mjml-python returns a dict-like object with "html" and "errors"
    result = mjml_to_html(mjml_content)
    if result.get("errors"):
        logger.warning(f"⚠️ MJML compilation warnings: {result['errors']}")
    return result["html"]


async def send_email(
    to: str,
    subject: str,
    mjml_content: str,
    reference_id: Optional[str] = None,
    from_address: Optional[str] = None,
) -> dict:
    """
    Send one email through Resend.

    reference_id becomes the X-Entity-Ref-ID header so mail clients do not
    thread repeated reminders for the same check-in together.
    """
    if not RESEND_API_KEY:
        logger.error("❌ No email service configured - RESEND_API_KEY missing")
        raise EmailDeliveryError("Email service not configured")

    params = {
        "from": from_address or EMAIL_FROM_ADDRESS,
        "to": [to],
        "subject": subject,
        "html": compile_mjml_to_html(mjml_content),
    }
    if reference_id:
        params["headers"] = {"X-Entity-Ref-ID": reference_id}

    try:
        # The Resend SDK is blocking; keep the event loop (and sweep timeouts) responsive
        response = await asyncio.to_thread(resend.Emails.send, params)
    except Exception as e:
        logger.error(f"❌ Email send error to {to}: {e}")
        raise EmailDeliveryError(f"Failed to send email: {str(e)}") from e

    logger.info(f"✅ Email sent via Resend to {to}: {response}")
    return response
