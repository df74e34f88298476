"""
Email Service using Resend
Provides email functionality using MJML templates for responsive design
"""

import logging
from typing import Optional, Union

import resend
from mjml import mjml_to_html

from .config import ADMIN_EMAIL, BRAND_NAME, EMAIL_FROM_ADDRESS, RESEND_API_KEY
from .email_templates import (
    admin_appointment_template,
    appointment_booked_template,
    appointment_cancelled_template,
    appointment_reminder_template,
    waitlist_slot_available_template,
)

logger = logging.getLogger(__name__)

resend.api_key = RESEND_API_KEY


class EmailDeliveryError(Exception):
    """Raised when an email could not be handed to the provider"""


def compile_mjml_to_html(mjml_content: str) -> str:
    """Compile MJML template to production-ready HTML"""
    try:
        result = mjml_to_html(mjml_content)
    except Exception as e:
        logger.error(f"❌ MJML compilation error: {e}")
        raise EmailDeliveryError(f"Failed to compile MJML template: {e}") from e

    # Recent mjml releases return an object with .html/.errors, older ones a dict
    if isinstance(result, dict):
        errors, html_content = result.get("errors"), result.get("html", "")
    else:
        errors, html_content = getattr(result, "errors", None), getattr(result, "html", str(result))
    if errors:
        logger.warning(f"⚠️ MJML compilation warnings: {errors}")
    return html_content


async def send_email(
    to: Union[str, list[str]],
    subject: str,
    mjml_content: str,
    from_address: Optional[str] = None,
) -> dict:
    """
    Send an email through Resend

    Args:
        to: Recipient email(s)
        subject: Email subject line
        mjml_content: MJML template content (will be compiled to HTML)
        from_address: Optional custom from address

    Returns:
        Send response dict
    """
    html_content = compile_mjml_to_html(mjml_content)
    recipients = [to] if isinstance(to, str) else to

    if not RESEND_API_KEY:
        logger.error("❌ No email service configured - RESEND_API_KEY missing")
        raise EmailDeliveryError("Email service not configured")

    try:
        logger.info(f"📧 Sending email via Resend to: {recipients}")
        response = resend.Emails.send(
            {
                "from": from_address or EMAIL_FROM_ADDRESS,
                "to": recipients,
                "subject": subject,
                "html": html_content,
            }
        )
        logger.info(f"✅ Email sent successfully via Resend: {response}")
        return response
    except Exception as e:
        logger.error(f"❌ Email send error to {recipients}: {e}")
        raise EmailDeliveryError(f"Failed to send email: {e}") from e


# ============================================
# Studio notification emails
# ============================================


async def send_appointment_booked_email(to: str, payload: dict) -> dict:
    """Booking confirmation to the member"""
    mjml_content = appointment_booked_template(
        user_name=payload.get("user_name", ""),
        service_name=payload["service_name"],
        slot_date=payload["date"],
        slot_time=payload["time"],
    )
    return await send_email(
        to=to,
        subject=f"Appointment confirmed - {BRAND_NAME}",
        mjml_content=mjml_content,
    )


async def send_appointment_cancelled_email(to: str, payload: dict) -> dict:
    """Cancellation confirmation to the member"""
    mjml_content = appointment_cancelled_template(
        user_name=payload.get("user_name", ""),
        service_name=payload["service_name"],
        slot_date=payload["date"],
        slot_time=payload["time"],
        refunded=bool(payload.get("refunded")),
    )
    return await send_email(
        to=to,
        subject=f"Appointment cancelled - {BRAND_NAME}",
        mjml_content=mjml_content,
    )


async def send_appointment_reminder_email(to: str, payload: dict) -> dict:
    mjml_content = appointment_reminder_template(
        user_name=payload.get("user_name", ""),
        service_name=payload["service_name"],
        slot_date=payload["date"],
        slot_time=payload["time"],
    )
    return await send_email(
        to=to,
        subject=f"Reminder: your appointment tomorrow - {BRAND_NAME}",
        mjml_content=mjml_content,
    )


async def send_waitlist_slot_available_email(to: str, payload: dict) -> dict:
    """Claim link for a waitlisted member"""
    mjml_content = waitlist_slot_available_template(
        user_name=payload.get("user_name", ""),
        service_name=payload["service_name"],
        slot_date=payload["date"],
        slot_time=payload["time"],
        claim_url=payload["claim_url"],
        expires_at=payload["expires_at"],
    )
    return await send_email(
        to=to,
        subject=f"A seat opened up - {BRAND_NAME}",
        mjml_content=mjml_content,
    )


async def _send_admin_email(to: Optional[str], action: str, payload: dict) -> dict:
    mjml_content = admin_appointment_template(
        action=action,
        user_name=payload.get("user_name", ""),
        user_email=payload.get("user_email", ""),
        service_name=payload["service_name"],
        slot_date=payload["date"],
        slot_time=payload["time"],
    )
    return await send_email(
        to=to or ADMIN_EMAIL,
        subject=f"[{BRAND_NAME}] Appointment {action}: {payload['date']} {payload['time']}",
        mjml_content=mjml_content,
    )


async def send_admin_appointment_booked_email(to: str, payload: dict) -> dict:
    return await _send_admin_email(to, "booked", payload)


async def send_admin_appointment_cancelled_email(to: str, payload: dict) -> dict:
    return await _send_admin_email(to, "cancelled", payload)
