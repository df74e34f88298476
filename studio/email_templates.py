"""
MJML Email Templates
Booking, cancellation, reminder and waitlist emails for studio members and staff
"""

import html
from typing import Optional

from .config import BRAND_NAME, FRONTEND_URL

# Studio theme colors
THEME = {
    "primary": "#111827",
    "accent": "#f97316",
    "background": "#f8fafc",
    "text_primary": "#0f172a",
    "text_secondary": "#334155",
    "text_muted": "#64748b",
    "border": "#e2e8f0",
    "success": "#16a34a",
    "danger": "#ef4444",
}


def _esc(value) -> str:
    return html.escape(str(value or ""), quote=True)


def get_base_template(
    title: str,
    preview_text: str,
    content_sections: str,
    cta_url: Optional[str] = None,
    cta_label: Optional[str] = None,
) -> str:
    """Base MJML template wrapper for all emails"""

    cta_section = ""
    if cta_url and cta_label:
        cta_section = f"""
        <mj-section padding="20px 0">
          <mj-column>
            <mj-button
              href="{cta_url}"
              background-color="{THEME['accent']}"
              color="#ffffff"
              font-weight="600"
              border-radius="8px"
              padding="18px 40px"
              font-size="16px">
              {cta_label}
            </mj-button>
          </mj-column>
        </mj-section>
        """

    return f"""
    <mjml>
      <mj-head>
        <mj-title>{title}</mj-title>
        <mj-preview>{preview_text}</mj-preview>
        <mj-attributes>
          <mj-all font-family="-apple-system, BlinkMacSystemFont, 'Segoe UI', 'Helvetica Neue', Arial, sans-serif" />
          <mj-text font-size="16px" line-height="1.6" color="{THEME['text_secondary']}" />
        </mj-attributes>
      </mj-head>
      <mj-body background-color="{THEME['background']}">
        <mj-section background-color="{THEME['primary']}" padding="24px 20px">
          <mj-column>
            <mj-text align="center" font-size="22px" font-weight="700" color="#ffffff" padding="0">
              {BRAND_NAME}
            </mj-text>
          </mj-column>
        </mj-section>

        <mj-section background-color="#ffffff" padding="32px 40px 40px 40px">
          <mj-column>
            <mj-text font-size="24px" font-weight="600" color="{THEME['text_primary']}" line-height="1.3" padding="0 0 16px 0">
              {title}
            </mj-text>

            {content_sections}
          </mj-column>
        </mj-section>

        {cta_section}

        <mj-section padding="32px 20px">
          <mj-column>
            <mj-text align="center" font-size="13px" color="#94a3b8" padding="0">
              You're receiving this because you have an account at {BRAND_NAME}.
            </mj-text>
          </mj-column>
        </mj-section>
      </mj-body>
    </mjml>
    """


def _slot_block(service_name: str, slot_date: str, slot_time: str, color: str) -> str:
    return f"""
    <mj-text align="center" font-size="18px" font-weight="600" color="{color}" padding="20px 0 8px 0">
      {_esc(service_name)}
    </mj-text>

    <mj-text align="center" font-size="16px" color="{THEME['text_primary']}" padding="0">
      📅 {_esc(slot_date)}
    </mj-text>

    <mj-text align="center" font-size="16px" color="{THEME['text_primary']}" padding="0 0 20px 0">
      ⏰ {_esc(slot_time)}
    </mj-text>
    """


def appointment_booked_template(user_name: str, service_name: str, slot_date: str, slot_time: str) -> str:
    """Booking confirmation for the member"""
    content = f"""
    <mj-text>
      Hi {_esc(user_name)},
    </mj-text>

    <mj-text>
      Your appointment is confirmed. One credit was taken from your balance.
    </mj-text>

    {_slot_block(service_name, slot_date, slot_time, THEME['success'])}

    <mj-text font-size="14px" color="{THEME['text_muted']}">
      Need to change plans? You can cancel from your agenda within your membership's cancellation window.
    </mj-text>
    """

    return get_base_template(
        title="Appointment confirmed ✅",
        preview_text=f"{service_name} on {slot_date} at {slot_time}",
        content_sections=content,
        cta_url=f"{FRONTEND_URL}/agenda",
        cta_label="View my agenda",
    )


def appointment_cancelled_template(
    user_name: str, service_name: str, slot_date: str, slot_time: str, refunded: bool
) -> str:
    """Cancellation confirmation for the member"""
    refund_line = (
        "The credit was returned to your balance with its original expiry date."
        if refunded
        else "No credit was charged for this appointment."
    )
    content = f"""
    <mj-text>
      Hi {_esc(user_name)},
    </mj-text>

    <mj-text>
      Your appointment has been cancelled.
    </mj-text>

    {_slot_block(service_name, slot_date, slot_time, THEME['danger'])}

    <mj-text>
      {refund_line}
    </mj-text>
    """

    return get_base_template(
        title="Appointment cancelled",
        preview_text=f"{service_name} on {slot_date} at {slot_time} was cancelled",
        content_sections=content,
    )


def appointment_reminder_template(user_name: str, service_name: str, slot_date: str, slot_time: str) -> str:
    """Reminder sent ahead of an appointment"""
    content = f"""
    <mj-text>
      Hi {_esc(user_name)},
    </mj-text>

    <mj-text>
      This is a reminder of your upcoming appointment.
    </mj-text>

    {_slot_block(service_name, slot_date, slot_time, THEME['text_primary'])}

    <mj-text font-size="14px" color="{THEME['text_muted']}">
      Please arrive a few minutes early. See you soon!
    </mj-text>
    """

    return get_base_template(
        title="See you tomorrow ⏰",
        preview_text=f"Reminder: {service_name} on {slot_date} at {slot_time}",
        content_sections=content,
        cta_url=f"{FRONTEND_URL}/agenda",
        cta_label="View my agenda",
    )


def waitlist_slot_available_template(
    user_name: str, service_name: str, slot_date: str, slot_time: str, claim_url: str, expires_at: str
) -> str:
    """A seat freed up for a waitlisted member"""
    content = f"""
    <mj-text>
      Hi {_esc(user_name)},
    </mj-text>

    <mj-text>
      A seat just opened up in a slot you were waiting for. Seats go to whoever claims first.
    </mj-text>

    {_slot_block(service_name, slot_date, slot_time, THEME['accent'])}

    <mj-text font-size="14px" color="{THEME['text_muted']}">
      This link is valid until {_esc(expires_at)} and can be used once.
    </mj-text>
    """

    return get_base_template(
        title="A seat is available 🎉",
        preview_text=f"{service_name} on {slot_date} at {slot_time} has a free seat",
        content_sections=content,
        cta_url=claim_url,
        cta_label="Claim my seat",
    )


def admin_appointment_template(
    action: str, user_name: str, user_email: str, service_name: str, slot_date: str, slot_time: str
) -> str:
    """Staff notification for a booking or cancellation"""
    content = f"""
    <mj-text>
      <strong>{_esc(user_name)}</strong> ({_esc(user_email)}) {action} an appointment.
    </mj-text>

    <mj-text font-size="14px" color="{THEME['text_muted']}" padding="20px 0">
      {_esc(service_name)} · 📅 {_esc(slot_date)} {_esc(slot_time)}
    </mj-text>
    """

    return get_base_template(
        title=f"Appointment {action}",
        preview_text=f"{user_name} {action} {service_name} on {slot_date}",
        content_sections=content,
    )
