"""
MJML Email Templates
Check-in reminder emails, compiled to HTML by email_service
"""

from typing import Optional

from .utils.sanitization import sanitize_string

# App theme colors
THEME = {
    "primary": "#14b8a6",
    "background": "#f8fafc",
    "text_primary": "#0f172a",
    "text_secondary": "#334155",
    "text_muted": "#64748b",
    "border": "#e2e8f0",
    "warning": "#f59e0b",
    "danger": "#ef4444",
}


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
              background-color="{THEME['primary']}"
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
        <mj-preview>{sanitize_string(preview_text)}</mj-preview>
        <mj-attributes>
          <mj-all font-family="-apple-system, BlinkMacSystemFont, 'Segoe UI', 'Helvetica Neue', Arial, sans-serif" />
          <mj-text font-size="16px" line-height="1.6" color="{THEME['text_secondary']}" />
        </mj-attributes>
      </mj-head>
      <mj-body background-color="{THEME['background']}">
        <mj-section background-color="#ffffff" padding="32px 40px 48px 40px">
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
            <mj-text align="center" font-size="12px" color="#94a3b8" padding="0">
              You're receiving this because your coach assigned you a check-in.
              You can turn off email reminders in your settings.
            </mj-text>
          </mj-column>
        </mj-section>
      </mj-body>
    </mjml>
    """


def _greeting(client_name: str, coach_name: Optional[str]) -> str:
    signature = ""
    if coach_name:
        signature = f"""
    <mj-text color="{THEME['text_muted']}">
      Assigned by {sanitize_string(coach_name)}
    </mj-text>
    """
    return f"""
    <mj-text>
      Hi {sanitize_string(client_name) or 'there'},
    </mj-text>
    {signature}
    """


def checkin_closing_soon_template(
    client_name: str,
    form_title: str,
    close_label: str,
    hours_left: int,
    checkin_url: str,
    coach_name: Optional[str] = None,
    week: Optional[int] = None,
) -> str:
    """Reminder sent 24h and 1h before the window closes"""
    week_label = f" (week {week})" if week else ""
    urgency_color = THEME["danger"] if hours_left <= 1 else THEME["warning"]
    time_left = "1 hour" if hours_left <= 1 else f"{hours_left} hours"

    content = f"""
    {_greeting(client_name, coach_name)}
    <mj-text>
      Your check-in <strong>{sanitize_string(form_title)}</strong>{week_label} closes in
      <strong style="color: {urgency_color};">{time_left}</strong>.
    </mj-text>
    <mj-text color="{THEME['text_muted']}">
      The window closes {close_label}. Please submit before then so your coach can review it.
    </mj-text>
    """

    return get_base_template(
        title=f"Your check-in closes in {time_left}",
        preview_text=f"{form_title} closes {close_label}",
        content_sections=content,
        cta_url=checkin_url,
        cta_label="Complete Check-in",
    )


def checkin_window_closed_template(
    client_name: str,
    form_title: str,
    close_label: str,
    checkin_url: str,
    coach_name: Optional[str] = None,
    week: Optional[int] = None,
) -> str:
    """Sent 2h after the window closed without a submission"""
    week_label = f" (week {week})" if week else ""
    content = f"""
    {_greeting(client_name, coach_name)}
    <mj-text>
      The window for <strong>{sanitize_string(form_title)}</strong>{week_label} closed {close_label}
      and we didn't receive your check-in.
    </mj-text>
    <mj-text color="{THEME['text_muted']}">
      If something came up you can request an extension or let your coach know why
      this week was missed.
    </mj-text>
    """

    return get_base_template(
        title="You missed a check-in",
        preview_text=f"{form_title} closed without a submission",
        content_sections=content,
        cta_url=checkin_url,
        cta_label="View Check-in",
    )


def checkin_window_open_template(
    client_name: str,
    form_title: str,
    close_label: str,
    checkin_url: str,
    coach_name: Optional[str] = None,
    week: Optional[int] = None,
) -> str:
    """Sent once shortly after a check-in window opens"""
    week_label = f" (week {week})" if week else ""
    content = f"""
    {_greeting(client_name, coach_name)}
    <mj-text>
      Your check-in <strong>{sanitize_string(form_title)}</strong>{week_label} is now open.
    </mj-text>
    <mj-text color="{THEME['text_muted']}">
      You can submit it until {close_label}.
    </mj-text>
    """

    return get_base_template(
        title="Your check-in is open",
        preview_text=f"{form_title} is open until {close_label}",
        content_sections=content,
        cta_url=checkin_url,
        cta_label="Start Check-in",
    )
