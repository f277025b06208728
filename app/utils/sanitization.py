import html
import re
from typing import Optional

# Control characters other than tab, newline and carriage return
CONTROL_CHARS = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")


def sanitize_string(value: Optional[str]) -> Optional[str]:
    """Escape HTML special characters before interpolating into email markup"""
    if value is None or not isinstance(value, str):
        return value
    return html.escape(value, quote=True)


def validate_and_sanitize_input(value: Optional[str], max_length: int = 500) -> str:
    """
    Clean free text a client attaches to a check-in (extension reasons,
    missed-week comments).

    Raises:
        ValueError: If the text is longer than max_length
    """
    if not value:
        return ""

    value = str(value).strip()
    if len(value) > max_length:
        raise ValueError(f"Input exceeds maximum length of {max_length} characters")

    return CONTROL_CHARS.sub("", html.escape(value, quote=True))
