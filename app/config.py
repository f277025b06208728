import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./checkins.db")

# Firebase Configuration
FIREBASE_PROJECT_ID = os.getenv("FIREBASE_PROJECT_ID")

# Frontend base URL for check-in links in emails
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:3000")

# Resend Email Configuration
RESEND_API_KEY = os.getenv("RESEND_API_KEY")
EMAIL_FROM_ADDRESS = os.getenv("EMAIL_FROM_ADDRESS", "Check-ins <noreply@example.com>")

# Series defaults (cadence is weekly only for now)
DEFAULT_CADENCE_DAYS = int(os.getenv("DEFAULT_CADENCE_DAYS", "7"))
DEFAULT_WINDOW_HOURS = int(os.getenv("DEFAULT_WINDOW_HOURS", "48"))

# Weeks created ahead for indefinite series when pre-created assignments are on
PRECREATE_HORIZON_WEEKS = int(os.getenv("PRECREATE_HORIZON_WEEKS", "12"))

# Reminder sweep
REMINDER_SWEEP_MINUTES = int(os.getenv("REMINDER_SWEEP_MINUTES", "15"))
REMINDER_ITEM_TIMEOUT_SECONDS = float(os.getenv("REMINDER_ITEM_TIMEOUT_SECONDS", "30"))
REMINDER_LOOKBACK_HOURS = int(os.getenv("REMINDER_LOOKBACK_HOURS", "72"))


def use_pre_created_assignments() -> bool:
    """
    USE_PRE_CREATED_ASSIGNMENTS toggle.

    true: recurring weeks are stored documents created with the series
    false (default): weeks 2+ are computed on demand from the series

    Read on every call so a flip takes effect on the next materialization.
    """
    return os.getenv("USE_PRE_CREATED_ASSIGNMENTS", "false").lower() == "true"
