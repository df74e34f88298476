import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./studio.db")

# Security - CRITICAL: No default secret key in production
SECRET_KEY = os.getenv("SECRET_KEY")
if not SECRET_KEY:
    import warnings

    warnings.warn(
        "SECRET_KEY not set! Using insecure default - DO NOT USE IN PRODUCTION", RuntimeWarning, stacklevel=2
    )
    SECRET_KEY = "INSECURE-DEV-KEY-CHANGE-IN-PRODUCTION"  # noqa: S105 - Dev fallback only

JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "10080"))  # 7 days

# Frontend base URL used in email links (waitlist claim, agenda)
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:5173")

# Resend Email Configuration
RESEND_API_KEY = os.getenv("RESEND_API_KEY")
EMAIL_FROM_ADDRESS = os.getenv("EMAIL_FROM_ADDRESS", "DUO Studio <turnos@duoclub.ar>")
ADMIN_EMAIL = os.getenv("ADMIN_EMAIL", "duoclub.ar@gmail.com").strip()
BRAND_NAME = os.getenv("BRAND_NAME", "DUO").strip()

# Venue clock - dates and times are stored as venue-local wall clock values
VENUE_TIMEZONE = os.getenv("VENUE_TIMEZONE", "America/Argentina/Buenos_Aires")

# Slot capacity
TOTAL_CAPACITY = int(os.getenv("TOTAL_CAPACITY", "6"))  # seats per slot, all services
ELASTIC_BASE_CAP = int(os.getenv("ELASTIC_BASE_CAP", "4"))  # Personal Training seats far from the slot
ELASTIC_NEAR_SLOT_HOURS = float(os.getenv("ELASTIC_NEAR_SLOT_HOURS", "2"))

# Booking rules
ADVANCE_BOOKING_DAYS = int(os.getenv("ADVANCE_BOOKING_DAYS", "31"))
MEDICAL_CLEARANCE_GRACE_DAYS = int(os.getenv("MEDICAL_CLEARANCE_GRACE_DAYS", "20"))
CANCELLATION_WINDOW_DAYS = int(os.getenv("CANCELLATION_WINDOW_DAYS", "30"))

# Waitlist claim tokens live until the slot starts or this many hours, whichever comes first
WAITLIST_TOKEN_MAX_HOURS = int(os.getenv("WAITLIST_TOKEN_MAX_HOURS", "48"))
WAITLIST_SWEEP_SLOT_LIMIT = int(os.getenv("WAITLIST_SWEEP_SLOT_LIMIT", "200"))

# Reminder sweep
REMINDER_AHEAD_HOURS = int(os.getenv("REMINDER_AHEAD_HOURS", "24"))
REMINDER_WINDOW_MINUTES = int(os.getenv("REMINDER_WINDOW_MINUTES", "10"))
REMINDER_BATCH_LIMIT = int(os.getenv("REMINDER_BATCH_LIMIT", "300"))

# In-process schedulers (disable when the arq worker runs the cron jobs)
INPROCESS_SCHEDULER_ENABLED = os.getenv("INPROCESS_SCHEDULER_ENABLED", "false").lower() == "true"
WAITLIST_SWEEP_MINUTES = int(os.getenv("WAITLIST_SWEEP_MINUTES", "2"))
REMINDER_SWEEP_MINUTES = int(os.getenv("REMINDER_SWEEP_MINUTES", "10"))

# Transaction retries for slot-occupancy writes
DB_TX_RETRIES = int(os.getenv("DB_TX_RETRIES", "3"))
