"""Environment configuration for the portal."""

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv(override=True)

# Hosted backend; when unset the local SQLite services are used
SUPABASE_URL = os.getenv("SUPABASE_URL")
SUPABASE_ANON_KEY = os.getenv("SUPABASE_ANON_KEY")

# Seconds before any backend call is abandoned
REQUEST_TIMEOUT = float(os.getenv("REQUEST_TIMEOUT", "15"))

# "Preparing treatment" pause between the symptom check and pharmacy step
TREATMENT_DELAY_SECONDS = float(os.getenv("TREATMENT_DELAY_SECONDS", "3"))

ONE_TIME_CODE_TTL_SECONDS = int(os.getenv("ONE_TIME_CODE_TTL_SECONDS", "600"))

PORTAL_DB_PATH = Path(
    os.getenv("PORTAL_DB_PATH", Path(__file__).parent / "patient_portal" / "patient_portal.db")
)

LOG_LEVEL = os.getenv("LOG_LEVEL", "WARNING").upper()


def use_hosted_backend() -> bool:
    """True when both backend URL and key are configured."""
    return bool(SUPABASE_URL and SUPABASE_ANON_KEY)
