import os



def _get_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_rate_limit(value: str | None, default: tuple[int, int]) -> tuple[int, int]:
    """Parse a ``max_requests/window_seconds`` pair such as ``"5/3600"``."""
    if not value:
        return default
    max_requests, _, window_seconds = value.partition("/")
    return int(max_requests), int(window_seconds)

APP_ENV = os.getenv("APP_ENV", "development")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv("CORS_ORIGINS", "http://localhost:3000").split(",")
    if origin.strip()
]

JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "change-me")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_EXPIRES_MINUTES = int(os.getenv("JWT_EXPIRES_MINUTES", "60"))

# Scheduling policy
LEAD_TIME_MINUTES = int(os.getenv("LEAD_TIME_MINUTES", "60"))
MIN_SLOT_GRANULARITY_MINUTES = 15
MAX_SLOT_GRANULARITY_MINUTES = 120
DEFAULT_SLOT_GRANULARITY_MINUTES = 30
MAX_NOTES_LENGTH = 1000

INVITE_EXPIRY_DAYS = int(os.getenv("INVITE_EXPIRY_DAYS", "7"))
APP_URL = os.getenv("APP_URL", "http://localhost:3000")

# Rate limits as (max_requests, window_seconds)
CONNECTION_REQUEST_RATE_LIMIT = _get_rate_limit(os.getenv("CONNECTION_REQUEST_RATE_LIMIT"), (5, 3600))
INVITE_REDEEM_RATE_LIMIT = _get_rate_limit(os.getenv("INVITE_REDEEM_RATE_LIMIT"), (10, 900))
APPOINTMENT_REQUEST_RATE_LIMIT = _get_rate_limit(os.getenv("APPOINTMENT_REQUEST_RATE_LIMIT"), (20, 3600))

# Outbound email
SMTP_HOST = os.getenv("SMTP_HOST", "")
SMTP_PORT = int(os.getenv("SMTP_PORT", "587"))
SMTP_USERNAME = os.getenv("SMTP_USERNAME", "")
SMTP_PASSWORD = os.getenv("SMTP_PASSWORD", "")
SMTP_USE_TLS = _get_bool(os.getenv("SMTP_USE_TLS"), default=True)
SMTP_TIMEOUT_SECONDS = float(os.getenv("SMTP_TIMEOUT_SECONDS", "10"))
EMAIL_FROM_ADDRESS = os.getenv("EMAIL_FROM_ADDRESS", "no-reply@carelink.local")

def validate_runtime_config() -> None:
    if APP_ENV.lower() == "production" and JWT_SECRET_KEY == "change-me":
        raise RuntimeError("JWT_SECRET_KEY must be set in production.")
    if LEAD_TIME_MINUTES < 0:
        raise RuntimeError("LEAD_TIME_MINUTES cannot be negative.")
