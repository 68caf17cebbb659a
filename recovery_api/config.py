import os

# --- Storage / infrastructure ---
DATABASE_URL = os.environ.get("DATABASE_URL", "sqlite:///./recovery.db")
REDIS_URL = os.environ.get("REDIS_URL", "redis://localhost:6379/0")

# --- Auth ---
AUTH_TOKEN_SECRET = os.environ.get("AUTH_TOKEN_SECRET", "dev_secret_change_me")

# --- Stripe ---
STRIPE_SECRET_KEY = os.environ.get("STRIPE_SECRET_KEY", "")
STRIPE_API_VERSION = os.environ.get("STRIPE_API_VERSION", "2024-12-18.acacia")

# Used to build checkout success/cancel URLs when the request carries no Origin
PUBLIC_BASE_URL = os.environ.get("PUBLIC_BASE_URL", "http://localhost:5173").rstrip("/")

# Appointment dates/times are wall-clock values in this zone
BUSINESS_TIMEZONE = os.environ.get("BUSINESS_TIMEZONE", "UTC")

PASS_UPDATE_RETRIES = int(os.environ.get("PASS_UPDATE_RETRIES", "5"))

# Shared ticket links are public: 10 requests/min per IP by default
SHARED_TICKET_RATE_CAPACITY = int(os.environ.get("SHARED_TICKET_RATE_CAPACITY", "10"))
SHARED_TICKET_RATE_REFILL_PER_SEC = float(os.environ.get("SHARED_TICKET_RATE_REFILL_PER_SEC", str(10 / 60)))

IDEMPOTENCY_TTL_SECONDS = int(os.environ.get("IDEMPOTENCY_TTL_SECONDS", "300"))

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()
