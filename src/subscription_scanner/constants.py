"""Constants for Subscription Scanner."""

from pathlib import Path

# --- Config paths ---
CONFIG_DIR = Path.home() / ".subscription-scanner"
CREDENTIALS_PATH = CONFIG_DIR / "credentials.json"
DB_PATH = CONFIG_DIR / "scanner.db"
ENV_PATH = CONFIG_DIR / ".env"

DEFAULT_ACCOUNT = "default"

# --- Google OAuth ---
SCOPES = ["https://www.googleapis.com/auth/gmail.readonly"]
DEFAULT_REDIRECT_URI = "http://localhost:8080/oauth2callback"
TOKEN_URI = "https://oauth2.googleapis.com/token"

# --- Gmail API ---
BATCH_SIZE = 50  # messages per BatchHttpRequest
PAGE_SIZE = 100  # message ids per list page
MESSAGE_FORMAT = "full"
RETRYABLE_STATUSES = (429, 500, 503)

# --- Candidate selection ---
SUBJECT_TERMS = [
    "subscription",
    "receipt",
    "invoice",
    "payment",
    "billing",
    "renew",
    "confirm",
]
RECENT_WINDOW = "6m"
MAX_MESSAGES = 50  # candidate messages fetched per sync

# --- Classification ---
CLASSIFIER_MODEL = "gpt-4.1-mini"
CLASSIFIER_TEMPERATURE = 0.3
CLASSIFIER_MAX_TOKENS = 4000
CLASSIFIER_TIMEOUT = 60.0  # seconds
CLASSIFY_BATCH_SIZE = 10  # emails per classifier request
MAX_CONTENT_LENGTH = 4000  # characters per email
TRUNCATION_MARKER = "\n...[truncated]"

# --- Circuit breaker ---
BREAKER_FAILURE_THRESHOLD = 3
BREAKER_RESET_AFTER = 60.0  # seconds

# --- Reconciliation defaults ---
KIND_SUBSCRIPTION = "SUBSCRIPTION"
KIND_EXPENSE = "EXPENSE"
DEFAULT_CURRENCY = "USD"
DEFAULT_FREQUENCY = "MONTHLY"
DEFAULT_STATUS = "ACTIVE"
MIN_CONFIDENCE = 40

# --- Display ---
CONFIDENCE_HIGH = 75
