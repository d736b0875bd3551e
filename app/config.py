"""Runtime settings read from the environment."""

import os

from dotenv import load_dotenv

# Load environment variables
load_dotenv()

ENV = os.getenv("ENV")
ENV_IS_PROD = ENV == "prod"
COMMIT_HASH = os.getenv("COMMIT_HASH")
if not COMMIT_HASH and ENV_IS_PROD:
    raise ValueError("COMMIT_HASH is required for production environments")

APP_ADDR = os.getenv("HOST", "0.0.0.0")
APP_PORT = int(os.getenv("PORT", "8000"))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Sync poller cadence (client side)
POLL_INTERVAL_SECONDS = float(os.getenv("POLL_INTERVAL_SECONDS", "5"))
POLL_MAX_BACKOFF_SECONDS = float(os.getenv("POLL_MAX_BACKOFF_SECONDS", "60"))

# Presence
PRESENCE_ONLINE_THRESHOLD_SECONDS = int(
    os.getenv("PRESENCE_ONLINE_THRESHOLD_SECONDS", "60")
)
PRESENCE_BATCH_LIMIT = int(os.getenv("PRESENCE_BATCH_LIMIT", "100"))

# Messages and conversations
MESSAGE_PAGE_SIZE = int(os.getenv("MESSAGE_PAGE_SIZE", "50"))
MESSAGE_PAGE_MAX = int(os.getenv("MESSAGE_PAGE_MAX", "100"))
MAX_MESSAGE_LENGTH = int(os.getenv("MAX_MESSAGE_LENGTH", "10000"))
MAX_TITLE_LENGTH = int(os.getenv("MAX_TITLE_LENGTH", "100"))
# Message ids live in a 32-bit Integer column
MAX_MESSAGE_ID = 2**31 - 1
USER_SEARCH_LIMIT = int(os.getenv("USER_SEARCH_LIMIT", "10"))

# Client transport used by the poller and thread view
MESSAGING_API_URL = os.getenv("MESSAGING_API_URL", "http://localhost:8000")
MESSAGING_API_TIMEOUT = float(os.getenv("MESSAGING_API_TIMEOUT", "10"))
