import logging
import os

from dotenv import load_dotenv

load_dotenv()

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format="%(asctime)s | %(levelname)s | %(name)s\n%(message)s\n",
)

logger = logging.getLogger("vibe_rooms")

# --- Database ---
DATABASE_URL        = os.getenv("DATABASE_URL", "")
DB_HOST             = os.getenv("DB_HOST", "localhost")
DB_PORT             = int(os.getenv("DB_PORT", "5432"))
DB_NAME             = os.getenv("DB_NAME", "")
DB_USER             = os.getenv("DB_USER", "")
DB_PASSWORD         = os.getenv("DB_PASSWORD", "")
DB_SECRET_ID        = os.getenv("DB_SECRET_ID", "")
LOCAL_SQLITE_URL    = os.getenv("LOCAL_SQLITE_URL", "sqlite:///vibe_rooms.db")

# --- Google Cloud / Vertex ---
PROJECT_ID = os.getenv("GOOGLE_CLOUD_PROJECT", "your-project-id")
REGION = os.getenv("GOOGLE_CLOUD_REGION", "us-central1")

# --- Reasoning service ---
ANALYZER_MODEL      = os.getenv("ANALYZER_MODEL", "gemini-2.5-flash-lite")
PLANNER_MODEL       = os.getenv("PLANNER_MODEL", ANALYZER_MODEL)
BUILDER_MODEL       = os.getenv("BUILDER_MODEL", PLANNER_MODEL)
LLM_TIMEOUT_SECONDS = float(os.getenv("LLM_TIMEOUT_SECONDS", "300"))
# 1 attempt: failures surface to the stage caller, the next trigger retries.
LLM_MAX_ATTEMPTS    = int(os.getenv("LLM_MAX_ATTEMPTS", "1"))

# --- Batching ---
BATCH_POLICY         = os.getenv("BATCH_POLICY", "window")   # window | debounce
BATCH_WINDOW_SECONDS = float(os.getenv("BATCH_WINDOW_SECONDS", "10"))
DEBOUNCE_SECONDS     = float(os.getenv("DEBOUNCE_SECONDS", "2"))

# --- Pipeline ---
ANALYZER_LOOKBACK_SECONDS = float(os.getenv("ANALYZER_LOOKBACK_SECONDS", "15"))
ANALYZER_EVENT_LIMIT      = int(os.getenv("ANALYZER_EVENT_LIMIT", "50"))
PRIMARY_ARTIFACT_PATH     = os.getenv("PRIMARY_ARTIFACT_PATH", "index.html")

# --- Command synthesis / code-generation platform ---
COMMAND_WINDOW_SECONDS    = float(os.getenv("COMMAND_WINDOW_SECONDS", "5"))
COMMAND_MIN_SUPPORT_RATIO = float(os.getenv("COMMAND_MIN_SUPPORT_RATIO", "0.3"))
TICK_MIN_INTERVAL_SECONDS = float(os.getenv("TICK_MIN_INTERVAL_SECONDS", "1"))
V0_API_KEY                = os.getenv("V0_API_KEY", "")
V0_API_BASE_URL           = os.getenv("V0_API_BASE_URL", "https://api.v0.dev/v1")
V0_TIMEOUT_SECONDS        = float(os.getenv("V0_TIMEOUT_SECONDS", "120"))

# --- Worker ---
WATCH_POLL_INTERVAL = float(os.getenv("WATCH_POLL_INTERVAL", "1.0"))
# false when a separate worker_main process does the batching
SCHEDULE_ON_SUBMIT  = os.getenv("SCHEDULE_ON_SUBMIT", "true").lower() in ("1", "true", "yes")
