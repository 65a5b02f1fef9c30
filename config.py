import os

from dotenv import load_dotenv

from schemas import Category

load_dotenv()

# --- Config ---

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
PORT = int(os.getenv("PORT", 8000))

# Bearer token expected by the scheduled reset endpoint; unset disables the check
CRON_SECRET = os.getenv("CRON_SECRET")

# Free-tier daily limits
DAILY_LIMITS = {
    Category.MOOD_CHECK: int(os.getenv("DAILY_MOOD_CHECK_LIMIT", 1)),
    Category.AI_SPLIT: int(os.getenv("DAILY_AI_SPLIT_LIMIT", 2)),
    Category.AI_PARSE: int(os.getenv("DAILY_AI_PARSE_LIMIT", 5)),
}
