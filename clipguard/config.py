import logging
import os

DB_PATH = os.getenv("CLIPGUARD_DB_PATH", "data/clipguard.db")
API_KEY = os.getenv("CLIPGUARD_API_KEY")
ALLOWED_ORIGINS = [
    o.strip()
    for o in os.getenv("CLIPGUARD_ALLOWED_ORIGINS", "http://localhost:8501,http://127.0.0.1:8501").split(",")
    if o.strip()
]
ALERT_WEBHOOK_URL = os.getenv("CLIPGUARD_ALERT_WEBHOOK_URL")  # optional, e.g. SOC intake endpoint
WEBHOOK_TIMEOUT = float(os.getenv("CLIPGUARD_WEBHOOK_TIMEOUT", "5"))
RAW_TELEMETRY = os.getenv("CLIPGUARD_RAW_TELEMETRY", "0").lower() in ("1", "true", "yes", "on")
TELEMETRY_PATH = os.getenv("CLIPGUARD_TELEMETRY_PATH", "data/raw_candidates.jsonl")
WHITELIST_MATCH = os.getenv("CLIPGUARD_WHITELIST_MATCH", "exact")
LOG_LEVEL = os.getenv("CLIPGUARD_LOG_LEVEL", "INFO").upper()
API_URL = os.getenv("CLIPGUARD_API_URL")

MAX_LOGS = 50
PREVIEW_CHARS = 200


def configure_logging(level: str = LOG_LEVEL) -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
