import os

REDIS_HOST = os.getenv("REDIS_HOST", "localhost")
REDIS_PORT = int(os.getenv("REDIS_PORT", 6379))
REDIS_PASSWORD = os.getenv("REDIS_PASSWORD", None)
REDIS_DB = int(os.getenv("REDIS_DB", 0))

HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", 8000))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FILE = os.getenv("LOG_FILE", None)
LOG_FORMAT = os.getenv("LOG_FORMAT", "console")

CORS_ORIGINS = [origin.strip() for origin in os.getenv("CORS_ORIGINS", "*").split(",") if origin.strip()]

WS_PATH = "/ws"
RELAY_URL = os.getenv("RELAY_URL", f"ws://localhost:{PORT}{WS_PATH}")
RECONNECT_DELAY_SECONDS = float(os.getenv("RECONNECT_DELAY_SECONDS", 3.0))
# A connection whose outbox reaches this many unsent frames is treated as dead and closed.
OUTBOX_MAX_FRAMES = int(os.getenv("OUTBOX_MAX_FRAMES", 1000))
