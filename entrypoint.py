import os

import uvicorn

from constants import HOST, LOG_FILE, LOG_FORMAT, LOG_LEVEL, PORT
from logging_config import setup_logging

# Setup logging before importing app
setup_logging(log_level=LOG_LEVEL, log_file=LOG_FILE, log_format=LOG_FORMAT)

from app import app  # noqa: E402,F401
from logging_config import get_logger  # noqa: E402

logger = get_logger(__name__)

if __name__ == "__main__":
    reload = os.getenv("RELOAD", "false").lower() in ("1", "true", "yes")
    logger.info(f"Starting message relay on {HOST}:{PORT}")
    uvicorn.run("app:app", host=HOST, port=PORT, reload=reload)
