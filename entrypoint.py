import uvicorn
import os
from constants import HOST, LOG_FILE, LOG_LEVEL, PORT
from logging_config import setup_logging

# Setup logging before importing app
setup_logging(log_level=LOG_LEVEL, log_file=LOG_FILE)

from app import app
from logging_config import get_logger

logger = get_logger(__name__)

if __name__ == "__main__":
    reload = os.getenv("RELOAD", "false").lower() == "true"
    logger.info(f"Starting CodeSync server on {HOST}:{PORT}")
    logger.info(f"Health check: http://{HOST}:{PORT}/api/health")
    # Room state lives in this process; run a single worker.
    uvicorn.run("app:app" if reload else app, host=HOST, port=PORT, reload=reload, workers=1)
