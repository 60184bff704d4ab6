import os
import sys

from loguru import logger

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FILE  = os.getenv("LOG_FILE", "")

logger.remove()
logger.add(sys.stderr, level=LOG_LEVEL, enqueue=True, backtrace=False, diagnose=False)
if LOG_FILE:
    logger.add(LOG_FILE, level="DEBUG", rotation="2 MB", retention=5, enqueue=True)
