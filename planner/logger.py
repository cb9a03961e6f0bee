# planner/logger.py
import logging
import sys
from pathlib import Path

from .constants import LOG_LEVEL, LOG_PATH

logger = logging.getLogger("planner")
logger.setLevel(LOG_LEVEL)

# Prevent duplicate handlers if imported multiple times
if not logger.handlers:
    # Stream handler (stdout -> docker logs)
    stream_handler = logging.StreamHandler(sys.stdout)
    stream_handler.setFormatter(logging.Formatter("[%(levelname)s] %(message)s"))
    logger.addHandler(stream_handler)

    if LOG_PATH:
        log_file = Path(LOG_PATH)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(
            logging.Formatter(
                "%(asctime)s - %(levelname)s - %(name)s - %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )
        logger.addHandler(file_handler)


def get_logger(name: str) -> logging.Logger:
    if name.startswith("planner."):
        return logging.getLogger(name)
    return logger.getChild(name)
