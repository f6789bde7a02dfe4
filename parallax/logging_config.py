import logging
import os
import sys

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
LOG_LEVEL_ENV = "PARALLAX_LOG_LEVEL"

# Chatty third-party loggers held at WARNING
QUIET_LOGGERS = ("urllib3", "PIL", "easyocr", "transformers", "huggingface_hub")


def resolve_level(default=logging.INFO):
    """Level from PARALLAX_LOG_LEVEL (name or number), else the default"""
    raw = os.environ.get(LOG_LEVEL_ENV, "").strip()
    if not raw:
        return default
    if raw.isdigit():
        return int(raw)
    level = logging.getLevelName(raw.upper())
    return level if isinstance(level, int) else default


def setup_logger(name="parallax", level=None):
    """Configure the application logger once and return it"""
    logger = logging.getLogger(name)
    if level is None:
        level = resolve_level()

    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt='%H:%M:%S'))
        logger.addHandler(handler)
        for noisy in QUIET_LOGGERS:
            logging.getLogger(noisy).setLevel(logging.WARNING)

    logger.setLevel(level)
    for handler in logger.handlers:
        handler.setLevel(level)
    return logger
