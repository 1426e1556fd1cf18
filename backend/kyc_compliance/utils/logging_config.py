"""
Logging Setup — console plus a file log under LOG_DIR.
"""
import logging
import os

from kyc_compliance.config import get_settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

_configured = False


def setup_logging(log_file: str = "server.log") -> logging.Logger:
    """Attach console and file handlers to the package logger (idempotent)."""
    global _configured
    logger = logging.getLogger("kyc_compliance")
    if _configured:
        return logger

    settings = get_settings()
    logger.setLevel(logging.DEBUG if settings.DEBUG else logging.INFO)

    formatter = logging.Formatter(LOG_FORMAT)

    console = logging.StreamHandler()
    console.setFormatter(formatter)
    logger.addHandler(console)

    try:
        os.makedirs(settings.LOG_DIR, exist_ok=True)
        file_handler = logging.FileHandler(os.path.join(settings.LOG_DIR, log_file))
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)
    except OSError as e:
        logger.warning(f"File logging disabled: {e}")

    _configured = True
    return logger
