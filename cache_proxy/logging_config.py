"""Shared logging configuration for the cache proxy."""
import logging
import os
from logging.handlers import RotatingFileHandler

LOG_DIR = os.environ.get("GEOPROXY_LOG_DIR", os.path.join(os.path.dirname(__file__), "logs"))


def setup_logging(name: str, level: str = "INFO", log_name: str = "cache-proxy") -> logging.Logger:
    """Set up logging with console and rotating file handlers.

    Args:
        name: Logger name (usually __name__)
        level: Log level string (DEBUG, INFO, WARNING, ERROR)
        log_name: Base name of the rotating log file inside LOG_DIR

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)

    # Avoid duplicate handlers if called multiple times
    if logger.handlers:
        return logger

    log_level = getattr(logging, level.upper(), logging.INFO)
    logger.setLevel(log_level)

    # Format: timestamp | level | module | message
    formatter = logging.Formatter(
        fmt='%(asctime)s | %(levelname)-8s | %(name)s | %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    # Console handler (INFO and above)
    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.INFO)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    # File handler (rotating, captures all levels). A read-only install still gets console logs.
    try:
        os.makedirs(LOG_DIR, exist_ok=True)
        file_handler = RotatingFileHandler(
            os.path.join(LOG_DIR, f"{log_name}.log"),
            maxBytes=10 * 1024 * 1024,  # 10 MB
            backupCount=5
        )
    except OSError as e:
        logger.warning(f"File logging disabled ({LOG_DIR}): {e}")
        return logger
    file_handler.setLevel(log_level)
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)

    return logger
