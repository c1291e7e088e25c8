import logging
import os
from logging.handlers import TimedRotatingFileHandler


def configure_logging(log_file="logs/pairs_bot.log", level=logging.INFO):
    """
    Configure root logger with a timed rotating file handler and console output.
    Rotates logs at midnight and keeps 7 days of backups.
    """
    # Ensure log directory exists
    log_dir = os.path.dirname(log_file)
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)

    # Timed rotating file handler: rotate at midnight, keep 7 backups
    handler = TimedRotatingFileHandler(
        log_file,
        when="midnight",
        backupCount=7,
        encoding="utf-8"
    )
    handler.setLevel(level)
    formatter = logging.Formatter("%(asctime)s %(levelname)s: %(message)s")
    handler.setFormatter(formatter)

    # Console handler
    console = logging.StreamHandler()
    console.setLevel(level)
    console.setFormatter(formatter)

    # Apply handlers
    logging.basicConfig(
        level=level,
        handlers=[handler, console],
        force=True,
    )
