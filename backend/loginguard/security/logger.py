import logging
from logging.handlers import RotatingFileHandler

# Audit trail for challenge decisions
guard_logger = logging.getLogger("loginguard")
guard_logger.setLevel(logging.INFO)

FORMAT = "%(asctime)s - %(levelname)s - %(message)s"


def configure_file_logging(path: str) -> None:
    """Attach the rotating audit file once: 5 MB per file, keep 3 backups."""
    for handler in guard_logger.handlers:
        if isinstance(handler, RotatingFileHandler):
            return
    file_handler = RotatingFileHandler(path, maxBytes=5 * 1024 * 1024, backupCount=3)
    file_handler.setFormatter(logging.Formatter(FORMAT))
    guard_logger.addHandler(file_handler)
