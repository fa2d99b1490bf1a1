# tracker/logger.py
import logging
import os
import sys
from logging.handlers import RotatingFileHandler

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

_configured = False


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() == "true"


def _build_handlers(level: int) -> list[logging.Handler]:
    formatter = logging.Formatter(LOG_FORMAT)
    handlers: list[logging.Handler] = []

    if _env_flag("LOG_TO_STDOUT", "true"):
        handlers.append(logging.StreamHandler(sys.stdout))

    if _env_flag("LOG_TO_FILE", "false"):
        log_file = os.getenv("LOG_FILE", "/data/listing_watch.log")
        try:
            os.makedirs(os.path.dirname(log_file) or ".", exist_ok=True)
            handlers.append(
                RotatingFileHandler(
                    log_file,
                    maxBytes=int(os.getenv("LOG_MAX_BYTES", str(2 * 1024 * 1024))),
                    backupCount=int(os.getenv("LOG_BACKUPS", "3")),
                )
            )
        except OSError as e:
            logging.getLogger(__name__).warning(
                "Failed to initialize file logging at %s: %s", log_file, e
            )

    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
    return handlers


def setup_logging() -> None:
    """Configure the root logger once per process."""
    global _configured
    if _configured:
        return

    level_name = os.getenv("LOG_LEVEL", "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)

    root = logging.getLogger()
    root.setLevel(level)

    # Leave handlers installed by a host application (or pytest) alone
    if not root.handlers:
        for handler in _build_handlers(level):
            root.addHandler(handler)

    _configured = True


def get_logger(name: str | None = None) -> logging.Logger:
    setup_logging()
    return logging.getLogger(name)
