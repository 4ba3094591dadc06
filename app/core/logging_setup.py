import logging
import sys

from app.core.config import settings

NOISY_LOGGERS = ("botocore", "boto3", "urllib3", "httpx", "openai")


def setup_logging(log_file: str = None, level: int = logging.INFO):
    """Configures logging to write to both console and a file."""
    handlers = [logging.StreamHandler(sys.stdout)]
    log_file = log_file if log_file is not None else settings.log_file
    if log_file:
        handlers.append(logging.FileHandler(log_file, mode="a", encoding="utf-8"))

    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=handlers,
    )
    # Client libraries log every request at INFO/DEBUG
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger("uvicorn").handlers = []  # Avoid double logging if uvicorn sets its own
    logging.getLogger("uvicorn").propagate = True
