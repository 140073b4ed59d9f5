import logging

from settlement_hub.config import settings

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
# per-request INFO lines from the delivery client drown out ledger logs
QUIET_LOGGERS = ("httpx", "httpcore")


def get_logger(name: str) -> logging.Logger:
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(level=settings.log_level, format=LOG_FORMAT)
        for noisy in QUIET_LOGGERS:
            logging.getLogger(noisy).setLevel(logging.WARNING)
    logger = logging.getLogger(name)
    logger.setLevel(settings.log_level)
    return logger
