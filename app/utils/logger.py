import logging
import os
import sys
from logging.handlers import RotatingFileHandler

from pythonjsonlogger.json import JsonFormatter

from app.config import settings

CONSOLE_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


class ServiceJsonFormatter(JsonFormatter):
    def process_log_record(self, log_data: dict) -> dict:
        """Tag every structured record with the service name."""
        log_data["service"] = "mail_tracker"
        return log_data


def get_logger(name: str) -> logging.Logger:
    """
    Return a logger writing to stdout and to a rotating JSON file.

    Handlers are attached once per logger name, so repeated calls
    from different modules are cheap.
    """
    logger = logging.getLogger(name)
    logger.setLevel(logging.INFO)

    if not logger.handlers:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(logging.Formatter(CONSOLE_FORMAT))
        logger.addHandler(console_handler)

        os.makedirs(settings.LOG_DIR, exist_ok=True)
        json_file_handler = RotatingFileHandler(
            os.path.join(settings.LOG_DIR, "structured_logs.json"),
            maxBytes=10_000_000,
            backupCount=10,
        )
        json_file_handler.setFormatter(
            ServiceJsonFormatter("%(asctime)s %(levelname)s %(name)s %(message)s")
        )
        logger.addHandler(json_file_handler)

    return logger
