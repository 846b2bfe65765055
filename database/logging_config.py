"""Logging setup for command-line entry points"""
import logging
import sys

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

_HANDLER_NAME = 'airline-ops-stdout'


def configure_logging(level: str = 'INFO') -> None:
    """
    Install a single stdout handler on the root logger

    Safe to call more than once; the handler is only added the first time.
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    if any(h.get_name() == _HANDLER_NAME for h in root_logger.handlers):
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.set_name(_HANDLER_NAME)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root_logger.addHandler(handler)

    # Faker reports every locale/provider lookup
    logging.getLogger('faker').setLevel(logging.WARNING)
