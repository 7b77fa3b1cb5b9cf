"""Logging setup shared by the app factory and the CLI."""
import logging

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def configure_logging(level='INFO'):
    """
    Attach one stream handler to the stockroom logger.

    Safe to call repeatedly (one app per test): the handler is added once
    and later calls only change the level.
    """
    logger = logging.getLogger('stockroom')
    logger.setLevel(getattr(logging, str(level).upper(), logging.INFO))

    if not any(getattr(handler, '_stockroom', False) for handler in logger.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
        handler._stockroom = True
        logger.addHandler(handler)

    return logger
