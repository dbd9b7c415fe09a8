"""
utils/logger.py — Logging setup shared by the app and the engine modules.

Engine modules only call logging.getLogger(__name__); the application
factory attaches a rotating file handler (logs/garden.log) to the root
project logger through setup_logger().
"""

import os
import logging
from logging.handlers import RotatingFileHandler

BASE_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
LOGS_DIR = os.path.join(BASE_DIR, 'logs')


def setup_logger(name=None, log_file='garden.log', level=logging.INFO, logs_dir=None):
    """Attach a rotating file handler (5 MB, 3 backups) to a logger.

    Calling it twice for the same logger replaces the handler instead of
    duplicating every line.
    """
    logs_dir = logs_dir or LOGS_DIR
    os.makedirs(logs_dir, exist_ok=True)

    logger = logging.getLogger(name)
    logger.setLevel(level)

    for handler in list(logger.handlers):
        if getattr(handler, '_garden_handler', False):
            logger.removeHandler(handler)
            handler.close()

    handler = RotatingFileHandler(
        os.path.join(logs_dir, log_file),
        maxBytes=5 * 1024 * 1024,
        backupCount=3,
        encoding='utf-8',
    )
    handler.setFormatter(logging.Formatter(
        '[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    ))
    handler._garden_handler = True
    logger.addHandler(handler)

    return logger


def log_event(logger, level, message, **context):
    """Log a message with key=value context appended.

    Example:
        log_event(logger, 'info', "Arrosage enregistré", plantings=3)
        -> "Arrosage enregistré | plantings=3"
    """
    if context:
        details = ' '.join(f"{k}={v}" for k, v in context.items())
        message = f"{message} | {details}"

    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO
    logger.log(numeric_level, message)
