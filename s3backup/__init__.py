import os
import logging
from logging.handlers import RotatingFileHandler

from s3backup.models import BackupContext


__version__ = '0.1.0'

CONSOLE_FORMAT = '[%(asctime)s] %(levelname)s in %(module)s: %(message)s'
FILE_FORMAT = '[%(asctime)s] %(levelname)s [%(name)s.%(funcName)s:%(lineno)d] %(message)s'


def configure_logging(log_dir=None, debug=False, name='s3backup'):
    """Configure application logging"""

    log_level = logging.DEBUG if debug else logging.INFO
    logger = logging.getLogger(name)
    logger.setLevel(log_level)

    # Calling this twice must not duplicate output
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_handler.setFormatter(logging.Formatter(CONSOLE_FORMAT))
    logger.addHandler(console_handler)

    # File handler
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
        file_handler = RotatingFileHandler(
            os.path.join(log_dir, 's3backup.log'),
            maxBytes=10485760,  # 10MB
            backupCount=10
        )
        file_handler.setLevel(log_level)
        file_handler.setFormatter(logging.Formatter(FILE_FORMAT))
        logger.addHandler(file_handler)

    logger.propagate = False

    # boto is very chatty at DEBUG
    for noisy in ('boto3', 'botocore', 's3transfer', 'urllib3'):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    logger.info(f"Logging configured (level: {logging.getLevelName(log_level)})")
    return logger


def create_context(config_cls, logger=None) -> BackupContext:
    """Build the runtime context for a configuration class"""
    if logger is None:
        logger = configure_logging(config_cls.LOG_DIR, config_cls.DEBUG)
    return BackupContext(
        logger=logger,
        region=config_cls.REGION,
        timezone=config_cls.TIMEZONE
    )
