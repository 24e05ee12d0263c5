"""Console logging plus an optional rotating file."""

import logging
import os
from logging.handlers import RotatingFileHandler
from pathlib import Path

LOG_FORMAT = "%(asctime)s %(levelname)s:%(name)s:%(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
DEFAULT_LOG_MAX_BYTES = 5 * 1024 * 1024
DEFAULT_LOG_BACKUP_COUNT = 5


def configure_logging(app):
    level_name = str(app.config.get('LOG_LEVEL') or 'INFO').upper()
    level = getattr(logging, level_name, logging.INFO)
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    handlers = [logging.StreamHandler()]
    log_dir = app.config.get('LOG_DIR')
    if log_dir:
        try:
            Path(log_dir).mkdir(parents=True, exist_ok=True)
            handlers.append(RotatingFileHandler(
                os.path.join(log_dir, 'reviewhub.log'),
                maxBytes=DEFAULT_LOG_MAX_BYTES,
                backupCount=DEFAULT_LOG_BACKUP_COUNT,
                encoding='utf-8',
            ))
        except OSError as error:
            logging.getLogger(__name__).warning(
                'File logging disabled: failed to initialize %s (%s)', log_dir, error
            )

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(level)
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        root_logger.addHandler(handler)
