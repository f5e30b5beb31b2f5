"""
Structured logging configuration for provisioning runs.

The engine itself never writes to the console or a log file; it reports
progress through an observer. The LoggingObserver emits those events on the
``cloudseq`` logger, and this module decides where they end up: the console,
and optionally a rotating log file (the tutorials' ``tee -a $LOG_FILE``).
"""

import json
import logging
from logging.handlers import RotatingFileHandler
from typing import Optional

from cloudseq.timestamps import now


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured provisioning logs."""

    def format(self, record):
        log_entry = {
            'timestamp': now().isoformat().replace('+00:00', 'Z'),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno,
        }

        if record.exc_info:
            log_entry['exception'] = self.formatException(record.exc_info)

        for attr in ('correlation_id', 'step', 'kind', 'resource_id',
                     'creation_index', 'attempt', 'status', 'event'):
            if hasattr(record, attr):
                log_entry[attr] = getattr(record, attr)

        return json.dumps(log_entry)


def configure_logging(
    log_level: Optional[str] = None,
    log_format: Optional[str] = None,
    log_file: Optional[str] = None,
) -> logging.Logger:
    """Configure the ``cloudseq`` logger.

    Arguments left as None fall back to the application settings
    (LOG_LEVEL, LOG_FORMAT, LOG_FILE).

    Returns:
        Configured logger instance.
    """
    from config.settings import get_settings

    settings = get_settings()
    log_level = (log_level or settings.log_level).upper()
    log_format = log_format or settings.log_format
    log_file = log_file if log_file is not None else settings.log_file

    logger = logging.getLogger('cloudseq')
    logger.setLevel(getattr(logging, log_level, logging.INFO))
    logger.handlers = []

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.DEBUG)

    if log_format == 'json':
        console_handler.setFormatter(JSONFormatter())
    else:
        console_handler.setFormatter(logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        ))

    logger.addHandler(console_handler)

    # File handler (if configured)
    if log_file:
        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=10 * 1024 * 1024,  # 10MB
            backupCount=5
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(JSONFormatter())
        logger.addHandler(file_handler)

    return logger
