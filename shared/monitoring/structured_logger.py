"""
Structured Logging Module

JSON logging for the signal streaming service. Log records carry the
connection and scheduler tick they were emitted under, so a single tick or
client session can be followed through aggregated logs.
"""

import logging
import os
import sys
import traceback
from contextvars import ContextVar
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from pythonjsonlogger import jsonlogger


# Context variables for connection and tick tracing
client_id_var: ContextVar[Optional[str]] = ContextVar('client_id', default=None)
tick_id_var: ContextVar[Optional[str]] = ContextVar('tick_id', default=None)

TEXT_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(filename)s:%(lineno)d - %(message)s'


class ContextFilter(logging.Filter):
    """Attach client/tick context to every record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.client_id = client_id_var.get()
        record.tick_id = tick_id_var.get()
        record.service_name = os.getenv('SERVICE_NAME', 'signal_stream')
        return True


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """JSON formatter with timestamp, location and tracing fields"""

    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]):
        super().add_fields(log_record, record, message_dict)

        log_record['timestamp'] = datetime.now(timezone.utc).isoformat()
        log_record['level'] = record.levelname
        log_record['logger'] = record.name
        log_record['file'] = f"{record.filename}:{record.lineno}"

        for field in ('client_id', 'tick_id', 'service_name'):
            value = getattr(record, field, None)
            if value:
                log_record[field] = value

        if record.exc_info and record.exc_info[0] is not None:
            log_record['exception'] = {
                'type': record.exc_info[0].__name__,
                'message': str(record.exc_info[1]),
                'traceback': traceback.format_exception(*record.exc_info)
            }


class StructuredLogger:
    """
    Configures loggers with JSON or text output.

    Usage:
        logger = StructuredLogger.get_logger("signal_stream")
        token = tick_id_var.set("3f2a...")
        logger.info("Tick started", extra={"subscriptions": 12})
    """

    _loggers: Dict[str, logging.Logger] = {}

    @classmethod
    def get_logger(
        cls,
        name: str,
        level: int = logging.INFO,
        log_file: Optional[Path] = None,
        json_format: bool = True
    ) -> logging.Logger:
        """
        Get or create a configured logger.

        Args:
            name: Logger name. Configuring a package name (e.g. ``services``)
                also covers every module logger below it.
            level: Logging level
            log_file: Optional file to log to in addition to stdout
            json_format: Emit JSON instead of human-readable text

        Returns:
            Configured logger instance
        """
        if name in cls._loggers:
            return cls._loggers[name]

        logger = logging.getLogger(name)
        logger.setLevel(level)
        logger.handlers = []

        if json_format:
            formatter: logging.Formatter = CustomJsonFormatter('%(timestamp)s %(level)s %(logger)s %(message)s')
        else:
            formatter = logging.Formatter(TEXT_FORMAT, datefmt='%Y-%m-%d %H:%M:%S')

        handlers = [logging.StreamHandler(sys.stdout)]
        if log_file:
            log_file.parent.mkdir(parents=True, exist_ok=True)
            handlers.append(logging.FileHandler(log_file))

        for handler in handlers:
            handler.setLevel(level)
            handler.setFormatter(formatter)
            # Filter on the handler so records propagated from child loggers get context too
            handler.addFilter(ContextFilter())
            logger.addHandler(handler)

        cls._loggers[name] = logger
        return logger


def setup_service_logger(
    service_name: str,
    level: str = "INFO",
    log_dir: Optional[str] = None,
    json_format: bool = True,
    packages: tuple = ("services", "shared")
) -> logging.Logger:
    """
    Set up logging for a service.

    Args:
        service_name: Name of the service
        level: Logging level name (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_dir: Directory for ``<service_name>.log``
        json_format: Use JSON format
        packages: Package loggers to configure alongside the service logger

    Returns:
        The service logger

    Example:
        logger = setup_service_logger("signal_stream", level="DEBUG", json_format=False)
    """
    os.environ['SERVICE_NAME'] = service_name

    log_level = getattr(logging, level.upper(), logging.INFO)

    log_file = None
    if log_dir:
        log_file = Path(log_dir) / f"{service_name}.log"

    for package in packages:
        StructuredLogger.get_logger(package, log_level, log_file, json_format)

    return StructuredLogger.get_logger(service_name, log_level, log_file, json_format)


def log_business_event(logger: logging.Logger, event_type: str, **kwargs):
    """Log a domain event (client connected, subscription added, tick finished)"""
    logger.info(
        f"Business Event: {event_type}",
        extra={
            "event_type": event_type,
            "metric_type": "business_event",
            **kwargs
        }
    )


def log_error(logger: logging.Logger, error: Exception, context: Optional[Dict[str, Any]] = None):
    """Log an error with its type, message and context"""
    extra = {
        "error_type": type(error).__name__,
        "error_message": str(error),
        "metric_type": "error"
    }

    if context:
        extra.update(context)

    logger.error(
        f"Error occurred: {error}",
        exc_info=error,
        extra=extra
    )
