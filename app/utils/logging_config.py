import logging
import os
import sys
import traceback
from contextvars import ContextVar
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler, TimedRotatingFileHandler
from typing import Any, Dict, Optional

from pythonjsonlogger import jsonlogger

from app.config import settings

# Context variables for request tracking
request_id: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
actor_id: ContextVar[Optional[str]] = ContextVar("actor_id", default=None)

ENVIRONMENT = settings.ENVIRONMENT
LOG_LEVEL = settings.LOG_LEVEL.upper()
LOG_DIR = settings.LOG_DIR


class ContextualJsonFormatter(jsonlogger.JsonFormatter):
    """JSON formatter that adds request context and service metadata"""

    def add_fields(self, log_record, record, message_dict):
        super().add_fields(log_record, record, message_dict)

        log_record["timestamp"] = datetime.now(timezone.utc).isoformat()
        log_record["environment"] = ENVIRONMENT
        log_record["service"] = "bloodstock-ledger"

        if request_id.get():
            log_record["request_id"] = request_id.get()
        if actor_id.get():
            log_record["actor_id"] = actor_id.get()

        if record.exc_info:
            log_record["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "traceback": traceback.format_exception(*record.exc_info),
            }

        if hasattr(record, "extra_fields"):
            log_record.update(record.extra_fields)


class ApplicationLogger:
    """Centralized logger class for the application"""

    _instance = None
    _loggers = {}

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._setup_logging()
        return cls._instance

    def _setup_logging(self):
        root_logger = logging.getLogger()
        root_logger.setLevel(getattr(logging, LOG_LEVEL, logging.INFO))
        root_logger.handlers.clear()

        formatter = ContextualJsonFormatter(
            "%(asctime)s %(levelname)s %(name)s %(funcName)s:%(lineno)d %(message)s"
        )

        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(formatter)
        console_handler.setLevel(getattr(logging, LOG_LEVEL, logging.INFO))
        root_logger.addHandler(console_handler)

        if settings.LOG_TO_FILE:
            self._setup_file_handlers(formatter)

        self._configure_third_party_loggers()

    def _setup_file_handlers(self, formatter):
        os.makedirs(LOG_DIR, exist_ok=True)
        root_logger = logging.getLogger()

        # Application logs (rotating by size)
        app_handler = RotatingFileHandler(
            f"{LOG_DIR}/app.log", maxBytes=10_000_000, backupCount=10
        )
        app_handler.setFormatter(formatter)
        app_handler.setLevel(logging.INFO)
        root_logger.addHandler(app_handler)

        # Error logs (rotating by time)
        error_handler = TimedRotatingFileHandler(
            f"{LOG_DIR}/error.log", when="midnight", interval=1, backupCount=30
        )
        error_handler.setFormatter(formatter)
        error_handler.setLevel(logging.ERROR)
        root_logger.addHandler(error_handler)

        # Stock and request state changes are kept longer
        audit_handler = TimedRotatingFileHandler(
            f"{LOG_DIR}/audit.log", when="midnight", interval=1, backupCount=365
        )
        audit_handler.setFormatter(formatter)
        audit_logger = logging.getLogger("audit")
        audit_logger.addHandler(audit_handler)
        audit_logger.setLevel(logging.INFO)

        perf_handler = RotatingFileHandler(
            f"{LOG_DIR}/performance.log", maxBytes=5_000_000, backupCount=5
        )
        perf_handler.setFormatter(formatter)
        perf_logger = logging.getLogger("performance")
        perf_logger.addHandler(perf_handler)
        perf_logger.setLevel(logging.INFO)

        access_handler = TimedRotatingFileHandler(
            f"{LOG_DIR}/access.log", when="midnight", interval=1, backupCount=30
        )
        access_handler.setFormatter(formatter)
        access_logger = logging.getLogger("access")
        access_logger.addHandler(access_handler)
        access_logger.setLevel(logging.INFO)

    def _configure_third_party_loggers(self):
        logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
        logging.getLogger("sqlalchemy.pool").setLevel(logging.WARNING)
        logging.getLogger("aiosqlite").setLevel(logging.WARNING)

        # Access is logged by LoggingMiddleware
        logging.getLogger("uvicorn.access").handlers.clear()

    def get_logger(self, name: str) -> logging.Logger:
        if name not in self._loggers:
            self._loggers[name] = logging.getLogger(name)
        return self._loggers[name]


# Global logger instance
app_logger = ApplicationLogger()


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance. Use __name__ as the name parameter.

    Args:
        name: Logger name, typically __name__ from calling module

    Returns:
        Logger instance
    """
    return app_logger.get_logger(name)


def log_audit_event(
    action: str,
    resource_type: str,
    resource_id: Optional[str] = None,
    old_values: Optional[Dict[str, Any]] = None,
    new_values: Optional[Dict[str, Any]] = None,
    user_id: Optional[str] = None,
) -> None:
    """Log a state change on a ledger, request or donation"""
    audit_logger = logging.getLogger("audit")
    log_data = {
        "action": action,
        "resource_type": resource_type,
        "resource_id": resource_id,
        "old_values": old_values,
        "new_values": new_values,
        "user_id": user_id,
    }
    audit_logger.info(f"Audit: {resource_type}.{action}", extra={"extra_fields": log_data})


def log_performance_metric(
    operation: str,
    duration_seconds: float,
    additional_metrics: Optional[Dict[str, Any]] = None,
):
    perf_logger = logging.getLogger("performance")

    log_data = {
        "operation": operation,
        "duration_seconds": round(duration_seconds, 4),
        "performance_category": "slow" if duration_seconds > 1.0 else "normal",
    }
    if additional_metrics:
        log_data.update(additional_metrics)

    perf_logger.info(f"Performance metric: {operation}", extra={"extra_fields": log_data})


def log_api_access(
    method: str,
    path: str,
    status_code: int,
    response_time: float,
    user_id: Optional[str] = None,
    ip_address: Optional[str] = None,
):
    access_logger = logging.getLogger("access")

    log_data = {
        "http_method": method,
        "path": path,
        "status_code": status_code,
        "response_time_seconds": round(response_time, 4),
        "ip_address": ip_address,
    }
    if user_id:
        log_data["user_id"] = user_id

    access_logger.info(f"{method} {path} - {status_code}", extra={"extra_fields": log_data})


class LogContext:
    """Context manager for setting request context"""

    def __init__(self, req_id: Optional[str] = None, act_id: Optional[str] = None):
        self.request_id = req_id
        self.actor_id = act_id
        self.tokens = []

    def __enter__(self):
        if self.request_id:
            self.tokens.append(request_id.set(self.request_id))
        if self.actor_id:
            self.tokens.append(actor_id.set(self.actor_id))
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        for token in reversed(self.tokens):
            token.var.reset(token)
