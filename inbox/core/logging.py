"""
Structured Logging Infrastructure

Provides JSON-formatted logging with correlation IDs for request tracing,
and a tenant scope so every line written while a webhook sub-event is being
processed can be attributed to the tenant it was resolved to.
"""
import logging
import json
import sys
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Iterator
from contextvars import ContextVar
from functools import wraps

# Context variable for correlation ID
correlation_id_var: ContextVar[str] = ContextVar("correlation_id", default="")
# tenant שאליו שויך האירוע הנוכחי (ריק לפני זיהוי)
tenant_id_var: ContextVar[str] = ContextVar("tenant_id", default="")


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging"""

    def __init__(self, app_name: str = "instagram-inbox") -> None:
        super().__init__()
        self.app_name = app_name

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "app": self.app_name,
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        correlation_id = correlation_id_var.get()
        if correlation_id:
            log_entry["correlation_id"] = correlation_id

        tenant_id = tenant_id_var.get()
        if tenant_id:
            log_entry["tenant_id"] = tenant_id

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        if hasattr(record, "extra_data"):
            log_entry["extra"] = record.extra_data

        return json.dumps(log_entry, ensure_ascii=False, default=str)


class StructuredLogger(logging.Logger):
    """Extended logger with structured logging support"""

    def _log_with_extra(
        self,
        level: int,
        msg: str,
        args: tuple,
        extra_data: dict[str, Any] | None = None,
        **kwargs
    ) -> None:
        if extra_data:
            extra = kwargs.get("extra", {})
            extra["extra_data"] = extra_data
            kwargs["extra"] = extra
        super()._log(level, msg, args, **kwargs)

    def debug(self, msg: str, *args, extra_data: dict[str, Any] | None = None, **kwargs) -> None:
        if self.isEnabledFor(logging.DEBUG):
            self._log_with_extra(logging.DEBUG, msg, args, extra_data, **kwargs)

    def info(self, msg: str, *args, extra_data: dict[str, Any] | None = None, **kwargs) -> None:
        if self.isEnabledFor(logging.INFO):
            self._log_with_extra(logging.INFO, msg, args, extra_data, **kwargs)

    def warning(self, msg: str, *args, extra_data: dict[str, Any] | None = None, **kwargs) -> None:
        if self.isEnabledFor(logging.WARNING):
            self._log_with_extra(logging.WARNING, msg, args, extra_data, **kwargs)

    def error(self, msg: str, *args, extra_data: dict[str, Any] | None = None, **kwargs) -> None:
        if self.isEnabledFor(logging.ERROR):
            self._log_with_extra(logging.ERROR, msg, args, extra_data, **kwargs)

    def critical(self, msg: str, *args, extra_data: dict[str, Any] | None = None, **kwargs) -> None:
        if self.isEnabledFor(logging.CRITICAL):
            self._log_with_extra(logging.CRITICAL, msg, args, extra_data, **kwargs)


logging.setLoggerClass(StructuredLogger)


def setup_logging(
    level: str = "INFO",
    json_format: bool = True,
    app_name: str = "instagram-inbox"
) -> None:
    """
    Configure application logging.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: Use JSON formatting for production
        app_name: Application name stamped on every JSON record
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))
    root_logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(getattr(logging, level.upper()))

    if json_format:
        handler.setFormatter(JSONFormatter(app_name=app_name))
    else:
        # Human-readable format for development
        formatter = logging.Formatter(
            "%(asctime)s | %(levelname)-8s | %(name)s | [%(correlation_id)s] [%(tenant_id)s] | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S"
        )
        handler.setFormatter(formatter)
        handler.addFilter(CorrelationIdFilter())

    root_logger.addHandler(handler)

    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("celery").setLevel(logging.INFO)


class CorrelationIdFilter(logging.Filter):
    """Filter that adds correlation_id and tenant_id to log records"""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = correlation_id_var.get() or "-"
        record.tenant_id = tenant_id_var.get() or "-"
        return True


def generate_correlation_id() -> str:
    """Generate a new correlation ID"""
    return str(uuid.uuid4())[:8]


def set_correlation_id(correlation_id: str | None = None) -> str:
    """Set correlation ID for current context"""
    cid = correlation_id or generate_correlation_id()
    correlation_id_var.set(cid)
    return cid


def get_correlation_id() -> str:
    """Get current correlation ID, generating and persisting one if not set"""
    cid = correlation_id_var.get()
    if not cid:
        cid = generate_correlation_id()
        correlation_id_var.set(cid)
    return cid


@contextmanager
def bind_tenant_id(tenant_id: int | str | None) -> Iterator[None]:
    """מצמיד tenant ללוגים בתוך הבלוק ומחזיר את הערך הקודם ביציאה"""
    token = tenant_id_var.set(str(tenant_id) if tenant_id is not None else "")
    try:
        yield
    finally:
        tenant_id_var.reset(token)


def get_logger(name: str) -> StructuredLogger:
    """Get a structured logger instance"""
    return logging.getLogger(name)  # type: ignore


def log_async_operation(operation_name: str):
    """Decorator for logging async operations with timing"""
    def decorator(func):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            logger = get_logger(func.__module__)
            start_time = datetime.now(timezone.utc)

            logger.debug(
                f"Starting {operation_name}",
                extra_data={"operation": operation_name, "status": "started"}
            )

            try:
                result = await func(*args, **kwargs)
            except Exception as e:
                duration = (datetime.now(timezone.utc) - start_time).total_seconds()
                logger.error(
                    f"Failed {operation_name}: {str(e)}",
                    extra_data={
                        "operation": operation_name,
                        "status": "failed",
                        "duration_seconds": duration,
                        "error": str(e)
                    },
                    exc_info=True
                )
                raise

            duration = (datetime.now(timezone.utc) - start_time).total_seconds()
            logger.info(
                f"Completed {operation_name}",
                extra_data={
                    "operation": operation_name,
                    "status": "completed",
                    "duration_seconds": duration
                }
            )
            return result

        return wrapper
    return decorator
