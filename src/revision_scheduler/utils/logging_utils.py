"""
Logging helpers shared by the app wiring and the services: request logging
middleware, lifecycle events, error context and a performance decorator.
"""

import functools
import inspect
import time
from typing import Any, Callable, Dict, Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from revision_scheduler.managers.logging_manager import get_logger

logger = get_logger(prefix="[Lifecycle]")
request_logger = get_logger(prefix="[Request]")
perf_logger = get_logger(prefix="[Performance]")
error_logger = get_logger(prefix="[Error]")


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log method, path, status code and duration of every request."""

    async def dispatch(self, request: Request, call_next):
        start_time = time.time()
        try:
            response = await call_next(request)
        except Exception:
            duration = time.time() - start_time
            request_logger.error(
                "%s %s failed after %.3fs", request.method, request.url.path, duration, exc_info=True
            )
            raise
        duration = time.time() - start_time
        request_logger.info(
            "%s %s -> %d in %.3fs", request.method, request.url.path, response.status_code, duration
        )
        return response


def log_application_lifecycle(event: str, details: Optional[Dict[str, Any]] = None) -> None:
    """Log an application lifecycle event (startup, shutdown phases)."""
    logger.info("Lifecycle event '%s': %s", event, details or {})


def log_error_with_context(error: Exception, context: Optional[Dict[str, Any]] = None) -> None:
    """Log an exception together with the operation context it happened in."""
    error_logger.error(
        "%s: %s | context=%s", type(error).__name__, error, context or {}, exc_info=error
    )


def log_performance(operation: str) -> Callable:
    """
    Decorator that logs how long the wrapped callable took.

    Works for both coroutine functions and plain functions.
    """

    def decorator(func: Callable) -> Callable:
        if inspect.iscoroutinefunction(func):

            @functools.wraps(func)
            async def async_wrapper(*args, **kwargs):
                start_time = time.time()
                try:
                    return await func(*args, **kwargs)
                finally:
                    perf_logger.debug("%s completed in %.3fs", operation, time.time() - start_time)

            return async_wrapper

        @functools.wraps(func)
        def sync_wrapper(*args, **kwargs):
            start_time = time.time()
            try:
                return func(*args, **kwargs)
            finally:
                perf_logger.debug("%s completed in %.3fs", operation, time.time() - start_time)

        return sync_wrapper

    return decorator
