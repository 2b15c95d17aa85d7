"""Secure logging utilities to prevent information disclosure."""

import logging
import re
from functools import lru_cache
from typing import Any

from attendance_api.config import get_settings


@lru_cache(maxsize=1)
def is_debug_mode() -> bool:
    """Check if application is running in debug mode."""
    return get_settings().debug


def sanitize_exception_message(error: Exception | str) -> str:
    """Sanitize an exception message for logging or storing in production.

    Masks provider credentials, URLs, email addresses and long tokens, and
    truncates the result.

    Args:
        error: The exception (or message) to sanitize

    Returns:
        Sanitized message suitable for production logs and sync run errors
    """
    error_msg = str(error)

    # Authorization header values (base64 credential tuples)
    error_msg = re.sub(r"(?i)(authorization['\"]?\s*[:=]\s*['\"]?)[^\s,'\"}]+", r"\1[REDACTED]", error_msg)

    url_pattern = r"(postgresql|postgres|postgresql\+asyncpg|http|https)://[^\s]+"
    error_msg = re.sub(url_pattern, "[URL]", error_msg)

    error_msg = re.sub(r"[a-zA-Z0-9_.+-]+@[a-zA-Z0-9-]+\.[a-zA-Z0-9-.]+", "[EMAIL]", error_msg)

    # Long alphanumeric strings look like keys or encoded credentials
    error_msg = re.sub(r"[a-zA-Z0-9_\-+/=]{32,}", "[TOKEN]", error_msg)

    if len(error_msg) > 200:
        error_msg = error_msg[:197] + "..."

    return error_msg


def log_error(
    logger: logging.Logger,
    message: str,
    error: Exception | None = None,
    **kwargs: Any,
) -> None:
    """Log an error with appropriate detail level based on environment.

    In debug mode, logs full exception details.
    In production, logs sanitized message without sensitive details.

    Args:
        logger: The logger instance to use
        message: The log message (should be generic, no sensitive data)
        error: Optional exception to include
        **kwargs: Additional context to log (debug mode only)
    """
    if is_debug_mode():
        if error:
            logger.error(f"{message}: {error}", exc_info=True, extra=kwargs)
        else:
            logger.error(message, extra=kwargs)
    else:
        if error:
            logger.error(f"{message}: {sanitize_exception_message(error)}")
        else:
            logger.error(message)


def log_warning(
    logger: logging.Logger,
    message: str,
    error: Exception | None = None,
    **kwargs: Any,
) -> None:
    """Log a warning with appropriate detail level based on environment.

    Args:
        logger: The logger instance to use
        message: The log message (should be generic, no sensitive data)
        error: Optional exception to include
        **kwargs: Additional context to log (debug mode only)
    """
    if is_debug_mode():
        if error:
            logger.warning(f"{message}: {error}", extra=kwargs)
        else:
            logger.warning(message, extra=kwargs)
    else:
        if error:
            logger.warning(f"{message}: {sanitize_exception_message(error)}")
        else:
            logger.warning(message)
