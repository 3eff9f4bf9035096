"""Error translation helpers shared by the routers and background jobs.

Stack traces are logged server-side only. Clients receive a short, generic
message so file paths and library details never leak into responses.
"""

import logging
from typing import NoReturn

from fastapi import HTTPException, status

from pyra_workspace.exceptions import (
    InvalidStatusTransitionError,
    NotFoundError,
    SequenceExhaustedError,
    SSRFProtectionError,
    ValidationError,
)

GENERIC_ERROR_MESSAGE = "حدث خطأ في الخادم"

# Exceptions raised by services that map onto a client error
DOMAIN_ERRORS = (NotFoundError, ValidationError, SequenceExhaustedError, SSRFProtectionError)


def safe_error_response(
    logger_instance: logging.Logger,
    error: Exception,
    user_message: str = GENERIC_ERROR_MESSAGE,
    status_code: int = 500,
    log_level: str = "error",
) -> NoReturn:
    """Log full error details server-side and raise a generic HTTPException.

    Args:
        logger_instance: Logger instance to use for server-side logging
        error: The exception that was caught
        user_message: Message shown to the client
        status_code: HTTP status code for the response (default: 500)
        log_level: Logging level to use (error, warning, info)

    Raises:
        HTTPException: With the user_message as detail
    """
    log_method = getattr(logger_instance, log_level, logger_instance.error)
    log_method(f"{user_message}: {type(error).__name__}", exc_info=True)

    raise HTTPException(status_code=status_code, detail=user_message)


def raise_http_error(error: Exception) -> NoReturn:
    """Translate a domain exception into the matching HTTPException.

    Anything not listed here is re-raised untouched so the caller can hand it
    to :func:`safe_error_response`.
    """
    if isinstance(error, NotFoundError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(error))
    if isinstance(error, (ValidationError, InvalidStatusTransitionError)):
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_CONTENT, detail=str(error))
    if isinstance(error, SequenceExhaustedError):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(error))
    if isinstance(error, SSRFProtectionError):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(error))
    raise error


def log_and_continue(
    logger_instance: logging.Logger,
    error: Exception,
    context_message: str,
    log_level: str = "warning",
) -> None:
    """Log an error with its stack trace and carry on.

    Used on fire-and-forget paths (webhook dispatch, scheduled jobs) where the
    failure must not reach the request that triggered the work.
    """
    log_method = getattr(logger_instance, log_level, logger_instance.warning)
    log_method(f"{context_message}: {type(error).__name__}: {error}", exc_info=True)
