"""
Centralized error handling for the card scanner.

This module provides the exception hierarchy and the helpers that turn
collaborator failures into logged, neutral values so that no scan entry point
ever raises past its boundary.
"""

from typing import Any, Dict, Optional
from dataclasses import dataclass


class CardScanError(Exception):
    """Base exception class for all card scanner errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class ConfigurationError(CardScanError):
    """Raised when there are configuration or environment variable issues."""
    pass


class CaptureError(CardScanError):
    """Raised when camera capture or frame decoding fails."""
    pass


class OCRError(CardScanError):
    """Raised when text recognition fails."""
    pass


class CatalogError(CardScanError):
    """Raised when the local catalog cannot be read or written."""
    pass


class ScanTimeoutError(CardScanError):
    """Raised when a scan cycle stage exceeds its time limit."""

    def __init__(self, stage: str, timeout_s: float):
        super().__init__(
            f"timeout:{stage}", details={"stage": stage, "timeout_s": timeout_s}
        )
        self.stage = stage
        self.timeout_s = timeout_s


@dataclass
class ErrorContext:
    """Context information for error reporting."""
    operation: str
    module: str
    function: str
    input_data: Optional[Dict[str, Any]] = None
    timestamp: Optional[str] = None


def handle_error(
    error: Exception,
    context: ErrorContext,
    logger,
    reraise: bool = True,
    default_return: Any = None
) -> Any:
    """
    Centralized error handling with logging and optional recovery.

    Args:
        error: The exception that occurred
        context: Context information about where the error occurred
        logger: Logger instance to use for error reporting
        reraise: Whether to re-raise the exception after logging
        default_return: Value to return if not re-raising

    Returns:
        The default_return value if not re-raising

    Raises:
        The original exception if reraise is True
    """
    error_msg = f"Error in {context.module}.{context.function} during {context.operation}"

    if isinstance(error, CardScanError):
        error_msg += f": {error.message}"
        if error.details:
            error_msg += f" | Details: {error.details}"
    else:
        error_msg += f": {str(error)}"

    logger.error(
        error_msg,
        error_type=type(error).__name__,
        operation=context.operation,
        error_module=context.module,
        error_function=context.function,
        input_data=context.input_data,
        timestamp=context.timestamp,
        exc_info=True,
    )

    if reraise:
        raise error

    return default_return


def safe_execute(
    func,
    *args,
    context: ErrorContext,
    logger,
    default_return: Any = None,
    **kwargs
) -> Any:
    """
    Safely execute a function with error handling and logging.

    Args:
        func: Function to execute
        context: Error context information
        logger: Logger instance
        default_return: Value to return on error
        *args, **kwargs: Arguments to pass to the function

    Returns:
        Function result or default_return on error
    """
    try:
        return func(*args, **kwargs)
    except Exception as e:
        return handle_error(e, context, logger, reraise=False, default_return=default_return)
