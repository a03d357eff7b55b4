"""
Error formatting and logging utilities for py2volgen.

Provides consistent error formatting for console messages and technical logs.
"""

import json
import logging
import traceback
from datetime import datetime
from typing import Optional, Dict, Any, Union

from py2volgen.core.errors import VolumeGenError


class ErrorFormatter:
    """
    Formats errors for consistent presentation.

    Handles both VolumeGenError instances and standard Python exceptions.
    """

    def format_for_user(self, error: Exception) -> str:
        """
        Format error for end-user display.

        Args:
            error: The error to format

        Returns:
            User-friendly error message
        """
        if isinstance(error, VolumeGenError):
            return error.format_user_message()
        return f"An error occurred: {str(error)}"

    def format_for_log(self, error: Exception, include_trace: bool = True) -> str:
        """
        Format error for technical logging.

        Args:
            error: The error to format
            include_trace: Whether to include stack trace

        Returns:
            Detailed error information for logging
        """
        if isinstance(error, VolumeGenError):
            return error.format_log_message()
        msg = f"{error.__class__.__name__}: {str(error)}"
        if include_trace:
            msg += f"\nStack trace:\n{traceback.format_exc()}"
        return msg

    def format_for_json(self, error: Exception) -> str:
        """Format error as JSON for structured logging."""
        if isinstance(error, VolumeGenError):
            data = error.to_dict()
        else:
            data = {
                'error_type': error.__class__.__name__,
                'message': str(error),
                'timestamp': datetime.now().isoformat()
            }
        return json.dumps(data, indent=2, default=str)


def log_error(
    error: Exception,
    logger: Optional[logging.Logger] = None,
    level: int = logging.ERROR,
    extra_context: Optional[Dict[str, Any]] = None
) -> None:
    """
    Log an error: the user-facing message at ``level``, details at DEBUG.

    Args:
        error: The error to log
        logger: Logger to write to (defaults to the py2volgen.errors logger)
        level: Logging level for the user-facing message
        extra_context: Additional context to include in the debug record
    """
    logger = logger or logging.getLogger('py2volgen.errors')
    formatter = ErrorFormatter()

    context = {}
    if isinstance(error, VolumeGenError) and error.context:
        context.update(error.context)
    if extra_context:
        context.update(extra_context)

    if isinstance(error, VolumeGenError):
        logger.log(level, formatter.format_for_user(error))
        logger.debug(formatter.format_for_log(error, include_trace=False))
        if context:
            logger.debug(f"Error context: {json.dumps(context, indent=2, default=str)}")
    else:
        logger.log(level, formatter.format_for_log(error))


def format_error(error: Exception, format_type: str = 'user') -> Union[str, Dict]:
    """
    Convenience function to format an error.

    Args:
        error: The error to format
        format_type: One of 'user', 'log', or 'json'

    Returns:
        Formatted error based on type
    """
    formatter = ErrorFormatter()

    if format_type == 'user':
        return formatter.format_for_user(error)
    elif format_type == 'log':
        return formatter.format_for_log(error)
    elif format_type == 'json':
        return formatter.format_for_json(error)
    else:
        raise ValueError(f"Unknown format type: {format_type}")
