"""
Unified error handling framework for py2volgen.

This module defines the error hierarchy used by the volume generation
pipeline. Every failure that stops a build maps onto one of these classes.

Error Code Ranges:
- 1000-1999: Resource creation errors (raw file, container)
- 2000-2999: Generation integrity errors (field writing, bricking)
- 3000-3999: Validation errors (arguments, payload verification)
- 4000-4999: Derived data errors (histograms)
- 5000-5999: Assembly errors (block append, finalize)
- 6000-6999: Configuration errors
- 9000-9999: Unknown/System errors
"""

from typing import Optional, Dict, Any, List
from datetime import datetime
import traceback


class VolumeGenError(Exception):
    """
    Base exception for all py2volgen errors.

    Provides structured error information with context tracking.
    """

    DEFAULT_CODE = 9000
    CATEGORY = 'SYSTEM'

    def __init__(
        self,
        message: str,
        error_code: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
        suggestions: Optional[List[str]] = None
    ):
        """
        Initialize a py2volgen error.

        Args:
            message: Human-readable error description
            error_code: Numeric error code for categorization
            context: Additional context information (WHERE)
            cause: Original exception if this wraps another error
            suggestions: List of possible solutions or next steps
        """
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.DEFAULT_CODE
        self.context = dict(context or {})
        self.cause = cause
        self.suggestions = suggestions or []
        self.timestamp = datetime.now()

        self.stack_trace = traceback.format_exc() if cause else None

        self.context.setdefault('category', self.CATEGORY)
        if cause:
            self.context['original_error'] = str(cause)
            self.context['original_type'] = type(cause).__name__

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        return {
            'error_type': self.__class__.__name__,
            'message': self.message,
            'code': self.error_code,
            'context': self.context,
            'suggestions': self.suggestions,
            'timestamp': self.timestamp.isoformat(),
            'cause': str(self.cause) if self.cause else None,
            'stack_trace': self.stack_trace
        }

    def format_user_message(self) -> str:
        """Format error for user display (without technical details)."""
        msg = f"{self.message}"
        if self.suggestions:
            msg += "\n\nSuggestions:"
            for i, suggestion in enumerate(self.suggestions, 1):
                msg += f"\n  {i}. {suggestion}"
        return msg

    def format_log_message(self) -> str:
        """Format error for logging (with all details)."""
        parts = [
            f"[{self.error_code}] {self.__class__.__name__}: {self.message}"
        ]

        if self.context:
            parts.append(f"Context: {self.context}")

        if self.cause:
            parts.append(f"Caused by: {self.cause}")

        if self.stack_trace:
            parts.append(f"Stack trace:\n{self.stack_trace}")

        return " | ".join(parts)


class ResourceCreationError(VolumeGenError):
    """The raw backing file or the container could not be created or opened."""
    DEFAULT_CODE = 1001
    CATEGORY = 'RESOURCE'

    def __init__(self, message: str, file_path: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        if file_path:
            self.context['file_path'] = str(file_path)


class GenerationIntegrityError(VolumeGenError):
    """Field generation or brick subdivision did not produce consistent data."""
    DEFAULT_CODE = 2001
    CATEGORY = 'GENERATION'


class ValidationError(VolumeGenError):
    """Input validation or payload verification failed."""
    DEFAULT_CODE = 3001
    CATEGORY = 'VALIDATION'

    def __init__(self, message: str, field_name: Optional[str] = None,
                 reason: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.reason = reason or message
        if field_name:
            self.context['field'] = field_name


class DerivedDataError(VolumeGenError):
    """A derived block (1-D or 2-D histogram) could not be computed."""
    DEFAULT_CODE = 4001
    CATEGORY = 'DERIVED_DATA'

    def __init__(self, message: str, block_name: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        if block_name:
            self.context['block'] = block_name


class AssemblyError(VolumeGenError):
    """Appending a block to the container or finalizing it failed."""
    DEFAULT_CODE = 5001
    CATEGORY = 'ASSEMBLY'

    def __init__(self, message: str, block_id: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        if block_id:
            self.context['block_id'] = block_id


class ConfigurationError(VolumeGenError):
    """Errors related to the generation configuration file."""
    DEFAULT_CODE = 6001
    CATEGORY = 'CONFIGURATION'

    def __init__(self, message: str, setting_name: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        if setting_name:
            self.context['setting'] = setting_name


class ErrorCodes:
    """Standard error codes for common error scenarios."""

    # Resource creation errors (1000-1999)
    RAW_CREATE_FAILED = 1001
    RAW_OPEN_FAILED = 1002
    CONTAINER_CREATE_FAILED = 1003

    # Generation integrity errors (2000-2999)
    GENERATION_FAILED = 2001
    SIZE_MISMATCH = 2002
    BRICKING_FAILED = 2003

    # Validation errors (3000-3999)
    INVALID_PARAMETER = 3001
    VERIFY_FAILED = 3002

    # Derived data errors (4000-4999)
    HISTOGRAM_1D_FAILED = 4001
    HISTOGRAM_2D_FAILED = 4002

    # Assembly errors (5000-5999)
    ADD_BLOCK_FAILED = 5001
    FINALIZE_FAILED = 5002

    # Configuration errors (6000-6999)
    CONFIG_NOT_FOUND = 6001
    CONFIG_INVALID = 6002

    # System errors (9000-9999)
    UNKNOWN_ERROR = 9000
    INTERNAL_ERROR = 9001


def wrap_external_error(e: Exception, message: str, error_class=VolumeGenError, **context) -> VolumeGenError:
    """
    Wrap an external exception in a VolumeGenError.

    Args:
        e: The original exception
        message: Context-specific error message
        error_class: The VolumeGenError subclass to use
        **context: Additional context information

    Returns:
        A VolumeGenError instance wrapping the original exception
    """
    return error_class(
        message=message,
        cause=e,
        context=context
    )
