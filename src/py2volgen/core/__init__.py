"""
Core layer for py2volgen.

Error hierarchy and error formatting shared by every stage of a build.
"""

from .errors import (
    VolumeGenError,
    ResourceCreationError,
    GenerationIntegrityError,
    ValidationError,
    DerivedDataError,
    AssemblyError,
    ConfigurationError,
    ErrorCodes,
    wrap_external_error
)
from .error_formatting import ErrorFormatter, format_error, log_error

__all__ = [
    'VolumeGenError',
    'ResourceCreationError',
    'GenerationIntegrityError',
    'ValidationError',
    'DerivedDataError',
    'AssemblyError',
    'ConfigurationError',
    'ErrorCodes',
    'wrap_external_error',
    # Formatting
    'ErrorFormatter',
    'format_error',
    'log_error'
]
