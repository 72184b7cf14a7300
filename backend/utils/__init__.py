"""
Utils Package

Provides utility modules for:
- validation_errors: Structured 400 responses for malformed requests
"""

from .validation_errors import ValidationErrorResponse, from_request_errors

__all__ = [
    'ValidationErrorResponse',
    'from_request_errors',
]
