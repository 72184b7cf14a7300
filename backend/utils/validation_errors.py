"""
Structured Validation Error Utilities

Provides standardized error responses for validation failures.
Helps callers distinguish between validation errors and server faults.

Error Response Format:
{
    "error": "missing_parameter" | "invalid_parameter" | "validation_error",
    "parameter": "email",
    "message": "email must be a string"
}
"""

from typing import Optional, Any, Dict, List


class ValidationErrorResponse:
    """Structured validation error response builder."""

    @staticmethod
    def missing_parameter(parameter: str, message: Optional[str] = None) -> dict:
        """
        Create a missing parameter error response.

        Args:
            parameter: Name of the missing parameter
            message: Optional custom message

        Returns:
            Structured error dict
        """
        return {
            "error": "missing_parameter",
            "parameter": parameter,
            "message": message or f"{parameter} is required"
        }

    @staticmethod
    def invalid_parameter(parameter: str, message: str, value: Optional[Any] = None) -> dict:
        """
        Create an invalid parameter error response.

        Args:
            parameter: Name of the invalid parameter
            message: Description of the validation error
            value: The invalid value (optional, for debugging)

        Returns:
            Structured error dict
        """
        response = {
            "error": "invalid_parameter",
            "parameter": parameter,
            "message": message
        }
        if value is not None:
            response["received_value"] = str(value)[:100]  # Truncate for safety
        return response

    @staticmethod
    def validation_error(message: str, details: Optional[dict] = None) -> dict:
        """
        Create a general validation error response.

        Args:
            message: Description of the validation error
            details: Additional error details

        Returns:
            Structured error dict
        """
        response = {
            "error": "validation_error",
            "parameter": None,
            "message": message
        }
        if details:
            response["details"] = details
        return response


def from_request_errors(errors: List[Dict[str, Any]]) -> dict:
    """
    Convert FastAPI/pydantic request validation errors into one structured error.

    Only the first error is reported; field errors name the offending
    parameter, model-level errors become a general validation error.
    """
    if not errors:
        return ValidationErrorResponse.validation_error("Invalid request")

    first = errors[0]
    loc = [str(part) for part in first.get("loc", ()) if part != "body"]
    message = str(first.get("msg", "Invalid value"))
    # pydantic prefixes messages raised from validators
    message = message.removeprefix("Value error, ")

    if not loc:
        if first.get("type") == "missing":
            return ValidationErrorResponse.validation_error("Request body is required")
        return ValidationErrorResponse.validation_error(message)

    parameter = loc[0]
    if first.get("type") == "missing":
        return ValidationErrorResponse.missing_parameter(parameter)
    return ValidationErrorResponse.invalid_parameter(parameter, message)
