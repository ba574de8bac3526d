"""Error handling utilities for alignment precomputation."""

import sys
from typing import Optional


class PeakAlignError(Exception):
    """Base exception for peakalign-specific errors."""

    def __init__(self, message: str, suggestions: Optional[list[str]] = None):
        """Initialize with message and optional suggestions.

        Args:
            message: Error description
            suggestions: Optional list of actionable suggestions
        """
        self.message = message
        self.suggestions = suggestions or []
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        """Format error message with suggestions."""
        formatted = f"{self.message}"
        if self.suggestions:
            formatted += "\n\nSuggestions:"
            for suggestion in self.suggestions:
                formatted += f"\n  - {suggestion}"
        return formatted


class InvalidGeometryError(PeakAlignError):
    """Raised when an observer/target pair is degenerate or out of range."""

    def __init__(self, reason: str):
        message = f"Invalid observer geometry: {reason}"
        suggestions = [
            "Latitude must be within [-90, 90] and longitude within [-180, 180]",
            "The observer cannot coincide with, or be antipodal to, the target peak",
        ]
        super().__init__(message, suggestions)


class ProviderLookupError(PeakAlignError):
    """Raised when the celestial position provider cannot answer a query."""

    def __init__(self, body: str, detail: str):
        message = f"Position lookup failed for {body}: {detail}"
        suggestions = [
            "Check that the requested dates are covered by the ephemeris file",
            "Transient failures are retried at the job level",
        ]
        super().__init__(message, suggestions)


class PersistenceError(PeakAlignError):
    """Raised when the storage backend fails to read or write records."""

    def __init__(self, operation: str, detail: str):
        message = f"Storage failure during {operation}: {detail}"
        super().__init__(message)


class LocationNotFoundError(PersistenceError):
    """Raised when a location id is not present in the store."""

    def __init__(self, location_id: int):
        self.location_id = location_id
        super().__init__("load_location", f"no location with id {location_id}")


class JobCancelledError(PeakAlignError):
    """Raised inside a running job after cancellation was requested."""

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Job {job_id} was cancelled")


class JobNotFoundError(PeakAlignError):
    """Raised when a job id is unknown to the queue."""

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Unknown job: '{job_id}'")


class ConfigurationError(PeakAlignError):
    """Raised when a configuration value cannot be parsed."""

    def __init__(self, name: str, value: str, expected: str):
        message = f"Invalid value for {name}: '{value}'"
        suggestions = [f"Expected {expected}"]
        super().__init__(message, suggestions)


def print_error(error: Exception) -> None:
    """Print error to stderr with formatted output.

    Args:
        error: Exception to print
    """
    print(f"Error: {error}", file=sys.stderr)


def handle_error(error: Exception, context: Optional[str] = None) -> int:
    """Handle an error with optional context and return exit code.

    Args:
        error: Exception that occurred
        context: Optional description of what was being attempted

    Returns:
        Exit code (1 for error)
    """
    if context:
        print(f"Error while {context}:", file=sys.stderr)

    print_error(error)

    import traceback

    if not isinstance(error, PeakAlignError):
        traceback.print_exc()

    return 1
