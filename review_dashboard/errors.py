"""
Error Taxonomy

Every error the API reports on purpose derives from AppError, which carries
the HTTP status and a machine-readable code. The handlers registered in
main.py turn these into ``{"detail": ..., "code": ...}`` responses.
"""

from typing import Any, Optional


class AppError(Exception):
    """Base class for errors surfaced to API callers."""

    status_code = 500
    code = "INTERNAL_ERROR"

    def __init__(self, message: str, details: Any = None):
        super().__init__(message)
        self.message = message
        self.details = details


class NotFoundError(AppError):
    """A referenced merge request, review or project does not exist."""
    status_code = 404
    code = "NOT_FOUND"


class ConflictError(AppError):
    """A completed review of the same type already exists."""
    status_code = 409
    code = "CONFLICT"


class ConfigurationError(AppError):
    """Missing API key, GitLab credentials or unsupported provider."""
    status_code = 400
    code = "CONFIGURATION_ERROR"


class RequestValidationFailed(AppError):
    """Malformed request body or parameters."""
    status_code = 422
    code = "VALIDATION_ERROR"


class AuthenticationError(AppError):
    """Webhook token mismatch."""
    status_code = 401
    code = "UNAUTHORIZED"


class UpstreamError(AppError):
    """
    Non-2xx response or transport failure from GitLab or an AI provider.

    API callers get a generic message naming the service; ``str(error)``
    keeps the upstream status and text for logs and failed-review summaries.
    """
    status_code = 502
    code = "UPSTREAM_ERROR"

    def __init__(
        self,
        message: str,
        upstream_status: Optional[int] = None,
        service: str = "upstream"
    ):
        super().__init__(message)
        self.upstream_status = upstream_status
        self.service = service

    def __str__(self) -> str:
        if self.upstream_status is not None:
            return f"{self.service} returned {self.upstream_status}: {self.message}"
        return f"{self.service} request failed: {self.message}"
