from __future__ import annotations

from typing import Any

from fastapi import status


class ServiceError(Exception):
    """Base class for domain failures rendered as ErrorResponse by the API layer."""

    code = "internal_error"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, detail: str, **context: Any) -> None:
        super().__init__(detail)
        self.detail = detail
        self.context = context


class InvalidArgumentError(ServiceError):
    code = "invalid_argument"
    status_code = status.HTTP_400_BAD_REQUEST


class NotFoundError(ServiceError):
    code = "not_found"
    status_code = status.HTTP_404_NOT_FOUND


class ConflictError(ServiceError):
    code = "conflict"
    status_code = status.HTTP_409_CONFLICT


class AlreadyExistsError(ServiceError):
    code = "already_exists"
    status_code = status.HTTP_409_CONFLICT


class PermissionDeniedError(ServiceError):
    code = "permission_denied"
    status_code = status.HTTP_403_FORBIDDEN


class ExternalServiceError(ServiceError):
    """A collaborator (owner service, media platform) failed.

    ``failures`` holds one entry per failed call so batch notifications can
    report every owner type that did not go through.
    """

    code = "external_service_error"
    status_code = status.HTTP_502_BAD_GATEWAY

    def __init__(self, detail: str, *, failures: list[str] | None = None, **context: Any) -> None:
        super().__init__(detail, **context)
        self.failures = list(failures or [])

    def __str__(self) -> str:
        if not self.failures:
            return self.detail
        return f"{self.detail}: " + "; ".join(self.failures)
