"""Service-layer exception hierarchy.

Every class derives from ``ValueError`` so endpoints can keep catching
``ValueError`` and let :func:`fuelpos.app.api.errors.to_http` pick the
status code.
"""

from __future__ import annotations

from typing import Any


class ServiceError(ValueError):
    """Base class; ``status_code`` drives the HTTP mapping."""

    status_code: int = 400

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(ServiceError):
    status_code = 400


class IncompleteShiftError(ValidationError):
    """Meter or gauge readings are missing; the shift cannot be closed yet."""

    def __init__(
        self,
        message: str,
        missing_nozzles: list[int] | None = None,
        missing_tanks: list[int] | None = None,
    ) -> None:
        super().__init__(
            message,
            details={
                "missing_nozzles": missing_nozzles or [],
                "missing_tanks": missing_tanks or [],
            },
        )
        self.missing_nozzles = missing_nozzles or []
        self.missing_tanks = missing_tanks or []


class NotFoundError(ServiceError):
    status_code = 404


class ConflictError(ServiceError):
    status_code = 409


class PermissionDeniedError(ServiceError):
    status_code = 403
