"""Translate service exceptions into HTTP responses."""

from __future__ import annotations

from typing import Any

from fastapi import HTTPException, status

from fuelpos.app.core.exceptions import ServiceError


def to_http(exc: ValueError) -> HTTPException:
    """Map a service ``ValueError`` to an ``HTTPException``.

    Typed service errors keep their status code and details; a plain
    ``ValueError`` is treated as a validation failure.
    """
    if isinstance(exc, ServiceError):
        detail: Any = exc.message
        if exc.details:
            detail = {"message": exc.message, **exc.details}
        return HTTPException(status_code=exc.status_code, detail=detail)
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))


def client_ip(request: Any) -> str | None:
    return request.client.host if getattr(request, "client", None) else None
