"""Typed service exceptions.

Services raise these instead of `HTTPException` so they stay usable from
scripts; `main.py` registers a single handler translating them into JSON
responses of the form `{"detail": message, **extra}`.
"""

from typing import Optional


class ServiceError(Exception):
    status_code: int = 500

    def __init__(self, message: str, status_code: Optional[int] = None, extra: Optional[dict] = None):
        self.message = message
        if status_code:
            self.status_code = status_code
        self.extra = extra or {}
        super().__init__(message)


class BadRequestError(ServiceError):
    status_code = 400


class UnauthorizedError(ServiceError):
    status_code = 401


class PaymentRequiredError(ServiceError):
    status_code = 402


class ForbiddenError(ServiceError):
    status_code = 403

    def __init__(self, message: str = "Access forbidden", extra: Optional[dict] = None):
        super().__init__(message, extra=extra)


class NotFoundError(ServiceError):
    status_code = 404


class ConflictError(ServiceError):
    status_code = 409


class GatewayError(ServiceError):
    """A payment gateway is disabled, misconfigured or rejected the call."""
    status_code = 502
