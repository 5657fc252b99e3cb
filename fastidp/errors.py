"""Error taxonomy shared by the services and routers.

Every error carries a machine-readable ``code`` and the HTTP status the API
answers with; ``create_app()`` renders them as ``{"error": code, "detail": message}``.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class FastIdpError(Exception):
    """Base class for all service errors."""

    def __init__(
        self,
        message: str,
        code: str = "INTERNAL_ERROR",
        status_code: int = 500,
        extra: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.code = code
        self.status_code = status_code
        self.extra = extra or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.code, "detail": self.message, **self.extra}


class ValidationError(FastIdpError):
    """Client-correctable input problem."""

    def __init__(self, message: str, code: str = "VALIDATION_ERROR", status_code: int = 400, **extra: Any):
        super().__init__(message, code=code, status_code=status_code, extra=extra)


class NoQualifyingRateError(ValidationError):
    """No carrier rate meets the delivery deadline."""

    def __init__(self, message: str, **extra: Any):
        super().__init__(message, code="NO_QUALIFYING_RATE", status_code=422, **extra)


class DuplicateApplicationError(FastIdpError):
    def __init__(self, application_id: str):
        super().__init__(
            f"Application {application_id} already exists",
            code="DUPLICATE_APPLICATION",
            status_code=409,
        )


class ApplicationNotFoundError(FastIdpError):
    def __init__(self, application_id: str):
        super().__init__(
            f"Application {application_id} not found",
            code="APPLICATION_NOT_FOUND",
            status_code=404,
        )


class InvalidStateError(FastIdpError):
    """The application is not in a state that allows the operation."""

    def __init__(self, message: str):
        super().__init__(message, code="INVALID_STATE", status_code=409)


class ProviderError(FastIdpError):
    """A payment or shipping provider call failed.

    ``status_code`` is 4xx when the provider blamed the request (bad address,
    unsupported destination) and 502 when the provider itself failed.
    """

    def __init__(
        self,
        message: str,
        code: str = "PROVIDER_ERROR",
        status_code: int = 502,
        provider_code: Optional[str] = None,
        **extra: Any,
    ):
        if provider_code:
            extra["provider_code"] = provider_code
        self.provider_code = provider_code
        super().__init__(message, code=code, status_code=status_code, extra=extra)


class IntegrityError(FastIdpError):
    """Webhook payload could not be authenticated."""

    def __init__(self, message: str):
        super().__init__(message, code="SIGNATURE_VERIFICATION_FAILED", status_code=400)
