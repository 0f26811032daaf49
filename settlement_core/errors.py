"""Error taxonomy shared by the settlement engine and the API layer."""

from __future__ import annotations

from typing import Any


class SettlementError(Exception):
    """Base error carrying a structured code for API responses."""

    code = "INTERNAL_ERROR"
    status_code = 500

    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.field = field
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.field:
            data["field"] = self.field
        if self.details:
            data["details"] = self.details
        return data


class ValidationError(SettlementError):
    """Malformed, missing or out-of-range input."""

    code = "VALIDATION_ERROR"
    status_code = 400


class TokenMismatchError(ValidationError):
    """The token found on-chain is not the token the provider claimed."""

    code = "TOKEN_MISMATCH"


class AuthenticationError(SettlementError):
    code = "AUTHENTICATION_ERROR"
    status_code = 401


class AuthorizationError(SettlementError):
    code = "AUTHORIZATION_ERROR"
    status_code = 403


class NotFoundError(SettlementError):
    code = "NOT_FOUND"
    status_code = 404


class StateConflictError(SettlementError):
    """Operation is invalid for the signal's current status."""

    code = "STATE_CONFLICT"
    status_code = 409


class ExternalServiceError(SettlementError):
    """Price or on-chain data source unavailable."""

    code = "EXTERNAL_SERVICE_ERROR"
    status_code = 502
