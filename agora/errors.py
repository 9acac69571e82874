"""
Agora Registry — Error Hierarchy

Every failure the registry can report maps to one of these classes.
Each carries the HTTP status the service answers with, a human-readable
message and, where the caller can fix the problem, a hint.
"""

from __future__ import annotations

from typing import Any


class RegistryError(Exception):
    """Base error for all registry operations."""

    status_code = 500

    def __init__(self, message: str, hint: str | None = None, details: dict[str, Any] | None = None):
        self.message = message
        self.hint = hint
        self.details = details or {}
        super().__init__(self.message)

    def to_body(self) -> dict[str, Any]:
        body: dict[str, Any] = {"error": self.message}
        if self.hint:
            body["hint"] = self.hint
        body.update(self.details)
        return body


class ValidationError(RegistryError):
    """Missing or malformed required fields."""

    status_code = 400


class NotFoundError(RegistryError):
    """Unknown agent, tier block or booking."""

    status_code = 404


class ConflictError(RegistryError):
    """Capacity exhausted or an id already owned by another signer."""

    status_code = 409


class VerificationError(RegistryError):
    """A signature or payment proof failed one of its checks."""

    status_code = 400

    def __init__(self, check: str, message: str, hint: str | None = None):
        self.check = check
        super().__init__(message, hint=hint, details={"check": check})


class UpstreamError(RegistryError):
    """Persistence or specialist endpoint failure."""

    status_code = 500

    def __init__(self, service: str, message: str):
        self.service = service
        super().__init__(f"{service}: {message}", details={"service": service})
