"""
Agora SDK — Custom Error Hierarchy

Errors that say what went wrong on the registry (or at the specialist)
and, where the registry sent one, how to fix it.
"""


class AgoraError(Exception):
    """Base error for all Agora SDK operations."""

    def __init__(self, message: str, details: dict | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class ConnectionError(AgoraError):
    """Cannot reach the registry or an agent endpoint."""

    def __init__(self, service: str, url: str, cause: str = ""):
        self.service = service
        self.url = url
        super().__init__(
            f"Cannot connect to {service} at {url}. Is the service running? ({cause})",
            {"service": service, "url": url},
        )


class RegistryRequestError(AgoraError):
    """The registry answered with an error body: {error, hint?}."""

    def __init__(self, status_code: int, body: dict):
        self.status_code = status_code
        self.body = body
        self.hint = body.get("hint")
        message = body.get("error", f"HTTP {status_code}")
        if self.hint:
            message = f"{message} (hint: {self.hint})"
        super().__init__(message, body)


class AgentNotFoundError(RegistryRequestError):
    """Unknown agent or booking."""


class NoSlotsAvailableError(RegistryRequestError):
    """The requested tier is at capacity."""

    @property
    def next_available(self) -> int | None:
        return self.body.get("nextAvailable")


class PaymentRejectedError(RegistryRequestError):
    """A payment or identity proof failed verification."""

    @property
    def check(self) -> str | None:
        return self.body.get("check")


class PaymentRequiredError(AgoraError):
    """A 402 challenge came back and no signer can pay any accepted network."""

    def __init__(self, challenge: dict):
        self.challenge = challenge
        networks = [a.get("network") for a in challenge.get("accepts", [])]
        super().__init__(
            f"Payment required; accepted networks: {', '.join(n for n in networks if n) or 'none'}. "
            f"Pass a signer for one of them.",
            {"accepts": challenge.get("accepts", [])},
        )


class InvocationFailedError(AgoraError):
    """The booked specialist failed to serve the request."""

    def __init__(self, agent_name: str, booking_id: str, reason: str = ""):
        self.agent_name = agent_name
        self.booking_id = booking_id
        self.reason = reason
        super().__init__(
            f"Agent '{agent_name}' failed booking {booking_id}: {reason}",
            {"agent_name": agent_name, "booking_id": booking_id, "reason": reason},
        )
