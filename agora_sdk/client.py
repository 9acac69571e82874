"""
Agora SDK — Client Module

The caller's side of the protocol: discover agents, book a tier slot,
pay when the registry (or the specialist) answers 402, call the
specialist directly and report the outcome back.
"""

from __future__ import annotations

import logging
import time
from typing import Any

import httpx

from agora.models import AgentProfile, Booking
from agora.payments import PAYMENT_HEADER, encode_payment_header
from agora_sdk.errors import (
    AgentNotFoundError,
    ConnectionError,
    InvocationFailedError,
    NoSlotsAvailableError,
    PaymentRejectedError,
    PaymentRequiredError,
    RegistryRequestError,
)
from agora_sdk.models import InvocationResult
from agora_sdk.signers import Signer, supports_network

logger = logging.getLogger(__name__)


def _error_for(status_code: int, body: dict) -> RegistryRequestError:
    """Pick the SDK error from the status and the fields the registry sent."""
    if status_code == 404:
        return AgentNotFoundError(status_code, body)
    if status_code == 400 and "check" in body:
        return PaymentRejectedError(status_code, body)
    if status_code == 409 and "nextAvailable" in body:
        return NoSlotsAvailableError(status_code, body)
    return RegistryRequestError(status_code, body)


class AgoraClient:
    """
    HTTP client for an Agora registry.

    Usage:
        with AgoraClient("http://localhost:8000", signer=EvmSigner(key)) as agora:
            agents = agora.discover("nutrition_planning", tier="pro")
            result = agora.hire(agents[0], "nutrition_planning", {"goal": "recovery"}, tier="pro")
    """

    def __init__(
        self,
        base_url: str,
        signer: Signer | None = None,
        timeout: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.signer = signer
        self._timeout = timeout
        self._http = httpx.Client(base_url=self.base_url, timeout=timeout, transport=transport)

    def __enter__(self) -> "AgoraClient":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def close(self) -> None:
        self._http.close()

    # =========================================================================
    # Transport
    # =========================================================================

    def _send(self, method: str, url: str, service: str = "Agora registry", **kwargs) -> httpx.Response:
        try:
            return self._http.request(method, url, **kwargs)
        except httpx.RequestError as e:
            raise ConnectionError(service, url, str(e)) from e

    def _paid_send(self, method: str, url: str, service: str = "Agora registry", **kwargs) -> tuple[httpx.Response, bool]:
        """
        Send a request, answering one 402 challenge with a payment proof.

        Returns:
            (response, paid)
        """
        r = self._send(method, url, service, **kwargs)
        if r.status_code != 402:
            return r, False

        challenge = r.json()
        requirement = self._pick_requirement(challenge)
        proof = self.signer.payment_proof(requirement)
        logger.info("Paying %s %s on %s for %s", proof.amount, proof.asset, proof.network, url)

        headers = {**kwargs.pop("headers", {}), PAYMENT_HEADER: encode_payment_header(proof), "X-Chain": proof.network}
        return self._send(method, url, service, headers=headers, **kwargs), True

    def _pick_requirement(self, challenge: dict) -> dict:
        if self.signer is not None:
            for requirement in challenge.get("accepts", []):
                if supports_network(self.signer, requirement.get("network", "")):
                    return requirement
        raise PaymentRequiredError(challenge)

    @staticmethod
    def _json(r: httpx.Response) -> dict:
        try:
            body = r.json()
        except ValueError:
            body = {"error": r.text or f"HTTP {r.status_code}"}
        if r.is_error:
            raise _error_for(r.status_code, body if isinstance(body, dict) else {"error": str(body)})
        return body

    # =========================================================================
    # Discovery
    # =========================================================================

    def discover(
        self,
        capability: str | None = None,
        tier: str | None = None,
        min_reputation: int | None = None,
        max_response_time: int | None = None,
    ) -> list[AgentProfile]:
        """Find agents, best first (reputation, then SLA)."""
        params = {
            "capability": capability,
            "tier": tier,
            "minReputation": min_reputation,
            "maxResponseTime": max_response_time,
        }
        body = self._json(self._send("GET", "/agents", params={k: v for k, v in params.items() if v is not None}))
        return [AgentProfile.model_validate(a) for a in body["agents"]]

    def get_agent(self, agent_id: str) -> AgentProfile:
        body = self._json(self._send("GET", f"/agents/{agent_id}"))
        return AgentProfile.model_validate(body["agent"])

    def capabilities(self) -> list[str]:
        return self._json(self._send("GET", "/capabilities"))["capabilities"]

    # =========================================================================
    # Agent side: registration & liveness
    # =========================================================================

    def register(self, profile: dict[str, Any], sign: bool = True) -> AgentProfile:
        """
        Register an agent profile. With a signer (and sign=True) the
        registration carries an identity proof and comes back verified.
        """
        payload: dict[str, Any] = {"profile": dict(profile)}
        if sign and self.signer is not None:
            timestamp, signature = self.signer.identity_proof(profile["id"], profile["endpoint"])
            payload["profile"].update(
                signer=self.signer.address,
                chain=self.signer.chain.value,
                timestamp=timestamp,
            )
            payload["signature"] = signature

        body = self._json(self._send("POST", "/agents/register", json=payload))
        return AgentProfile.model_validate(body["agent"])

    def heartbeat(self, agent_id: str) -> dict:
        return self._json(self._send("POST", "/agents/heartbeat", json={"id": agent_id}))

    def update_availability(self, agent_id: str, tier: str, **fields: Any) -> AgentProfile:
        """fields: slots, slotsFilled, responseSLA, uptime, nextAvailable."""
        body = self._json(self._send("POST", f"/agents/{agent_id}/availability", json={"tier": tier, **fields}))
        return AgentProfile.model_validate(body["agent"])

    # =========================================================================
    # Caller side: booking & invocation
    # =========================================================================

    def book(self, agent_id: str, capability: str, tier: str = "basic", request_data: Any = None) -> Booking:
        """Reserve a slot, paying the registry's 402 challenge if one comes back."""
        r, paid = self._paid_send(
            "POST",
            f"/agents/{agent_id}/book",
            json={"tier": tier, "capability": capability, "requestData": request_data},
        )
        booking = Booking.model_validate(self._json(r))
        logger.info("Booked %s (%s tier)%s: %s", agent_id, tier, " [paid]" if paid else "", booking.booking_id)
        return booking

    def booking_status(self, agent_id: str, booking_id: str) -> dict:
        return self._json(self._send("GET", f"/agents/{agent_id}/booking/{booking_id}"))

    def bookings(self, agent_id: str) -> list[Booking]:
        body = self._json(self._send("GET", f"/agents/{agent_id}/bookings"))
        return [Booking.model_validate(b) for b in body["bookings"]]

    def complete(
        self,
        booking: Booking,
        success: bool = True,
        execution_time_ms: int | None = None,
        transaction_hash: str | None = None,
    ) -> Booking:
        payload = {
            "success": success,
            "executionTimeMs": execution_time_ms,
            "transactionHash": transaction_hash,
        }
        r = self._send("POST", f"/agents/{booking.agent_id}/booking/{booking.booking_id}/complete", json=payload)
        return Booking.model_validate(self._json(r))

    def invoke(self, agent: AgentProfile, booking: Booking, payload: Any) -> InvocationResult:
        """
        Call a booked specialist directly and report the outcome.

        The specialist may itself answer 402; it is paid the same way as
        the registry. The booking is completed (success or failure) either way.
        """
        request = {
            "bookingId": booking.booking_id,
            "capability": booking.capability,
            "tier": booking.tier.value,
            "payload": payload,
        }
        started = time.monotonic()
        try:
            r, paid = self._paid_send("POST", agent.endpoint, service=f"agent {agent.name}", json=request, timeout=self._timeout * 2)
            if r.is_error:
                raise InvocationFailedError(agent.name, booking.booking_id, f"HTTP {r.status_code}: {r.text[:200]}")
        except (ConnectionError, PaymentRequiredError, InvocationFailedError) as e:
            elapsed = int((time.monotonic() - started) * 1000)
            self.complete(booking, success=False, execution_time_ms=elapsed)
            if isinstance(e, InvocationFailedError):
                raise
            raise InvocationFailedError(agent.name, booking.booking_id, e.message) from e

        elapsed = int((time.monotonic() - started) * 1000)
        self.complete(booking, success=True, execution_time_ms=elapsed)
        try:
            output = r.json()
        except ValueError:
            output = r.text

        return InvocationResult(
            booking_id=booking.booking_id,
            agent_id=agent.id,
            agent_name=agent.name,
            tier=booking.tier.value,
            output=output,
            time_ms=elapsed,
            sla_ms=booking.sla.response_sla,
            paid=paid,
        )

    def hire(self, agent: AgentProfile, capability: str, payload: Any, tier: str = "basic") -> InvocationResult:
        """Book a specific agent and call it."""
        booking = self.book(agent.id, capability, tier=tier, request_data=payload)
        return self.invoke(agent, booking, payload)

    def hire_best(
        self,
        capability: str,
        payload: Any,
        tier: str = "basic",
        min_reputation: int | None = None,
        max_response_time: int | None = None,
    ) -> InvocationResult:
        """Discover the best agent for a capability and hire it immediately."""
        agents = self.discover(capability, tier=tier, min_reputation=min_reputation, max_response_time=max_response_time)
        if not agents:
            raise AgentNotFoundError(404, {
                "error": f"No agent offers '{capability}' at {tier} tier",
                "hint": "Try a different tier or lower minReputation",
            })
        return self.hire(agents[0], capability, payload, tier=tier)
