"""
Tests for the Python SDK against a live in-process registry.

The registry host is routed to the FastAPI app through TestClient; every
other host plays the booked specialist.
"""

import httpx
import pytest
from fastapi.testclient import TestClient

from agora.config import Settings
from agora.store import AgentStore
from agora_sdk import (
    AgentNotFoundError,
    AgoraClient,
    ConnectionError,
    InvocationFailedError,
    NoSlotsAvailableError,
    PaymentRejectedError,
    PaymentRequiredError,
    RegistryRequestError,
)
from conftest import nutrition_profile
from services.registry_service import create_app

REGISTRY = "http://registry.test"
FORWARDED_HEADERS = ("content-type", "x-payment", "x-chain")


class FakeNetwork:
    """Routes SDK traffic to the registry app or to a scripted specialist."""

    def __init__(self, registry: TestClient):
        self.registry = registry
        self.specialist_status = 200
        self.specialist_calls = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.url.host == "registry.test":
            upstream = self.registry.request(
                request.method,
                request.url.path,
                params=request.url.params,
                content=request.content,
                headers={k: v for k, v in request.headers.items() if k in FORWARDED_HEADERS},
            )
            return httpx.Response(upstream.status_code, headers=upstream.headers, content=upstream.content)

        self.specialist_calls.append(request)
        if self.specialist_status != 200:
            return httpx.Response(self.specialist_status, text="specialist crashed")
        return httpx.Response(200, json={"plan": "oats and eggs"})


@pytest.fixture()
def network():
    app = create_app(Settings(require_payment=True, sweep_interval_seconds=3600), store=AgentStore())
    with TestClient(app) as registry:
        yield FakeNetwork(registry)


@pytest.fixture()
def fleeting_network():
    """Free registry whose bookings lapse as soon as they are made."""
    app = create_app(Settings(booking_ttl_seconds=0, sweep_interval_seconds=3600), store=AgentStore())
    with TestClient(app) as registry:
        yield FakeNetwork(registry)


def client_for(network, signer=None) -> AgoraClient:
    return AgoraClient(REGISTRY, signer=signer, transport=httpx.MockTransport(network))


class TestRegistration:
    def test_signed_registration_is_verified(self, network, evm_signer):
        with client_for(network, evm_signer) as agora:
            agent = agora.register(nutrition_profile())
        assert agent.verified
        assert agent.signer == evm_signer.address

    def test_solana_registration(self, network, solana_signer):
        with client_for(network, solana_signer) as agora:
            agent = agora.register(nutrition_profile(), sign=True)
        assert agent.verified
        assert agent.chain.value == "solana"

    def test_unsigned_registration(self, network):
        with client_for(network) as agora:
            assert not agora.register(nutrition_profile()).verified
            assert agora.heartbeat("agent-a")["type"] == "dynamic"

    def test_update_availability(self, network):
        with client_for(network) as agora:
            agora.register(nutrition_profile())
            agent = agora.update_availability("agent-a", "pro", slotsFilled=2)
        assert agent.service_availability["pro"].slots_filled == 2


class TestDiscovery:
    def test_discover_best_first(self, network):
        with client_for(network) as agora:
            agora.register(nutrition_profile())
            agents = agora.discover("nutrition_planning", tier="pro")
        assert [a.id for a in agents] == ["agent-nutrition-planner-01", "agent-a"]

    def test_capabilities(self, network):
        with client_for(network) as agora:
            assert "fitness_analysis" in agora.capabilities()

    def test_unknown_agent(self, network):
        with client_for(network) as agora:
            with pytest.raises(AgentNotFoundError):
                agora.get_agent("ghost")


class TestBooking:
    def test_book_pays_the_challenge(self, network, evm_signer):
        with client_for(network, evm_signer) as agora:
            agora.register(nutrition_profile())
            booking = agora.book("agent-a", "nutrition_planning", tier="pro")
        assert booking.status.value == "paid"
        assert booking.pricing.base_fee == "0.03"
        assert booking.payment["payer"] == evm_signer.address

    def test_solana_signer_picks_solana_network(self, network, solana_signer):
        with client_for(network, solana_signer) as agora:
            agora.register(nutrition_profile(), sign=False)
            booking = agora.book("agent-a", "nutrition_planning", tier="pro")
        assert booking.payment["network"] == "solana-devnet"

    def test_no_signer_cannot_pay(self, network):
        with client_for(network) as agora:
            agora.register(nutrition_profile())
            with pytest.raises(PaymentRequiredError) as exc:
                agora.book("agent-a", "nutrition_planning", tier="pro")
        assert "base-sepolia" in exc.value.message

    def test_no_slots(self, network, evm_signer):
        with client_for(network, evm_signer) as agora:
            agora.register(nutrition_profile())
            for _ in range(2):
                agora.book("agent-a", "nutrition_planning", tier="premium")
            with pytest.raises(NoSlotsAvailableError) as exc:
                agora.book("agent-a", "nutrition_planning", tier="premium")
        assert exc.value.next_available is not None

    def test_booking_status(self, network, evm_signer):
        with client_for(network, evm_signer) as agora:
            agora.register(nutrition_profile())
            booking = agora.book("agent-a", "nutrition_planning", tier="pro")
            status = agora.booking_status("agent-a", booking.booking_id)
            held = agora.bookings("agent-a")
        assert status["progress"] == 50
        assert [b.booking_id for b in held] == [booking.booking_id]

    def test_tier_not_offered_is_not_a_payment_error(self, network, evm_signer):
        with client_for(network, evm_signer) as agora:
            agora.register({
                "id": "basic-only",
                "endpoint": "https://basic-only.example.com/run",
                "capabilities": ["nutrition_planning"],
                "serviceAvailability": {"basic": {"slots": 1, "responseSLA": 5000}},
            })
            with pytest.raises(RegistryRequestError) as exc:
                agora.book("basic-only", "nutrition_planning", tier="pro")
        assert exc.value.status_code == 400
        assert not isinstance(exc.value, PaymentRejectedError)
        assert exc.value.hint == "Tier not offered"

    def test_bad_payment_is_a_payment_error(self, network, evm_signer):
        with client_for(network, evm_signer) as agora:
            agora.register(nutrition_profile())
            with pytest.raises(PaymentRejectedError) as exc:
                agora._json(agora._send(
                    "POST",
                    "/agents/agent-a/book",
                    json={"tier": "pro", "capability": "nutrition_planning"},
                    headers={"X-Payment": "not base64!"},
                ))
        assert exc.value.check == "encoding"

    def test_completing_expired_booking_is_not_a_capacity_error(self, fleeting_network):
        with client_for(fleeting_network) as agora:
            agora.register(nutrition_profile())
            booking = agora.book("agent-a", "nutrition_planning", tier="pro")
            with pytest.raises(RegistryRequestError) as exc:
                agora.complete(booking)
        assert exc.value.status_code == 409
        assert not isinstance(exc.value, NoSlotsAvailableError)
        assert "expired" in exc.value.message


class TestHire:
    def test_hire_best(self, network, evm_signer):
        with client_for(network, evm_signer) as agora:
            result = agora.hire_best("nutrition_planning", {"goal": "recovery"}, tier="pro")
            status = agora.booking_status(result.agent_id, result.booking_id)

        assert result.agent_id == "agent-nutrition-planner-01"
        assert result.output == {"plan": "oats and eggs"}
        assert result.paid is False
        assert status["status"] == "completed"

        sent = network.specialist_calls[0]
        assert b'"bookingId"' in sent.content

    def test_failed_specialist_fails_the_booking(self, network, evm_signer):
        network.specialist_status = 500
        with client_for(network, evm_signer) as agora:
            agora.register(nutrition_profile())
            agent = agora.get_agent("agent-a")
            with pytest.raises(InvocationFailedError) as exc:
                agora.hire(agent, "nutrition_planning", {"goal": "bulk"}, tier="pro")
            status = agora.booking_status("agent-a", exc.value.booking_id)
            after = agora.get_agent("agent-a")

        assert status["status"] == "failed"
        assert after.reputation_score == 45
        assert after.service_availability["pro"].slots_filled == 0

    def test_hire_best_without_candidates(self, network):
        with client_for(network) as agora:
            with pytest.raises(AgentNotFoundError):
                agora.hire_best("teleportation", {})


class TestConnection:
    def test_unreachable_registry(self):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        with AgoraClient(REGISTRY, transport=httpx.MockTransport(refuse)) as agora:
            with pytest.raises(ConnectionError) as exc:
                agora.capabilities()
        assert "Is the service running?" in exc.value.message
