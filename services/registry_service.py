"""
===================================================================
  🏛️ AGORA — Registry Service
===================================================================

FastAPI service for agent registration, discovery and x402 booking.
Agents register and prove their identity here; callers discover them,
book a tier slot (paying per call when payments are required) and then
call the agent's endpoint directly.

Run: uvicorn services.registry_service:create_app --factory --port 8000
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

import uvicorn
from fastapi import FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, Field

from agora import __version__
from agora.booking import BookingManager
from agora.config import Settings, configure_logging
from agora.discovery import DiscoveryFilters, discover
from agora.errors import NotFoundError, RegistryError, ValidationError
from agora.liveness import LivenessMonitor
from agora.models import AgentStatus, AgentType, AvailabilityUpdate, WireModel
from agora.payments import PAYMENT_HEADER, PaymentVerifier, build_challenge, configured_networks
from agora.persistence import SupabaseGateway
from agora.store import AgentStore

logger = logging.getLogger("agora.service")


# =============================================================================
# State
# =============================================================================

@dataclass
class RegistryState:
    settings: Settings
    store: AgentStore
    bookings: BookingManager
    liveness: LivenessMonitor
    payments: PaymentVerifier


def _iso_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _state(request: Request) -> RegistryState:
    return request.app.state.registry


# =============================================================================
# Request Models
# =============================================================================

class RegisterRequest(BaseModel):
    profile: Optional[dict[str, Any]] = None
    signature: Optional[str] = None


class HeartbeatRequest(BaseModel):
    id: Optional[str] = None


class BookRequest(WireModel):
    tier: str = "basic"
    capability: Optional[str] = None
    request_data: Any = None


class AvailabilityRequest(AvailabilityUpdate):
    tier: Optional[str] = None


class CompleteRequest(WireModel):
    success: bool = True
    execution_time_ms: Optional[int] = Field(None, ge=0)
    transaction_hash: Optional[str] = None


# =============================================================================
# Background sweeps
# =============================================================================

async def _sweep_forever(state: RegistryState) -> None:
    """Expire overdue bookings and, when enabled, evict silent agents."""
    settings = state.settings
    while True:
        await asyncio.sleep(settings.sweep_interval_seconds)
        try:
            state.bookings.expire_due()
            if settings.evict_stale:
                state.liveness.evict_stale(settings.stale_threshold_seconds * 1000)
        except Exception:
            logger.exception("Registry sweep failed; retrying next interval")


# =============================================================================
# App factory
# =============================================================================

def create_app(settings: Settings | None = None, store: AgentStore | None = None) -> FastAPI:
    """
    Build the registry app.

    Args:
        settings: Defaults to Settings.from_env()
        store: Pre-built store (tests); otherwise one is created at startup,
            backed by Supabase when configured and hydrated from it
    """
    settings = settings or Settings.from_env()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owns_store = store is None
        gateway = None
        registry = store
        if registry is None:
            if settings.persistence_enabled:
                gateway = SupabaseGateway(settings.supabase_url, settings.supabase_key, settings.supabase_table)
            registry = AgentStore(gateway=gateway, identity_skew_ms=settings.identity_skew_seconds * 1000)
            await asyncio.to_thread(registry.hydrate)

        state = RegistryState(
            settings=settings,
            store=registry,
            bookings=BookingManager(registry, ttl_ms=settings.booking_ttl_seconds * 1000),
            liveness=LivenessMonitor(registry),
            payments=PaymentVerifier(
                configured_networks(settings.payment_networks, settings.pay_to_evm, settings.pay_to_solana),
                skew_ms=settings.payment_skew_seconds * 1000,
            ),
        )
        app.state.registry = state
        sweeper = asyncio.create_task(_sweep_forever(state))
        logger.info(
            "Agora registry up: %d agents, payments %s",
            registry.count(),
            "required" if settings.require_payment else "optional",
        )

        yield

        sweeper.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await sweeper
        if owns_store:
            registry.close()
        if gateway is not None:
            gateway.close()

    app = FastAPI(
        title="🏛️ Agora Registry Service",
        description="Permissionless agent registry with multi-chain identity and x402 booking",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # =========================================================================
    # Error mapping
    # =========================================================================

    @app.exception_handler(RegistryError)
    async def registry_error(request: Request, exc: RegistryError):
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return JSONResponse(status_code=exc.status_code, content=exc.to_body())

    @app.exception_handler(RequestValidationError)
    async def request_validation_error(request: Request, exc: RequestValidationError):
        first = exc.errors()[0] if exc.errors() else {}
        where = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
        return JSONResponse(
            status_code=400,
            content={"error": "Invalid request", "hint": f"{where}: {first.get('msg', 'malformed input')}"},
        )

    # =========================================================================
    # Discovery
    # =========================================================================

    @app.get("/agents")
    async def list_agents(
        request: Request,
        capability: Optional[str] = Query(None),
        tier: Optional[str] = Query(None),
        min_reputation: Optional[int] = Query(None, alias="minReputation", ge=0, le=100),
        max_response_time: Optional[int] = Query(None, alias="maxResponseTime", gt=0),
    ):
        """Find active agents by capability, tier capacity, reputation and SLA."""
        state = _state(request)
        try:
            filters = DiscoveryFilters(min_reputation=min_reputation, tier=tier, max_response_time=max_response_time)
        except ValueError:
            raise ValidationError(f"Unknown tier: {tier}", hint="Tier must be one of basic, pro, premium")

        agents = discover(capability, state.store, filters)
        logger.info(
            "Discovery: %d agents (capability=%s, tier=%s, minRep=%s)",
            len(agents), capability, tier or "all", min_reputation,
        )
        return {
            "success": True,
            "count": len(agents),
            "agents": [a.to_wire() for a in agents],
            "filters": {
                "capability": capability,
                "tier": tier,
                "minReputation": min_reputation,
                "maxResponseTime": max_response_time,
            },
            "timestamp": _iso_now(),
        }

    @app.get("/agents/stale")
    async def stale_agents(request: Request, threshold_ms: Optional[int] = Query(None, alias="thresholdMs", gt=0)):
        """Dynamic agents that missed their heartbeat window."""
        state = _state(request)
        threshold = threshold_ms or state.settings.stale_threshold_seconds * 1000
        stale = state.liveness.find_stale_agents(threshold)
        return {"success": True, "count": len(stale), "staleAgents": stale, "thresholdMs": threshold}

    @app.get("/capabilities")
    async def list_capabilities(request: Request):
        store = _state(request).store
        return {"success": True, "capabilities": store.list_capabilities(), "totalAgents": store.count()}

    @app.get("/agents/{agent_id}")
    async def get_agent(request: Request, agent_id: str):
        agent = _state(request).store.get_by_id(agent_id)
        if agent is None:
            raise NotFoundError("Agent not found", details={"agentId": agent_id})
        return {"success": True, "agent": agent.to_wire()}

    # =========================================================================
    # Registration & liveness
    # =========================================================================

    @app.post("/agents/register", status_code=201)
    async def register_agent(request: Request, body: RegisterRequest):
        """Register a dynamic agent; a signature upgrades it to verified."""
        agent = _state(request).store.register(body.profile or {}, body.signature)
        return {
            "success": True,
            "message": f"Agent {agent.name} registered ({'verified' if agent.verified else 'unverified'})",
            "agent": agent.to_wire(),
        }

    @app.post("/agents/heartbeat")
    async def heartbeat(request: Request, body: HeartbeatRequest):
        if not body.id:
            raise ValidationError("Missing agent id", hint="Send {\"id\": \"<agent id>\"}")
        agent = _state(request).store.update_heartbeat(body.id)
        return {
            "success": True,
            "type": agent.type.value,
            "agentId": agent.id,
            "lastHeartbeat": agent.last_heartbeat,
        }

    @app.post("/agents/{agent_id}/availability")
    async def update_availability(request: Request, agent_id: str, body: AvailabilityRequest):
        if not body.tier:
            raise ValidationError("Missing tier", hint="Tier must be one of basic, pro, premium")
        update = AvailabilityUpdate.model_validate(body.model_dump(exclude={"tier"}))
        agent = _state(request).store.update_availability(agent_id, body.tier, update)
        return {"success": True, "agent": agent.to_wire()}

    # =========================================================================
    # Booking
    # =========================================================================

    @app.post("/agents/{agent_id}/book", status_code=201)
    async def book_agent(request: Request, agent_id: str, body: BookRequest):
        """
        Reserve a tier slot. With payments required, a request without an
        X-Payment header gets a 402 challenge listing the accepted networks.
        """
        state = _state(request)
        if not body.capability:
            raise ValidationError("Missing capability", hint="Specify the capability you are booking")

        header = request.headers.get(PAYMENT_HEADER)
        proof = None
        if state.settings.require_payment or header:
            quote = state.bookings.quote(agent_id, body.tier, body.capability)
            if not header:
                logger.info("402 challenge for %s (%s, %s)", agent_id, body.tier, quote.pricing.base_fee)
                return JSONResponse(
                    status_code=402,
                    content=build_challenge(quote, state.payments.networks, resource=request.url.path),
                )
            proof = state.payments.verify(header, quote.pricing.base_fee)

        booking = state.bookings.book(agent_id, body.tier, body.capability, body.request_data, payment=proof)
        return {"success": True, **booking.to_wire()}

    @app.get("/agents/{agent_id}/bookings")
    async def list_agent_bookings(request: Request, agent_id: str):
        """Bookings held against an agent, oldest first."""
        state = _state(request)
        if state.store.get_by_id(agent_id) is None:
            raise NotFoundError("Agent not found", details={"agentId": agent_id})
        bookings = state.bookings.list_bookings(agent_id)
        return {"success": True, "count": len(bookings), "bookings": [b.to_wire() for b in bookings]}

    @app.get("/agents/{agent_id}/booking/{booking_id}")
    async def booking_status(request: Request, agent_id: str, booking_id: str):
        bookings = _state(request).bookings
        booking = bookings.get_booking(booking_id, agent_id=agent_id)
        progress, message = bookings.progress(booking)
        return {"success": True, **booking.to_wire(), "progress": progress, "message": message}

    @app.post("/agents/{agent_id}/booking/{booking_id}/complete")
    async def complete_booking(request: Request, agent_id: str, booking_id: str, body: CompleteRequest):
        """Report the specialist's outcome: frees the slot and updates reputation."""
        bookings = _state(request).bookings
        bookings.get_booking(booking_id, agent_id=agent_id)
        booking = bookings.complete(
            booking_id,
            success=body.success,
            execution_time_ms=body.execution_time_ms,
            transaction_hash=body.transaction_hash,
        )
        return {"success": True, **booking.to_wire()}

    # =========================================================================
    # Misc
    # =========================================================================

    @app.get("/health")
    async def health(request: Request):
        state = _state(request)
        agents = state.store.get_all()
        return {
            "service": "agora-registry",
            "status": "healthy",
            "agentsActive": sum(1 for a in agents if a.status == AgentStatus.ACTIVE),
            "coreAgents": sum(1 for a in agents if a.type == AgentType.CORE),
            "totalAgents": len(agents),
            "requirePayment": state.settings.require_payment,
            "paymentNetworks": [n.name for n in state.payments.networks],
        }

    @app.options("/{path:path}")
    async def preflight(path: str):
        return Response(
            status_code=200,
            headers={
                "Access-Control-Allow-Origin": "*",
                "Access-Control-Allow-Headers": f"Content-Type, X-Agent-ID, X-Signature, {PAYMENT_HEADER}",
                "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
            },
        )

    return app


def main() -> None:
    settings = Settings.from_env()
    configure_logging(settings.log_level)
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    main()
