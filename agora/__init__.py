"""
Agora — Agent Registry & Discovery with multi-chain identity and x402 booking
"""

__version__ = "0.1.0"
__protocol_version__ = "x402-1"

from agora.booking import BookingManager
from agora.config import Settings, configure_logging
from agora.discovery import DiscoveryFilters, discover
from agora.errors import (
    ConflictError,
    NotFoundError,
    RegistryError,
    UpstreamError,
    ValidationError,
    VerificationError,
)
from agora.liveness import LivenessMonitor
from agora.models import AgentProfile, Booking, Chain, PaymentProof, Tier
from agora.payments import PaymentVerifier, build_challenge
from agora.persistence import InMemoryGateway, SupabaseGateway
from agora.signatures import identity_message, verify
from agora.store import AgentStore

__all__ = [
    "AgentStore",
    "BookingManager",
    "LivenessMonitor",
    "PaymentVerifier",
    "DiscoveryFilters",
    "discover",
    "verify",
    "identity_message",
    "build_challenge",
    "Settings",
    "configure_logging",
    "InMemoryGateway",
    "SupabaseGateway",
    "AgentProfile",
    "Booking",
    "Chain",
    "PaymentProof",
    "Tier",
    "RegistryError",
    "ValidationError",
    "NotFoundError",
    "ConflictError",
    "VerificationError",
    "UpstreamError",
]
