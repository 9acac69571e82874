"""
Agora Protocol Data Models — Pydantic v2

Defines the structured records of the registry: agent profiles with their
tiered availability and pricing, bookings, x402 payment proofs and the
small result objects returned by verification and SLA reporting.

Python attributes are snake_case; the wire format is camelCase.
"""

from __future__ import annotations

import time
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, computed_field, field_validator
from pydantic.alias_generators import to_camel


# =============================================================================
# Enums
# =============================================================================

class Chain(str, Enum):
    EVM = "evm"
    SOLANA = "solana"


class AgentType(str, Enum):
    CORE = "core"
    DYNAMIC = "dynamic"


class AgentStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class Tier(str, Enum):
    BASIC = "basic"
    PRO = "pro"
    PREMIUM = "premium"


class BookingStatus(str, Enum):
    RESERVED = "reserved"
    PAID = "paid"
    COMPLETED = "completed"
    FAILED = "failed"
    EXPIRED = "expired"


class PaymentState(str, Enum):
    NONE = "NONE"
    CHALLENGED = "CHALLENGED"
    VERIFIED = "VERIFIED"
    SETTLED = "SETTLED"


# =============================================================================
# Helpers
# =============================================================================

def now_ms() -> int:
    return int(time.time() * 1000)


def _tier_key(tier: "Tier | str") -> str:
    return Tier(tier).value


def _check_tier_keys(value: dict | None, field: str = "serviceAvailability") -> dict | None:
    if value is None:
        return value
    if not isinstance(value, dict):
        raise ValueError(f"{field} must be an object keyed by tier")
    return {_tier_key(k): v for k, v in value.items()}


class WireModel(BaseModel):
    """camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


# =============================================================================
# Agent Profile
# =============================================================================

class Price(WireModel):
    """A price point: decimal fee string, asset symbol and settlement network."""
    base_fee: str = Field(..., description="Decimal amount, e.g. '0.03'")
    asset: str = Field("USDC")
    chain: str = Field("base-sepolia", description="Settlement network")

    @field_validator("base_fee")
    @classmethod
    def _decimal_fee(cls, value: str) -> str:
        try:
            fee = Decimal(value)
        except InvalidOperation:
            raise ValueError(f"baseFee must be a decimal amount, got {value!r}") from None
        if not fee.is_finite() or fee < 0:
            raise ValueError(f"baseFee must be a finite, non-negative amount, got {value!r}")
        return value


class TierAvailability(WireModel):
    """Capacity and service-level targets for one tier."""
    tier: Optional[Tier] = None
    slots: int = Field(..., ge=0)
    slots_filled: int = Field(0, ge=0)
    response_sla: int = Field(..., gt=0, alias="responseSLA", description="Milliseconds")
    uptime: float = Field(99.0, ge=0.0, le=100.0)
    next_available: int = Field(default_factory=now_ms)

    @property
    def has_capacity(self) -> bool:
        return self.slots_filled < self.slots


class TierKeyedModel(WireModel):
    """Normalizes tier-keyed mappings and rejects unknown tier names."""

    @field_validator("service_availability", mode="before", check_fields=False)
    @classmethod
    def _availability_keys(cls, value):
        return _check_tier_keys(value)

    @field_validator("tiered_pricing", mode="before", check_fields=False)
    @classmethod
    def _pricing_keys(cls, value):
        if value is None:
            return {}
        if not isinstance(value, dict):
            raise ValueError("tieredPricing must be an object keyed by capability")
        return {cap: _check_tier_keys(tiers, f"tieredPricing.{cap}") for cap, tiers in value.items()}


class AvailabilityUpdate(WireModel):
    """Partial update for one tier; only supplied fields are merged."""
    slots: Optional[int] = Field(None, ge=0)
    slots_filled: Optional[int] = Field(None, ge=0)
    response_sla: Optional[int] = Field(None, gt=0, alias="responseSLA")
    uptime: Optional[float] = Field(None, ge=0.0, le=100.0)
    next_available: Optional[int] = None

    def changes(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)


class AgentProfile(TierKeyedModel):
    """Agent record as held by the store."""
    id: str
    name: str = "Unnamed Agent"
    endpoint: str
    capabilities: list[str] = Field(default_factory=list)
    signer: Optional[str] = None
    chain: Chain = Chain.EVM
    type: AgentType = AgentType.DYNAMIC
    status: AgentStatus = AgentStatus.ACTIVE
    reputation_score: int = Field(50, ge=0, le=100)
    pricing: dict[str, Price] = Field(default_factory=dict)
    tiered_pricing: dict[str, dict[str, Price]] = Field(default_factory=dict)
    service_availability: dict[str, TierAvailability] = Field(default_factory=dict)
    last_heartbeat: int = Field(default_factory=now_ms)
    verified_at: Optional[int] = None
    registered_at: int = Field(default_factory=now_ms)

    # Descriptive metadata
    owner: Optional[str] = None
    emoji: Optional[str] = None
    description: str = ""
    role: Optional[str] = None
    location: Optional[str] = None
    tags: list[str] = Field(default_factory=list)
    protocol: str = "x402"
    success_rate: float = Field(0.0, ge=0.0, le=1.0)

    @computed_field
    @property
    def verified(self) -> bool:
        return self.verified_at is not None

    def offers(self, capability: str) -> bool:
        return capability in self.capabilities

    def availability(self, tier: Tier | str) -> TierAvailability | None:
        return self.service_availability.get(getattr(tier, "value", tier))

    def fastest_sla(self) -> int | None:
        slas = [a.response_sla for a in self.service_availability.values()]
        return min(slas) if slas else None


class RegistrationProfile(TierKeyedModel):
    """Profile as submitted by a registrant. Server-owned fields are ignored."""
    model_config = ConfigDict(extra="ignore")

    id: Optional[str] = None
    name: str = "Unnamed Agent"
    endpoint: Optional[str] = None
    capabilities: list[str] = Field(default_factory=list)
    signer: Optional[str] = None
    chain: Chain = Chain.EVM
    timestamp: Optional[int] = Field(None, description="Timestamp embedded in the identity proof")
    pricing: dict[str, Price] = Field(default_factory=dict)
    tiered_pricing: dict[str, dict[str, Price]] = Field(default_factory=dict)
    service_availability: Optional[dict[str, TierAvailability]] = None
    owner: Optional[str] = None
    emoji: Optional[str] = None
    description: str = ""
    role: Optional[str] = None
    location: Optional[str] = None
    tags: list[str] = Field(default_factory=list)
    protocol: str = "x402"


# =============================================================================
# Bookings & SLA
# =============================================================================

class SLAPromise(WireModel):
    response_sla: int = Field(..., alias="responseSLA")
    uptime: float


class Quote(WireModel):
    """Price and SLA for an agent/tier/capability, no reservation made."""
    agent_id: str
    tier: Tier
    capability: str
    pricing: Price
    sla: SLAPromise
    next_available: int


class Booking(WireModel):
    """Ephemeral slot reservation."""
    booking_id: str
    agent_id: str
    agent: dict[str, Any] = Field(default_factory=dict)
    tier: Tier
    capability: str
    pricing: Price
    sla: SLAPromise
    created_at: int = Field(default_factory=now_ms)
    expiry_time: int
    request_data: Any = None
    status: BookingStatus = BookingStatus.RESERVED
    payment: Optional[dict[str, Any]] = None
    transaction_hash: Optional[str] = None
    sla_performance: Optional["SLAPerformance"] = None

    @property
    def is_open(self) -> bool:
        return self.status in (BookingStatus.RESERVED, BookingStatus.PAID)


class SLAPerformance(WireModel):
    tier: Tier
    expected_ms: int
    actual_ms: int
    within_sla: bool = Field(..., alias="withinSLA")
    penalty: int = 0
    message: str


# =============================================================================
# Verification & Payments
# =============================================================================

class VerificationResult(WireModel):
    verified: bool
    reason: Optional[str] = None


class PaymentRequirement(WireModel):
    """One acceptable way to pay, as offered in a 402 challenge."""
    scheme: str
    network: str
    asset: str
    amount: str
    max_amount_required: str
    pay_to: str
    resource: str = ""
    description: str = ""
    max_timeout_seconds: int = 300
    chain_id: Optional[int] = None


class PaymentProof(WireModel):
    """Decoded x402 payment header."""
    model_config = ConfigDict(extra="ignore")

    scheme: str
    network: str
    asset: str
    amount: str
    pay_to: str
    payer: str = Field(..., validation_alias=AliasChoices("payer", "signer", "payerAddress"))
    timestamp: int
    nonce: str
    signature: str
    message: str


class SettlementRecord(WireModel):
    booking_id: str
    agent_id: str
    transaction_hash: str
    network: Optional[str] = None
    amount: Optional[str] = None
    explorer_url: Optional[str] = None
    state: PaymentState = PaymentState.SETTLED
    recorded_at: int = Field(default_factory=now_ms)


class ReputationUpdate(WireModel):
    """A reputation change event."""
    agent_id: str
    old_score: int
    new_score: int
    booking_id: str
    success: bool
    timestamp: int = Field(default_factory=now_ms)


Booking.model_rebuild()
