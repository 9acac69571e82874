"""
Agora Agent Store — the authoritative in-memory view of every agent.

Core agents are seeded at construction and are always present; dynamic
agents come from permissionless registration and from the persistence
gateway on cold start. The store owns write serialization: every mutation
of a profile runs under that agent's lock, works on a copy and swaps the
copy in only once all checks have passed, so a failed mutation leaves the
stored profile exactly as it was. Readers get deep-copied snapshots and
never wait on persistence.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from typing import Any, Callable, Iterable, Iterator

from pydantic import ValidationError as PydanticValidationError

from agora import signatures
from agora.catalog import core_agents
from agora.errors import ConflictError, NotFoundError, ValidationError, VerificationError
from agora.models import (
    AgentProfile,
    AgentStatus,
    AgentType,
    AvailabilityUpdate,
    Chain,
    RegistrationProfile,
    Tier,
    TierAvailability,
    now_ms,
)
from agora.persistence import PersistenceGateway
from agora.tiers import validate_sla_ordering

logger = logging.getLogger(__name__)

DEFAULT_REPUTATION = 50
MIN_REPUTATION = 0
MAX_REPUTATION = 100
DEFAULT_IDENTITY_SKEW_MS = 300_000


def _parse(model, data: Any):
    """Validate raw input into a model, reporting failures as ValidationError."""
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data)
    except PydanticValidationError as e:
        first = e.errors()[0]
        where = ".".join(str(p) for p in first.get("loc", ()))
        raise ValidationError(
            f"Invalid {model.__name__}: {where} {first.get('msg', '')}".strip(),
            hint="Check field names and types against the agent profile schema",
        ) from e


def parse_tier(tier: Tier | str) -> Tier:
    try:
        return Tier(tier)
    except ValueError:
        raise ValidationError(
            f"Unknown tier: {tier}",
            hint="Tier must be one of basic, pro, premium",
        ) from None


def _check_capacity(tier: str, availability: TierAvailability) -> None:
    if availability.slots_filled > availability.slots:
        raise ValidationError(
            f"slotsFilled ({availability.slots_filled}) exceeds slots ({availability.slots}) for {tier} tier",
        )


def _normalize_availability(table: dict[str, TierAvailability]) -> dict[str, TierAvailability]:
    normalized = {}
    for name, availability in table.items():
        availability = availability.model_copy(update={"tier": Tier(name)})
        _check_capacity(name, availability)
        normalized[name] = availability
    validate_sla_ordering(normalized)
    return normalized


def check_bookable(agent: AgentProfile, tier: Tier | str, capability: str) -> TierAvailability:
    """
    Booking preconditions after the agent lookup: tier offered, capacity
    left, capability offered, checked in that order.

    Returns:
        The tier's current availability
    """
    tier = parse_tier(tier)
    current = agent.availability(tier)
    if current is None:
        raise ValidationError(f"Agent does not offer {tier.value} tier", hint="Tier not offered")
    if not current.has_capacity:
        raise ConflictError(
            "No slots available",
            hint=f"{tier.value} tier is full; retry after nextAvailable",
            details={"nextAvailable": current.next_available},
        )
    if not agent.offers(capability):
        raise ValidationError(
            f"Agent does not offer {capability}",
            hint=f"Offered capabilities: {', '.join(agent.capabilities)}",
        )
    return current.model_copy(update={"tier": tier})


def _owner_for(chain: Chain, signer: str | None) -> str | None:
    if not signer:
        return None
    return signer.lower() if chain == Chain.EVM else signer


def _same_signer(chain: Chain, a: str | None, b: str | None) -> bool:
    if not a or not b:
        return False
    if chain == Chain.EVM:
        return a.lower() == b.lower()
    return a == b


class AgentStore:
    """
    Thread-safe agent registry with best-effort write-through persistence.

    Usage:
        store = AgentStore(gateway=InMemoryGateway())
        store.hydrate()
        agent = store.register({"id": "a1", "endpoint": "https://..."})
        store.close()
    """

    def __init__(
        self,
        gateway: PersistenceGateway | None = None,
        core: Iterable[AgentProfile] | None = None,
        clock: Callable[[], int] = now_ms,
        background_writes: bool = True,
        identity_skew_ms: int = DEFAULT_IDENTITY_SKEW_MS,
    ):
        self._gateway = gateway
        self._clock = clock
        self._identity_skew_ms = identity_skew_ms
        self._agents: dict[str, AgentProfile] = {}  # agent_id -> committed profile
        self._locks: dict[str, threading.Lock] = {}  # agent_id -> mutation lock
        self._map_lock = threading.Lock()
        self._writer = (
            ThreadPoolExecutor(max_workers=1, thread_name_prefix="agora-persist")
            if gateway is not None and background_writes
            else None
        )

        for agent in (core_agents() if core is None else core):
            agent = agent.model_copy(update={
                "type": AgentType.CORE,
                "service_availability": _normalize_availability(agent.service_availability),
            })
            self._agents[agent.id] = agent

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def hydrate(self) -> int:
        """
        Load previously registered dynamic agents from the gateway.

        Best-effort: on failure the store keeps serving what it has.
        Entries already in memory win over persisted ones.

        Returns:
            Number of agents loaded
        """
        if self._gateway is None:
            logger.info("No persistence gateway configured; memory-only registry")
            return 0

        try:
            records = self._gateway.scan(AgentType.DYNAMIC)
        except Exception as e:
            logger.warning("Failed to load agents from persistence, continuing with %d in memory: %s", len(self._agents), e)
            return 0

        loaded = 0
        with self._map_lock:
            for record in records:
                if record.id in self._agents:
                    continue
                self._agents[record.id] = record
                loaded += 1
        logger.info("Hydrated %d dynamic agents from persistence", loaded)
        return loaded

    def close(self) -> None:
        """Drain pending persistence writes."""
        if self._writer is not None:
            self._writer.shutdown(wait=True)
            self._writer = None

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get_by_id(self, agent_id: str) -> AgentProfile | None:
        with self._map_lock:
            agent = self._agents.get(agent_id)
        return agent.model_copy(deep=True) if agent else None

    def get_all(self) -> list[AgentProfile]:
        """Snapshot of every agent, in insertion order."""
        with self._map_lock:
            agents = list(self._agents.values())
        return [a.model_copy(deep=True) for a in agents]

    def get_by_type(self, agent_type: AgentType | str) -> list[AgentProfile]:
        agent_type = AgentType(agent_type)
        return [a for a in self.get_all() if a.type == agent_type]

    def list_capabilities(self) -> list[str]:
        seen: dict[str, None] = {}
        for agent in self.get_all():
            for capability in agent.capabilities:
                seen.setdefault(capability, None)
        return list(seen)

    def count(self) -> int:
        with self._map_lock:
            return len(self._agents)

    def now(self) -> int:
        return self._clock()

    # -------------------------------------------------------------------------
    # Registration
    # -------------------------------------------------------------------------

    def register(self, profile: RegistrationProfile | dict, signature: str | None = None) -> AgentProfile:
        """
        Register (or re-register) a dynamic agent.

        A missing signature is allowed (dev mode) and leaves the agent
        unverified. A signature that is present but fails verification
        rejects the whole registration.

        Raises:
            ValidationError: missing id/endpoint, malformed profile, or a
                signature without the signer/timestamp needed to check it
            VerificationError: the identity proof did not verify
            ConflictError: id belongs to a core agent or to another signer
        """
        profile = _parse(RegistrationProfile, profile)
        if not profile.id or not profile.endpoint:
            raise ValidationError(
                "Invalid profile: missing id or endpoint",
                hint="Both profile.id and profile.endpoint are required",
            )

        now = self._clock()
        verified_at = None
        if signature:
            verified_at = self._verify_identity(profile, signature, now)
        else:
            logger.warning("No signature provided for %s; registration is unverified (dev mode)", profile.id)

        availability = _normalize_availability(profile.service_availability or {})

        with self._registration_lock(profile.id):
            existing = self._current(profile.id)
            if existing is not None:
                self._check_reregistration(existing, profile, verified_at)

            agent = AgentProfile(
                id=profile.id,
                name=profile.name,
                endpoint=profile.endpoint,
                capabilities=list(dict.fromkeys(profile.capabilities)),
                signer=profile.signer,
                chain=profile.chain,
                type=AgentType.DYNAMIC,
                status=AgentStatus.ACTIVE,
                reputation_score=existing.reputation_score if existing else DEFAULT_REPUTATION,
                pricing=profile.pricing,
                tiered_pricing=profile.tiered_pricing,
                service_availability=self._carry_fill(existing, availability),
                last_heartbeat=max(existing.last_heartbeat, now) if existing else now,
                verified_at=verified_at,
                registered_at=existing.registered_at if existing else now,
                owner=profile.owner or _owner_for(profile.chain, profile.signer),
                emoji=profile.emoji,
                description=profile.description,
                role=profile.role,
                location=profile.location,
                tags=profile.tags,
                protocol=profile.protocol,
                success_rate=existing.success_rate if existing else 0.0,
            )
            self._commit(agent)

        logger.info(
            "%s agent %s (%s) [%s]",
            "Re-registered" if existing else "Registered",
            agent.name,
            agent.id,
            "verified" if agent.verified else "unverified",
        )
        return agent.model_copy(deep=True)

    def _verify_identity(self, profile: RegistrationProfile, signature: str, now: int) -> int:
        if not profile.signer:
            raise ValidationError(
                "Signature provided without a signer",
                hint="Set profile.signer to the address or public key that signed the identity proof",
            )
        if profile.timestamp is None:
            raise ValidationError(
                "Signature provided without the signed timestamp",
                hint="Set profile.timestamp to the timestamp embedded in the identity proof",
            )

        message = signatures.identity_message(profile.id, profile.endpoint, profile.timestamp)
        result = signatures.verify(profile.chain, profile.signer, message, signature)
        if not result.verified:
            raise VerificationError(
                "signature",
                "Invalid signature: agent identity verification failed",
                hint=result.reason,
            )
        if abs(now - profile.timestamp) > self._identity_skew_ms:
            raise VerificationError(
                "timestamp",
                "Identity proof expired or not yet valid",
                hint=f"Sign a fresh proof; timestamp must be within {self._identity_skew_ms // 1000}s of server time ({now})",
            )
        return now

    def _check_reregistration(self, existing: AgentProfile, profile: RegistrationProfile, verified_at: int | None) -> None:
        if existing.type == AgentType.CORE:
            raise ConflictError(
                f"Agent id {existing.id} is reserved by a core agent",
                hint="Choose a different agent id",
            )
        if verified_at is None or not _same_signer(existing.chain, existing.signer, profile.signer):
            raise ConflictError(
                f"Agent id {existing.id} is already registered",
                hint="Re-registration requires a valid identity proof from the original signer",
            )

    @staticmethod
    def _carry_fill(existing: AgentProfile | None, availability: dict[str, TierAvailability]) -> dict[str, TierAvailability]:
        """Keep reserved slot counts across re-registration, clamped to new capacity."""
        if existing is None:
            return availability
        carried = {}
        for name, tier in availability.items():
            previous = existing.service_availability.get(name)
            if previous is not None:
                tier = tier.model_copy(update={"slots_filled": min(previous.slots_filled, tier.slots)})
            carried[name] = tier
        return carried

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    def update_heartbeat(self, agent_id: str) -> AgentProfile:
        """Record a liveness signal; reactivates an inactive agent."""
        def apply(draft: AgentProfile) -> None:
            draft.last_heartbeat = max(draft.last_heartbeat, self._clock())
            draft.status = AgentStatus.ACTIVE

        return self._mutate(agent_id, apply)

    def update_availability(self, agent_id: str, tier: Tier | str, update: AvailabilityUpdate | dict) -> AgentProfile:
        """
        Merge a partial update into one tier's availability.

        A tier the agent does not offer yet is created only when the update
        carries at least slots and responseSLA.

        Raises:
            NotFoundError: unknown agent, or missing tier that cannot be built
            ValidationError: result breaks slotsFilled <= slots or SLA ordering
        """
        tier = parse_tier(tier)
        changes = _parse(AvailabilityUpdate, update).changes()

        def apply(draft: AgentProfile) -> None:
            current = draft.service_availability.get(tier.value)
            if current is None:
                if "slots" not in changes or "response_sla" not in changes:
                    raise NotFoundError(
                        f"Agent does not offer {tier.value} tier",
                        hint="Supply slots and responseSLA to create the tier",
                    )
                base: dict[str, Any] = {"tier": tier}
            else:
                base = current.model_dump()
            self._set_tier(draft, tier, _parse(TierAvailability, {**base, **changes}))

        agent = self._mutate(agent_id, apply)
        logger.info("Updated %s %s tier: %s", agent_id, tier.value, changes)
        return agent

    def reserve_slot(self, agent_id: str, tier: Tier | str, capability: str) -> AgentProfile:
        """
        Atomically claim one slot of a tier.

        Checks run in order inside the agent's critical section: agent
        exists, tier offered, capacity left, capability offered. Nothing
        changes unless all pass.

        Returns:
            The agent snapshot after the reservation
        """
        def apply(draft: AgentProfile) -> None:
            current = check_bookable(draft, tier, capability)
            self._set_tier(draft, current.tier, current.model_copy(update={"slots_filled": current.slots_filled + 1}))

        return self._mutate(agent_id, apply)

    def release_slot(self, agent_id: str, tier: Tier | str) -> AgentProfile | None:
        """Give back one slot; a no-op for tiers that no longer exist."""
        def apply(draft: AgentProfile) -> None:
            key = getattr(tier, "value", tier)
            current = draft.service_availability.get(key)
            if current is not None and current.slots_filled > 0:
                self._set_tier(draft, Tier(key), current.model_copy(update={"slots_filled": current.slots_filled - 1}))

        try:
            return self._mutate(agent_id, apply)
        except NotFoundError:
            logger.warning("Cannot release %s slot: agent %s is gone", tier, agent_id)
            return None

    def adjust_reputation(self, agent_id: str, delta: int) -> tuple[int, int]:
        """
        Apply a bounded reputation change.

        Returns:
            (old_score, new_score), new score clamped to [0, 100]
        """
        scores: list[int] = []

        def apply(draft: AgentProfile) -> None:
            scores.append(draft.reputation_score)
            draft.reputation_score = max(MIN_REPUTATION, min(MAX_REPUTATION, draft.reputation_score + delta))
            scores.append(draft.reputation_score)

        self._mutate(agent_id, apply)
        return scores[0], scores[1]

    def record_outcome(self, agent_id: str, success: bool, weight: float = 0.1) -> None:
        """Fold a completed booking into the agent's moving success rate."""
        def apply(draft: AgentProfile) -> None:
            observed = 1.0 if success else 0.0
            draft.success_rate = round((1 - weight) * draft.success_rate + weight * observed, 4)

        self._mutate(agent_id, apply)

    def deactivate(self, agent_id: str) -> AgentProfile:
        """Soft delete: the agent stays in the store but leaves discovery."""
        def apply(draft: AgentProfile) -> None:
            draft.status = AgentStatus.INACTIVE

        agent = self._mutate(agent_id, apply)
        logger.info("Deactivated agent %s", agent_id)
        return agent

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _lock_for(self, agent_id: str) -> threading.Lock:
        """Lock of a stored agent. Unknown ids get no lock."""
        with self._map_lock:
            if agent_id not in self._agents:
                raise NotFoundError("Agent not found", details={"agentId": agent_id})
            return self._locks.setdefault(agent_id, threading.Lock())

    @contextmanager
    def _registration_lock(self, agent_id: str) -> Iterator[None]:
        with self._map_lock:
            lock = self._locks.setdefault(agent_id, threading.Lock())
        try:
            with lock:
                yield
        finally:
            with self._map_lock:
                if agent_id not in self._agents and self._locks.get(agent_id) is lock:
                    del self._locks[agent_id]

    def _current(self, agent_id: str) -> AgentProfile | None:
        with self._map_lock:
            return self._agents.get(agent_id)

    def _set_tier(self, draft: AgentProfile, tier: Tier, availability: TierAvailability) -> None:
        _check_capacity(tier.value, availability)
        table = {**draft.service_availability, tier.value: availability}
        validate_sla_ordering(table)
        draft.service_availability = table

    def _mutate(self, agent_id: str, apply: Callable[[AgentProfile], None]) -> AgentProfile:
        """Copy, modify and swap in one agent's profile under its lock."""
        with self._lock_for(agent_id):
            draft = self._current(agent_id).model_copy(deep=True)
            apply(draft)
            self._commit(draft)
        return draft.model_copy(deep=True)

    def _commit(self, agent: AgentProfile) -> None:
        # Caller holds the agent's lock, so writes are queued in commit order.
        with self._map_lock:
            self._agents[agent.id] = agent
        self._persist(agent)

    def _persist(self, agent: AgentProfile) -> None:
        if self._gateway is None:
            return
        if self._writer is not None:
            self._writer.submit(self._write, agent)
        else:
            self._write(agent)

    def _write(self, agent: AgentProfile) -> None:
        try:
            self._gateway.put(agent)
        except Exception:
            logger.exception("Failed to persist agent %s; keeping in-memory state", agent.id)
