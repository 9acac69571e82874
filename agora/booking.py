"""
Agora Booking Manager — slot reservations, quotes and completion.

A booking holds one slot of one tier until it completes, fails or
expires. Expiry is swept lazily at the start of book/get_booking and by
the service's periodic task; whichever gets there first closes the
booking and gives the slot back, exactly once.
"""

from __future__ import annotations

import logging
import secrets
import string
import threading
from typing import Any, Callable

from agora.errors import ConflictError, NotFoundError
from agora.models import (
    AgentProfile,
    Booking,
    BookingStatus,
    PaymentProof,
    PaymentState,
    Price,
    Quote,
    SLAPerformance,
    SLAPromise,
    Tier,
    TierAvailability,
    now_ms,
)
from agora.payments import payment_summary, record_settlement
from agora.reputation import ReputationPolicy
from agora.store import check_bookable, parse_tier
from agora.tiers import calculate_sla_performance

logger = logging.getLogger(__name__)

DEFAULT_TTL_MS = 60 * 60 * 1000
DEFAULT_PRICE = Price(base_fee="0.01", asset="USDC", chain="base-sepolia")

_ID_ALPHABET = string.ascii_lowercase + string.digits
_ID_SUFFIX_LENGTH = 9

PROGRESS = {
    BookingStatus.RESERVED: (0, "Slot reserved, awaiting payment or execution"),
    BookingStatus.PAID: (50, "Payment verified, agent is processing your request"),
    BookingStatus.COMPLETED: (100, "Completed"),
    BookingStatus.FAILED: (100, "Failed"),
    BookingStatus.EXPIRED: (100, "Expired before completion; slot released"),
}


def resolve_price(agent: AgentProfile, capability: str, tier: Tier) -> Price:
    """Tier price, else the capability's flat price, else the registry default."""
    tiered = agent.tiered_pricing.get(capability, {}).get(tier.value)
    if tiered is not None:
        return tiered
    return agent.pricing.get(capability) or DEFAULT_PRICE


def _sla(availability: TierAvailability) -> SLAPromise:
    return SLAPromise(response_sla=availability.response_sla, uptime=availability.uptime)


class BookingManager:
    """
    Creates and tracks bookings against an AgentStore.

    The store owns slot counts; this class owns booking records and their
    status transitions, which happen under a single manager-level lock.
    """

    def __init__(
        self,
        store,
        clock: Callable[[], int] = now_ms,
        ttl_ms: int = DEFAULT_TTL_MS,
        reputation: ReputationPolicy | None = None,
    ):
        self._store = store
        self._clock = clock
        self._ttl_ms = ttl_ms
        self.reputation = reputation or ReputationPolicy(store)
        self._bookings: dict[str, Booking] = {}
        self._lock = threading.Lock()

    # -------------------------------------------------------------------------
    # Quotes & bookings
    # -------------------------------------------------------------------------

    def quote(self, agent_id: str, tier: Tier | str, capability: str) -> Quote:
        """Price and SLA for a booking, with the same checks and no reservation."""
        tier = parse_tier(tier)
        self.expire_due()
        agent = self._store.get_by_id(agent_id)
        if agent is None:
            raise NotFoundError("Agent not found", details={"agentId": agent_id})
        availability = check_bookable(agent, tier, capability)
        return Quote(
            agent_id=agent.id,
            tier=tier,
            capability=capability,
            pricing=resolve_price(agent, capability, tier),
            sla=_sla(availability),
            next_available=availability.next_available,
        )

    def book(
        self,
        agent_id: str,
        tier: Tier | str,
        capability: str,
        request_data: Any = None,
        payment: PaymentProof | None = None,
    ) -> Booking:
        """
        Reserve a slot and open a booking.

        Raises:
            NotFoundError: unknown agent
            ValidationError: tier or capability not offered
            ConflictError: tier at capacity (details carry nextAvailable)
        """
        tier = parse_tier(tier)
        self.expire_due()

        agent = self._store.reserve_slot(agent_id, tier, capability)
        availability = agent.availability(tier)
        now = self._clock()

        with self._lock:
            booking = Booking(
                booking_id=self._new_id(now),
                agent_id=agent.id,
                agent={"id": agent.id, "name": agent.name, "emoji": agent.emoji},
                tier=tier,
                capability=capability,
                pricing=resolve_price(agent, capability, tier),
                sla=_sla(availability),
                created_at=now,
                expiry_time=now + self._ttl_ms,
                request_data=request_data,
            )
            if payment is not None:
                booking.status = BookingStatus.PAID
                booking.payment = payment_summary(payment)
            self._bookings[booking.booking_id] = booking

        logger.info(
            "Booking %s created for %s (%s tier, %s/%s slots)",
            booking.booking_id,
            agent.name,
            tier.value,
            availability.slots_filled,
            availability.slots,
        )
        return booking.model_copy(deep=True)

    def _new_id(self, now: int) -> str:
        # Caller holds self._lock.
        while True:
            suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(_ID_SUFFIX_LENGTH))
            booking_id = f"{now}-{suffix}"
            if booking_id not in self._bookings:
                return booking_id

    def get_booking(self, booking_id: str, agent_id: str | None = None) -> Booking:
        self.expire_due()
        with self._lock:
            booking = self._bookings.get(booking_id)
            if booking is None or (agent_id is not None and booking.agent_id != agent_id):
                raise NotFoundError("Booking not found", details={"bookingId": booking_id})
            return booking.model_copy(deep=True)

    def list_bookings(self, agent_id: str | None = None) -> list[Booking]:
        self.expire_due()
        with self._lock:
            return [
                b.model_copy(deep=True)
                for b in self._bookings.values()
                if agent_id is None or b.agent_id == agent_id
            ]

    @staticmethod
    def progress(booking: Booking) -> tuple[int, str]:
        return PROGRESS[booking.status]

    # -------------------------------------------------------------------------
    # Status transitions
    # -------------------------------------------------------------------------

    def mark_paid(self, booking_id: str, proof: PaymentProof) -> Booking:
        with self._lock:
            booking = self._open_booking(booking_id)
            if booking.status != BookingStatus.RESERVED:
                raise ConflictError(f"Booking is already {booking.status.value}")
            booking.status = BookingStatus.PAID
            booking.payment = payment_summary(proof)
            return booking.model_copy(deep=True)

    def complete(
        self,
        booking_id: str,
        success: bool = True,
        execution_time_ms: int | None = None,
        transaction_hash: str | None = None,
    ) -> Booking:
        """
        Close a booking with the specialist's outcome.

        Releases the slot, scores the agent against the booked SLA,
        refreshes its heartbeat and, when a transaction hash is supplied,
        records the settlement.
        """
        with self._lock:
            booking = self._open_booking(booking_id)
            booking.status = BookingStatus.COMPLETED if success else BookingStatus.FAILED

        self._store.release_slot(booking.agent_id, booking.tier)

        performance: SLAPerformance | None = None
        if execution_time_ms is not None:
            performance = calculate_sla_performance(booking.tier, execution_time_ms, expected_ms=booking.sla.response_sla)

        settlement = None
        if transaction_hash:
            amount = (booking.payment or {}).get("amount", booking.pricing.base_fee)
            network = (booking.payment or {}).get("network", booking.pricing.chain)
            settlement = record_settlement(booking.booking_id, booking.agent_id, transaction_hash, network, amount)

        try:
            self.reputation.record(booking.agent_id, booking.booking_id, success, performance)
            self._store.update_heartbeat(booking.agent_id)
        except NotFoundError:
            logger.warning("Agent %s vanished before booking %s completed", booking.agent_id, booking.booking_id)

        with self._lock:
            booking.sla_performance = performance
            if settlement is not None:
                booking.transaction_hash = settlement.transaction_hash
                booking.payment = {
                    **(booking.payment or {}),
                    "state": PaymentState.SETTLED.value,
                    "explorerUrl": settlement.explorer_url,
                }
            result = booking.model_copy(deep=True)

        logger.info(
            "Booking %s %s%s",
            booking_id,
            booking.status.value,
            f" ({performance.message})" if performance else "",
        )
        return result

    def _open_booking(self, booking_id: str) -> Booking:
        # Caller holds self._lock.
        booking = self._bookings.get(booking_id)
        if booking is None:
            raise NotFoundError("Booking not found", details={"bookingId": booking_id})
        if not booking.is_open:
            raise ConflictError(f"Booking is already {booking.status.value}")
        return booking

    def expire_due(self) -> list[str]:
        """
        Expire open bookings past their expiry time and free their slots.
        Closed bookings are forgotten one TTL after they expire.

        Returns:
            Ids expired by this call
        """
        now = self._clock()
        expired: list[Booking] = []
        with self._lock:
            for booking_id, booking in list(self._bookings.items()):
                if booking.is_open and booking.expiry_time <= now:
                    booking.status = BookingStatus.EXPIRED
                    expired.append(booking)
                elif not booking.is_open and booking.expiry_time + self._ttl_ms <= now:
                    del self._bookings[booking_id]

        for booking in expired:
            self._store.release_slot(booking.agent_id, booking.tier)
        if expired:
            logger.info("Expired %d bookings", len(expired))
        return [b.booking_id for b in expired]
