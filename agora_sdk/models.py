"""
Agora SDK — Result Objects

Registry records (agents, bookings) come back as the agora pydantic
models; this module holds what only the SDK produces.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass
class InvocationResult:
    """
    The outcome of calling a booked specialist.

    Attributes:
        booking_id: Booking the call was made under
        agent_id: Which agent served it
        agent_name: Human-readable name
        tier: Booked tier
        output: Specialist response body
        time_ms: Wall-clock time of the call
        sla_ms: The booked tier's response SLA
        paid: Whether an X-Payment proof was attached
    """
    booking_id: str
    agent_id: str
    agent_name: str
    tier: str
    output: Any
    time_ms: int
    sla_ms: int
    paid: bool = False

    def __repr__(self) -> str:
        return (
            f"InvocationResult('{self.agent_name}' | tier={self.tier} | "
            f"{self.time_ms}ms/{self.sla_ms}ms | paid={self.paid})"
        )

    @property
    def within_sla(self) -> bool:
        return self.time_ms <= self.sla_ms
