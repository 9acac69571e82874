"""
Agora Discovery — capability search over the live registry.

Filters are hard constraints: an agent that misses any of them is left out,
even when that leaves the result empty. Core agents live in the store's
memory from construction, so discovery still answers with them when the
persistence layer is unreachable.
"""

from __future__ import annotations

import logging
from typing import Optional

from pydantic import Field

from agora.models import AgentProfile, AgentStatus, Tier, WireModel

logger = logging.getLogger(__name__)


class DiscoveryFilters(WireModel):
    min_reputation: Optional[int] = Field(None, ge=0, le=100)
    tier: Optional[Tier] = None
    max_response_time: Optional[int] = Field(None, gt=0, description="Milliseconds")


def _matched_sla(agent: AgentProfile, tier: Tier | None) -> int | None:
    """SLA the caller would get: the requested tier, else the agent's fastest."""
    if tier is not None:
        availability = agent.availability(tier)
        return availability.response_sla if availability else None
    return agent.fastest_sla()


def _accepts(agent: AgentProfile, capability: str | None, filters: DiscoveryFilters) -> bool:
    if agent.status != AgentStatus.ACTIVE:
        return False
    if capability and not agent.offers(capability):
        return False
    if filters.min_reputation is not None and agent.reputation_score < filters.min_reputation:
        return False

    if filters.tier is not None:
        availability = agent.availability(filters.tier)
        if availability is None or not availability.has_capacity:
            return False

    if filters.max_response_time is not None:
        sla = _matched_sla(agent, filters.tier)
        if sla is None or sla > filters.max_response_time:
            return False

    return True


def discover(
    capability: str | None,
    store,
    filters: DiscoveryFilters | dict | None = None,
) -> list[AgentProfile]:
    """
    Find active agents offering a capability.

    Args:
        capability: Exact capability tag; None or empty returns every agent
        store: AgentStore (anything with get_all())
        filters: min_reputation, tier and max_response_time constraints

    Returns:
        Matching agents, best first: reputation descending, then the
        matched tier's SLA ascending, then id.
    """
    if filters is None:
        filters = DiscoveryFilters()
    elif isinstance(filters, dict):
        filters = DiscoveryFilters.model_validate(filters)

    results = [a for a in store.get_all() if _accepts(a, capability, filters)]

    def rank(agent: AgentProfile):
        sla = _matched_sla(agent, filters.tier)
        return (-agent.reputation_score, sla if sla is not None else float("inf"), agent.id)

    results.sort(key=rank)
    logger.debug("discover(%s, %s) -> %d agents", capability, filters.model_dump(exclude_none=True), len(results))
    return results
