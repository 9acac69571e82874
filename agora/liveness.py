"""
Agora Liveness Monitor — which dynamic agents have gone quiet.

Classification and eviction are separate steps: find_stale_agents only
reports, evict_stale acts on a report. Core agents are operated by the
registry itself and are never considered stale.
"""

from __future__ import annotations

import logging
from typing import Callable

from agora.models import AgentStatus, AgentType, now_ms

logger = logging.getLogger(__name__)

DEFAULT_STALE_THRESHOLD_MS = 60 * 60 * 1000


class LivenessMonitor:
    def __init__(self, store, clock: Callable[[], int] = now_ms):
        self._store = store
        self._clock = clock

    def find_stale_agents(self, threshold_ms: int = DEFAULT_STALE_THRESHOLD_MS) -> list[str]:
        """Ids of dynamic agents whose last heartbeat is older than the threshold."""
        now = self._clock()
        return [
            agent.id
            for agent in self._store.get_by_type(AgentType.DYNAMIC)
            if now - agent.last_heartbeat > threshold_ms
        ]

    def evict_stale(self, threshold_ms: int = DEFAULT_STALE_THRESHOLD_MS) -> list[str]:
        """
        Deactivate every stale agent that is still active.

        Agents come back to discovery with their next heartbeat.

        Returns:
            Ids that were deactivated by this call
        """
        evicted = []
        for agent_id in self.find_stale_agents(threshold_ms):
            agent = self._store.get_by_id(agent_id)
            if agent is None or agent.status != AgentStatus.ACTIVE:
                continue
            self._store.deactivate(agent_id)
            evicted.append(agent_id)

        if evicted:
            logger.info("Evicted %d stale agents: %s", len(evicted), ", ".join(evicted))
        return evicted
