"""
Agora Reputation Policy — bounded scoring from booking outcomes.

Agents earn reputation by completing bookings inside their SLA. Failures
are penalized more heavily than successes are rewarded, and a completed
booking that breaches its SLA costs a point instead of earning any. The
store clamps the result to [0, 100]; this module decides the delta and
keeps the audit trail.
"""

from __future__ import annotations

import math
import threading

from agora.models import ReputationUpdate, SLAPerformance


# Tuning constants
BASE_REWARD = 2           # Points gained on an in-SLA success
SLA_BREACH_PENALTY = 1    # Points lost on a late success
BASE_PENALTY = 3          # Points lost on failure (before multiplier)
FAILURE_MULTIPLIER = 1.5  # Failures hurt 1.5x more


class ReputationPolicy:
    """
    Turns booking outcomes into reputation changes.

    Score formula:
        SUCCESS, within SLA: +BASE_REWARD
        SUCCESS, SLA breach: -SLA_BREACH_PENALTY
        FAILURE:             -ceil(BASE_PENALTY x FAILURE_MULTIPLIER)
    """

    def __init__(self, store):
        self._store = store
        self._history: list[ReputationUpdate] = []
        self._stats: dict[str, dict] = {}  # agent_id -> {total, successes, failures, breaches}
        self._lock = threading.Lock()

    @staticmethod
    def delta(success: bool, sla: SLAPerformance | None = None) -> int:
        if not success:
            return -math.ceil(BASE_PENALTY * FAILURE_MULTIPLIER)
        if sla is not None and not sla.within_sla:
            return -SLA_BREACH_PENALTY
        return BASE_REWARD

    def record(self, agent_id: str, booking_id: str, success: bool, sla: SLAPerformance | None = None) -> ReputationUpdate:
        """Apply one booking outcome to the agent's stored score."""
        old_score, new_score = self._store.adjust_reputation(agent_id, self.delta(success, sla))
        self._store.record_outcome(agent_id, success)

        update = ReputationUpdate(
            agent_id=agent_id,
            old_score=old_score,
            new_score=new_score,
            booking_id=booking_id,
            success=success,
        )
        with self._lock:
            self._history.append(update)
            stats = self._stats.setdefault(agent_id, {"total": 0, "successes": 0, "failures": 0, "breaches": 0})
            stats["total"] += 1
            stats["successes" if success else "failures"] += 1
            if sla is not None and not sla.within_sla:
                stats["breaches"] += 1
        return update

    def get_stats(self, agent_id: str) -> dict:
        with self._lock:
            return dict(self._stats.get(agent_id, {"total": 0, "successes": 0, "failures": 0, "breaches": 0}))

    def get_history(self, agent_id: str | None = None) -> list[ReputationUpdate]:
        """Reputation change history, optionally filtered by agent."""
        with self._lock:
            if agent_id:
                return [u for u in self._history if u.agent_id == agent_id]
            return list(self._history)

    def get_leaderboard(self, top_n: int = 10) -> list[tuple[str, int]]:
        """Top N agents by current reputation score."""
        ranked = sorted(self._store.get_all(), key=lambda a: (-a.reputation_score, a.id))
        return [(a.id, a.reputation_score) for a in ranked[:top_n]]
