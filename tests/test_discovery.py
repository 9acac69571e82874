"""
Tests for discovery and liveness:
  - Capability match, filters and ordering
  - Core agents always present, never stale
  - Stale classification vs eviction
"""

import pytest

from agora.discovery import DiscoveryFilters, discover
from agora.liveness import LivenessMonitor
from agora.models import AgentStatus
from agora.store import AgentStore
from conftest import nutrition_profile


HOUR_MS = 60 * 60 * 1000


class TestDiscover:
    def setup_method(self):
        self.store = AgentStore()
        self.store.register(nutrition_profile("agent-a"))

    def test_tier_scenario(self):
        results = discover("nutrition_planning", self.store, {"tier": "pro"})
        ids = [a.id for a in results]
        assert "agent-a" in ids
        # Core planner has reputation 95, agent-a starts at 50
        assert ids == ["agent-nutrition-planner-01", "agent-a"]

    def test_sorted_by_reputation(self):
        results = discover(None, self.store)
        scores = [a.reputation_score for a in results]
        assert scores == sorted(scores, reverse=True)

    def test_min_reputation(self):
        results = discover("nutrition_planning", self.store, DiscoveryFilters(min_reputation=80))
        assert results
        assert all(a.reputation_score >= 80 for a in results)
        assert "agent-a" not in [a.id for a in results]

    def test_ties_break_on_sla_then_id(self):
        self.store.register(nutrition_profile("agent-c"))
        fast = nutrition_profile("agent-b")
        fast["serviceAvailability"]["pro"]["responseSLA"] = 1000
        self.store.register(fast)

        ids = [a.id for a in discover("nutrition_planning", self.store, {"tier": "pro"}) if a.reputation_score == 50]
        assert ids == ["agent-b", "agent-a", "agent-c"]

    def test_full_tier_excluded(self):
        for _ in range(2):
            self.store.reserve_slot("agent-a", "premium", "nutrition_planning")
        ids = [a.id for a in discover("nutrition_planning", self.store, {"tier": "premium"})]
        assert "agent-a" not in ids
        assert "agent-nutrition-planner-01" in ids

    def test_max_response_time_with_tier(self):
        results = discover("nutrition_planning", self.store, {"tier": "pro", "max_response_time": 2000})
        assert [a.id for a in results] == ["agent-a"]

    def test_max_response_time_uses_fastest_tier(self):
        self.store.register({"id": "no-tiers", "endpoint": "https://x", "capabilities": ["nutrition_planning"]})
        ids = [a.id for a in discover("nutrition_planning", self.store, {"max_response_time": 500})]
        assert "agent-a" in ids  # premium at 400ms
        assert "no-tiers" not in ids
        assert "agent-nutrition-planner-01" not in ids  # fastest is 600ms

    def test_inactive_excluded(self):
        self.store.deactivate("agent-a")
        assert "agent-a" not in [a.id for a in discover("nutrition_planning", self.store)]

    def test_unknown_capability_is_empty(self):
        assert discover("teleportation", self.store) == []

    def test_no_capability_returns_everyone_active(self):
        assert len(discover(None, self.store)) == 6

    def test_invalid_tier_filter(self):
        with pytest.raises(ValueError):
            discover(None, self.store, {"tier": "gold"})


class TestLiveness:
    def setup_method(self):
        self.clock_now = 1_700_000_000_000
        self.store = AgentStore(clock=lambda: self.clock_now)
        self.store.register(nutrition_profile("agent-a"))
        self.monitor = LivenessMonitor(self.store, clock=lambda: self.clock_now)

    def test_fresh_agents_are_not_stale(self):
        assert self.monitor.find_stale_agents(HOUR_MS) == []

    def test_stale_after_threshold(self):
        self.clock_now += HOUR_MS + 1
        assert self.monitor.find_stale_agents(HOUR_MS) == ["agent-a"]

    def test_core_agents_never_stale(self):
        self.clock_now += 365 * 24 * HOUR_MS
        stale = self.monitor.find_stale_agents(1)
        assert stale == ["agent-a"]

    def test_classification_does_not_deactivate(self):
        self.clock_now += 2 * HOUR_MS
        self.monitor.find_stale_agents(HOUR_MS)
        assert self.store.get_by_id("agent-a").status == AgentStatus.ACTIVE

    def test_evict_then_heartbeat(self):
        self.clock_now += 2 * HOUR_MS
        assert self.monitor.evict_stale(HOUR_MS) == ["agent-a"]
        assert self.store.get_by_id("agent-a").status == AgentStatus.INACTIVE
        assert self.monitor.evict_stale(HOUR_MS) == []

        self.store.update_heartbeat("agent-a")
        assert self.store.get_by_id("agent-a").status == AgentStatus.ACTIVE
        assert self.monitor.find_stale_agents(HOUR_MS) == []
