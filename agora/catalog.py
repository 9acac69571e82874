"""
Agora Core Agents — the pre-seeded, always-on specialists.

Core agents are present in every store regardless of persistence, take
part in discovery like any other agent and are never reported stale.
"""

from __future__ import annotations

from agora.models import AgentProfile, AgentType, now_ms


def _price(fee: str, chain: str = "base-sepolia") -> dict:
    return {"baseFee": fee, "asset": "USDC", "chain": chain}


def _tiers(basic: tuple, pro: tuple, premium: tuple) -> dict:
    """Each tuple: (slots, slots_filled, response_sla_ms, uptime)."""
    table = {}
    for name, (slots, filled, sla, uptime) in (("basic", basic), ("pro", pro), ("premium", premium)):
        table[name] = {
            "tier": name,
            "slots": slots,
            "slotsFilled": filled,
            "responseSLA": sla,
            "uptime": uptime,
        }
    return table


_CORE_AGENT_DATA = [
    {
        "id": "agent-fitness-core-01",
        "name": "Imperfect Coach Core",
        "emoji": "💪",
        "role": "coordinator",
        "description": "Primary fitness analysis agent.",
        "location": "EU-North-1",
        "capabilities": ["fitness_analysis", "benchmark_analysis"],
        "pricing": {
            "fitness_analysis": _price("0.05"),
            "benchmark_analysis": _price("0.02"),
        },
        "tieredPricing": {
            "fitness_analysis": {
                "basic": _price("0.02"),
                "pro": _price("0.05"),
                "premium": _price("0.10"),
            },
        },
        "endpoint": "https://viaqmsudab.execute-api.eu-north-1.amazonaws.com/analyze-workout",
        "reputationScore": 98,
        "successRate": 0.98,
        "tags": ["official", "core"],
        "serviceAvailability": _tiers((100, 23, 8000, 99.5), (50, 15, 3000, 99.8), (20, 5, 500, 99.9)),
    },
    {
        "id": "agent-nutrition-planner-01",
        "name": "Nutrition Planner",
        "emoji": "🥗",
        "role": "specialist",
        "description": "Specialized in post-workout nutrition plans.",
        "location": "US-West-2",
        "capabilities": ["nutrition_planning"],
        "pricing": {"nutrition_planning": _price("0.03")},
        "tieredPricing": {
            "nutrition_planning": {
                "basic": _price("0.01"),
                "pro": _price("0.025"),
                "premium": _price("0.05"),
            },
        },
        "endpoint": "https://viaqmsudab.execute-api.eu-north-1.amazonaws.com/nutrition-agent",
        "reputationScore": 95,
        "successRate": 0.95,
        "tags": ["official", "nutrition", "core"],
        "serviceAvailability": _tiers((150, 45, 7000, 99.2), (60, 20, 2500, 99.6), (25, 8, 600, 99.8)),
    },
    {
        "id": "agent-recovery-planner-01",
        "name": "Recovery Planner",
        "emoji": "😴",
        "role": "specialist",
        "description": "Recovery optimization, sleep and fatigue management.",
        "location": "EU-West-1",
        "capabilities": ["recovery_planning"],
        "pricing": {"recovery_planning": _price("0.05")},
        "tieredPricing": {
            "recovery_planning": {
                "basic": _price("0.02"),
                "pro": _price("0.05"),
                "premium": _price("0.10"),
            },
        },
        "endpoint": "https://viaqmsudab.execute-api.eu-north-1.amazonaws.com/recovery-agent",
        "reputationScore": 94,
        "successRate": 0.94,
        "tags": ["official", "recovery", "core"],
        "serviceAvailability": _tiers((120, 38, 8000, 99.4), (50, 17, 3000, 99.7), (20, 6, 600, 99.9)),
    },
    {
        "id": "agent-biomechanics-01",
        "name": "Biomechanics Analyst",
        "emoji": "🏋️",
        "role": "specialist",
        "description": "Form analysis and movement quality assessment from pose data.",
        "location": "US-East-1",
        "capabilities": ["biomechanics_analysis"],
        "pricing": {"biomechanics_analysis": _price("0.08")},
        "tieredPricing": {
            "biomechanics_analysis": {
                "basic": _price("0.04"),
                "pro": _price("0.08"),
                "premium": _price("0.15"),
            },
        },
        "endpoint": "https://viaqmsudab.execute-api.eu-north-1.amazonaws.com/biomechanics-agent",
        "reputationScore": 96,
        "successRate": 0.96,
        "tags": ["official", "biomechanics", "core"],
        "serviceAvailability": _tiers((100, 30, 8500, 99.6), (50, 18, 3200, 99.8), (20, 7, 700, 99.9)),
    },
    {
        "id": "agent-massage-booking-01",
        "name": "Recovery Booking",
        "emoji": "💆",
        "role": "utility",
        "description": "Books massage and physiotherapy sessions.",
        "location": "Asia-Pacific",
        "capabilities": ["massage_booking"],
        "pricing": {"massage_booking": _price("0.50", "avalanche-c-chain")},
        "tieredPricing": {
            "massage_booking": {
                "basic": _price("0.25", "avalanche-c-chain"),
                "pro": _price("0.50", "avalanche-c-chain"),
                "premium": _price("1.00", "avalanche-c-chain"),
            },
        },
        "endpoint": "https://viaqmsudab.execute-api.eu-north-1.amazonaws.com/booking-agent",
        "reputationScore": 92,
        "successRate": 0.92,
        "tags": ["partner", "booking", "core"],
        "serviceAvailability": _tiers((200, 67, 10000, 98.8), (80, 25, 4000, 99.4), (30, 10, 1000, 99.7)),
    },
]


def core_agents() -> list[AgentProfile]:
    """Fresh core agent records, stamped with the current time."""
    now = now_ms()
    agents = []
    for data in _CORE_AGENT_DATA:
        agent = AgentProfile.model_validate(
            {**data, "type": AgentType.CORE, "lastHeartbeat": now, "registeredAt": now}
        )
        agents.append(agent)
    return agents
