"""
Agora Persistence Gateway — the external key-value collaborator.

The store only needs get/put/scan over agent records keyed by agent id,
plus a secondary lookup by owner. Two implementations ship:

  - InMemoryGateway: process-local, used for tests and offline runs
  - SupabaseGateway: PostgREST table over httpx (one row per agent)

Gateways raise UpstreamError on failure; the store decides what to do
about it (log and carry on).
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Protocol

import httpx

from agora.errors import UpstreamError
from agora.models import AgentProfile, AgentType

logger = logging.getLogger(__name__)


class PersistenceGateway(Protocol):
    def get(self, agent_id: str) -> AgentProfile | None:
        ...

    def put(self, profile: AgentProfile) -> None:
        ...

    def scan(self, agent_type: AgentType | None = None) -> list[AgentProfile]:
        ...

    def scan_by_owner(self, owner: str) -> list[AgentProfile]:
        ...


def _record(profile: AgentProfile) -> dict[str, Any]:
    return profile.model_dump(mode="json", by_alias=True, exclude={"verified"})


# =============================================================================
# In-memory
# =============================================================================

class InMemoryGateway:
    """Dictionary-backed gateway. Stores serialized records, not live objects."""

    def __init__(self):
        self._rows: dict[str, dict[str, Any]] = {}
        self._owner_index: dict[str, set[str]] = {}
        self._lock = threading.Lock()

    def get(self, agent_id: str) -> AgentProfile | None:
        with self._lock:
            row = self._rows.get(agent_id)
        return AgentProfile.model_validate(row) if row else None

    def put(self, profile: AgentProfile) -> None:
        row = _record(profile)
        with self._lock:
            previous = self._rows.get(profile.id)
            if previous and previous.get("owner"):
                self._owner_index.get(previous["owner"], set()).discard(profile.id)
            self._rows[profile.id] = row
            if profile.owner:
                self._owner_index.setdefault(profile.owner, set()).add(profile.id)

    def scan(self, agent_type: AgentType | None = None) -> list[AgentProfile]:
        with self._lock:
            rows = list(self._rows.values())
        profiles = [AgentProfile.model_validate(row) for row in rows]
        if agent_type is not None:
            profiles = [p for p in profiles if p.type == agent_type]
        return profiles

    def scan_by_owner(self, owner: str) -> list[AgentProfile]:
        with self._lock:
            rows = [self._rows[i] for i in sorted(self._owner_index.get(owner, set()))]
        return [AgentProfile.model_validate(row) for row in rows]

    def __len__(self) -> int:
        return len(self._rows)


# =============================================================================
# Supabase (PostgREST)
# =============================================================================

class SupabaseGateway:
    """
    Agent rows in a Supabase table.

    Expected columns: id (text, primary key), owner (text, indexed),
    type (text), data (jsonb holding the full profile).
    """

    def __init__(self, url: str, key: str, table: str = "agents", timeout: float = 10.0):
        self._base = f"{url.rstrip('/')}/rest/v1/{table}"
        self._headers = {
            "apikey": key,
            "Authorization": f"Bearer {key}",
            "Content-Type": "application/json",
        }
        self._client = httpx.Client(timeout=timeout, headers=self._headers)

    def _select(self, params: dict[str, str]) -> list[AgentProfile]:
        try:
            r = self._client.get(self._base, params={"select": "data", **params})
            r.raise_for_status()
        except httpx.HTTPError as e:
            raise UpstreamError("Supabase", str(e)) from e
        return [AgentProfile.model_validate(row["data"]) for row in r.json()]

    def get(self, agent_id: str) -> AgentProfile | None:
        rows = self._select({"id": f"eq.{agent_id}"})
        return rows[0] if rows else None

    def put(self, profile: AgentProfile) -> None:
        payload = {
            "id": profile.id,
            "owner": profile.owner,
            "type": profile.type.value,
            "data": _record(profile),
        }
        try:
            r = self._client.post(
                self._base,
                json=payload,
                headers={"Prefer": "resolution=merge-duplicates,return=minimal"},
            )
            r.raise_for_status()
        except httpx.HTTPError as e:
            raise UpstreamError("Supabase", str(e)) from e

    def scan(self, agent_type: AgentType | None = None) -> list[AgentProfile]:
        params = {"type": f"eq.{agent_type.value}"} if agent_type else {}
        return self._select(params)

    def scan_by_owner(self, owner: str) -> list[AgentProfile]:
        return self._select({"owner": f"eq.{owner}"})

    def close(self) -> None:
        self._client.close()
