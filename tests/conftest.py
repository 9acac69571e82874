import pytest
from eth_account import Account
from solders.keypair import Keypair

from agora_sdk.signers import EvmSigner, SolanaSigner


class FakeClock:
    """Millisecond clock the tests move by hand."""

    def __init__(self, now: int = 1_700_000_000_000):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


def nutrition_profile(agent_id: str = "agent-a", **overrides) -> dict:
    """A dynamic nutrition agent: pro tier priced 0.03 with a 2000ms SLA."""
    profile = {
        "id": agent_id,
        "name": f"Agent {agent_id}",
        "endpoint": f"https://{agent_id}.example.com/run",
        "capabilities": ["nutrition_planning"],
        "pricing": {"nutrition_planning": {"baseFee": "0.02", "asset": "USDC", "chain": "base-sepolia"}},
        "tieredPricing": {
            "nutrition_planning": {
                "basic": {"baseFee": "0.01", "asset": "USDC", "chain": "base-sepolia"},
                "pro": {"baseFee": "0.03", "asset": "USDC", "chain": "base-sepolia"},
            },
        },
        "serviceAvailability": {
            "basic": {"slots": 10, "slotsFilled": 0, "responseSLA": 8000, "uptime": 99.0},
            "pro": {"slots": 5, "slotsFilled": 0, "responseSLA": 2000, "uptime": 99.5},
            "premium": {"slots": 2, "slotsFilled": 0, "responseSLA": 400, "uptime": 99.9},
        },
    }
    profile.update(overrides)
    return profile


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def evm_signer() -> EvmSigner:
    return EvmSigner(Account.create().key)


@pytest.fixture()
def solana_signer() -> SolanaSigner:
    return SolanaSigner(Keypair())
