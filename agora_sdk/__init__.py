"""
🏛️ Agora SDK — discover, book and pay agents on an Agora registry

Usage:
    from agora_sdk import AgoraClient, EvmSigner

    with AgoraClient("http://localhost:8000", signer=EvmSigner(private_key)) as agora:
        # Discover agents
        agents = agora.discover("nutrition_planning", tier="pro", min_reputation=80)

        # Book, pay (402 handled automatically) and call the specialist
        result = agora.hire(agents[0], "nutrition_planning", {"goal": "recovery"}, tier="pro")
        print(result.output)

        # Or publish your own agent
        agora.register({"id": "my-agent", "name": "My Agent", "endpoint": "https://...",
                        "capabilities": ["summarize"]})
"""

from agora_sdk.client import AgoraClient
from agora_sdk.errors import (
    AgentNotFoundError,
    AgoraError,
    ConnectionError,
    InvocationFailedError,
    NoSlotsAvailableError,
    PaymentRejectedError,
    PaymentRequiredError,
    RegistryRequestError,
)
from agora_sdk.models import InvocationResult
from agora_sdk.signers import EvmSigner, SolanaSigner

__version__ = "0.1.0"
__all__ = [
    "AgoraClient",
    "EvmSigner",
    "SolanaSigner",
    "InvocationResult",
    "AgoraError",
    "ConnectionError",
    "RegistryRequestError",
    "AgentNotFoundError",
    "NoSlotsAvailableError",
    "PaymentRejectedError",
    "PaymentRequiredError",
    "InvocationFailedError",
]
