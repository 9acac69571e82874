"""
Agora SDK — Wallet Signers

A signer holds one chain identity and produces the two proofs the
registry checks: the registration identity proof and x402 payment
authorizations.

Usage:
    signer = EvmSigner(private_key_hex)
    timestamp, signature = signer.identity_proof("my-agent", "https://...")

    signer = SolanaSigner(Keypair())
    proof = signer.payment_proof(challenge["accepts"][1])
"""

from __future__ import annotations

import secrets
from typing import Protocol

from eth_account import Account
from eth_account.messages import encode_defunct
from solders.keypair import Keypair

from agora.models import Chain, PaymentProof, now_ms
from agora.payments import payment_message
from agora.signatures import identity_message


class Signer(Protocol):
    chain: Chain
    address: str

    def sign_message(self, message: str) -> str:
        ...


def supports_network(signer: Signer, network: str) -> bool:
    is_solana = network.startswith("solana")
    return is_solana == (signer.chain == Chain.SOLANA)


class _ProofMixin:
    chain: Chain
    address: str

    def sign_message(self, message: str) -> str:
        raise NotImplementedError

    def identity_proof(self, agent_id: str, endpoint: str, timestamp: int | None = None) -> tuple[int, str]:
        """Sign the registration message; returns (timestamp, signature)."""
        timestamp = timestamp if timestamp is not None else now_ms()
        return timestamp, self.sign_message(identity_message(agent_id, endpoint, timestamp))

    def payment_proof(self, requirement: dict, nonce: str | None = None, timestamp: int | None = None) -> PaymentProof:
        """Authorize one accepted payment option from a 402 challenge."""
        fields = {
            "scheme": requirement["scheme"],
            "network": requirement["network"],
            "asset": requirement["asset"],
            "amount": requirement.get("maxAmountRequired") or requirement["amount"],
            "payTo": requirement["payTo"],
            "timestamp": timestamp if timestamp is not None else now_ms(),
            "nonce": nonce or secrets.token_hex(16),
        }
        message = payment_message(fields)
        return PaymentProof.model_validate({
            **fields,
            "payer": self.address,
            "signature": self.sign_message(message),
            "message": message,
        })


class EvmSigner(_ProofMixin):
    """EIP-191 personal-message signer backed by an eth-account key."""

    chain = Chain.EVM

    def __init__(self, private_key: str | bytes):
        self._account = Account.from_key(private_key)
        self.address = self._account.address

    def sign_message(self, message: str) -> str:
        signed = self._account.sign_message(encode_defunct(text=message))
        return "0x" + bytes(signed.signature).hex()


class SolanaSigner(_ProofMixin):
    """Ed25519 signer; signatures are base58 encoded."""

    chain = Chain.SOLANA

    def __init__(self, keypair: Keypair):
        self._keypair = keypair
        self.address = str(keypair.pubkey())

    def sign_message(self, message: str) -> str:
        return str(self._keypair.sign_message(message.encode("utf-8")))
