"""
Agora Signature Verification — multi-chain identity proofs.

Supports:
  - EIP-191 personal-message signatures (EVM chains: Ethereum, Base, Avalanche)
  - Ed25519 detached signatures (Solana)

The same primitive checks registration identity proofs and x402 payment
authorizations. It never raises: every failure, including malformed input
and unsupported chains, comes back as VerificationResult(verified=False)
with a reason the caller can hand back as a hint.

Usage:
    result = verify("evm", "0xAbC...", message, "0x1b2c...")
    result = verify("solana", "9xQe...", message, signature_b58)
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
import re
from typing import Protocol

from eth_account import Account
from eth_account.messages import encode_defunct
from solders.pubkey import Pubkey
from solders.signature import Signature

from agora.models import Chain, VerificationResult

logger = logging.getLogger(__name__)

EVM_SIGNATURE_BYTES = 65
ED25519_SIGNATURE_BYTES = 64

_EVM_ADDRESS = re.compile(r"^0x[0-9a-fA-F]{40}$")
_HEX = re.compile(r"^(0x)?[0-9a-fA-F]+$")


def preview(value: str | None, keep: int = 8) -> str:
    """Shorten identities and signatures for log lines."""
    if not value:
        return "<none>"
    return value if len(value) <= keep * 2 else f"{value[:keep]}...{value[-4:]}"


def _ok() -> VerificationResult:
    return VerificationResult(verified=True)


def _fail(reason: str) -> VerificationResult:
    return VerificationResult(verified=False, reason=reason)


# =============================================================================
# Chain Verifiers
# =============================================================================

class ChainVerifier(Protocol):
    """One implementation per chain family."""

    chain: Chain

    def verify(self, message: str, signature: str, identity: str) -> VerificationResult:
        ...


class EvmVerifier:
    """EIP-191 recovery: the recovered address must equal the claimed signer."""

    chain = Chain.EVM

    def verify(self, message: str, signature: str, identity: str) -> VerificationResult:
        if not _EVM_ADDRESS.match(identity or ""):
            return _fail("EVM signer must be a 0x-prefixed 20-byte hex address")
        if not _HEX.match(signature or ""):
            return _fail("EVM signature must be hex encoded")

        raw = bytes.fromhex(signature[2:] if signature.startswith("0x") else signature)
        if len(raw) != EVM_SIGNATURE_BYTES:
            return _fail(f"EVM signature must be {EVM_SIGNATURE_BYTES} bytes, got {len(raw)}")

        recovered = Account.recover_message(encode_defunct(text=message), signature=raw)
        if recovered.lower() != identity.lower():
            return _fail("Recovered address does not match signer")
        return _ok()


class SolanaVerifier:
    """Direct Ed25519 check against a base58 public key, no recovery."""

    chain = Chain.SOLANA

    def verify(self, message: str, signature: str, identity: str) -> VerificationResult:
        try:
            pubkey = Pubkey.from_string(identity or "")
        except ValueError:
            return _fail("Solana signer must be a base58 encoded 32-byte public key")

        raw = decode_ed25519_signature(signature or "")
        if raw is None:
            return _fail("Solana signature must be base58, base64 or hex encoded")
        if len(raw) != ED25519_SIGNATURE_BYTES:
            return _fail(f"Ed25519 signature must be {ED25519_SIGNATURE_BYTES} bytes, got {len(raw)}")

        if not Signature.from_bytes(raw).verify(pubkey, message.encode("utf-8")):
            return _fail("Ed25519 signature does not verify for signer")
        return _ok()


def decode_ed25519_signature(value: str) -> bytes | None:
    """
    Decode a detached signature from hex, base58 or base64.

    Returns the raw bytes (any length, so the caller can report a length
    error) or None when no encoding fits.
    """
    if len(value) == ED25519_SIGNATURE_BYTES * 2 and _HEX.match(value):
        return bytes.fromhex(value)
    try:
        return bytes(Signature.from_string(value))
    except ValueError:
        pass
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError):
        return None


# =============================================================================
# Dispatch
# =============================================================================

_VERIFIERS: dict[Chain, ChainVerifier] = {}


def register_verifier(verifier: ChainVerifier) -> None:
    """Make a chain family available to verify(); replaces any existing one."""
    _VERIFIERS[Chain(verifier.chain)] = verifier


register_verifier(EvmVerifier())
register_verifier(SolanaVerifier())


def verify(chain: Chain | str, signer_identity: str, message: str, signature: str) -> VerificationResult:
    """
    Verify a signed message against a claimed chain family and identity.

    Args:
        chain: "evm" or "solana"
        signer_identity: EVM address or Solana base58 public key
        message: The exact text that was signed
        signature: Encoded signature (see the chain verifier for formats)

    Returns:
        VerificationResult; never raises.
    """
    if not message or not signature or not signer_identity:
        return _fail("Missing message, signature or signer")

    try:
        verifier = _VERIFIERS[Chain(chain)]
    except (ValueError, KeyError):
        logger.warning("Unsupported chain for signature verification: %s", chain)
        return _fail(f"Unsupported chain: {chain}")

    try:
        result = verifier.verify(message, signature, signer_identity)
    except Exception as e:  # library-level decode/recovery failures
        logger.warning("%s signature check errored for %s: %s", verifier.chain.value, preview(signer_identity), e)
        return _fail(f"Malformed {verifier.chain.value} signature: {e}")

    if result.verified:
        logger.info("%s signature verified for %s", verifier.chain.value, preview(signer_identity))
    else:
        logger.warning("%s signature rejected for %s: %s", verifier.chain.value, preview(signer_identity), result.reason)
    return result


def identity_message(agent_id: str, endpoint: str, timestamp: int) -> str:
    """The registration proof an agent signs: compact JSON, fixed key order."""
    return json.dumps(
        {"agentId": agent_id, "endpoint": endpoint, "timestamp": timestamp},
        separators=(",", ":"),
        ensure_ascii=False,
    )
