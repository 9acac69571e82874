"""
Agora x402 Payments — HTTP 402 challenge, proof decoding and verification.

Flow for a paid booking:

    NONE --(request without X-Payment)--> CHALLENGED   402 + accepted networks
    CHALLENGED --(valid X-Payment)-----> VERIFIED      booking proceeds
    VERIFIED --(transaction hash)------> SETTLED       audit record

The X-Payment header is base64(JSON) of a PaymentProof. Amounts are
decimal strings in whole asset units ("0.03" USDC) and timestamps are
milliseconds. Verification is a pure function of the proof, the expected
charge and the clock, apart from the replay cache that remembers nonces
for as long as their proof could still pass the timestamp check.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
import secrets
import threading
from dataclasses import dataclass, replace
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Iterable, Mapping

from pydantic import ValidationError as PydanticValidationError

from agora import signatures
from agora.errors import ValidationError, VerificationError
from agora.models import (
    Chain,
    PaymentProof,
    PaymentRequirement,
    PaymentState,
    Quote,
    SettlementRecord,
    now_ms,
)

logger = logging.getLogger(__name__)

PAYMENT_HEADER = "X-Payment"
SCHEME = "exact"
X402_VERSION = 1
DEFAULT_SKEW_MS = 300_000
MAX_TIMEOUT_SECONDS = 300


# =============================================================================
# Networks
# =============================================================================

@dataclass(frozen=True)
class NetworkConfig:
    """Where and in what asset a network gets paid."""
    name: str
    asset: str
    pay_to: str
    chain_id: int | None = None
    explorer_url: str = ""

    @property
    def chain(self) -> Chain:
        return Chain.SOLANA if self.name.startswith("solana") else Chain.EVM

    def same_identity(self, a: str, b: str) -> bool:
        """EVM addresses compare case-insensitively, base58 keys exactly."""
        if self.chain == Chain.EVM:
            return a.lower() == b.lower()
        return a == b

    def transaction_url(self, tx_hash: str) -> str | None:
        if not self.explorer_url:
            return None
        base, _, query = self.explorer_url.partition("?")
        return f"{base}/tx/{tx_hash}" + (f"?{query}" if query else "")


_EVM_TREASURY = "0x6C9BCfF8485B12fb8bd73B77638cd6b2dD0CF9CA"
_SOLANA_TREASURY = "CmGgLQL36Y9ubtTsy2zmE46TAxwCBm66onZmPPhUWNqv"

NETWORKS: dict[str, NetworkConfig] = {
    n.name: n
    for n in (
        NetworkConfig("base-mainnet", "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913", _EVM_TREASURY, 8453, "https://basescan.org"),
        NetworkConfig("base-sepolia", "0x036CbD53842c5426634e7929541fC2318B3d053F", _EVM_TREASURY, 84532, "https://base-sepolia.blockscout.com"),
        NetworkConfig("avalanche-mainnet", "0xB97EF9Ef8734C71904D8002F8b6Bc66Dd9c48a6E", _EVM_TREASURY, 43114, "https://snowtrace.io"),
        NetworkConfig("avalanche-fuji", "0x5425890298aed601595a70AB815c96711a31Bc65", _EVM_TREASURY, 43113, "https://testnet.snowtrace.io"),
        NetworkConfig("solana-devnet", "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v", _SOLANA_TREASURY, None, "https://explorer.solana.com?cluster=devnet"),
    )
}


def configured_networks(
    names: Iterable[str],
    pay_to_evm: str | None = None,
    pay_to_solana: str | None = None,
) -> list[NetworkConfig]:
    """
    Resolve network names to configs, applying treasury overrides.

    Raises:
        ValueError: for a network name the registry does not know
    """
    resolved = []
    for name in names:
        if name not in NETWORKS:
            raise ValueError(f"Unknown payment network: {name} (known: {', '.join(NETWORKS)})")
        network = NETWORKS[name]
        override = pay_to_solana if network.chain == Chain.SOLANA else pay_to_evm
        resolved.append(replace(network, pay_to=override) if override else network)
    return resolved


# =============================================================================
# Challenge
# =============================================================================

def build_challenge(
    quote: Quote,
    networks: Iterable[NetworkConfig],
    resource: str = "",
    nonce: str | None = None,
    timestamp: int | None = None,
) -> dict[str, Any]:
    """The 402 response body: one accepted payment option per network."""
    amount = quote.pricing.base_fee
    accepts = [
        PaymentRequirement(
            scheme=SCHEME,
            network=n.name,
            asset=n.asset,
            amount=amount,
            max_amount_required=amount,
            pay_to=n.pay_to,
            resource=resource,
            description=f"{quote.capability} ({quote.tier.value} tier) by {quote.agent_id}",
            max_timeout_seconds=MAX_TIMEOUT_SECONDS,
            chain_id=n.chain_id,
        ).model_dump(mode="json", by_alias=True, exclude_none=True)
        for n in networks
    ]
    return {
        "error": "Payment required",
        "x402Version": X402_VERSION,
        "accepts": accepts,
        "nonce": nonce or secrets.token_hex(16),
        "timestamp": timestamp if timestamp is not None else now_ms(),
        "quote": quote.to_wire(),
    }


# =============================================================================
# Header codec
# =============================================================================

def payment_message(fields: PaymentProof | Mapping[str, Any]) -> str:
    """Canonical authorization text a payer signs."""
    if isinstance(fields, PaymentProof):
        fields = fields.model_dump(by_alias=True)
    return "\n".join([
        "x402 Payment Authorization",
        f"Scheme: {fields['scheme']}",
        f"Network: {fields['network']}",
        f"Asset: {fields['asset']}",
        f"Amount: {fields['amount']}",
        f"PayTo: {fields['payTo']}",
        f"Timestamp: {fields['timestamp']}",
        f"Nonce: {fields['nonce']}",
    ])


def encode_payment_header(proof: PaymentProof | Mapping[str, Any]) -> str:
    if isinstance(proof, PaymentProof):
        proof = proof.to_wire()
    raw = json.dumps(dict(proof), separators=(",", ":")).encode("utf-8")
    return base64.b64encode(raw).decode("ascii")


def decode_payment_header(header: str) -> PaymentProof:
    """
    Decode an X-Payment header.

    Raises:
        VerificationError: check "encoding" when the header is not
            base64 JSON, "structure" when required fields are missing
    """
    try:
        data = json.loads(base64.b64decode(header.strip(), validate=True))
    except (binascii.Error, ValueError, AttributeError) as e:
        raise VerificationError(
            "encoding",
            "Invalid payment header encoding",
            hint="X-Payment must be base64 encoded JSON",
        ) from e
    if not isinstance(data, dict):
        raise VerificationError("encoding", "Invalid payment header encoding", hint="X-Payment must encode a JSON object")

    try:
        return PaymentProof.model_validate(data)
    except PydanticValidationError as e:
        missing = sorted({str(err["loc"][0]) for err in e.errors() if err.get("loc")})
        raise VerificationError(
            "structure",
            "Malformed payment proof",
            hint=f"Missing or invalid fields: {', '.join(missing)}",
        ) from e


# =============================================================================
# Verification
# =============================================================================

class PaymentVerifier:
    """
    Checks X-Payment proofs against the expected charge.

    Checks run in a fixed order and the first failure is reported by name:
    encoding, structure, scheme, network, pay_to, asset, amount, timestamp,
    message, signature, nonce.
    """

    def __init__(
        self,
        networks: Iterable[NetworkConfig],
        skew_ms: int = DEFAULT_SKEW_MS,
        clock: Callable[[], int] = now_ms,
    ):
        self._networks = {n.name: n for n in networks}
        self._skew_ms = skew_ms
        self._clock = clock
        self._seen: dict[str, int] = {}  # network:payer:nonce -> forget after (ms)
        self._lock = threading.Lock()

    @property
    def networks(self) -> list[NetworkConfig]:
        return list(self._networks.values())

    def verify(self, header: str, expected_amount: str | Decimal) -> PaymentProof:
        """
        Verify a proof and consume its nonce.

        Returns:
            The decoded proof

        Raises:
            VerificationError: naming the first failed check
        """
        proof = decode_payment_header(header)

        if proof.scheme != SCHEME:
            raise VerificationError("scheme", f"Unsupported payment scheme: {proof.scheme}", hint=f"scheme must be {SCHEME}")

        network = self._networks.get(proof.network)
        if network is None:
            raise VerificationError(
                "network",
                f"Unsupported payment network: {proof.network}",
                hint=f"Accepted networks: {', '.join(self._networks)}",
            )
        if not network.same_identity(proof.pay_to, network.pay_to):
            raise VerificationError("pay_to", "Payment recipient mismatch", hint=f"payTo must be {network.pay_to}")
        if not network.same_identity(proof.asset, network.asset):
            raise VerificationError("asset", "Payment asset mismatch", hint=f"asset must be {network.asset}")

        try:
            amount_ok = Decimal(proof.amount) == Decimal(str(expected_amount))
        except InvalidOperation:
            amount_ok = False
        if not amount_ok:
            raise VerificationError("amount", "Payment amount mismatch", hint=f"amount must be {expected_amount}")

        now = self._clock()
        if abs(now - proof.timestamp) > self._skew_ms:
            raise VerificationError(
                "timestamp",
                "Payment authorization expired or not yet valid",
                hint=f"timestamp must be within {self._skew_ms // 1000}s of server time ({now})",
            )

        if proof.message != payment_message(proof):
            raise VerificationError(
                "message",
                "Signed message does not match payment fields",
                hint="Sign the canonical 'x402 Payment Authorization' message built from the proof fields",
            )

        result = signatures.verify(network.chain, proof.payer, proof.message, proof.signature)
        if not result.verified:
            raise VerificationError("signature", "Invalid payment signature", hint=result.reason)

        self._consume_nonce(network, proof, now)
        logger.info(
            "Payment verified: %s %s on %s from %s",
            proof.amount,
            proof.asset,
            proof.network,
            signatures.preview(proof.payer),
        )
        return proof

    def _consume_nonce(self, network: NetworkConfig, proof: PaymentProof, now: int) -> None:
        payer = proof.payer.lower() if network.chain == Chain.EVM else proof.payer
        key = f"{network.name}:{payer}:{proof.nonce}"
        with self._lock:
            self._seen = {k: until for k, until in self._seen.items() if until >= now}
            if key in self._seen:
                raise VerificationError("nonce", "Payment nonce already used", hint="Sign a fresh authorization with a new nonce")
            self._seen[key] = proof.timestamp + self._skew_ms


def payment_summary(proof: PaymentProof) -> dict[str, Any]:
    """What a booking keeps of a verified proof."""
    return {
        "state": PaymentState.VERIFIED.value,
        "network": proof.network,
        "asset": proof.asset,
        "amount": proof.amount,
        "payer": proof.payer,
        "nonce": proof.nonce,
    }


def record_settlement(
    booking_id: str,
    agent_id: str,
    transaction_hash: str,
    network: str | None = None,
    amount: str | None = None,
) -> SettlementRecord:
    """Audit record for an externally confirmed transfer. Finality is not checked."""
    if not transaction_hash or not transaction_hash.strip():
        raise ValidationError("transactionHash must not be empty")
    transaction_hash = transaction_hash.strip()
    known = NETWORKS.get(network) if network else None
    record = SettlementRecord(
        booking_id=booking_id,
        agent_id=agent_id,
        transaction_hash=transaction_hash,
        network=network,
        amount=amount,
        explorer_url=known.transaction_url(transaction_hash) if known else None,
    )
    logger.info("Settlement recorded for booking %s: %s", booking_id, signatures.preview(record.transaction_hash, 10))
    return record
