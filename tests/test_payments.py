"""
Tests for x402 payments:
  - 402 challenge shape
  - X-Payment header codec
  - Verification checks, in order, each named on failure
  - Nonce replay protection
"""

import base64
import json

import pytest
from eth_account import Account
from solders.signature import Signature

from agora.errors import ValidationError, VerificationError
from agora.models import Price, Quote, SLAPromise, Tier
from agora.payments import (
    NETWORKS,
    PaymentVerifier,
    build_challenge,
    configured_networks,
    decode_payment_header,
    encode_payment_header,
    payment_message,
    record_settlement,
)
from agora_sdk.signers import EvmSigner
from conftest import FakeClock


QUOTE = Quote(
    agent_id="agent-a",
    tier=Tier.PRO,
    capability="nutrition_planning",
    pricing=Price(base_fee="0.03"),
    sla=SLAPromise(response_sla=2000, uptime=99.5),
    next_available=0,
)


def requirement(network: str) -> dict:
    challenge = build_challenge(QUOTE, configured_networks([network]))
    return challenge["accepts"][0]


def header_for(signer, network="base-sepolia", clock=None, **tamper) -> str:
    proof = signer.payment_proof(requirement(network), timestamp=clock() if clock else None)
    wire = {**proof.to_wire(), **tamper}
    return encode_payment_header(wire)


# =============================================================================
# Challenge & codec
# =============================================================================

class TestChallenge:
    def test_offers_every_configured_network(self):
        challenge = build_challenge(QUOTE, configured_networks(["base-sepolia", "solana-devnet"]), resource="/agents/agent-a/book")
        assert challenge["error"] == "Payment required"
        assert [a["network"] for a in challenge["accepts"]] == ["base-sepolia", "solana-devnet"]

        evm, solana = challenge["accepts"]
        assert evm["amount"] == evm["maxAmountRequired"] == "0.03"
        assert evm["chainId"] == 84532
        assert evm["payTo"] == NETWORKS["base-sepolia"].pay_to
        assert evm["resource"] == "/agents/agent-a/book"
        assert "chainId" not in solana
        assert challenge["nonce"]
        assert challenge["quote"]["pricing"]["baseFee"] == "0.03"

    def test_treasury_override(self):
        (network,) = configured_networks(["solana-devnet"], pay_to_solana="Treasury111")
        assert network.pay_to == "Treasury111"

    def test_unknown_network_config(self):
        with pytest.raises(ValueError):
            configured_networks(["dogechain"])


class TestHeaderCodec:
    def test_encode_decode(self, evm_signer):
        proof = evm_signer.payment_proof(requirement("base-sepolia"))
        decoded = decode_payment_header(encode_payment_header(proof))
        assert decoded == proof

    def test_payer_aliases(self, evm_signer):
        wire = evm_signer.payment_proof(requirement("base-sepolia")).to_wire()
        wire["signer"] = wire.pop("payer")
        assert decode_payment_header(encode_payment_header(wire)).payer == evm_signer.address

    def test_not_base64(self):
        with pytest.raises(VerificationError) as exc:
            decode_payment_header("%%%not-base64%%%")
        assert exc.value.check == "encoding"

    def test_not_an_object(self):
        with pytest.raises(VerificationError) as exc:
            decode_payment_header(base64.b64encode(b"[1, 2]").decode())
        assert exc.value.check == "encoding"

    def test_missing_fields(self):
        header = base64.b64encode(json.dumps({"scheme": "exact"}).encode()).decode()
        with pytest.raises(VerificationError) as exc:
            decode_payment_header(header)
        assert exc.value.check == "structure"
        assert "signature" in exc.value.hint

    def test_canonical_message(self):
        message = payment_message({
            "scheme": "exact", "network": "base-sepolia", "asset": "0xA", "amount": "0.03",
            "payTo": "0xB", "timestamp": 1, "nonce": "n",
        })
        assert message.splitlines() == [
            "x402 Payment Authorization",
            "Scheme: exact",
            "Network: base-sepolia",
            "Asset: 0xA",
            "Amount: 0.03",
            "PayTo: 0xB",
            "Timestamp: 1",
            "Nonce: n",
        ]


# =============================================================================
# Verification
# =============================================================================

class TestVerifier:
    def setup_method(self):
        self.clock = FakeClock()
        self.verifier = PaymentVerifier(
            configured_networks(["base-sepolia", "solana-devnet"]),
            skew_ms=300_000,
            clock=self.clock,
        )

    def check_of(self, header, amount="0.03"):
        with pytest.raises(VerificationError) as exc:
            self.verifier.verify(header, amount)
        return exc.value.check

    def test_valid_evm_payment(self, evm_signer):
        proof = self.verifier.verify(header_for(evm_signer, clock=self.clock), "0.03")
        assert proof.payer == evm_signer.address
        assert proof.network == "base-sepolia"

    def test_valid_solana_payment(self, solana_signer):
        proof = self.verifier.verify(header_for(solana_signer, "solana-devnet", clock=self.clock), "0.03")
        assert proof.payer == solana_signer.address

    def test_amount_compared_as_decimal(self, evm_signer):
        assert self.verifier.verify(header_for(evm_signer, clock=self.clock), "0.030")

    def test_scheme_must_be_exact(self, evm_signer):
        offered = {**requirement("base-sepolia"), "scheme": "bogus-scheme"}
        proof = evm_signer.payment_proof(offered, timestamp=self.clock())
        assert self.check_of(encode_payment_header(proof)) == "scheme"

    def test_unsupported_network(self, evm_signer):
        verifier = PaymentVerifier(configured_networks(["solana-devnet"]), clock=self.clock)
        with pytest.raises(VerificationError) as exc:
            verifier.verify(header_for(evm_signer, clock=self.clock), "0.03")
        assert exc.value.check == "network"

    def test_wrong_recipient(self, evm_signer):
        assert self.check_of(header_for(evm_signer, clock=self.clock, payTo="0x" + "22" * 20)) == "pay_to"

    def test_wrong_asset(self, evm_signer):
        assert self.check_of(header_for(evm_signer, clock=self.clock, asset="0x" + "33" * 20)) == "asset"

    def test_wrong_amount(self, evm_signer):
        assert self.check_of(header_for(evm_signer, clock=self.clock), amount="0.05") == "amount"
        assert self.check_of(header_for(evm_signer, clock=self.clock, amount="lots")) == "amount"

    def test_stale_timestamp(self, evm_signer):
        header = header_for(evm_signer, clock=self.clock)
        self.clock.advance(300_001)
        assert self.check_of(header) == "timestamp"

    def test_message_must_match_fields(self, evm_signer):
        assert self.check_of(header_for(evm_signer, clock=self.clock, message="x402 Agent Payment")) == "message"

    def test_signature_from_other_key(self, evm_signer):
        other = EvmSigner(Account.create().key)
        proof = other.payment_proof(requirement("base-sepolia"), timestamp=self.clock())
        wire = {**proof.to_wire(), "payer": evm_signer.address}
        assert self.check_of(encode_payment_header(wire)) == "signature"

    def test_all_zero_solana_signature(self, solana_signer):
        zero = str(Signature.from_bytes(bytes(64)))
        header = header_for(solana_signer, "solana-devnet", clock=self.clock, signature=zero)
        assert self.check_of(header) == "signature"

    def test_replay_rejected(self, evm_signer):
        header = header_for(evm_signer, clock=self.clock)
        self.verifier.verify(header, "0.03")
        assert self.check_of(header) == "nonce"

    def test_failed_proof_does_not_burn_nonce(self, evm_signer):
        proof = evm_signer.payment_proof(requirement("base-sepolia"), nonce="fixed", timestamp=self.clock())
        wire = proof.to_wire()
        assert self.check_of(encode_payment_header({**wire, "signature": "0x" + "00" * 65})) == "signature"
        assert self.verifier.verify(encode_payment_header(wire), "0.03").nonce == "fixed"


class TestSettlement:
    def test_record(self):
        record = record_settlement("b1", "agent-a", " 0xfeed ", network="base-sepolia", amount="0.03")
        assert record.transaction_hash == "0xfeed"
        assert record.state.value == "SETTLED"
        assert record.explorer_url == "https://base-sepolia.blockscout.com/tx/0xfeed"

    def test_explorer_link_keeps_cluster(self):
        record = record_settlement("b1", "agent-a", "5abc", network="solana-devnet")
        assert record.explorer_url == "https://explorer.solana.com/tx/5abc?cluster=devnet"

    def test_unknown_network_has_no_explorer_link(self):
        assert record_settlement("b1", "agent-a", "0xfeed", network="dogechain").explorer_url is None

    def test_empty_hash(self):
        with pytest.raises(ValidationError):
            record_settlement("b1", "agent-a", "  ")
