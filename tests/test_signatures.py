"""
Tests for multi-chain signature verification:
  - EVM EIP-191 recovery
  - Solana Ed25519, including the all-zero signature negative case
  - Malformed input never raises
"""

import base64

import pytest
from solders.keypair import Keypair
from solders.signature import Signature

from agora.models import Chain, VerificationResult
from agora.signatures import decode_ed25519_signature, identity_message, register_verifier, verify


MESSAGE = identity_message("agent-a", "https://agent-a.example.com/run", 1_700_000_000_000)


class TestIdentityMessage:
    def test_compact_json_in_fixed_order(self):
        assert MESSAGE == (
            '{"agentId":"agent-a","endpoint":"https://agent-a.example.com/run","timestamp":1700000000000}'
        )


class TestEvm:
    def test_valid_signature(self, evm_signer):
        result = verify("evm", evm_signer.address, MESSAGE, evm_signer.sign_message(MESSAGE))
        assert result.verified
        assert result.reason is None

    def test_address_compare_is_case_insensitive(self, evm_signer):
        signature = evm_signer.sign_message(MESSAGE)
        assert verify(Chain.EVM, evm_signer.address.lower(), MESSAGE, signature).verified

    def test_signature_without_prefix(self, evm_signer):
        signature = evm_signer.sign_message(MESSAGE)[2:]
        assert verify("evm", evm_signer.address, MESSAGE, signature).verified

    def test_wrong_signer(self, evm_signer):
        other = "0x" + "ab" * 20
        result = verify("evm", other, MESSAGE, evm_signer.sign_message(MESSAGE))
        assert not result.verified
        assert "does not match" in result.reason

    def test_tampered_message(self, evm_signer):
        signature = evm_signer.sign_message(MESSAGE)
        assert not verify("evm", evm_signer.address, MESSAGE + " ", signature).verified

    def test_bad_address_format(self, evm_signer):
        result = verify("evm", "not-an-address", MESSAGE, evm_signer.sign_message(MESSAGE))
        assert not result.verified
        assert "address" in result.reason

    def test_wrong_length(self, evm_signer):
        result = verify("evm", evm_signer.address, MESSAGE, "0x" + "11" * 64)
        assert not result.verified
        assert "65 bytes" in result.reason

    def test_non_hex_signature(self, evm_signer):
        assert not verify("evm", evm_signer.address, MESSAGE, "0xzz").verified

    def test_garbage_recovery_does_not_raise(self, evm_signer):
        # 65 bytes with an invalid recovery id
        result = verify("evm", evm_signer.address, MESSAGE, "0x" + "00" * 65)
        assert isinstance(result, VerificationResult)
        assert not result.verified


class TestSolana:
    def test_valid_signature(self, solana_signer):
        result = verify("solana", solana_signer.address, MESSAGE, solana_signer.sign_message(MESSAGE))
        assert result.verified

    def test_all_zero_signature_fails(self, solana_signer):
        assert verify("solana", solana_signer.address, MESSAGE, solana_signer.sign_message(MESSAGE)).verified

        zero = str(Signature.from_bytes(bytes(64)))
        result = verify("solana", solana_signer.address, MESSAGE, zero)
        assert not result.verified

    def test_hex_and_base64_encodings(self):
        keypair = Keypair()
        raw = bytes(keypair.sign_message(MESSAGE.encode()))
        signer = str(keypair.pubkey())
        assert verify("solana", signer, MESSAGE, raw.hex()).verified
        assert verify("solana", signer, MESSAGE, base64.b64encode(raw).decode()).verified

    def test_other_key(self, solana_signer):
        other = str(Keypair().pubkey())
        assert not verify("solana", other, MESSAGE, solana_signer.sign_message(MESSAGE)).verified

    def test_bad_public_key(self, solana_signer):
        result = verify("solana", "0xnot-base58", MESSAGE, solana_signer.sign_message(MESSAGE))
        assert not result.verified
        assert "public key" in result.reason

    def test_short_signature(self, solana_signer):
        result = verify("solana", solana_signer.address, MESSAGE, base64.b64encode(b"\x01" * 10).decode())
        assert not result.verified
        assert "64 bytes" in result.reason

    def test_undecodable_signature(self):
        assert decode_ed25519_signature("!!!") is None


class TestDispatch:
    def test_unsupported_chain(self, evm_signer):
        result = verify("bitcoin", evm_signer.address, MESSAGE, "00")
        assert not result.verified
        assert "Unsupported chain" in result.reason

    def test_missing_inputs(self):
        assert not verify("evm", "", MESSAGE, "0x00").verified
        assert not verify("evm", "0x" + "00" * 20, MESSAGE, "").verified

    def test_verifier_exceptions_become_failures(self, solana_signer):
        class Exploding:
            chain = Chain.SOLANA

            def verify(self, message, signature, identity):
                raise RuntimeError("boom")

        from agora.signatures import SolanaVerifier

        register_verifier(Exploding())
        try:
            result = verify("solana", solana_signer.address, MESSAGE, solana_signer.sign_message(MESSAGE))
            assert not result.verified
            assert "boom" in result.reason
        finally:
            register_verifier(SolanaVerifier())

    @pytest.mark.parametrize("chain", ["evm", "solana"])
    def test_never_raises_on_junk(self, chain):
        assert not verify(chain, "x", "m", "\x00\xff").verified
