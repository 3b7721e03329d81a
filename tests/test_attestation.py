"""Tests for position attestation and signed credentials."""

import time

import jwt
import pytest

from fairline.app.core.security import (
    PositionAttestor,
    derive_position_secret,
    pow_digest,
    user_hash,
)
from fairline.app.exceptions import ProofRequired, TokenInvalid
from fairline.app.services.credentials import CredentialService


@pytest.fixture
def attestor():
    return PositionAttestor(b"test-position-secret", version="1")


@pytest.fixture
def credentials(attestor):
    return CredentialService(
        attestor,
        queue_secret="queue-secret",
        proof_secret="proof-secret",
    )


class TestPositionAttestor:
    def test_signature_is_deterministic(self, attestor):
        a = attestor.issue_position_signature("q-1", 1_700_000_000_000)
        b = attestor.issue_position_signature("q-1", 1_700_000_000_000)
        assert a == b
        assert len(a) == 64

    def test_round_trip(self, attestor):
        sig = attestor.issue_position_signature("q-1", 1000)
        assert attestor.verify_position_signature("q-1", 1000, sig) is True

    @pytest.mark.parametrize(
        "queue_id,joined_at",
        [("q-2", 1000), ("q-1", 1001)],
    )
    def test_tampered_fields_fail(self, attestor, queue_id, joined_at):
        sig = attestor.issue_position_signature("q-1", 1000)
        assert attestor.verify_position_signature(queue_id, joined_at, sig) is False

    def test_tampered_signature_fails(self, attestor):
        sig = attestor.issue_position_signature("q-1", 1000)
        flipped = ("0" if sig[0] != "0" else "1") + sig[1:]
        assert attestor.verify_position_signature("q-1", 1000, flipped) is False

    def test_malformed_signature_fails(self, attestor):
        assert attestor.verify_position_signature("q-1", 1000, None) is False
        assert attestor.verify_position_signature("q-1", 1000, "ünïcode") is False

    def test_version_is_bound(self):
        v1 = PositionAttestor(b"secret", version="1")
        v2 = PositionAttestor(b"secret", version="2")
        sig = v1.issue_position_signature("q-1", 1000)
        assert v2.verify_position_signature("q-1", 1000, sig) is False

    def test_secret_is_bound(self):
        sig = PositionAttestor(b"one").issue_position_signature("q-1", 1000)
        assert PositionAttestor(b"two").verify_position_signature("q-1", 1000, sig) is False


class TestHelpers:
    def test_configured_secret_used_verbatim(self):
        assert derive_position_secret("abc") == b"abc"

    def test_dev_secret_is_stable(self):
        assert derive_position_secret("") == derive_position_secret("")
        assert len(derive_position_secret("")) == 32

    def test_pow_digest(self):
        assert pow_digest("n", "1") == pow_digest("n", "1")
        assert pow_digest("n", "1") != pow_digest("n", "2")

    def test_user_hash_has_no_raw_identity(self):
        digest = user_hash("q-1", 1000)
        assert "q-1" not in digest
        assert digest == user_hash("q-1", 1000)


class TestQueueCredential:
    def test_issue_and_decode(self, credentials):
        token, issued = credentials.issue_queue_token("q-1", "vip", "IN", 1000)

        decoded = credentials.decode_queue_token(token)

        assert decoded == issued
        assert decoded.traffic_class == "vip"
        assert decoded.version == 1
        assert credentials.attest(decoded) is True

    def test_claims_layout(self, credentials):
        token, _ = credentials.issue_queue_token("q-1", "general", "EU", 1000)
        claims = jwt.decode(token, "queue-secret", algorithms=["HS256"])

        assert claims["qid"] == "q-1"
        assert claims["bucket"] == "general"
        assert claims["region"] == "EU"
        assert claims["joinedAt"] == 1000
        assert claims["v"] == 1
        assert claims["exp"] - time.time() == pytest.approx(7200, abs=5)

    @pytest.mark.parametrize("token", [None, "", "garbage", "a.b.c"])
    def test_garbage_rejected(self, credentials, token):
        with pytest.raises(TokenInvalid):
            credentials.decode_queue_token(token)

    def test_wrong_secret_rejected(self, credentials):
        token = jwt.encode({"qid": "q-1"}, "other-secret", algorithm="HS256")
        with pytest.raises(TokenInvalid):
            credentials.decode_queue_token(token)

    def test_missing_claims_rejected(self, credentials):
        token = jwt.encode(
            {"qid": "q-1", "exp": int(time.time()) + 60},
            "queue-secret",
            algorithm="HS256",
        )
        with pytest.raises(TokenInvalid):
            credentials.decode_queue_token(token)

    def test_expired_token_rejected(self, attestor):
        service = CredentialService(
            attestor,
            queue_secret="queue-secret",
            proof_secret="proof-secret",
            clock=lambda: time.time() - 10_000,
        )
        token, _ = service.issue_queue_token("q-1", "general", "IN", 1000)

        with pytest.raises(TokenInvalid):
            service.decode_queue_token(token)

    def test_resigned_token_with_altered_join_time_fails_attestation(self, credentials):
        # Holder of the JWT secret, but not the position secret
        token, _ = credentials.issue_queue_token("q-1", "general", "IN", 1000)
        claims = jwt.decode(token, "queue-secret", algorithms=["HS256"])
        claims["joinedAt"] = 1
        forged = jwt.encode(claims, "queue-secret", algorithm="HS256")

        decoded = credentials.decode_queue_token(forged)

        assert credentials.attest(decoded) is False


class TestProofCredential:
    def test_issue_and_decode(self, credentials):
        token, proof = credentials.issue_proof_token("nonce-1", 3)

        decoded = credentials.decode_proof_token(token)

        assert decoded == proof
        assert decoded.nonce == "nonce-1"
        assert decoded.difficulty == 3

    def test_queue_token_is_not_a_proof(self, credentials):
        token, _ = credentials.issue_queue_token("q-1", "general", "IN", 1000)
        with pytest.raises(ProofRequired):
            credentials.decode_proof_token(token)

    def test_expired_proof_rejected(self, attestor):
        service = CredentialService(
            attestor,
            queue_secret="queue-secret",
            proof_secret="proof-secret",
            clock=lambda: time.time() - 600,
        )
        token, _ = service.issue_proof_token("nonce-1", 3)

        with pytest.raises(ProofRequired):
            service.decode_proof_token(token)
