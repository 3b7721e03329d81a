"""Queue and proof credentials.

Credentials are HS256 JSON Web Tokens. The queue credential carries the
participant identity together with a position signature produced by
``PositionAttestor``; the proof credential is the short-lived pass handed
out after a proof-of-work challenge is solved.
"""

import time
from dataclasses import dataclass
from typing import Callable

import jwt

from fairline.app.core.security import PositionAttestor
from fairline.app.exceptions import ProofRequired, TokenInvalid

ALGORITHM = "HS256"
CREDENTIAL_VERSION = 1

_QUEUE_CLAIMS = ["exp", "qid", "bucket", "region", "joinedAt", "posSig", "v"]
_PROOF_CLAIMS = ["exp", "serverNonce", "solvedAt", "difficulty", "v"]


@dataclass(frozen=True)
class QueueCredential:
    """Decoded session credential."""
    queue_id: str
    traffic_class: str
    region: str
    joined_at: int
    position_signature: str
    version: int
    expires_at: int


@dataclass(frozen=True)
class ProofCredential:
    """Decoded proof-of-work pass."""
    nonce: str
    solved_at: int
    difficulty: int
    version: int
    expires_at: int


class CredentialService:
    """Mints and decodes queue and proof tokens.

    Holds no mutable state beyond its signing secrets.
    """

    def __init__(
        self,
        attestor: PositionAttestor,
        queue_secret: str,
        proof_secret: str,
        queue_ttl_seconds: int = 7200,
        proof_ttl_seconds: int = 120,
        clock: Callable[[], float] = time.time,
    ):
        self.attestor = attestor
        self._queue_secret = queue_secret
        self._proof_secret = proof_secret
        self.queue_ttl_seconds = queue_ttl_seconds
        self.proof_ttl_seconds = proof_ttl_seconds
        self._clock = clock

    def issue_queue_token(
        self,
        queue_id: str,
        traffic_class: str,
        region: str,
        joined_at: int,
    ) -> tuple[str, QueueCredential]:
        """Sign a new queue credential.

        Args:
            queue_id: Participant identifier
            traffic_class: Class the participant was queued in
            region: Free-form region tag
            joined_at: Join time in epoch milliseconds

        Returns:
            Tuple of (encoded token, decoded credential)
        """
        expires_at = int(self._clock()) + self.queue_ttl_seconds
        credential = QueueCredential(
            queue_id=queue_id,
            traffic_class=traffic_class,
            region=region,
            joined_at=joined_at,
            position_signature=self.attestor.issue_position_signature(queue_id, joined_at),
            version=CREDENTIAL_VERSION,
            expires_at=expires_at,
        )
        payload = {
            "qid": credential.queue_id,
            "bucket": credential.traffic_class,
            "region": credential.region,
            "joinedAt": credential.joined_at,
            "posSig": credential.position_signature,
            "v": credential.version,
            "exp": expires_at,
        }
        return jwt.encode(payload, self._queue_secret, algorithm=ALGORITHM), credential

    def decode_queue_token(self, token: str | None) -> QueueCredential:
        """Verify and decode a queue token.

        Raises:
            TokenInvalid: Bad signature, malformed payload or expired token
        """
        if not token or not isinstance(token, str):
            raise TokenInvalid()
        try:
            claims = jwt.decode(
                token,
                self._queue_secret,
                algorithms=[ALGORITHM],
                options={"require": _QUEUE_CLAIMS},
            )
            return QueueCredential(
                queue_id=str(claims["qid"]),
                traffic_class=str(claims["bucket"]),
                region=str(claims["region"]),
                joined_at=int(claims["joinedAt"]),
                position_signature=str(claims["posSig"]),
                version=int(claims["v"]),
                expires_at=int(claims["exp"]),
            )
        except (jwt.InvalidTokenError, TypeError, ValueError) as e:
            raise TokenInvalid() from e

    def attest(self, credential: QueueCredential) -> bool:
        """Check that the join-time fields were not altered since issuance."""
        return self.attestor.verify_position_signature(
            credential.queue_id,
            credential.joined_at,
            credential.position_signature,
        )

    def issue_proof_token(self, nonce: str, difficulty: int) -> tuple[str, ProofCredential]:
        now = self._clock()
        proof = ProofCredential(
            nonce=nonce,
            solved_at=int(now * 1000),
            difficulty=difficulty,
            version=CREDENTIAL_VERSION,
            expires_at=int(now) + self.proof_ttl_seconds,
        )
        payload = {
            "serverNonce": proof.nonce,
            "solvedAt": proof.solved_at,
            "difficulty": proof.difficulty,
            "v": proof.version,
            "exp": proof.expires_at,
        }
        return jwt.encode(payload, self._proof_secret, algorithm=ALGORITHM), proof

    def decode_proof_token(self, token: str | None) -> ProofCredential:
        """Verify and decode a proof token.

        Raises:
            ProofRequired: Missing, forged or expired token
        """
        if not token or not isinstance(token, str):
            raise ProofRequired()
        try:
            claims = jwt.decode(
                token,
                self._proof_secret,
                algorithms=[ALGORITHM],
                options={"require": _PROOF_CLAIMS},
            )
            return ProofCredential(
                nonce=str(claims["serverNonce"]),
                solved_at=int(claims["solvedAt"]),
                difficulty=int(claims["difficulty"]),
                version=int(claims["v"]),
                expires_at=int(claims["exp"]),
            )
        except (jwt.InvalidTokenError, TypeError, ValueError) as e:
            raise ProofRequired() from e
