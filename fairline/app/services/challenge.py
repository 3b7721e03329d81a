"""Proof-of-work challenge gate.

A client asks for a challenge, searches for a ``solution`` such that
``sha256(f"{nonce}:{solution}")`` starts with ``difficulty`` zero hex
characters, and presents it back. Finding a solution costs about
``16 ** difficulty`` hashes; verifying it costs one.
"""

import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict

from fairline.app.core.logging import get_logger
from fairline.app.core.security import generate_nonce, pow_digest
from fairline.app.exceptions import ChallengeExpired, ChallengeUnknown, InvalidSolution

logger = get_logger(__name__)

POW_PREFIX = "0"


@dataclass(frozen=True)
class Challenge:
    nonce: str
    issued_at: float
    expires_at: float
    difficulty: int

    def to_public(self) -> dict:
        """Wire representation; ``expiresAt`` is epoch milliseconds."""
        return {
            "serverNonce": self.nonce,
            "difficulty": self.difficulty,
            "expiresAt": int(self.expires_at * 1000),
        }


def solution_meets_difficulty(digest: str, difficulty: int) -> bool:
    return digest.startswith(POW_PREFIX * difficulty)


class ChallengeGate:
    """Issues and verifies single-use proof-of-work challenges.

    Pending challenges live in memory only. Expiry is checked lazily on
    verification; ``sweep_expired`` drops the ones nobody came back for.
    The gate also remembers which proof nonces were already redeemed for a
    join so a proof token can only be used once.
    """

    def __init__(
        self,
        difficulty: int = 3,
        ttl_seconds: float = 60.0,
        clock: Callable[[], float] = time.time,
    ):
        self.difficulty = difficulty
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._pending: Dict[str, Challenge] = {}
        self._redeemed: Dict[str, float] = {}  # nonce -> keep-until
        self._lock = threading.Lock()

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def issue(self) -> Challenge:
        now = self._clock()
        challenge = Challenge(
            nonce=generate_nonce(),
            issued_at=now,
            expires_at=now + self.ttl_seconds,
            difficulty=self.difficulty,
        )
        with self._lock:
            self._pending[challenge.nonce] = challenge
        return challenge

    def verify(self, nonce: str, solution: str, claimed_hash: str) -> Challenge:
        """Verify a solution and consume the challenge.

        Args:
            nonce: The server nonce from ``issue``
            solution: The client's solution nonce
            claimed_hash: The digest the client computed; must equal the
                recomputed digest

        Returns:
            The consumed challenge

        Raises:
            ChallengeUnknown: Nonce not pending
            ChallengeExpired: Challenge past its expiry (it is deleted)
            InvalidSolution: Digest mismatch or not enough leading zeros
        """
        with self._lock:
            challenge = self._pending.get(nonce)
            if challenge is None:
                raise ChallengeUnknown()

            if self._clock() > challenge.expires_at:
                del self._pending[nonce]
                raise ChallengeExpired()

            digest = pow_digest(nonce, solution)
            if digest != claimed_hash:
                raise InvalidSolution()
            if not solution_meets_difficulty(digest, challenge.difficulty):
                raise InvalidSolution()

            del self._pending[nonce]
            return challenge

    def redeem(self, nonce: str, until: float) -> bool:
        """Mark a proof nonce as used.

        Args:
            nonce: Server nonce bound into the proof token
            until: Epoch seconds after which the proof token is expired anyway

        Returns:
            False if the nonce was already redeemed
        """
        with self._lock:
            if nonce in self._redeemed:
                return False
            self._redeemed[nonce] = until
            return True

    def sweep_expired(self) -> int:
        """Drop expired pending challenges and stale redemption records.

        Returns:
            Number of records removed
        """
        now = self._clock()
        with self._lock:
            expired = [n for n, c in self._pending.items() if now > c.expires_at]
            for nonce in expired:
                del self._pending[nonce]
            stale = [n for n, until in self._redeemed.items() if now > until]
            for nonce in stale:
                del self._redeemed[nonce]

        removed = len(expired) + len(stale)
        if removed:
            logger.debug(
                f"Swept {len(expired)} expired challenges and {len(stale)} redeemed proofs"
            )
        return removed
