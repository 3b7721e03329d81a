import hashlib
import hmac
import secrets

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from fairline.app.core.logging import get_logger

logger = get_logger(__name__)


def derive_position_secret(configured: str) -> bytes:
    """Return the HMAC key used for position attestation.

    Args:
        configured: The POSITION_SECRET setting (may be empty)

    Returns:
        Raw key bytes
    """
    if configured:
        return configured.encode("utf-8")

    # Development fallback - deterministic key
    # WARNING: In production, always set POSITION_SECRET
    logger.warning("POSITION_SECRET is not set; using a derived development key")
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=32,
        salt=b"fairline_fixed_salt_dev_only",
        iterations=100000,
    )
    return kdf.derive(b"dev_pos_secret")


class PositionAttestor:
    """Signs and verifies the join-time fields of a queue credential.

    The signature is an HMAC-SHA256 over ``id|joined_at|version``. It is a
    pure function of its inputs and the secret, so the same participant
    always gets the same signature and any tampered field fails
    verification.
    """

    def __init__(self, secret: bytes, version: str = "1"):
        self._secret = secret
        self.version = version

    def issue_position_signature(self, queue_id: str, joined_at: int) -> str:
        payload = f"{queue_id}|{joined_at}|{self.version}"
        return hmac.new(self._secret, payload.encode("utf-8"), hashlib.sha256).hexdigest()

    def verify_position_signature(self, queue_id: str, joined_at: int, signature: str) -> bool:
        """Verify a position signature in constant time.

        Returns:
            True if the signature matches, False otherwise (including
            malformed signatures)
        """
        if not isinstance(signature, str):
            return False
        expected = self.issue_position_signature(queue_id, joined_at)
        try:
            return hmac.compare_digest(expected, signature)
        except TypeError:
            # Non-ASCII strings cannot be compared in constant time
            return False


def generate_nonce(nbytes: int = 16) -> str:
    """Generate an unpredictable hex nonce for proof-of-work challenges."""
    return secrets.token_hex(nbytes)


def pow_digest(nonce: str, solution: str) -> str:
    """SHA-256 hex digest of ``nonce:solution``."""
    return hashlib.sha256(f"{nonce}:{solution}".encode("utf-8")).hexdigest()


def user_hash(queue_id: str, joined_at: int) -> str:
    """Privacy-safe, deterministic identifier for a participant (no PII)."""
    return hashlib.sha256(f"{queue_id}|{joined_at}".encode("utf-8")).hexdigest()
