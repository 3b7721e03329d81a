import hmac

from fastapi import Request

from fairline.app.api.deps import RoomDep
from fairline.app.api.schemas import MAX_TOKEN_LENGTH
from fairline.app.exceptions import AdminUnauthorized, ProofRequired
from fairline.app.services.credentials import ProofCredential

ADMIN_KEY_HEADER = "X-Admin-Key"


def get_bearer_token(request: Request) -> str | None:
    """Extract Bearer token from Authorization header.

    Args:
        request: The incoming request

    Returns:
        The token string if present, None otherwise
    """
    auth = request.headers.get("Authorization", "")
    if not auth.startswith("Bearer "):
        return None
    return auth.replace("Bearer ", "", 1).strip() or None


def require_admin(request: Request, room: RoomDep) -> str:
    """Validate the admin key for privileged endpoints.

    The admin key travels in its own header so it can never be confused
    with a participant's bearer credential.

    Raises:
        AdminUnauthorized: If the key is missing or wrong
    """
    key = request.headers.get(ADMIN_KEY_HEADER, "").strip()
    expected = room.settings.admin_key

    # Always compare, even for an empty key, to keep timing uniform
    if not expected or not hmac.compare_digest(key.encode(), expected.encode()):
        raise AdminUnauthorized()

    return "admin"


def require_proof(request: Request, room: RoomDep) -> ProofCredential:
    """Decode the bearer proof token presented at join.

    Raises:
        ProofRequired: Missing, oversized, forged or expired proof token
    """
    token = get_bearer_token(request)
    if not token or len(token) > MAX_TOKEN_LENGTH:
        raise ProofRequired()
    return room.credentials.decode_proof_token(token)
