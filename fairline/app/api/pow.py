"""Proof-of-work endpoints."""

from fastapi import APIRouter

from fairline.app.api.deps import RoomDep
from fairline.app.api.schemas import ChallengeResponse, PowVerifyRequest, PowVerifyResponse
from fairline.app.core.logging import get_log_context, get_logger
from fairline.app.services.events import QueueEvent

logger = get_logger(__name__)
router = APIRouter(prefix="/api/pow", tags=["pow"])


@router.get("/start", response_model=ChallengeResponse)
async def start_challenge(room: RoomDep) -> dict:
    """Issue a fresh challenge."""
    challenge = room.gate.issue()
    room.outbox.publish(
        QueueEvent(
            type="pow_start",
            data={"serverNonce": challenge.nonce, "difficulty": challenge.difficulty},
        )
    )
    return challenge.to_public()


@router.post("/verify", response_model=PowVerifyResponse)
async def verify_challenge(data: PowVerifyRequest, room: RoomDep) -> PowVerifyResponse:
    """Check a solution and hand out a short-lived proof token.

    Errors are raised by the gate as ``ChallengeUnknown``,
    ``ChallengeExpired`` or ``InvalidSolution``.
    """
    challenge = room.gate.verify(data.server_nonce, data.solution_nonce, data.hash)
    token, _ = room.credentials.issue_proof_token(challenge.nonce, challenge.difficulty)

    room.outbox.publish(QueueEvent(type="pow_ok", data={"serverNonce": challenge.nonce}))
    logger.debug("Challenge solved", extra=get_log_context(event="pow_ok"))
    return PowVerifyResponse(pow_token=token)
