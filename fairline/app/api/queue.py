"""Queue join, status and attestation endpoints."""

import uuid
from typing import Optional

from fastapi import APIRouter, Request

from fairline.app.api.deps import RoomDep
from fairline.app.api.schemas import (
    AttestResponse,
    JoinRequest,
    JoinResponse,
    StatusResponse,
    TokenRequest,
)
from fairline.app.core.logging import get_log_context, get_logger
from fairline.app.exceptions import ProofRequired, TokenInvalid, TokenUnknown
from fairline.app.middleware.auth import require_proof
from fairline.app.services.admission import QueueEntry
from fairline.app.services.credentials import QueueCredential
from fairline.app.services.events import QueueEvent, now_ms
from fairline.app.services.room import WaitingRoom

logger = get_logger(__name__)
router = APIRouter(tags=["queue"])

DEFAULT_CLASS = "general"


def verify_credential(room: WaitingRoom, token: str) -> QueueCredential:
    """Decode a queue token and check its position attestation.

    Raises:
        TokenInvalid: Forged, corrupt or expired token
    """
    credential = room.credentials.decode_queue_token(token)
    if not room.credentials.attest(credential):
        raise TokenInvalid()
    return credential


def tracked_credential(room: WaitingRoom, token: str) -> QueueCredential:
    """Like ``verify_credential`` but also requires the engine to know the token.

    Raises:
        TokenInvalid: Forged, corrupt or expired token
        TokenUnknown: Valid token the engine no longer tracks
    """
    credential = verify_credential(room, token)
    if not room.engine.has_token(token):
        raise TokenUnknown()
    return credential


def queue_update(room: WaitingRoom, token: str) -> dict:
    return {
        "position": room.engine.position(token),
        "etaSeconds": room.engine.estimate_wait_seconds(token),
    }


def _resume(room: WaitingRoom, token: str) -> Optional[QueueCredential]:
    try:
        credential = tracked_credential(room, token)
    except (TokenInvalid, TokenUnknown):
        return None

    room.outbox.publish(
        QueueEvent(
            type="resume",
            queue_id=credential.queue_id,
            traffic_class=credential.traffic_class,
        )
    )
    return credential


@router.post("/api/queue/join", response_model=JoinResponse)
async def join_queue(
    request: Request,
    room: RoomDep,
    data: Optional[JoinRequest] = None,
) -> JoinResponse:
    """Join the queue, or resume with a still-tracked queue token.

    A fresh join needs a bearer proof token from ``/api/pow/verify``;
    each proof token admits exactly one join.
    """
    data = data or JoinRequest()

    if data.resume_token and _resume(room, data.resume_token) is not None:
        return JoinResponse(queue_token=data.resume_token)

    proof = require_proof(request, room)
    if not room.gate.redeem(proof.nonce, until=proof.expires_at):
        raise ProofRequired()

    traffic_class = data.traffic_class if data.traffic_class in room.engine.classes else DEFAULT_CLASS
    region = data.region or room.settings.default_region
    queue_id = str(uuid.uuid4())
    joined_at = now_ms()

    token, credential = room.credentials.issue_queue_token(queue_id, traffic_class, region, joined_at)
    position = room.engine.enqueue(
        QueueEntry(
            queue_id=queue_id,
            traffic_class=traffic_class,
            joined_at=joined_at,
            credential_key=token,
            region=region,
            expires_at=credential.expires_at,
        )
    )

    room.outbox.publish(
        QueueEvent(
            type="join",
            queue_id=queue_id,
            traffic_class=traffic_class,
            region=region,
            joined_at=joined_at,
            position=position,
        )
    )
    logger.info(
        "Participant joined",
        extra=get_log_context(queue_id=queue_id, traffic_class=traffic_class, event="join"),
    )
    return JoinResponse(queue_token=token)


@router.post("/api/queue/status", response_model=StatusResponse)
async def queue_status(data: TokenRequest, room: RoomDep) -> StatusResponse:
    """Current position and ETA; both null when the token is not tracked."""
    verify_credential(room, data.queue_token)
    update = queue_update(room, data.queue_token)
    return StatusResponse(position=update["position"], eta_seconds=update["etaSeconds"])


@router.post("/api/attest", response_model=AttestResponse)
async def attest_position(data: TokenRequest, room: RoomDep) -> AttestResponse:
    """Check that the token's join-time fields were not altered."""
    credential = room.credentials.decode_queue_token(data.queue_token)
    return AttestResponse(ok=room.credentials.attest(credential), queue_version=room.queue_version)
