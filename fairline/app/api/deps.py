"""FastAPI dependencies for the waiting room.

Usage:
    from fairline.app.api.deps import RoomDep

    @router.get("/things")
    async def things(room: RoomDep):
        return room.engine.get_stats().to_dict()
"""

from typing import Annotated

from fastapi import Depends, Request

from fairline.app.services.room import WaitingRoom


def get_room(request: Request) -> WaitingRoom:
    return request.app.state.room


RoomDep = Annotated[WaitingRoom, Depends(get_room)]

__all__ = ["RoomDep", "get_room"]
