from fastapi import APIRouter, Depends, HTTPException, Query, status

from backend import redis_backend
from constants import HISTORY_LIMIT
from realtime import hub
from realtime.protocol import message_event
from routers.auth import current_user
from schemas.rooms import (
    CreateRoomRequest, RoomResponse, RoomSummary, RoomListResponse, RoomDetailsResponse,
    MembershipResponse, HistoryResponse,
)
from logging_config import get_logger

logger = get_logger(__name__)

rooms_router = APIRouter(prefix="/rooms", tags=["rooms"])


async def _get_room_or_404(room_id: int) -> dict:
    room = await redis_backend.get_room(room_id)
    if not room:
        logger.warning(f"Room {room_id} not found")
        raise HTTPException(status_code=404, detail="Room not found")
    return room


@rooms_router.post("/", response_model=RoomResponse, status_code=status.HTTP_201_CREATED)
async def create_room(body: CreateRoomRequest, username: str = Depends(current_user)):
    name = body.name.strip()
    if not name:
        raise HTTPException(status_code=400, detail="Room name is required")
    logger.info(f"Room creation request from {username}, name: {name}")

    try:
        room = await redis_backend.create_room(name, username)
    except ValueError as e:
        logger.warning(f"Room creation failed for {name}: {e}")
        raise HTTPException(status_code=409, detail=str(e))

    logger.info(f"Room {room['id']} created successfully: name={name}, founder={username}")
    return RoomResponse(**room)


@rooms_router.get("/", response_model=RoomListResponse)
async def list_rooms(username: str = Depends(current_user)):
    rooms = await redis_backend.list_rooms()
    memberships = await redis_backend.rooms_of(username)
    return RoomListResponse(rooms=[
        RoomSummary(
            **room,
            online_count=hub.registry.online_count(room["id"]),
            is_member=room["id"] in memberships,
        )
        for room in rooms
    ])


@rooms_router.get("/{room_id}", response_model=RoomDetailsResponse)
async def get_room_details(room_id: int, username: str = Depends(current_user)):
    """
    Room details with member and online counts.
    The member list is only included for members of the room.
    """
    room = await _get_room_or_404(room_id)
    is_member = await redis_backend.is_member(room_id, username)
    members = None
    if is_member:
        members = sorted(await redis_backend.members(room_id))
    return RoomDetailsResponse(
        **room,
        member_count=await redis_backend.member_count(room_id),
        online_count=hub.registry.online_count(room_id),
        is_member=is_member,
        members=members,
    )


@rooms_router.post("/{room_id}/join", response_model=MembershipResponse)
async def join_room(room_id: int, username: str = Depends(current_user)):
    # Persists membership only. The WebSocket join_room event is what puts a
    # connection into the room.
    logger.info(f"Join room request for {room_id} from {username}")
    await _get_room_or_404(room_id)
    added = await redis_backend.add_member(room_id, username)
    return MembershipResponse(
        room_id=room_id,
        username=username,
        member_count=await redis_backend.member_count(room_id),
        message="Joined room" if added else "Already a member",
    )


@rooms_router.post("/{room_id}/leave", response_model=MembershipResponse)
async def leave_room(room_id: int, username: str = Depends(current_user)):
    # Live sessions are untouched: a connection still in the room fails its next
    # post with NotMember.
    logger.info(f"Leave room request for {room_id} from {username}")
    await _get_room_or_404(room_id)
    if not await redis_backend.remove_member(room_id, username):
        raise HTTPException(status_code=400, detail="Not a member of this room")
    return MembershipResponse(
        room_id=room_id,
        username=username,
        member_count=await redis_backend.member_count(room_id),
        message="Left room",
    )


@rooms_router.delete("/{room_id}")
async def delete_room(room_id: int, username: str = Depends(current_user)):
    logger.info(f"Delete room request for {room_id} from {username}")
    room = await _get_room_or_404(room_id)
    if room.get("created_by") != username:
        logger.warning(f"Delete room failed: {username} is not the creator ({room.get('created_by')}) of room {room_id}")
        raise HTTPException(status_code=403, detail="You are not the creator of the room")

    await redis_backend.delete_room(room_id)
    await hub.protocol.evict_room(room_id, "Room has been deleted by its creator")
    logger.info(f"Room {room_id} deleted by {username}")
    return {"message": "Room deleted successfully"}


@rooms_router.get("/{room_id}/messages", response_model=HistoryResponse)
async def room_messages(
    room_id: int,
    limit: int = Query(HISTORY_LIMIT, ge=1, le=500),
    username: str = Depends(current_user),
):
    await _get_room_or_404(room_id)
    if not await redis_backend.is_member(room_id, username):
        raise HTTPException(status_code=403, detail="You are not a member of this room")
    messages = await redis_backend.recent_messages(room_id, limit)
    return HistoryResponse(room_id=room_id, messages=[message_event(m) for m in messages])
