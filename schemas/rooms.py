from pydantic import BaseModel, Field
from typing import Optional


class CreateRoomRequest(BaseModel):
    name: str = Field(min_length=1, max_length=64)

class RoomResponse(BaseModel):
    id: int
    name: str
    created_by: str
    created_at: str

class RoomSummary(RoomResponse):
    member_count: int
    online_count: int
    is_member: bool

class RoomListResponse(BaseModel):
    rooms: list[RoomSummary]

class RoomDetailsResponse(RoomSummary):
    members: Optional[list[str]] = None

class MembershipResponse(BaseModel):
    room_id: int
    username: str
    member_count: int
    message: str

class HistoryMessage(BaseModel):
    type: str
    username: str
    roomId: int
    timestamp: str
    content: str
    imageUrl: Optional[str] = None
    pdfUrl: Optional[str] = None
    pdfName: Optional[str] = None
    emoji: Optional[str] = None

class HistoryResponse(BaseModel):
    room_id: int
    messages: list[HistoryMessage]
