from typing import Annotated, Literal, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, TypeAdapter, model_validator

CONTENT_KINDS = ("message", "image", "pdf", "emoji")


class LoginEvent(BaseModel):
    type: Literal["login"]
    username: str
    secret: str = Field(validation_alias=AliasChoices("secret", "password"))


class JoinRoomEvent(BaseModel):
    type: Literal["join_room"]
    room_id: int = Field(validation_alias=AliasChoices("roomId", "room_id"))


class LeaveRoomEvent(BaseModel):
    type: Literal["leave_room"]


class ContentEvent(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    content: str = ""
    # Clients echo their room back; the server routes by session, never by this
    room_id: Optional[int] = Field(None, alias="roomId")
    image_url: Optional[str] = Field(None, alias="imageUrl")
    pdf_url: Optional[str] = Field(None, alias="pdfUrl")
    pdf_name: Optional[str] = Field(None, alias="pdfName")
    emoji: Optional[str] = None

    def extra_fields(self) -> dict:
        """Kind-specific fields, keyed the way they go out on the wire."""
        fields = {
            "imageUrl": self.image_url,
            "pdfUrl": self.pdf_url,
            "pdfName": self.pdf_name,
            "emoji": self.emoji,
        }
        return {k: v for k, v in fields.items() if v is not None}


class TextMessageEvent(ContentEvent):
    type: Literal["message"]

    @model_validator(mode="after")
    def check_content(self):
        if not self.content.strip():
            raise ValueError("message content must not be empty")
        return self


class ImageMessageEvent(ContentEvent):
    type: Literal["image"]

    @model_validator(mode="after")
    def check_image(self):
        if not self.image_url:
            raise ValueError("image messages need an imageUrl")
        return self


class PdfMessageEvent(ContentEvent):
    type: Literal["pdf"]

    @model_validator(mode="after")
    def check_pdf(self):
        if not self.pdf_url:
            raise ValueError("pdf messages need a pdfUrl")
        return self


class EmojiMessageEvent(ContentEvent):
    type: Literal["emoji"]

    @model_validator(mode="after")
    def check_emoji(self):
        if not self.emoji and not self.content:
            raise ValueError("emoji messages need an emoji")
        return self


InboundEvent = Annotated[
    Union[
        LoginEvent,
        JoinRoomEvent,
        LeaveRoomEvent,
        TextMessageEvent,
        ImageMessageEvent,
        PdfMessageEvent,
        EmojiMessageEvent,
    ],
    Field(discriminator="type"),
]

inbound_event_adapter = TypeAdapter(InboundEvent)

INBOUND_TYPES = ("login", "join_room", "leave_room") + CONTENT_KINDS
