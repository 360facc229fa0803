"""
Pydantic schemas for request/response validation.

This module contains:
- Realtime inbound payload models (client -> server events)
- Realtime outbound event and acknowledgment models (server -> client)
- HTTP request and response models
"""

from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


def _coerce_room_id(v: Any) -> str:
    """Room ids are opaque strings; numeric ids from the page URL are accepted."""
    if isinstance(v, bool):
        raise ValueError("roomId must be a string")
    if isinstance(v, int):
        v = str(v)
    if not isinstance(v, str):
        raise ValueError("roomId must be a string")
    # Keys are compared verbatim; only blank ids are rejected
    if not v.strip():
        raise ValueError("roomId must not be empty")
    return v


# =============================================================================
# Realtime Inbound Payloads
# =============================================================================

class RoomPayload(BaseModel):
    """Payload of joinRoom/leaveRoom. The client sends the bare room id."""
    room_id: str = Field(..., description="Room (server) identifier")

    @field_validator("room_id", mode="before")
    @classmethod
    def validate_room_id(cls, v: Any) -> str:
        return _coerce_room_id(v)


class SendMessagePayload(BaseModel):
    """
    sendMessage payload.

    Sender fields supplied by the client (userId, senderId, username) are
    accepted and ignored: the sender is always the authenticated session.
    """
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    content: str = Field(
        ...,
        validation_alias=AliasChoices("content", "message"),
        description="Message text",
    )
    room_id: str = Field(..., validation_alias=AliasChoices("roomId", "room_id"))

    @field_validator("room_id", mode="before")
    @classmethod
    def validate_room_id(cls, v: Any) -> str:
        return _coerce_room_id(v)

    @field_validator("content")
    @classmethod
    def validate_content(cls, v: str) -> str:
        """Content must be non-empty after trimming; it is stored trimmed."""
        v = v.strip()
        if not v:
            raise ValueError("content must not be empty")
        return v


class SendImagePayload(BaseModel):
    """sendImage payload. imageRef is the URL returned by the upload service."""
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    image_ref: str = Field(
        ...,
        validation_alias=AliasChoices("imageRef", "imageUrl", "image_ref"),
    )
    room_id: str = Field(..., validation_alias=AliasChoices("roomId", "room_id"))

    @field_validator("room_id", mode="before")
    @classmethod
    def validate_room_id(cls, v: Any) -> str:
        return _coerce_room_id(v)

    @field_validator("image_ref")
    @classmethod
    def validate_image_ref(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("imageRef must not be empty")
        return v


class TypingPayload(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    room_id: str = Field(..., validation_alias=AliasChoices("roomId", "room_id"))
    typing: bool = Field(..., strict=True)

    @field_validator("room_id", mode="before")
    @classmethod
    def validate_room_id(cls, v: Any) -> str:
        return _coerce_room_id(v)


# =============================================================================
# Realtime Outbound Events
# =============================================================================

class IdentityEvent(BaseModel):
    user_id: int = Field(..., serialization_alias="userId")


class ChatMessageEvent(BaseModel):
    """Broadcast shape shared by chatMessage and sendImage."""
    id: int
    room_id: str = Field(..., serialization_alias="roomId")
    sender_id: int = Field(..., serialization_alias="senderId")
    content: str
    username: Optional[str] = None
    avatar_ref: Optional[str] = Field(None, serialization_alias="avatarRef")
    timestamp: str


class TypingEvent(BaseModel):
    room_id: str = Field(..., serialization_alias="roomId")
    username: Optional[str] = None
    typing: bool


class Ack(BaseModel):
    """Acknowledgment returned to the emitting client for every event."""
    ok: bool
    error: Optional[str] = None
    detail: Optional[str] = None
    id: Optional[int] = None
    created_at: Optional[str] = Field(None, serialization_alias="createdAt")
    room_id: Optional[str] = Field(None, serialization_alias="roomId")

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


# =============================================================================
# HTTP Request Models
# =============================================================================

class SignupRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    username: str = Field(..., min_length=1, max_length=64)
    email: str = Field(..., min_length=3, max_length=254)
    password: str = Field(..., min_length=8, max_length=256)
    profile_picture: Optional[str] = Field(None, alias="profilePicture")

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        v = v.strip().lower()
        local, sep, domain = v.partition("@")
        if not sep or not local or "." not in domain:
            raise ValueError("email must be a valid address")
        return v

    @field_validator("username")
    @classmethod
    def validate_username(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("username must not be empty")
        return v


class LoginRequest(BaseModel):
    """Either email or username identifies the account."""
    email: Optional[str] = None
    username: Optional[str] = None
    password: str = Field(..., min_length=1)


class ProfileUpdateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    username: Optional[str] = Field(None, min_length=1, max_length=64)
    profile_picture: Optional[str] = Field(None, alias="profilePicture")


# =============================================================================
# HTTP Response Models
# =============================================================================

class StatusResponse(BaseModel):
    status: str = Field(default="ok", description="Operation status")


class ErrorResponse(BaseModel):
    """Response model for error responses."""
    detail: str = Field(..., description="Error description")


class CurrentUserResponse(BaseModel):
    current_user_id: int = Field(..., serialization_alias="currentUserId")


class ProfileResponse(BaseModel):
    user_id: int = Field(..., serialization_alias="userId")
    username: str
    avatar_ref: Optional[str] = Field(None, serialization_alias="avatarRef")


class HistoryMessageResponse(BaseModel):
    """
    One message of a room's history, with sender display data.
    Field names match the live chatMessage event.
    """
    id: int
    content: str
    sender_id: int = Field(..., serialization_alias="senderId")
    username: str
    avatar_ref: Optional[str] = Field(None, serialization_alias="avatarRef")
    created_at: str = Field(..., serialization_alias="createdAt")

    model_config = {"from_attributes": True}


class HealthResponse(BaseModel):
    """Response model for health check endpoints."""
    status: str = Field(..., description="Health status")
    reason: Optional[str] = Field(None, description="Reason if not ready")
