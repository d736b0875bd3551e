from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from app.config import MAX_MESSAGE_LENGTH, MAX_TITLE_LENGTH
from app.models.api.participants import ParticipantResponse


class LastMessage(BaseModel):
    """Denormalized snapshot of the newest message in a conversation."""

    id: int
    sender_id: int
    sender_name: str
    content: str  # Plain-text preview
    created_at: datetime


class ConversationResponse(BaseModel):
    """Response model for conversation data, as seen by one participant."""

    id: int
    title: Optional[str]
    is_group: bool
    created_at: datetime
    updated_at: datetime
    participants: List[ParticipantResponse]
    last_message: Optional[LastMessage]
    unread_count: int

    model_config = ConfigDict(from_attributes=True)


class CreateConversationRequest(BaseModel):
    """Request model for starting (or finding) a conversation."""

    participant_ids: List[int] = Field(
        ..., min_length=1, description="Users to talk to; the caller is implied"
    )
    title: Optional[str] = Field(default=None, max_length=MAX_TITLE_LENGTH)
    is_group: bool = False
    initial_message: Optional[str] = Field(
        default=None, max_length=MAX_MESSAGE_LENGTH
    )
    content_format: Literal["plain", "html"] = "html"


class CreateConversationResponse(BaseModel):
    """Created or pre-existing conversation."""

    conversation: ConversationResponse
    existing: bool
