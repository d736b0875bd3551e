from datetime import datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from app.config import MAX_MESSAGE_LENGTH
from app.models.api.conversations import LastMessage


class SendMessageRequest(BaseModel):
    """Request model for sending a message."""

    content: str = Field(
        ..., min_length=1, max_length=MAX_MESSAGE_LENGTH, description="Message body"
    )
    content_format: Literal["plain", "html"] = Field(
        default="html", description="How the body should be rendered"
    )


class EditMessageRequest(BaseModel):
    """Request model for editing a message body."""

    content: str = Field(..., min_length=1, max_length=MAX_MESSAGE_LENGTH)


class MessageSender(BaseModel):
    id: int
    display_name: str
    avatar_url: Optional[str] = None


class MessageResponse(BaseModel):
    """Response model for message data."""

    id: int
    conversation_id: int
    sender: MessageSender
    content: str  # Empty for deleted messages
    content_format: str  # 'plain' or 'html'
    created_at: datetime
    edited_at: Optional[datetime] = None
    is_deleted: bool = False

    model_config = ConfigDict(from_attributes=True)


class MessagePage(BaseModel):
    """One page of a conversation's history, oldest message first."""

    messages: List[MessageResponse]
    has_more: bool
    oldest_id: Optional[int]


class ReadStateResponse(BaseModel):
    """A participant's read cursor after marking a conversation read."""

    conversation_id: int
    last_read_message_id: int
    unread_count: int


class ConversationUpdate(BaseModel):
    """Per-conversation delta reported by the poll feed or the sync poller."""

    conversation_id: int
    new_message_count: int
    last_message: Optional[LastMessage]
    messages: List[MessageResponse] = Field(default_factory=list)


class PollResponse(BaseModel):
    """What changed since a given server time."""

    conversations: List[ConversationUpdate]
    server_time: datetime


class UnreadCountResponse(BaseModel):
    """Number of conversations holding unread messages."""

    count: int


class PresenceStatus(BaseModel):
    """Best-effort online signal for one user."""

    is_online: bool
    last_seen_at: Optional[datetime] = None


class PresenceBatchResponse(BaseModel):
    statuses: Dict[int, PresenceStatus]
