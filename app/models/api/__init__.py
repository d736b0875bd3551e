# API models for request/response contracts
from .conversations import (
    ConversationResponse,
    CreateConversationRequest,
    CreateConversationResponse,
    LastMessage,
)
from .messages import (
    ConversationUpdate,
    EditMessageRequest,
    MessagePage,
    MessageResponse,
    MessageSender,
    PollResponse,
    PresenceBatchResponse,
    PresenceStatus,
    ReadStateResponse,
    SendMessageRequest,
    UnreadCountResponse,
)
from .participants import (
    AddParticipantsRequest,
    AddParticipantsResponse,
    ParticipantResponse,
    UserSummary,
)

__all__ = [
    "AddParticipantsRequest",
    "AddParticipantsResponse",
    "ConversationResponse",
    "ConversationUpdate",
    "CreateConversationRequest",
    "CreateConversationResponse",
    "EditMessageRequest",
    "LastMessage",
    "MessagePage",
    "MessageResponse",
    "MessageSender",
    "ParticipantResponse",
    "PollResponse",
    "PresenceBatchResponse",
    "PresenceStatus",
    "ReadStateResponse",
    "SendMessageRequest",
    "UnreadCountResponse",
    "UserSummary",
]
