# Export all models
from .api import (
    AddParticipantsRequest,
    AddParticipantsResponse,
    ConversationResponse,
    ConversationUpdate,
    CreateConversationRequest,
    CreateConversationResponse,
    EditMessageRequest,
    LastMessage,
    MessagePage,
    MessageResponse,
    MessageSender,
    ParticipantResponse,
    PollResponse,
    PresenceBatchResponse,
    PresenceStatus,
    ReadStateResponse,
    SendMessageRequest,
    UnreadCountResponse,
    UserSummary,
)
from .db import (
    ConversationModel,
    MessageModel,
    ParticipantModel,
    UserModel,
)

__all__ = [
    # API models
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
    # DB models
    "ConversationModel",
    "MessageModel",
    "ParticipantModel",
    "UserModel",
]
