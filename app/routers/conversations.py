import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import MAX_MESSAGE_ID, MESSAGE_PAGE_SIZE
from app.database import get_db
from app.dependencies import get_current_user_id
from app.errors import MessagingError
from app.models.api.conversations import (
    ConversationResponse,
    CreateConversationRequest,
    CreateConversationResponse,
)
from app.models.api.messages import (
    EditMessageRequest,
    MessagePage,
    MessageResponse,
    ReadStateResponse,
    SendMessageRequest,
)
from app.models.api.participants import AddParticipantsRequest, AddParticipantsResponse
from app.routers.errors import to_http_exception
from app.services.conversation_service import ConversationService
from app.services.message_service import MessageService

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("", response_model=List[ConversationResponse])
async def list_conversations(
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> List[ConversationResponse]:
    """List the caller's conversations, most recently active first."""
    try:
        service = ConversationService(db)
        return await service.list_conversations(user_id)
    except MessagingError as e:
        raise to_http_exception(e)
    except Exception:
        logger.exception("Failed to list conversations for user %s", user_id)
        raise HTTPException(status_code=500, detail="Internal server error")


@router.post("", response_model=CreateConversationResponse, status_code=201)
async def create_conversation(
    request: CreateConversationRequest,
    response: Response,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> CreateConversationResponse:
    """
    Start a conversation with the given users.

    For a 1:1 pair that already talks, the existing conversation is returned
    with ``existing: true`` and status 200 instead of 201.
    """
    try:
        service = ConversationService(db)
        conversation, existing = await service.create_or_get_conversation(
            initiator_id=user_id,
            participant_ids=request.participant_ids,
            title=request.title,
            is_group=request.is_group,
            initial_message=request.initial_message,
            content_format=request.content_format,
        )
    except MessagingError as e:
        raise to_http_exception(e)
    except Exception:
        logger.exception("Failed to create conversation for user %s", user_id)
        raise HTTPException(status_code=500, detail="Internal server error")

    if existing:
        response.status_code = 200
    return CreateConversationResponse(conversation=conversation, existing=existing)


@router.get("/{conversation_id}", response_model=ConversationResponse)
async def get_conversation(
    conversation_id: int,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> ConversationResponse:
    """Get a single conversation as the caller sees it."""
    try:
        service = ConversationService(db)
        return await service.get_conversation(conversation_id, user_id)
    except MessagingError as e:
        raise to_http_exception(e)
    except Exception:
        logger.exception("Failed to load conversation %s", conversation_id)
        raise HTTPException(status_code=500, detail="Internal server error")


@router.post(
    "/{conversation_id}/participants", response_model=AddParticipantsResponse
)
async def add_participants(
    conversation_id: int,
    request: AddParticipantsRequest,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> AddParticipantsResponse:
    """Add users to a conversation; ids that are already members are ignored."""
    try:
        service = ConversationService(db)
        return await service.add_participants(
            conversation_id, requester_id=user_id, user_ids=request.user_ids
        )
    except MessagingError as e:
        raise to_http_exception(e)
    except Exception:
        logger.exception("Failed to add participants to %s", conversation_id)
        raise HTTPException(status_code=500, detail="Internal server error")


@router.get("/{conversation_id}/messages", response_model=MessagePage)
async def get_conversation_messages(
    conversation_id: int,
    before: Optional[int] = Query(
        None,
        ge=1,
        le=MAX_MESSAGE_ID,
        description="Return messages older than this message id",
    ),
    after: Optional[int] = Query(
        None,
        ge=0,
        le=MAX_MESSAGE_ID,
        description="Return messages newer than this message id",
    ),
    limit: int = Query(MESSAGE_PAGE_SIZE, description="Maximum messages to return"),
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> MessagePage:
    """
    Page through a conversation's messages, oldest first within the page.

    Query parameters:
    - before: history cursor; pass the previous page's oldest_id
    - after: sync cursor; pass the newest id already seen
    - limit: page size (default: 50, max: 100)
    At most one of before/after may be given.
    """
    try:
        service = MessageService(db)
        return await service.fetch_messages(
            conversation_id, user_id, before=before, after=after, limit=limit
        )
    except MessagingError as e:
        raise to_http_exception(e)
    except Exception:
        logger.exception("Failed to fetch messages for %s", conversation_id)
        raise HTTPException(status_code=500, detail="Internal server error")


@router.post(
    "/{conversation_id}/messages", response_model=MessageResponse, status_code=201
)
async def send_message(
    conversation_id: int,
    request: SendMessageRequest,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> MessageResponse:
    """Append a message from the caller."""
    try:
        service = MessageService(db)
        return await service.append_message(
            conversation_id, user_id, request.content, request.content_format
        )
    except MessagingError as e:
        raise to_http_exception(e)
    except Exception:
        logger.exception("Failed to send message to %s", conversation_id)
        raise HTTPException(status_code=500, detail="Internal server error")


@router.patch(
    "/{conversation_id}/messages/{message_id}", response_model=MessageResponse
)
async def edit_message(
    conversation_id: int,
    message_id: int,
    request: EditMessageRequest,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> MessageResponse:
    try:
        service = MessageService(db)
        return await service.edit_message(
            conversation_id, message_id, user_id, request.content
        )
    except MessagingError as e:
        raise to_http_exception(e)
    except Exception:
        logger.exception("Failed to edit message %s/%s", conversation_id, message_id)
        raise HTTPException(status_code=500, detail="Internal server error")


@router.delete(
    "/{conversation_id}/messages/{message_id}", response_model=MessageResponse
)
async def delete_message(
    conversation_id: int,
    message_id: int,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> MessageResponse:
    try:
        service = MessageService(db)
        return await service.delete_message(conversation_id, message_id, user_id)
    except MessagingError as e:
        raise to_http_exception(e)
    except Exception:
        logger.exception(
            "Failed to delete message %s/%s", conversation_id, message_id
        )
        raise HTTPException(status_code=500, detail="Internal server error")


@router.post("/{conversation_id}/read", response_model=ReadStateResponse)
async def mark_conversation_as_read(
    conversation_id: int,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> ReadStateResponse:
    """Mark everything currently in the conversation as read by the caller."""
    try:
        service = MessageService(db)
        return await service.mark_conversation_as_read(conversation_id, user_id)
    except MessagingError as e:
        raise to_http_exception(e)
    except Exception:
        logger.exception("Failed to mark %s as read", conversation_id)
        raise HTTPException(status_code=500, detail="Internal server error")
