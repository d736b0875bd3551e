import logging
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.config import (
    MAX_MESSAGE_ID,
    MAX_MESSAGE_LENGTH,
    MESSAGE_PAGE_MAX,
    MESSAGE_PAGE_SIZE,
)
from app.errors import InvalidInput, NotAuthorized, NotFound, storage_errors
from app.models.api.messages import MessagePage, MessageResponse, ReadStateResponse
from app.models.db.conversation_model import ConversationModel
from app.models.db.message_model import MessageModel
from app.repositories.conversation_repository import ConversationRepository
from app.repositories.message_repository import MessageRepository
from app.repositories.participant_repository import ParticipantRepository
from app.utils.formatting import strip_tags, truncate_content
from app.utils.timestamps import utcnow

logger = logging.getLogger(__name__)

CONTENT_FORMATS = ("plain", "html")

# Content layer hook: raw body in, safe-to-render body out
Sanitizer = Callable[[str], str]


def passthrough_sanitizer(content: str) -> str:
    """Used when the content layer has already sanitized the body upstream."""
    return content.strip()


class MessageService:
    """Service for appending, paging and read-tracking messages in a conversation.

    The only writer of messages and read cursors: unread_count is always
    the number of messages from others above the reader's cursor.
    """

    def __init__(self, db: AsyncSession, sanitizer: Optional[Sanitizer] = None):
        self.db = db
        self.sanitizer = sanitizer or passthrough_sanitizer
        self.conversation_repo = ConversationRepository(db)
        self.message_repo = MessageRepository(db)
        self.participant_repo = ParticipantRepository(db)

    async def append_message(
        self,
        conversation_id: int,
        sender_id: int,
        content: str,
        content_format: str = "html",
    ) -> MessageResponse:
        """
        Append a message to a conversation:

        1. Validate and sanitize the body
        2. Lock the conversation row and allocate the next message id
        3. Insert the message, refresh the last-message snapshot
        4. Bump unread for everyone but the sender, advance the sender's cursor
        5. Commit and return the stored message with sender info
        """
        try:
            with storage_errors():
                message = await self.append_in_transaction(
                    conversation_id, sender_id, content, content_format
                )
                await self.db.commit()
                response = await self.message_repo.get_response(
                    conversation_id, message.id
                )
        except Exception:
            await self.db.rollback()
            raise

        logger.info(
            "Appended message %s to conversation %s from user %s",
            message.id,
            conversation_id,
            sender_id,
        )
        return response

    async def append_in_transaction(
        self,
        conversation_id: int,
        sender_id: int,
        content: str,
        content_format: str = "html",
    ) -> MessageModel:
        """Append without committing, for callers that own the transaction."""
        body = self._clean_content(content, content_format)

        conversation = await self.conversation_repo.lock(conversation_id)
        if conversation is None:
            raise NotFound("Conversation not found")

        participant = await self.participant_repo.get(conversation_id, sender_id)
        if participant is None:
            raise NotAuthorized("Sender is not a participant of this conversation")

        now = utcnow()
        message_id = conversation.message_seq + 1
        message = await self.message_repo.add(
            MessageModel(
                conversation_id=conversation_id,
                id=message_id,
                sender_id=sender_id,
                content=body,
                content_format=content_format,
                created_at=now,
                is_deleted=False,
            )
        )

        conversation.message_seq = message_id
        conversation.updated_at = now
        self._set_snapshot(
            conversation,
            message,
            sender_name=participant.user.resolved_display_name,
        )

        await self.participant_repo.increment_unread(conversation_id, sender_id)
        # Sending implies the sender has seen everything up to their own message
        await self.participant_repo.set_read_cursor(
            conversation_id, sender_id, message_id
        )
        await self.db.flush()
        return message

    async def fetch_messages(
        self,
        conversation_id: int,
        viewer_id: int,
        before: Optional[int] = None,
        after: Optional[int] = None,
        limit: int = MESSAGE_PAGE_SIZE,
    ) -> MessagePage:
        """
        Page through a conversation's history, oldest message first.

        - before: messages with id < before; has_more tells if older ones exist
        - after: messages with id > after; has_more tells if newer ones remain
        - neither: the most recent page
        The cursor id itself is never returned, so the two directions never
        overlap at the boundary.
        """
        if before is not None and after is not None:
            raise InvalidInput("Only one of 'before' and 'after' may be set")
        if limit < 1 or limit > MESSAGE_PAGE_MAX:
            raise InvalidInput(f"Limit must be between 1 and {MESSAGE_PAGE_MAX}")
        if before is not None and not 1 <= before <= MAX_MESSAGE_ID:
            raise InvalidInput("Cursor must be a valid message id")
        if after is not None and not 0 <= after <= MAX_MESSAGE_ID:
            raise InvalidInput("Cursor must be a valid message id")

        with storage_errors():
            participant = await self.participant_repo.get(conversation_id, viewer_id)
            if participant is None:
                raise NotFound("Conversation not found")

            if after is not None:
                messages, has_more = await self.message_repo.get_page_after(
                    conversation_id, after_id=after, limit=limit
                )
            else:
                messages, has_more = await self.message_repo.get_page_before(
                    conversation_id, limit=limit, before_id=before
                )

        return MessagePage(
            messages=messages,
            has_more=has_more,
            oldest_id=messages[0].id if messages else None,
        )

    async def mark_conversation_as_read(
        self, conversation_id: int, user_id: int
    ) -> ReadStateResponse:
        """Move the user's cursor to the current newest message and clear unread.

        The newest id is read under the same row lock that appends take, so a
        message landing right after the mark still counts as unread.
        """
        try:
            with storage_errors():
                conversation = await self.conversation_repo.lock(conversation_id)
                if conversation is None:
                    raise NotFound("Conversation not found")
                touched = await self.participant_repo.set_read_cursor(
                    conversation_id, user_id, conversation.message_seq
                )
                if not touched:
                    raise NotFound("Conversation not found")
                await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        return ReadStateResponse(
            conversation_id=conversation_id,
            last_read_message_id=conversation.message_seq,
            unread_count=0,
        )

    async def edit_message(
        self, conversation_id: int, message_id: int, editor_id: int, content: str
    ) -> MessageResponse:
        """Replace a message body; only its sender may do so."""
        try:
            with storage_errors():
                conversation, message = await self._load_own_message(
                    conversation_id, message_id, editor_id
                )
                if message.is_deleted:
                    raise InvalidInput("Deleted messages cannot be edited")

                message.content = self._clean_content(content, message.content_format)
                message.edited_at = utcnow()
                if conversation.last_message_id == message.id:
                    conversation.last_message_preview = truncate_content(
                        message.content
                    )
                await self.db.commit()
                response = await self.message_repo.get_response(
                    conversation_id, message_id
                )
        except Exception:
            await self.db.rollback()
            raise
        return response

    async def delete_message(
        self, conversation_id: int, message_id: int, requester_id: int
    ) -> MessageResponse:
        """Soft-delete a message; the row and its id are kept forever."""
        try:
            with storage_errors():
                conversation, message = await self._load_own_message(
                    conversation_id, message_id, requester_id
                )
                if not message.is_deleted:
                    message.is_deleted = True
                    if conversation.last_message_id == message.id:
                        conversation.last_message_preview = ""
                    await self.db.commit()
                response = await self.message_repo.get_response(
                    conversation_id, message_id
                )
        except Exception:
            await self.db.rollback()
            raise

        logger.info(
            "Deleted message %s in conversation %s", message_id, conversation_id
        )
        return response

    async def _load_own_message(
        self, conversation_id: int, message_id: int, user_id: int
    ) -> tuple:
        participant = await self.participant_repo.get(conversation_id, user_id)
        if participant is None:
            raise NotFound("Conversation not found")
        conversation = await self.conversation_repo.lock(conversation_id)
        if conversation is None:
            raise NotFound("Conversation not found")
        message = await self.message_repo.get(conversation_id, message_id)
        if message is None:
            raise NotFound("Message not found")
        if message.sender_id != user_id:
            raise NotAuthorized("Only the sender can change this message")
        return conversation, message

    def _clean_content(self, content: str, content_format: str) -> str:
        """Sanitize a body and reject it if nothing readable is left."""
        if content_format not in CONTENT_FORMATS:
            raise InvalidInput(f"Unsupported content format: {content_format}")
        if not isinstance(content, str):
            raise InvalidInput("Message content must be a string")

        body = self.sanitizer(content)
        readable = strip_tags(body) if content_format == "html" else body.strip()
        if not readable:
            raise InvalidInput("Message content cannot be empty")
        if len(body) > MAX_MESSAGE_LENGTH:
            raise InvalidInput(
                f"Message content exceeds {MAX_MESSAGE_LENGTH} characters"
            )
        return body

    @staticmethod
    def _set_snapshot(
        conversation: ConversationModel, message: MessageModel, sender_name: str
    ) -> None:
        conversation.last_message_id = message.id
        conversation.last_message_sender_id = message.sender_id
        conversation.last_message_sender_name = sender_name
        conversation.last_message_preview = truncate_content(message.content)
        conversation.last_message_at = message.created_at
