import logging
from typing import List, Optional, Sequence, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import MAX_TITLE_LENGTH
from app.errors import (
    InvalidInput,
    NotAuthorized,
    NotFound,
    TransientIO,
    storage_errors,
)
from app.models.api.conversations import ConversationResponse
from app.models.api.participants import AddParticipantsResponse
from app.models.db.conversation_model import ConversationModel
from app.repositories.conversation_repository import (
    ConversationRepository,
    direct_key_for,
)
from app.repositories.participant_repository import ParticipantRepository
from app.repositories.user_repository import UserRepository
from app.services.message_service import MessageService
from app.utils.timestamps import utcnow

logger = logging.getLogger(__name__)

# Group names list at most this many members before "+N"
DISPLAY_NAME_MEMBERS = 3


def get_conversation_display_name(
    conversation: ConversationResponse, viewer_id: int
) -> str:
    """Name a conversation from one participant's point of view."""
    others = [p for p in conversation.participants if p.user_id != viewer_id]

    if conversation.is_group:
        if conversation.title:
            return conversation.title
        first_names = [
            p.display_name.split()[0] for p in others if p.display_name.strip()
        ]
        if not first_names:
            return "Unknown"
        shown = ", ".join(first_names[:DISPLAY_NAME_MEMBERS])
        hidden = len(first_names) - DISPLAY_NAME_MEMBERS
        return f"{shown} +{hidden}" if hidden > 0 else shown

    if others and others[0].display_name:
        return others[0].display_name
    return "Unknown"


class ConversationService:
    """Service for creating conversations and managing their participants."""

    def __init__(
        self, db: AsyncSession, message_service: Optional[MessageService] = None
    ):
        self.db = db
        self.conversation_repo = ConversationRepository(db)
        self.participant_repo = ParticipantRepository(db)
        self.user_repo = UserRepository(db)
        self.message_service = message_service or MessageService(db)

    async def create_or_get_conversation(
        self,
        initiator_id: int,
        participant_ids: Sequence[int],
        title: Optional[str] = None,
        is_group: bool = False,
        initial_message: Optional[str] = None,
        content_format: str = "html",
    ) -> Tuple[ConversationResponse, bool]:
        """
        Start a conversation, or return the existing one for a 1:1 pair:

        1. Normalize the member set (the initiator is always a member)
        2. For a non-group pair, look up the exact-set match and reuse it
        3. Otherwise create conversation, participants and the optional first
           message in one transaction

        Returns the conversation as the initiator sees it and whether it
        already existed. An existing conversation never receives
        ``initial_message``.
        """
        if not participant_ids:
            raise InvalidInput("At least one participant is required")
        members = sorted(set(participant_ids) | {initiator_id})
        if len(members) < 2:
            raise InvalidInput("A conversation needs at least one other participant")
        if title is not None:
            title = title.strip() or None
        if title and len(title) > MAX_TITLE_LENGTH:
            raise InvalidInput(f"Title exceeds {MAX_TITLE_LENGTH} characters")

        direct = not is_group and len(members) == 2
        try:
            with storage_errors():
                missing = await self.user_repo.missing_ids(members)
                if missing:
                    raise InvalidInput(f"Unknown users: {missing}")

                if direct:
                    existing_id = await self.conversation_repo.find_direct(*members)
                    if existing_id is not None:
                        conversation = await self.conversation_repo.get_for_viewer(
                            existing_id, initiator_id
                        )
                        return conversation, True

                conversation_id = await self._create(
                    initiator_id,
                    members,
                    title,
                    direct,
                    initial_message,
                    content_format,
                )
                await self.db.commit()
                conversation = await self.conversation_repo.get_for_viewer(
                    conversation_id, initiator_id
                )
        except IntegrityError:
            await self.db.rollback()
            if not direct:
                raise
            # Lost a race with a concurrent creation of the same pair
            logger.info("Direct conversation %s created concurrently", members)
            with storage_errors():
                existing_id = await self.conversation_repo.find_direct(*members)
                if existing_id is None:
                    raise TransientIO("Conversation creation conflicted, retry")
                conversation = await self.conversation_repo.get_for_viewer(
                    existing_id, initiator_id
                )
            return conversation, True
        except Exception:
            await self.db.rollback()
            raise

        logger.info(
            "Created conversation %s for users %s (group=%s)",
            conversation.id,
            members,
            conversation.is_group,
        )
        return conversation, False

    async def list_conversations(self, user_id: int) -> List[ConversationResponse]:
        """All conversations the user is in, most recently active first."""
        with storage_errors():
            return await self.conversation_repo.list_for_user(user_id)

    async def get_conversation(
        self, conversation_id: int, viewer_id: int
    ) -> ConversationResponse:
        with storage_errors():
            conversation = await self.conversation_repo.get_for_viewer(
                conversation_id, viewer_id
            )
        if conversation is None:
            raise NotFound("Conversation not found")
        return conversation

    async def add_participants(
        self, conversation_id: int, requester_id: int, user_ids: Sequence[int]
    ) -> AddParticipantsResponse:
        """
        Add users to a conversation. Existing members are skipped, so calling
        this twice with the same ids adds nobody the second time.

        New members start with everything before their arrival already read.
        Growing past two members turns the conversation into a group.
        """
        ids = list(dict.fromkeys(user_ids))
        if not ids:
            raise InvalidInput("At least one user id is required")

        try:
            with storage_errors():
                conversation = await self.conversation_repo.lock(conversation_id)
                if conversation is None:
                    raise NotFound("Conversation not found")
                requester = await self.participant_repo.get(
                    conversation_id, requester_id
                )
                if requester is None:
                    raise NotAuthorized("Requester is not a participant")

                missing = await self.user_repo.missing_ids(ids)
                if missing:
                    raise InvalidInput(f"Unknown users: {missing}")

                now = utcnow()
                added = await self.participant_repo.add_many(
                    conversation_id,
                    ids,
                    last_read_message_id=conversation.message_seq,
                    joined_at=now,
                )
                if added:
                    conversation.updated_at = now
                    if await self.participant_repo.count(conversation_id) > 2:
                        conversation.is_group = True
                        conversation.direct_key = None
                await self.db.commit()
                participants = await self.participant_repo.get_by_conversation(
                    conversation_id
                )
        except Exception:
            await self.db.rollback()
            raise

        if added:
            logger.info(
                "Added users %s to conversation %s", added, conversation_id
            )
        return AddParticipantsResponse(
            added_count=len(added),
            is_group=bool(conversation.is_group),
            participants=participants,
        )

    async def _create(
        self,
        initiator_id: int,
        members: List[int],
        title: Optional[str],
        direct: bool,
        initial_message: Optional[str],
        content_format: str,
    ) -> int:
        now = utcnow()
        conversation = await self.conversation_repo.add(
            ConversationModel(
                title=title,
                is_group=not direct,
                direct_key=direct_key_for(*members) if direct else None,
                message_seq=0,
                created_by=initiator_id,
                created_at=now,
                updated_at=now,
            )
        )
        await self.participant_repo.add_many(conversation.id, members, joined_at=now)
        if initial_message:
            await self.message_service.append_in_transaction(
                conversation.id, initiator_id, initial_message, content_format
            )
        return conversation.id
