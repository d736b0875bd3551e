from typing import Any, Dict, Tuple
from unittest.mock import patch

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import MAX_MESSAGE_LENGTH
from app.errors import InvalidInput, NotAuthorized, NotFound, TransientIO
from app.models.db.message_model import MessageModel
from app.repositories.conversation_repository import ConversationRepository
from app.repositories.participant_repository import ParticipantRepository
from app.services.conversation_service import ConversationService
from app.services.message_service import MessageService


async def unread_state(
    db: AsyncSession, conversation_id: int, user_id: int
) -> Tuple[int, int]:
    """Stored unread count next to the count derived from the read cursor."""
    participant = await ParticipantRepository(db).get(conversation_id, user_id)
    result = await db.execute(
        select(func.count())
        .select_from(MessageModel)
        .where(
            MessageModel.conversation_id == conversation_id,
            MessageModel.id > participant.last_read_message_id,
            MessageModel.sender_id != user_id,
        )
    )
    return participant.unread_count, result.scalar_one()


class TestMessageService:
    """Integration tests for MessageService against SQLite."""

    @pytest.fixture
    def service(self, test_db: AsyncSession) -> MessageService:
        return MessageService(test_db)

    @pytest.fixture
    async def conversation_id(
        self, test_db: AsyncSession, users: Dict[int, Any]
    ) -> int:
        """A 1:1 conversation between users 1 and 2."""
        conversation, _ = await ConversationService(test_db).create_or_get_conversation(
            1, [2]
        )
        return conversation.id

    @pytest.fixture
    async def group_id(self, test_db: AsyncSession, users: Dict[int, Any]) -> int:
        """A group conversation between users 1, 2 and 3."""
        conversation, _ = await ConversationService(test_db).create_or_get_conversation(
            1, [2, 3], title="Team"
        )
        return conversation.id

    async def test_message_ids_are_sequential_per_conversation(
        self, service: MessageService, conversation_id: int, group_id: int
    ) -> None:
        """Test that each conversation allocates ids 1, 2, 3 independently."""
        first = await service.append_message(conversation_id, 1, "one")
        second = await service.append_message(conversation_id, 2, "two")
        other = await service.append_message(group_id, 3, "elsewhere")
        third = await service.append_message(conversation_id, 1, "three")

        assert [first.id, second.id, third.id] == [1, 2, 3]
        assert other.id == 1

    async def test_append_returns_sender_info(
        self, service: MessageService, conversation_id: int
    ) -> None:
        """Test that the stored message comes back with resolved sender details."""
        message = await service.append_message(
            conversation_id, 1, "<p>Hello</p>", content_format="html"
        )

        assert message.conversation_id == conversation_id
        assert message.sender.id == 1
        assert message.sender.display_name == "Alice Smith"
        assert message.content == "<p>Hello</p>"
        assert message.content_format == "html"
        assert message.is_deleted is False

    async def test_append_updates_snapshot_and_unread(
        self, test_db: AsyncSession, service: MessageService, conversation_id: int
    ) -> None:
        """Test that appending refreshes lastMessage and bumps only others' unread."""
        await service.append_message(conversation_id, 1, "<b>hello</b> there")

        conversation = await ConversationRepository(test_db).get_for_viewer(
            conversation_id, 2
        )
        assert conversation.last_message.id == 1
        assert conversation.last_message.content == "hello there"
        assert conversation.last_message.sender_name == "Alice Smith"
        assert conversation.unread_count == 1

        sender = await ParticipantRepository(test_db).get(conversation_id, 1)
        assert sender.unread_count == 0
        assert sender.last_read_message_id == 1

    async def test_append_by_non_participant_is_not_authorized(
        self, service: MessageService, conversation_id: int
    ) -> None:
        """Test that a user outside the conversation cannot post."""
        with pytest.raises(NotAuthorized):
            await service.append_message(conversation_id, 3, "let me in")

    async def test_append_to_missing_conversation(
        self, service: MessageService, users: Dict[int, Any]
    ) -> None:
        """Test that appending to an unknown conversation is NotFound."""
        with pytest.raises(NotFound):
            await service.append_message(999, 1, "hello?")

    @pytest.mark.parametrize(
        "content,content_format",
        [
            ("", "plain"),
            ("   ", "plain"),
            ("<p> </p><br/>", "html"),
            ("hello", "markdown"),
        ],
    )
    async def test_append_rejects_invalid_content(
        self,
        service: MessageService,
        conversation_id: int,
        content: str,
        content_format: str,
    ) -> None:
        """Test that empty bodies and unknown formats are rejected."""
        with pytest.raises(InvalidInput):
            await service.append_message(
                conversation_id, 1, content, content_format=content_format
            )

    async def test_append_rejects_oversized_content(
        self, service: MessageService, conversation_id: int
    ) -> None:
        """Test the message length limit."""
        with pytest.raises(InvalidInput):
            await service.append_message(
                conversation_id, 1, "x" * (MAX_MESSAGE_LENGTH + 1), "plain"
            )

    async def test_append_runs_content_through_sanitizer(
        self, test_db: AsyncSession, conversation_id: int
    ) -> None:
        """Test that the injected sanitizer decides what gets stored."""
        service = MessageService(
            test_db, sanitizer=lambda raw: raw.replace("<script>x</script>", "")
        )

        message = await service.append_message(
            conversation_id, 1, "hi<script>x</script>"
        )
        assert message.content == "hi"

        with pytest.raises(InvalidInput):
            await service.append_message(conversation_id, 1, "<script>x</script>")

    async def test_unread_count_matches_read_cursor(
        self, test_db: AsyncSession, service: MessageService, group_id: int
    ) -> None:
        """Test that unread_count equals messages from others past the cursor."""
        await service.append_message(group_id, 1, "a")
        await service.append_message(group_id, 2, "b")
        await service.mark_conversation_as_read(group_id, 3)
        await service.append_message(group_id, 3, "c")
        await service.append_message(group_id, 1, "d")
        await service.mark_conversation_as_read(group_id, 2)
        await service.append_message(group_id, 2, "e")

        for user_id in (1, 2, 3):
            stored, derived = await unread_state(test_db, group_id, user_id)
            assert stored == derived

        assert (await unread_state(test_db, group_id, 1))[0] == 1
        assert (await unread_state(test_db, group_id, 3))[0] == 2

    async def test_mark_read_resets_and_is_idempotent(
        self, service: MessageService, conversation_id: int
    ) -> None:
        """Test that marking read twice gives the same state as once."""
        await service.append_message(conversation_id, 1, "one")
        await service.append_message(conversation_id, 1, "two")

        first = await service.mark_conversation_as_read(conversation_id, 2)
        second = await service.mark_conversation_as_read(conversation_id, 2)

        assert first == second
        assert first.last_read_message_id == 2
        assert first.unread_count == 0

    async def test_message_after_mark_read_counts_as_unread(
        self, test_db: AsyncSession, service: MessageService, conversation_id: int
    ) -> None:
        """Test that a message arriving right after a read mark is unread."""
        await service.append_message(conversation_id, 1, "one")
        await service.mark_conversation_as_read(conversation_id, 2)
        await service.append_message(conversation_id, 1, "two")

        participant = await ParticipantRepository(test_db).get(conversation_id, 2)
        assert participant.last_read_message_id == 1
        assert participant.unread_count == 1

    async def test_mark_read_by_non_participant(
        self, service: MessageService, conversation_id: int
    ) -> None:
        with pytest.raises(NotFound):
            await service.mark_conversation_as_read(conversation_id, 3)
        with pytest.raises(NotFound):
            await service.mark_conversation_as_read(999, 1)

    async def test_backward_pages_have_no_gaps_or_overlap(
        self, service: MessageService, conversation_id: int
    ) -> None:
        """Test that walking history with before=oldest_id covers every id once."""
        for n in range(1, 8):
            await service.append_message(conversation_id, 1 + n % 2, f"message {n}")

        latest = await service.fetch_messages(conversation_id, 1, limit=3)
        assert [m.id for m in latest.messages] == [5, 6, 7]
        assert latest.has_more is True
        assert latest.oldest_id == 5

        middle = await service.fetch_messages(
            conversation_id, 1, before=latest.oldest_id, limit=3
        )
        assert [m.id for m in middle.messages] == [2, 3, 4]
        assert middle.has_more is True

        last = await service.fetch_messages(
            conversation_id, 1, before=middle.oldest_id, limit=3
        )
        assert [m.id for m in last.messages] == [1]
        assert last.has_more is False
        assert last.oldest_id == 1

        seen = [m.id for page in (last, middle, latest) for m in page.messages]
        assert seen == list(range(1, 8))

    async def test_forward_page_excludes_cursor(
        self, service: MessageService, conversation_id: int
    ) -> None:
        """Test that after=X returns newer messages oldest first, capped by limit."""
        for n in range(5):
            await service.append_message(conversation_id, 1, f"message {n}")

        page = await service.fetch_messages(conversation_id, 2, after=2, limit=2)
        assert [m.id for m in page.messages] == [3, 4]
        assert page.has_more is True

        rest = await service.fetch_messages(conversation_id, 2, after=4)
        assert [m.id for m in rest.messages] == [5]
        assert rest.has_more is False

        empty = await service.fetch_messages(conversation_id, 2, after=5)
        assert empty.messages == []
        assert empty.oldest_id is None

    async def test_fetch_empty_conversation(
        self, service: MessageService, conversation_id: int
    ) -> None:
        page = await service.fetch_messages(conversation_id, 1)
        assert page.messages == []
        assert page.has_more is False
        assert page.oldest_id is None

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"before": 5, "after": 1},
            {"limit": 0},
            {"limit": 101},
            {"before": 0},
            {"after": -1},
            {"before": 2**64},
            {"after": 2**31},
        ],
    )
    async def test_fetch_rejects_bad_arguments(
        self, service: MessageService, conversation_id: int, kwargs: Dict[str, int]
    ) -> None:
        with pytest.raises(InvalidInput):
            await service.fetch_messages(conversation_id, 1, **kwargs)

    async def test_fetch_by_non_participant_is_not_found(
        self, service: MessageService, conversation_id: int
    ) -> None:
        """Test that outsiders cannot tell the conversation exists."""
        await service.append_message(conversation_id, 1, "private")
        with pytest.raises(NotFound):
            await service.fetch_messages(conversation_id, 3)

    async def test_edit_message(
        self, test_db: AsyncSession, service: MessageService, conversation_id: int
    ) -> None:
        """Test that the sender can edit and the snapshot follows."""
        await service.append_message(conversation_id, 1, "helo")

        edited = await service.edit_message(conversation_id, 1, 1, "hello")

        assert edited.content == "hello"
        assert edited.edited_at is not None
        conversation = await ConversationRepository(test_db).get_for_viewer(
            conversation_id, 1
        )
        assert conversation.last_message.content == "hello"

    async def test_edit_by_other_user_is_not_authorized(
        self, service: MessageService, conversation_id: int
    ) -> None:
        await service.append_message(conversation_id, 1, "mine")
        with pytest.raises(NotAuthorized):
            await service.edit_message(conversation_id, 1, 2, "yours now")

    async def test_edit_missing_message(
        self, service: MessageService, conversation_id: int
    ) -> None:
        with pytest.raises(NotFound):
            await service.edit_message(conversation_id, 42, 1, "nothing here")

    async def test_delete_message_is_soft_and_keeps_ids(
        self, test_db: AsyncSession, service: MessageService, conversation_id: int
    ) -> None:
        """Test that deleting hides content but never frees the id."""
        await service.append_message(conversation_id, 1, "oops")

        deleted = await service.delete_message(conversation_id, 1, 1)
        again = await service.delete_message(conversation_id, 1, 1)

        assert deleted.is_deleted is True
        assert deleted.content == ""
        assert again == deleted

        conversation = await ConversationRepository(test_db).get_for_viewer(
            conversation_id, 2
        )
        assert conversation.last_message.id == 1
        assert conversation.last_message.content == ""

        page = await service.fetch_messages(conversation_id, 2)
        assert [m.id for m in page.messages] == [1]
        assert page.messages[0].is_deleted is True

        following = await service.append_message(conversation_id, 1, "take two")
        assert following.id == 2

        with pytest.raises(InvalidInput):
            await service.edit_message(conversation_id, 1, 1, "undelete")

    async def test_delete_by_other_user_is_not_authorized(
        self, service: MessageService, conversation_id: int
    ) -> None:
        await service.append_message(conversation_id, 1, "mine")
        with pytest.raises(NotAuthorized):
            await service.delete_message(conversation_id, 1, 2)

    async def test_storage_failure_becomes_transient(
        self, service: MessageService, conversation_id: int
    ) -> None:
        """Test that a lost database connection surfaces as TransientIO."""
        with patch.object(
            service.participant_repo,
            "get",
            side_effect=OperationalError("SELECT", {}, Exception("gone away")),
        ):
            with pytest.raises(TransientIO):
                await service.append_message(conversation_id, 1, "hello")
