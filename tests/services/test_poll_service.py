from datetime import timedelta
from typing import Any, Dict

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from app.services.conversation_service import ConversationService
from app.services.message_service import MessageService
from app.services.poll_service import PollService
from app.utils.timestamps import as_utc, utcnow


class TestPollService:
    """Integration tests for the server-side update feed."""

    @pytest.fixture
    def service(self, test_db: AsyncSession, users: Dict[int, Any]) -> PollService:
        return PollService(test_db)

    @pytest.fixture
    def conversations(self, test_db: AsyncSession) -> ConversationService:
        return ConversationService(test_db)

    @pytest.fixture
    def messages(self, test_db: AsyncSession) -> MessageService:
        return MessageService(test_db)

    async def test_updates_without_since_cover_all_active_conversations(
        self,
        service: PollService,
        conversations: ConversationService,
        messages: MessageService,
    ) -> None:
        """Test that conversations without messages are left out of the feed."""
        active, _ = await conversations.create_or_get_conversation(
            1, [2], initial_message="hi"
        )
        await conversations.create_or_get_conversation(1, [3])

        result = await service.get_updates(2)

        assert [u.conversation_id for u in result.conversations] == [active.id]
        assert result.conversations[0].new_message_count == 1
        assert result.conversations[0].last_message.content == "hi"

        quiet = await service.get_updates(3)
        assert quiet.conversations == []

    async def test_updates_since_server_time(
        self,
        service: PollService,
        conversations: ConversationService,
        messages: MessageService,
    ) -> None:
        """Test that passing back server_time only reports later activity."""
        first, _ = await conversations.create_or_get_conversation(
            1, [2], initial_message="one"
        )
        second, _ = await conversations.create_or_get_conversation(
            1, [3], initial_message="two"
        )

        baseline = await service.get_updates(1)
        assert {u.conversation_id for u in baseline.conversations} == {
            first.id,
            second.id,
        }

        await messages.append_message(second.id, 3, "three")
        later = await service.get_updates(1, since=baseline.server_time)

        assert [u.conversation_id for u in later.conversations] == [second.id]
        assert later.conversations[0].new_message_count == 1
        assert later.conversations[0].last_message.content == "three"

    async def test_server_time_is_taken_before_the_query(
        self, service: PollService
    ) -> None:
        before = utcnow()
        result = await service.get_updates(1)
        assert before <= as_utc(result.server_time) <= utcnow()

    async def test_future_since_returns_nothing(
        self, service: PollService, conversations: ConversationService
    ) -> None:
        await conversations.create_or_get_conversation(1, [2], initial_message="hi")
        result = await service.get_updates(1, since=utcnow() + timedelta(minutes=5))
        assert result.conversations == []

    async def test_unread_conversation_count(
        self,
        service: PollService,
        conversations: ConversationService,
        messages: MessageService,
    ) -> None:
        first, _ = await conversations.create_or_get_conversation(
            1, [2], initial_message="a"
        )
        await conversations.create_or_get_conversation(1, [3], initial_message="b")
        await conversations.create_or_get_conversation(2, [3], initial_message="c")

        assert await service.unread_conversation_count(2) == 1
        assert await service.unread_conversation_count(3) == 2
        assert await service.unread_conversation_count(1) == 0

        await messages.mark_conversation_as_read(first.id, 2)
        assert await service.unread_conversation_count(2) == 0
