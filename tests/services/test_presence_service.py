from datetime import datetime, timedelta, timezone
from typing import Any, Dict

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from app.errors import InvalidInput, NotFound
from app.models.api.conversations import ConversationResponse
from app.models.api.participants import ParticipantResponse
from app.services.presence_service import PresenceService, collect_presence_ids
from app.utils.timestamps import utcnow


class TestPresenceService:
    """Integration tests for PresenceService against SQLite."""

    @pytest.fixture
    def service(self, test_db: AsyncSession, users: Dict[int, Any]) -> PresenceService:
        return PresenceService(test_db, online_threshold_seconds=60)

    async def test_heartbeat_marks_user_online(self, service: PresenceService) -> None:
        status = await service.heartbeat(1)
        assert status.is_online is True

        statuses = await service.get_presence_batch({1, 2})
        assert statuses[1].is_online is True
        assert statuses[1].last_seen_at is not None
        assert statuses[2].is_online is False
        assert statuses[2].last_seen_at is None

    async def test_stale_heartbeat_is_offline(
        self, test_db: AsyncSession, service: PresenceService, users: Dict[int, Any]
    ) -> None:
        """Test that presence older than the threshold reads as offline."""
        users[3].last_active_at = utcnow() - timedelta(seconds=120)
        await test_db.commit()

        statuses = await service.get_presence_batch({3})
        assert statuses[3].is_online is False
        assert statuses[3].last_seen_at is not None

    async def test_unknown_users_are_offline(self, service: PresenceService) -> None:
        statuses = await service.get_presence_batch({404})
        assert list(statuses) == [404]
        assert statuses[404].is_online is False

    async def test_empty_batch(self, service: PresenceService) -> None:
        assert await service.get_presence_batch(set()) == {}

    async def test_batch_limit(self, service: PresenceService) -> None:
        with pytest.raises(InvalidInput):
            await service.get_presence_batch(set(range(1, 102)))

    async def test_batch_is_a_single_lookup(self, service: PresenceService) -> None:
        """Test that many ids cost one repository call."""
        calls = []
        real_get_many = service.user_repo.get_many

        async def counting_get_many(ids: Any) -> Any:
            calls.append(set(ids))
            return await real_get_many(ids)

        service.user_repo.get_many = counting_get_many
        await service.get_presence_batch({1, 2, 3, 4, 5})
        assert calls == [{1, 2, 3, 4, 5}]

    async def test_heartbeat_for_unknown_user(self, service: PresenceService) -> None:
        with pytest.raises(NotFound):
            await service.heartbeat(404)


class TestCollectPresenceIds:
    """Unit tests for collect_presence_ids."""

    def make_conversation(
        self, conversation_id: int, user_ids: list, is_group: bool
    ) -> ConversationResponse:
        now = datetime(2026, 1, 1, tzinfo=timezone.utc)
        return ConversationResponse(
            id=conversation_id,
            title=None,
            is_group=is_group,
            created_at=now,
            updated_at=now,
            participants=[
                ParticipantResponse(
                    user_id=user_id,
                    display_name=f"User {user_id}",
                    email=f"user{user_id}@example.com",
                    joined_at=now,
                )
                for user_id in user_ids
            ],
            last_message=None,
            unread_count=0,
        )

    def test_collects_distinct_direct_partners(self) -> None:
        conversations = [
            self.make_conversation(1, [1, 2], False),
            self.make_conversation(2, [3, 1], False),
            self.make_conversation(3, [1, 2], False),
            self.make_conversation(4, [1, 4, 5], True),
        ]
        assert collect_presence_ids(conversations, viewer_id=1) == {2, 3}

    def test_no_conversations(self) -> None:
        assert collect_presence_ids([], viewer_id=1) == set()
