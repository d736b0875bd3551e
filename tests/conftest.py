import os
from datetime import datetime, timezone
from typing import Any, AsyncGenerator, Callable, Dict, Generator, Iterable, Optional
from unittest.mock import AsyncMock, MagicMock

# app.database reads DATABASE_URL at import time
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy.ext.asyncio import (  # noqa: E402
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool  # noqa: E402

import app.models  # noqa: E402,F401
from app.database import Base, get_db  # noqa: E402
from app.main import app  # noqa: E402
from app.models.api.conversations import (  # noqa: E402
    ConversationResponse,
    LastMessage,
)
from app.models.api.messages import MessageResponse, MessageSender  # noqa: E402
from app.models.api.participants import ParticipantResponse  # noqa: E402
from app.models.db.user_model import UserModel  # noqa: E402

SEED_USERS = [
    (1, "Alice", "Smith", "alice@example.com"),
    (2, "Bob", "Jones", "bob@example.com"),
    (3, "Carol", "White", "carol@example.com"),
    (4, "Dan", "Brown", "dan@example.com"),
    (5, "Eve", "Black", "eve@example.com"),
]


@pytest.fixture(scope="function")
async def test_engine() -> AsyncGenerator[AsyncEngine, None]:
    """In-memory SQLite engine with the full schema, one per test."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )

    # Create all tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    # Clean up
    await engine.dispose()


@pytest.fixture(scope="function")
async def test_db(test_engine: AsyncEngine) -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session for integration tests."""
    session_factory = async_sessionmaker(
        test_engine, class_=AsyncSession, expire_on_commit=False
    )

    async with session_factory() as session:
        yield session


@pytest.fixture(scope="function")
async def users(test_db: AsyncSession) -> Dict[int, UserModel]:
    """Seed the local user directory with five users."""
    seeded = {}
    for user_id, first_name, last_name, email in SEED_USERS:
        user = UserModel(
            id=user_id, first_name=first_name, last_name=last_name, email=email
        )
        test_db.add(user)
        seeded[user_id] = user
    await test_db.commit()
    return seeded


@pytest.fixture(scope="function")
async def mock_db() -> AsyncGenerator[AsyncMock, None]:
    """Create a mock database session for unit tests."""
    mock_session = AsyncMock()
    mock_session.commit = AsyncMock()
    mock_session.rollback = AsyncMock()
    mock_session.close = AsyncMock()
    mock_session.flush = AsyncMock()
    mock_session.execute = AsyncMock()
    mock_session.add = MagicMock()  # add is sync, not async

    yield mock_session


@pytest.fixture
def client(mock_db: AsyncMock) -> Generator[TestClient, Any, None]:
    """Test client with the database session replaced by a mock.

    Router tests patch the service methods, so no query ever reaches it.
    """

    async def override_get_db() -> AsyncGenerator[AsyncMock, None]:
        yield mock_db

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers() -> Dict[str, str]:
    return {"X-User-Id": "1"}


SAMPLE_TIME = datetime(2026, 3, 2, 9, 30, tzinfo=timezone.utc)
SEED_NAMES = {user_id: f"{first} {last}" for user_id, first, last, _ in SEED_USERS}


def build_message(
    message_id: int,
    conversation_id: int = 1,
    sender_id: int = 2,
    content: Optional[str] = None,
    created_at: datetime = SAMPLE_TIME,
) -> MessageResponse:
    return MessageResponse(
        id=message_id,
        conversation_id=conversation_id,
        sender=MessageSender(
            id=sender_id, display_name=SEED_NAMES.get(sender_id, "Unknown")
        ),
        content=content if content is not None else f"message {message_id}",
        content_format="plain",
        created_at=created_at,
    )


def build_conversation(
    conversation_id: int = 1,
    member_ids: Iterable[int] = (1, 2),
    is_group: bool = False,
    title: Optional[str] = None,
    last_message: Optional[MessageResponse] = None,
    unread_count: int = 0,
    updated_at: datetime = SAMPLE_TIME,
) -> ConversationResponse:
    snapshot = None
    if last_message is not None:
        snapshot = LastMessage(
            id=last_message.id,
            sender_id=last_message.sender.id,
            sender_name=last_message.sender.display_name,
            content=last_message.content,
            created_at=last_message.created_at,
        )
    return ConversationResponse(
        id=conversation_id,
        title=title,
        is_group=is_group,
        created_at=SAMPLE_TIME,
        updated_at=updated_at,
        participants=[
            ParticipantResponse(
                user_id=user_id,
                display_name=SEED_NAMES.get(user_id, "Unknown"),
                email=f"user{user_id}@example.com",
                joined_at=SAMPLE_TIME,
            )
            for user_id in member_ids
        ],
        last_message=snapshot,
        unread_count=unread_count,
    )


@pytest.fixture
def make_message() -> Callable[..., MessageResponse]:
    """Factory for MessageResponse objects as the API returns them."""
    return build_message


@pytest.fixture
def make_conversation() -> Callable[..., ConversationResponse]:
    """Factory for ConversationResponse objects as the API returns them."""
    return build_conversation
