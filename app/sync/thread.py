import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timezone, tzinfo
from typing import Any, Iterable, List, Optional

from app.config import MESSAGE_PAGE_SIZE
from app.errors import TransientIO
from app.models.api.messages import ConversationUpdate, MessageResponse
from app.utils.formatting import format_day_label
from app.utils.timestamps import as_utc

logger = logging.getLogger(__name__)


@dataclass
class DayGroup:
    """Messages sent on one calendar day, in thread order."""

    day: date
    label: str
    messages: List[MessageResponse] = field(default_factory=list)


class ConversationThread:
    """
    The message list of one open conversation.

    ``client`` needs ``fetch_messages``, ``send_message`` and ``mark_read``
    (normally a MessagingApiClient). The list only ever holds messages the
    server has acknowledged, ordered by id with no duplicates. Once closed,
    results of requests still in flight are dropped on arrival.
    """

    def __init__(
        self, client: Any, conversation_id: int, page_size: int = MESSAGE_PAGE_SIZE
    ):
        self.client = client
        self.conversation_id = conversation_id
        self.page_size = page_size
        self.messages: List[MessageResponse] = []
        self.has_more = False
        self.oldest_id: Optional[int] = None
        self.visible = False
        self.closed = False

    @property
    def newest_id(self) -> int:
        """Highest message id shown; 0 for an empty thread."""
        return self.messages[-1].id if self.messages else 0

    async def open(self) -> None:
        """Load the latest page and mark the conversation read."""
        page = await self.client.fetch_messages(
            self.conversation_id, limit=self.page_size
        )
        if self.closed:
            return
        self._merge(page.messages)
        self.has_more = page.has_more
        self.oldest_id = page.oldest_id
        self.visible = True
        await self._mark_read()

    async def load_older(self) -> int:
        """Prepend the page before the oldest shown message.

        Messages already on screen are left where they are. Returns how many
        messages were added.
        """
        if self.closed or not self.has_more or self.oldest_id is None:
            return 0
        page = await self.client.fetch_messages(
            self.conversation_id, before=self.oldest_id, limit=self.page_size
        )
        if self.closed:
            return 0

        shown = {m.id for m in self.messages}
        older = [m for m in page.messages if m.id not in shown]
        self.messages = older + self.messages
        self.has_more = page.has_more
        if page.oldest_id is not None:
            self.oldest_id = min(self.oldest_id, page.oldest_id)
        return len(older)

    async def apply_update(self, update: ConversationUpdate) -> int:
        """Merge a poller update; returns the number of messages added.

        Updates for other conversations are ignored and never trigger a read
        mark here.
        """
        if self.closed or update.conversation_id != self.conversation_id:
            return 0
        added = self._merge(update.messages)
        if added and self.visible:
            await self._mark_read()
        return added

    async def apply_updates(self, updates: Iterable[ConversationUpdate]) -> int:
        """Poller callback form of apply_update."""
        added = 0
        for update in updates:
            added += await self.apply_update(update)
        return added

    async def send(
        self, content: str, content_format: str = "html"
    ) -> MessageResponse:
        """Send a message; it is shown only once the server has stored it."""
        message = await self.client.send_message(
            self.conversation_id, content, content_format
        )
        if not self.closed:
            self._merge([message])
        return message

    def group_by_day(
        self, tz: tzinfo = timezone.utc, today: Optional[date] = None
    ) -> List[DayGroup]:
        """Bucket the thread into calendar days of the viewer's timezone."""
        today = today or datetime.now(tz).date()
        groups: List[DayGroup] = []
        for message in self.messages:
            day = as_utc(message.created_at).astimezone(tz).date()
            if not groups or groups[-1].day != day:
                groups.append(DayGroup(day=day, label=format_day_label(day, today)))
            groups[-1].messages.append(message)
        return groups

    def close(self) -> None:
        self.closed = True
        self.visible = False

    async def _mark_read(self) -> None:
        try:
            await self.client.mark_read(self.conversation_id)
        except TransientIO as e:
            # Next update or reopen marks read again
            logger.warning(
                "Could not mark conversation %s read: %s", self.conversation_id, e
            )

    def _merge(self, incoming: Iterable[MessageResponse]) -> int:
        by_id = {m.id: m for m in self.messages}
        added = 0
        for message in incoming:
            if message.id not in by_id:
                by_id[message.id] = message
                added += 1
        if added:
            self.messages = [by_id[message_id] for message_id in sorted(by_id)]
        return added
