"""Client-side incremental sync.

One cooperative asyncio task asks "what's new after cursor N" for every
tracked conversation on a fixed interval. At most one tick is outstanding at
a time; a tick that comes due while another is running is skipped, not
queued.
"""

import asyncio
import inspect
import logging
import random
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from app.config import (
    MESSAGE_PAGE_MAX,
    POLL_INTERVAL_SECONDS,
    POLL_MAX_BACKOFF_SECONDS,
)
from app.errors import NotAuthorized, NotFound, TransientIO
from app.models.api.conversations import LastMessage
from app.models.api.messages import ConversationUpdate, MessagePage, MessageResponse
from app.utils.formatting import truncate_content

logger = logging.getLogger(__name__)

MAX_BACKOFF_MULTIPLIER = 32
MIN_DELAY_SECONDS = 1.0
JITTER = 0.1

UpdateCallback = Callable[[List[ConversationUpdate]], Union[None, Awaitable[None]]]


class PollerState(str, Enum):
    IDLE = "idle"
    POLLING = "polling"
    BACKOFF = "backoff"
    STOPPED = "stopped"


def last_message_of(message: MessageResponse) -> LastMessage:
    """Conversation-list snapshot for a message received by polling."""
    return LastMessage(
        id=message.id,
        sender_id=message.sender.id,
        sender_name=message.sender.display_name,
        content=truncate_content(message.content),
        created_at=message.created_at,
    )


class SyncPoller:
    """
    Polls the messaging API for new messages in tracked conversations.

    ``client`` needs ``fetch_messages(conversation_id, after=..., limit=...)``
    and, with ``discover=True``, ``poll_updates(since)``. Each tick that finds
    something calls ``on_update`` once with the list of per-conversation
    updates. Messages are identified by id alone: anything at or below a
    conversation's cursor is dropped, so overlapping responses never deliver
    the same message twice.

    If ``on_update`` raises, no cursor moves and the same messages are offered
    again on the next tick.

    Transient failures put the poller into BACKOFF with an exponentially
    growing delay; it keeps retrying and never gives up on its own.
    """

    def __init__(
        self,
        client: Any,
        on_update: Optional[UpdateCallback] = None,
        interval: float = POLL_INTERVAL_SECONDS,
        max_backoff: float = POLL_MAX_BACKOFF_SECONDS,
        discover: bool = False,
        page_limit: int = MESSAGE_PAGE_MAX,
        jitter: Callable[[float, float], float] = random.uniform,
    ):
        self.client = client
        self.on_update = on_update
        self.interval = interval
        self.max_backoff = max_backoff
        self.discover = discover
        self.page_limit = page_limit
        self.jitter = jitter

        self.state = PollerState.IDLE
        self.error_count = 0
        self.since: Optional[datetime] = None
        self._cursors: Dict[int, int] = {}
        self._in_flight = False
        self._generation = 0
        self._task: Optional[asyncio.Task] = None

    @property
    def cursors(self) -> Dict[int, int]:
        """Last delivered message id per tracked conversation."""
        return dict(self._cursors)

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    def track(self, conversation_id: int, last_seen_message_id: int = 0) -> None:
        """Start syncing a conversation; a cursor never moves backwards."""
        current = self._cursors.get(conversation_id, 0)
        self._cursors[conversation_id] = max(current, last_seen_message_id)

    def untrack(self, conversation_id: int) -> None:
        self._cursors.pop(conversation_id, None)

    def start(self) -> None:
        """Schedule the polling loop on the running event loop."""
        if self._task is not None and not self._task.done():
            return
        self.state = PollerState.IDLE
        self._task = asyncio.create_task(self._run(self._generation))

    def stop(self) -> None:
        """Stop for good: no further ticks, and in-flight results are dropped."""
        self._generation += 1
        self.state = PollerState.STOPPED
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    def next_delay(self) -> float:
        """Seconds until the next tick, with jitter applied."""
        if self.error_count == 0:
            base = self.interval
        else:
            multiplier = min(2**self.error_count, MAX_BACKOFF_MULTIPLIER)
            base = min(self.interval * multiplier, self.max_backoff)
        return max(MIN_DELAY_SECONDS, base * self.jitter(1 - JITTER, 1 + JITTER))

    async def tick(self) -> List[ConversationUpdate]:
        """
        Run one poll round and return the updates it delivered.

        Returns an empty list without doing anything when a previous round is
        still outstanding or the poller is stopped.
        """
        if self._in_flight or self.state == PollerState.STOPPED:
            return []

        generation = self._generation
        conversation_ids = list(self._cursors)
        self._in_flight = True
        self.state = PollerState.POLLING
        try:
            results = await asyncio.gather(
                *(self._fetch(cid, self._cursors[cid]) for cid in conversation_ids),
                return_exceptions=True,
            )
            feed = None
            feed_error: Optional[TransientIO] = None
            if self.discover:
                try:
                    feed = await self.client.poll_updates(self.since)
                except TransientIO as e:
                    feed_error = e
        finally:
            self._in_flight = False

        if generation != self._generation:
            # Stopped while the requests were out
            return []

        unexpected = [
            r
            for r in results
            if isinstance(r, BaseException)
            and not isinstance(r, (NotFound, NotAuthorized, TransientIO))
        ]
        if unexpected:
            raise unexpected[0]

        updates: List[ConversationUpdate] = []
        advances: Dict[int, int] = {}
        failures: List[BaseException] = [feed_error] if feed_error else []
        for conversation_id, result in zip(conversation_ids, results):
            if isinstance(result, (NotFound, NotAuthorized)):
                logger.info(
                    "Conversation %s no longer available, untracking",
                    conversation_id,
                )
                self.untrack(conversation_id)
            elif isinstance(result, TransientIO):
                failures.append(result)
            else:
                update = self._merge(conversation_id, result)
                if update is not None:
                    updates.append(update)
                    advances[conversation_id] = update.messages[-1].id

        discovered: List[ConversationUpdate] = []
        if feed is not None:
            discovered = self._discover(feed.conversations)
            updates.extend(discovered)

        if failures:
            self.error_count += 1
            self.state = PollerState.BACKOFF
            logger.warning(
                "Sync tick had %d transient failure(s): %s; next retry in ~%.0fs",
                len(failures),
                failures[0],
                self.next_delay(),
            )
        else:
            self.error_count = 0
            self.state = PollerState.IDLE

        if updates and self.on_update is not None:
            outcome = self.on_update(updates)
            if inspect.isawaitable(outcome):
                await outcome

        # Cursors move only once the callback has taken the messages
        for conversation_id, message_id in advances.items():
            if conversation_id in self._cursors:
                self.track(conversation_id, message_id)
        for update in discovered:
            self.track(update.conversation_id, update.last_message.id)
        if feed is not None:
            self.since = feed.server_time
        return updates

    async def _fetch(self, conversation_id: int, cursor: int) -> MessagePage:
        return await self.client.fetch_messages(
            conversation_id, after=cursor, limit=self.page_limit
        )

    def _merge(
        self, conversation_id: int, page: MessagePage
    ) -> Optional[ConversationUpdate]:
        if conversation_id not in self._cursors:
            # Untracked while the request was out
            return None
        cursor = self._cursors[conversation_id]
        fresh = {m.id: m for m in page.messages if m.id > cursor}
        if not fresh:
            return None

        messages = [fresh[message_id] for message_id in sorted(fresh)]
        return ConversationUpdate(
            conversation_id=conversation_id,
            new_message_count=len(messages),
            last_message=last_message_of(messages[-1]),
            messages=messages,
        )

    def _discover(
        self, feed_updates: List[ConversationUpdate]
    ) -> List[ConversationUpdate]:
        discovered = []
        for update in feed_updates:
            if update.conversation_id in self._cursors or update.last_message is None:
                continue
            discovered.append(update)
        if discovered:
            logger.info(
                "Discovered %d new conversation(s): %s",
                len(discovered),
                [u.conversation_id for u in discovered],
            )
        return discovered

    async def _run(self, generation: int) -> None:
        while generation == self._generation:
            try:
                await self.tick()
            except Exception:
                logger.exception("Sync tick failed")
                self.error_count += 1
                self.state = PollerState.BACKOFF
            if generation != self._generation:
                break
            await asyncio.sleep(self.next_delay())
