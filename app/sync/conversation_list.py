import logging
from typing import Any, Dict, Iterable, List, Optional, Set

from app.models.api.conversations import ConversationResponse
from app.models.api.messages import ConversationUpdate
from app.services.presence_service import collect_presence_ids
from app.utils.timestamps import as_utc

logger = logging.getLogger(__name__)


class ConversationListState:
    """The caller's conversation list, folded forward from poller updates.

    Kept sorted by most recent activity. Unread counts are bumped locally for
    every conversation except the one currently open.
    """

    def __init__(
        self, viewer_id: int, conversations: Iterable[ConversationResponse] = ()
    ):
        self.viewer_id = viewer_id
        self.active_conversation_id: Optional[int] = None
        self._by_id: Dict[int, ConversationResponse] = {
            c.id: c for c in conversations
        }
        self._order: List[int] = []
        self._sort()

    @property
    def conversations(self) -> List[ConversationResponse]:
        return [self._by_id[cid] for cid in self._order]

    def get(self, conversation_id: int) -> Optional[ConversationResponse]:
        return self._by_id.get(conversation_id)

    def apply_updates(self, updates: Iterable[ConversationUpdate]) -> Set[int]:
        """Fold poller updates in and re-sort.

        Returns the ids of conversations the list does not hold yet, so the
        caller can fetch them.
        """
        unknown = set()
        for update in updates:
            conversation = self._by_id.get(update.conversation_id)
            if conversation is None:
                unknown.add(update.conversation_id)
                continue

            changes: Dict[str, Any] = {}
            if update.last_message is not None:
                changes["last_message"] = update.last_message
                activity = as_utc(update.last_message.created_at)
                if activity > as_utc(conversation.updated_at):
                    changes["updated_at"] = activity
            if update.conversation_id != self.active_conversation_id:
                changes["unread_count"] = self._unread_after(conversation, update)
            self._by_id[update.conversation_id] = conversation.model_copy(
                update=changes
            )

        self._sort()
        if unknown:
            logger.debug("Updates for conversations not in list: %s", unknown)
        return unknown

    def add(self, conversation: ConversationResponse, existing: bool = False) -> None:
        """Show a conversation that was just created or looked up, and open it.

        A pre-existing conversation already in the list is only selected.
        """
        if not (existing and conversation.id in self._by_id):
            self._by_id[conversation.id] = conversation
            self._sort()
        self.select(conversation.id)

    def select(self, conversation_id: Optional[int]) -> None:
        """Make a conversation the open one (None closes it)."""
        self.active_conversation_id = conversation_id
        if conversation_id is not None:
            self.mark_read(conversation_id)

    def mark_read(self, conversation_id: int) -> None:
        conversation = self._by_id.get(conversation_id)
        if conversation is not None and conversation.unread_count:
            self._by_id[conversation_id] = conversation.model_copy(
                update={"unread_count": 0}
            )

    def unread_conversation_count(self) -> int:
        return sum(1 for c in self._by_id.values() if c.unread_count > 0)

    def presence_ids(self) -> Set[int]:
        """Everyone whose presence dot is shown, for one batched lookup."""
        return collect_presence_ids(self._by_id.values(), self.viewer_id)

    def _unread_after(
        self, conversation: ConversationResponse, update: ConversationUpdate
    ) -> int:
        if not update.messages:
            # Feed updates carry the server-side unread total
            return update.new_message_count
        # The viewer's own messages never count as unread
        fresh = sum(1 for m in update.messages if m.sender.id != self.viewer_id)
        return conversation.unread_count + fresh

    def _sort(self) -> None:
        self._order = sorted(
            self._by_id,
            key=lambda cid: (as_utc(self._by_id[cid].updated_at), cid),
            reverse=True,
        )
