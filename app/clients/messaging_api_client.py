import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

import httpx

from app.config import MESSAGING_API_TIMEOUT, MESSAGING_API_URL
from app.errors import (
    InvalidInput,
    MessagingError,
    NotAuthorized,
    NotFound,
    TransientIO,
)
from app.models.api.conversations import (
    ConversationResponse,
    CreateConversationResponse,
)
from app.models.api.messages import (
    MessagePage,
    MessageResponse,
    PollResponse,
    PresenceBatchResponse,
    PresenceStatus,
    ReadStateResponse,
)
from app.models.api.participants import AddParticipantsResponse, UserSummary

logger = logging.getLogger(__name__)


class MessagingApiClient:
    """Conversation API client using httpx.

    Acts on behalf of one user. HTTP failures come back as the same domain
    errors the services raise, so the sync poller and thread view can treat
    local and remote calls alike.
    """

    def __init__(
        self,
        user_id: int,
        base_url: str = MESSAGING_API_URL,
        timeout: float = MESSAGING_API_TIMEOUT,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.user_id = user_id
        self.base_url = base_url
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)
        self._headers = {"X-User-Id": str(user_id)}

    async def __aenter__(self) -> "MessagingApiClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def list_conversations(self) -> List[ConversationResponse]:
        data = await self._request("GET", "/api/conversations")
        return [ConversationResponse.model_validate(item) for item in data]

    async def get_conversation(self, conversation_id: int) -> ConversationResponse:
        data = await self._request("GET", f"/api/conversations/{conversation_id}")
        return ConversationResponse.model_validate(data)

    async def create_conversation(
        self,
        participant_ids: List[int],
        title: Optional[str] = None,
        is_group: bool = False,
        initial_message: Optional[str] = None,
        content_format: str = "html",
    ) -> CreateConversationResponse:
        payload = {
            "participant_ids": participant_ids,
            "title": title,
            "is_group": is_group,
            "initial_message": initial_message,
            "content_format": content_format,
        }
        data = await self._request("POST", "/api/conversations", json=payload)
        return CreateConversationResponse.model_validate(data)

    async def add_participants(
        self, conversation_id: int, user_ids: List[int]
    ) -> AddParticipantsResponse:
        data = await self._request(
            "POST",
            f"/api/conversations/{conversation_id}/participants",
            json={"user_ids": user_ids},
        )
        return AddParticipantsResponse.model_validate(data)

    async def fetch_messages(
        self,
        conversation_id: int,
        before: Optional[int] = None,
        after: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> MessagePage:
        """Fetch one page; see the messages endpoint for cursor semantics."""
        params = {
            key: value
            for key, value in (("before", before), ("after", after), ("limit", limit))
            if value is not None
        }
        data = await self._request(
            "GET", f"/api/conversations/{conversation_id}/messages", params=params
        )
        return MessagePage.model_validate(data)

    async def send_message(
        self, conversation_id: int, content: str, content_format: str = "html"
    ) -> MessageResponse:
        data = await self._request(
            "POST",
            f"/api/conversations/{conversation_id}/messages",
            json={"content": content, "content_format": content_format},
        )
        return MessageResponse.model_validate(data)

    async def mark_read(self, conversation_id: int) -> ReadStateResponse:
        data = await self._request(
            "POST", f"/api/conversations/{conversation_id}/read"
        )
        return ReadStateResponse.model_validate(data)

    async def poll_updates(self, since: Optional[datetime] = None) -> PollResponse:
        params = {"since": since.isoformat()} if since else {}
        data = await self._request("GET", "/api/messages/poll", params=params)
        return PollResponse.model_validate(data)

    async def unread_count(self) -> int:
        data = await self._request("GET", "/api/messages/unread-count")
        return int(data["count"])

    async def search_users(
        self, query: str, limit: Optional[int] = None
    ) -> List[UserSummary]:
        params: Dict[str, Any] = {"q": query}
        if limit is not None:
            params["limit"] = limit
        data = await self._request("GET", "/api/users/search", params=params)
        return [UserSummary.model_validate(item) for item in data]

    async def heartbeat(self) -> PresenceStatus:
        data = await self._request("POST", "/api/presence/heartbeat")
        return PresenceStatus.model_validate(data)

    async def get_presence(self, user_ids: Iterable[int]) -> Dict[int, PresenceStatus]:
        ids = ",".join(str(user_id) for user_id in sorted(set(user_ids)))
        if not ids:
            return {}
        data = await self._request(
            "GET", "/api/presence/status", params={"user_ids": ids}
        )
        return PresenceBatchResponse.model_validate(data).statuses

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        try:
            response = await self._client.request(
                method, path, headers=self._headers, **kwargs
            )
        except httpx.TransportError as e:
            logger.warning("%s %s failed: %s", method, path, e)
            raise TransientIO(f"Could not reach messaging API: {e}") from e

        self._raise_for_status(response)
        return response.json()

    @staticmethod
    def _raise_for_status(response: httpx.Response) -> None:
        """Translate an error response into a domain error."""
        if response.is_success:
            return

        try:
            body = response.json()
        except ValueError:
            body = None
        detail = body.get("detail") if isinstance(body, dict) else None
        detail = str(detail or response.text)
        status = response.status_code

        if status == 404:
            raise NotFound(detail)
        if status in (401, 403):
            raise NotAuthorized(detail)
        if status in (400, 422):
            raise InvalidInput(detail)
        if status >= 500:
            raise TransientIO(detail)
        raise MessagingError(f"Unexpected status {status}: {detail}")
