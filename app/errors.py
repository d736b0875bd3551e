"""Domain errors raised by the messaging core.

Every failure is scoped to a single operation. Routers translate these into
HTTP responses and the sync poller decides which ones to swallow.
"""

from contextlib import contextmanager
from typing import Iterator

from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError


class MessagingError(Exception):
    """Base class for messaging core errors."""

    def __init__(self, message: str = ""):
        self.message = message
        super().__init__(message)


class NotAuthorized(MessagingError):
    """Sender or requester is not a participant of the conversation."""


class NotFound(MessagingError):
    """Conversation or message does not exist or is not visible to the user."""


class InvalidInput(MessagingError):
    """Empty content, malformed participant set, bad cursors and the like."""


class TransientIO(MessagingError):
    """Network or storage failure on a single fetch or append."""


@contextmanager
def storage_errors() -> Iterator[None]:
    """Re-raise storage connectivity failures as TransientIO.

    Constraint violations, SQL errors and bad data propagate unchanged.
    """
    try:
        yield
    except (OperationalError, InterfaceError) as e:
        raise TransientIO("Storage temporarily unavailable") from e
    except DBAPIError as e:
        if not e.connection_invalidated:
            raise
        raise TransientIO("Storage connection lost") from e
