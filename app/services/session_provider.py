"""
app/services/session_provider.py

Purpose: Session provider contract

- Abstract capability representing one live messaging session
- Emits lifecycle events (qr, authenticated, ready, auth_failure, disconnected)
- Exposes async messaging and group operations once ready
- Plain data records for provider results
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional

from app.core.logging import get_logger
from app.flow.states import SessionEvent

logger = get_logger(__name__)

EventListener = Callable[[SessionEvent, Optional[str]], None]


class SessionProviderError(Exception):
    """Raised when the underlying session fails an operation."""
    pass


class ChatNotFoundError(SessionProviderError):
    """Raised when a chat id cannot be resolved."""
    pass


class SessionNotFoundError(SessionProviderError):
    """Raised when the session itself no longer exists on the provider side."""
    pass


@dataclass
class SentMessage:
    id: str
    timestamp: Optional[int]
    to: str


@dataclass
class CreatedGroup:
    gid: str
    invite_code: Optional[str] = None


@dataclass
class GroupParticipant:
    id: str
    is_admin: bool = False
    is_super_admin: bool = False


@dataclass
class Chat:
    """
    Snapshot of a chat as reported by the session.
    Group-only fields stay at their defaults for direct chats.
    """
    id: str
    name: str = ""
    is_group: bool = False
    participants: List[GroupParticipant] = field(default_factory=list)
    description: str = ""
    created_at: Optional[int] = None
    owner: Optional[str] = None
    is_read_only: bool = False
    unread_count: int = 0
    archived: bool = False
    pinned: bool = False
    is_muted: bool = False
    invite_code: Optional[str] = None
    messages_admins_only: bool = False
    edit_info_admins_only: bool = False


class SessionProvider(ABC):
    """
    One messaging session.

    Implementations call ``self.emit(event, payload)`` whenever the session's
    lifecycle changes; listeners registered with ``add_listener`` receive
    ``(SessionEvent, payload)``.
    """

    def __init__(self, session_id: str):
        self.session_id = session_id
        self._listeners: List[EventListener] = []

    def add_listener(self, listener: EventListener) -> None:
        self._listeners.append(listener)

    def emit(self, event: SessionEvent, payload: Optional[str] = None) -> None:
        for listener in list(self._listeners):
            try:
                listener(event, payload)
            except Exception as e:
                logger.error(
                    f"Listener failed for {event.value}: {e}",
                    extra={"instance_id": self.session_id},
                    exc_info=True,
                )

    # Lifecycle

    @abstractmethod
    async def initialize(self) -> None:
        """Start the session. Returns before the session is ready."""

    @abstractmethod
    async def destroy(self) -> None:
        """Tear the session down and stop emitting events."""

    # Messaging

    @abstractmethod
    async def send_message(self, chat_id: str, text: str) -> SentMessage:
        ...

    # Groups

    @abstractmethod
    async def create_group(self, name: str, participants: List[str]) -> CreatedGroup:
        ...

    @abstractmethod
    async def get_chats(self) -> List[Chat]:
        ...

    @abstractmethod
    async def get_chat_by_id(self, chat_id: str) -> Chat:
        """Raises ChatNotFoundError when the id cannot be resolved."""

    @abstractmethod
    async def set_group_subject(self, group_id: str, subject: str) -> None:
        ...

    @abstractmethod
    async def set_group_description(self, group_id: str, description: str) -> None:
        ...

    @abstractmethod
    async def set_messages_admins_only(self, group_id: str, admins_only: bool) -> None:
        ...

    @abstractmethod
    async def set_info_admins_only(self, group_id: str, admins_only: bool) -> None:
        ...

    @abstractmethod
    async def add_participants(self, group_id: str, participants: List[str]) -> Any:
        """Returns the session's raw add result."""

    @abstractmethod
    async def promote_participants(self, group_id: str, participants: List[str]) -> None:
        ...

    @abstractmethod
    async def demote_participants(self, group_id: str, participants: List[str]) -> None:
        ...

    @abstractmethod
    async def get_invite_code(self, group_id: str) -> Optional[str]:
        """Current invite code; the session mints one when none exists."""

    @abstractmethod
    async def revoke_invite(self, group_id: str) -> None:
        ...
