"""
Shared fixtures: an in-memory session provider and registries built on it.
"""

import itertools
from typing import Any, Dict, List, Optional, Set

import pytest
from fastapi.testclient import TestClient

from app.flow.states import SessionEvent
from app.main import create_app
from app.services.instance_controller import InstanceController
from app.services.instance_registry import InstanceRegistry
from app.services.session_provider import (
    Chat,
    ChatNotFoundError,
    CreatedGroup,
    GroupParticipant,
    SentMessage,
    SessionProvider,
    SessionProviderError,
)


class FakeSessionProvider(SessionProvider):
    """
    In-memory session. Records every call in ``calls``.

    ``fail[method] = exc`` makes that method raise ``exc``;
    ``promote_failures`` lists participants whose promotion fails.
    """

    _codes = itertools.count(1)

    def __init__(self, session_id: str, qr: Optional[str] = "fake-qr"):
        super().__init__(session_id)
        self.qr = qr
        self.calls: List[tuple] = []
        self.fail: Dict[str, Exception] = {}
        self.promote_failures: Set[str] = set()
        self.chats: Dict[str, Chat] = {}
        self.invite_codes: Dict[str, str] = {}
        self.destroyed = False

    def _record(self, name: str, *args: Any) -> None:
        self.calls.append((name, args))
        if name in self.fail:
            raise self.fail[name]

    def call_names(self) -> List[str]:
        return [name for name, _ in self.calls]

    def add_group(self, group_id: str, name: str = "Team", participants: Optional[List[GroupParticipant]] = None, **kwargs) -> Chat:
        chat = Chat(id=group_id, name=name, is_group=True, participants=participants or [], **kwargs)
        self.chats[group_id] = chat
        return chat

    def add_direct_chat(self, chat_id: str, name: str = "Alice") -> Chat:
        chat = Chat(id=chat_id, name=name, is_group=False)
        self.chats[chat_id] = chat
        return chat

    # Lifecycle

    async def initialize(self) -> None:
        self._record("initialize")
        if self.qr:
            self.emit(SessionEvent.QR, self.qr)

    async def destroy(self) -> None:
        self._record("destroy")
        self.destroyed = True

    # Messaging

    async def send_message(self, chat_id: str, text: str) -> SentMessage:
        self._record("send_message", chat_id, text)
        return SentMessage(id=f"true_{chat_id}_MSG1", timestamp=1700000000, to=chat_id)

    # Groups

    async def create_group(self, name: str, participants: List[str]) -> CreatedGroup:
        self._record("create_group", name, participants)
        gid = f"1203630{len(self.chats)}@g.us"
        self.add_group(gid, name, [GroupParticipant(id=p) for p in participants])
        return CreatedGroup(gid=gid, invite_code=None)

    async def get_chats(self) -> List[Chat]:
        self._record("get_chats")
        return list(self.chats.values())

    async def get_chat_by_id(self, chat_id: str) -> Chat:
        self._record("get_chat_by_id", chat_id)
        if chat_id not in self.chats:
            raise ChatNotFoundError(f"Chat not found: {chat_id}")
        return self.chats[chat_id]

    async def set_group_subject(self, group_id: str, subject: str) -> None:
        self._record("set_group_subject", group_id, subject)
        self.chats[group_id].name = subject

    async def set_group_description(self, group_id: str, description: str) -> None:
        self._record("set_group_description", group_id, description)
        self.chats[group_id].description = description

    async def set_messages_admins_only(self, group_id: str, admins_only: bool) -> None:
        self._record("set_messages_admins_only", group_id, admins_only)
        self.chats[group_id].messages_admins_only = admins_only

    async def set_info_admins_only(self, group_id: str, admins_only: bool) -> None:
        self._record("set_info_admins_only", group_id, admins_only)
        self.chats[group_id].edit_info_admins_only = admins_only

    async def add_participants(self, group_id: str, participants: List[str]) -> Any:
        self._record("add_participants", group_id, participants)
        self.chats[group_id].participants.extend(GroupParticipant(id=p) for p in participants)
        return {p: {"code": 200} for p in participants}

    async def promote_participants(self, group_id: str, participants: List[str]) -> None:
        self._record("promote_participants", group_id, participants)
        for participant in participants:
            if participant in self.promote_failures:
                raise SessionProviderError(f"cannot promote {participant}")

    async def demote_participants(self, group_id: str, participants: List[str]) -> None:
        self._record("demote_participants", group_id, participants)

    async def get_invite_code(self, group_id: str) -> Optional[str]:
        self._record("get_invite_code", group_id)
        if group_id not in self.invite_codes:
            self.invite_codes[group_id] = f"CODE{next(self._codes)}"
        return self.invite_codes[group_id]

    async def revoke_invite(self, group_id: str) -> None:
        self._record("revoke_invite", group_id)
        self.invite_codes.pop(group_id, None)


@pytest.fixture
def provider() -> FakeSessionProvider:
    return FakeSessionProvider("bot-1")


@pytest.fixture
def controller(provider: FakeSessionProvider) -> InstanceController:
    return InstanceController("bot-1", provider)


@pytest.fixture
def ready_controller(controller: InstanceController, provider: FakeSessionProvider) -> InstanceController:
    provider.emit(SessionEvent.READY)
    provider.calls.clear()
    return controller


@pytest.fixture
def registry(tmp_path) -> InstanceRegistry:
    return InstanceRegistry(FakeSessionProvider, auth_dir=str(tmp_path / "auth"))


@pytest.fixture
def client(registry: InstanceRegistry) -> TestClient:
    return TestClient(create_app(registry))


@pytest.fixture
def make_ready(registry: InstanceRegistry):
    """Returns a function that fires the ready event for an instance and returns its provider."""
    def _make_ready(instance_id: str) -> FakeSessionProvider:
        provider = registry.get(instance_id).provider
        provider.emit(SessionEvent.READY)
        return provider
    return _make_ready
