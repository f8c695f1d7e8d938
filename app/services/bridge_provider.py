"""
app/services/bridge_provider.py

Purpose: Session provider backed by the session bridge sidecar

- The bridge hosts the real messaging clients (browser automation, credentials)
- All operations are JSON calls over HTTP via httpx
- Bridge payloads are validated with pydantic models before use
- Lifecycle events are derived by polling the bridge's session state
- One shared AsyncClient per process, owned by BridgeProviderFactory
"""

import asyncio
import os
from typing import Any, Dict, List, Optional, Type, TypeVar
from urllib.parse import quote

import httpx
from pydantic import BaseModel, ConfigDict, ValidationError

from app.core.config import Settings, settings
from app.core.logging import get_logger
from app.flow.states import SessionEvent
from app.services.session_provider import (
    Chat,
    ChatNotFoundError,
    CreatedGroup,
    GroupParticipant,
    SentMessage,
    SessionNotFoundError,
    SessionProvider,
    SessionProviderError,
)

logger = get_logger(__name__)

# Bridge state name -> lifecycle event
BRIDGE_STATE_EVENTS: Dict[str, SessionEvent] = {
    "qr": SessionEvent.QR,
    "authenticated": SessionEvent.AUTHENTICATED,
    "ready": SessionEvent.READY,
    "auth_failure": SessionEvent.AUTH_FAILURE,
    "disconnected": SessionEvent.DISCONNECTED,
}

# Reported as the disconnect reason when the bridge has forgotten the session
SESSION_NOT_FOUND_REASON = "SESSION_NOT_FOUND"


# ============================================================================
# Bridge payloads
# ============================================================================

class BridgePayload(BaseModel):
    model_config = ConfigDict(extra="ignore")


class ParticipantPayload(BridgePayload):
    id: str
    isAdmin: Optional[bool] = False
    isSuperAdmin: Optional[bool] = False


class ChatPayload(BridgePayload):
    id: str
    name: Optional[str] = None
    isGroup: Optional[bool] = False
    participants: Optional[List[ParticipantPayload]] = None
    description: Optional[str] = None
    createdAt: Optional[int] = None
    owner: Optional[str] = None
    isReadOnly: Optional[bool] = False
    unreadCount: Optional[int] = 0
    archived: Optional[bool] = False
    pinned: Optional[bool] = False
    isMuted: Optional[bool] = False
    inviteCode: Optional[str] = None
    messagesAdminsOnly: Optional[bool] = False
    editInfoAdminsOnly: Optional[bool] = False


class StatePayload(BridgePayload):
    state: Optional[str] = None
    qr: Optional[str] = None
    reason: Optional[str] = None


class SentMessagePayload(BridgePayload):
    id: str
    timestamp: Optional[int] = None
    to: Optional[str] = None


class CreatedGroupPayload(BridgePayload):
    gid: str
    inviteCode: Optional[str] = None


class InviteCodePayload(BridgePayload):
    inviteCode: Optional[str] = None


PayloadT = TypeVar("PayloadT", bound=BridgePayload)


def validate_payload(model: Type[PayloadT], data: Any) -> PayloadT:
    """
    Validates a decoded bridge body against ``model``.

    Raises:
        SessionProviderError: If the body is missing or has the wrong shape
    """
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise SessionProviderError(
            f"Malformed session bridge response ({model.__name__}): {e.error_count()} invalid field(s)"
        )


def _segment(value: str) -> str:
    return quote(value, safe="@.")


def parse_chat(data: Any) -> Chat:
    """
    Builds a Chat from the bridge's camelCase chat payload.

    Raises:
        SessionProviderError: If the payload is not a valid chat
    """
    payload = validate_payload(ChatPayload, data)
    return Chat(
        id=payload.id,
        name=payload.name or "",
        is_group=bool(payload.isGroup),
        participants=[
            GroupParticipant(
                id=p.id,
                is_admin=bool(p.isAdmin),
                is_super_admin=bool(p.isSuperAdmin),
            )
            for p in payload.participants or []
        ],
        description=payload.description or "",
        created_at=payload.createdAt,
        owner=payload.owner,
        is_read_only=bool(payload.isReadOnly),
        unread_count=payload.unreadCount or 0,
        archived=bool(payload.archived),
        pinned=bool(payload.pinned),
        is_muted=bool(payload.isMuted),
        invite_code=payload.inviteCode,
        messages_admins_only=bool(payload.messagesAdminsOnly),
        edit_info_admins_only=bool(payload.editInfoAdminsOnly),
    )


class BridgeSessionProvider(SessionProvider):
    """
    One session hosted by the bridge, addressed by /sessions/{session_id}.

    Once destroyed, the provider never starts polling again; a start request
    that completes after destroy() is torn down immediately.
    """

    def __init__(
        self,
        session_id: str,
        client: httpx.AsyncClient,
        data_path: str,
        poll_interval: float = 2.0,
    ):
        super().__init__(session_id)
        self._client = client
        self._data_path = data_path
        self._poll_interval = poll_interval
        self._poll_task: Optional[asyncio.Task] = None
        self._last_seen: Optional[tuple] = None
        self._destroyed = False
        self._base = f"/sessions/{_segment(session_id)}"

    @property
    def is_polling(self) -> bool:
        return self._poll_task is not None and not self._poll_task.done()

    # ------------------------------------------------------------------
    # HTTP plumbing
    # ------------------------------------------------------------------

    async def _request(
        self,
        method: str,
        path: str,
        json_data: Optional[Dict[str, Any]] = None,
        not_found: Optional[SessionProviderError] = None,
    ) -> Any:
        """
        Makes a bridge request and returns the decoded JSON body (or None).

        Raises:
            SessionProviderError: ``not_found`` on 404 when given; a plain
                SessionProviderError on any other failure
        """
        try:
            response = await self._client.request(method, f"{self._base}{path}", json=json_data)
        except httpx.TimeoutException:
            raise SessionProviderError("Session bridge timed out")
        except httpx.RequestError as e:
            raise SessionProviderError(f"Unable to reach session bridge: {e}")

        if response.status_code == 404 and not_found is not None:
            raise not_found

        body: Any = None
        if response.content:
            try:
                body = response.json()
            except ValueError:
                if response.status_code < 400:
                    raise SessionProviderError("Malformed session bridge response: body is not JSON")

        if response.status_code >= 400:
            error = None
            if isinstance(body, dict):
                error = body.get("error") or body.get("message")
            raise SessionProviderError(error or f"Session bridge returned {response.status_code}")

        return body

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        if self._destroyed:
            raise SessionProviderError("Session has been destroyed")

        try:
            response = await self._client.post(
                "/sessions",
                json={"sessionId": self.session_id, "dataPath": self._data_path},
            )
        except httpx.RequestError as e:
            raise SessionProviderError(f"Unable to reach session bridge: {e}")

        if response.status_code >= 400:
            raise SessionProviderError(f"Session bridge refused to start session ({response.status_code})")

        if self._destroyed:
            logger.warning(
                "Session destroyed while starting, tearing it down",
                extra={"instance_id": self.session_id},
            )
            try:
                await self._request("DELETE", "")
            except SessionProviderError as e:
                logger.warning(f"Teardown after destroy failed: {e}", extra={"instance_id": self.session_id})
            return

        self._last_seen = None
        if not self.is_polling:
            self._poll_task = asyncio.create_task(self._poll_loop())

    async def destroy(self) -> None:
        self._destroyed = True
        await self._stop_polling()
        await self._request("DELETE", "")

    async def _stop_polling(self) -> None:
        if self.is_polling:
            self._poll_task.cancel()
            try:
                await self._poll_task
            except asyncio.CancelledError:
                pass
        self._poll_task = None

    async def poll_once(self) -> Optional[SessionEvent]:
        """
        Fetches the session state once and emits an event if it changed.
        A 404 means the bridge no longer knows the session and is reported
        as a disconnect.

        Returns:
            The emitted event, or None when nothing changed
        """
        try:
            data = await self._request(
                "GET", "/state", not_found=SessionNotFoundError(f"Session not found: {self.session_id}")
            )
            payload = validate_payload(StatePayload, data or {})
        except SessionNotFoundError:
            payload = StatePayload(state="disconnected", reason=SESSION_NOT_FOUND_REASON)

        event = BRIDGE_STATE_EVENTS.get(payload.state)
        if event is None:
            return None

        detail = payload.qr if event == SessionEvent.QR else payload.reason
        seen = (payload.state, detail)
        if seen == self._last_seen:
            return None

        self._last_seen = seen
        self.emit(event, detail)
        return event

    async def _poll_loop(self) -> None:
        while True:
            try:
                event = await self.poll_once()
            except SessionProviderError as e:
                logger.warning(f"State poll failed: {e}", extra={"instance_id": self.session_id})
                event = None
            except Exception as e:
                logger.error(f"Unexpected error while polling state: {e}", extra={"instance_id": self.session_id}, exc_info=True)
                event = None

            # Disconnected is terminal until the session is re-initialized
            if event == SessionEvent.DISCONNECTED:
                return

            await asyncio.sleep(self._poll_interval)

    # ------------------------------------------------------------------
    # Messaging
    # ------------------------------------------------------------------

    async def send_message(self, chat_id: str, text: str) -> SentMessage:
        data = await self._request("POST", "/messages", {"chatId": chat_id, "text": text})
        sent = validate_payload(SentMessagePayload, data)
        return SentMessage(id=sent.id, timestamp=sent.timestamp, to=sent.to or chat_id)

    # ------------------------------------------------------------------
    # Groups
    # ------------------------------------------------------------------

    async def create_group(self, name: str, participants: List[str]) -> CreatedGroup:
        data = await self._request("POST", "/groups", {"name": name, "participants": participants})
        created = validate_payload(CreatedGroupPayload, data)
        return CreatedGroup(gid=created.gid, invite_code=created.inviteCode)

    async def get_chats(self) -> List[Chat]:
        data = await self._request("GET", "/chats")
        if data is None:
            return []
        if not isinstance(data, list):
            raise SessionProviderError("Malformed session bridge response: chat list expected")
        return [parse_chat(item) for item in data]

    async def get_chat_by_id(self, chat_id: str) -> Chat:
        data = await self._request(
            "GET", f"/chats/{_segment(chat_id)}", not_found=ChatNotFoundError(f"Chat not found: {chat_id}")
        )
        return parse_chat(data)

    async def set_group_subject(self, group_id: str, subject: str) -> None:
        await self._request("PUT", f"/groups/{_segment(group_id)}/subject", {"subject": subject})

    async def set_group_description(self, group_id: str, description: str) -> None:
        await self._request("PUT", f"/groups/{_segment(group_id)}/description", {"description": description})

    async def set_messages_admins_only(self, group_id: str, admins_only: bool) -> None:
        await self._request("PUT", f"/groups/{_segment(group_id)}/messages-admins-only", {"value": admins_only})

    async def set_info_admins_only(self, group_id: str, admins_only: bool) -> None:
        await self._request("PUT", f"/groups/{_segment(group_id)}/info-admins-only", {"value": admins_only})

    async def add_participants(self, group_id: str, participants: List[str]) -> Any:
        return await self._request(
            "POST", f"/groups/{_segment(group_id)}/participants/add", {"participants": participants}
        )

    async def promote_participants(self, group_id: str, participants: List[str]) -> None:
        await self._request(
            "POST", f"/groups/{_segment(group_id)}/participants/promote", {"participants": participants}
        )

    async def demote_participants(self, group_id: str, participants: List[str]) -> None:
        await self._request(
            "POST", f"/groups/{_segment(group_id)}/participants/demote", {"participants": participants}
        )

    async def get_invite_code(self, group_id: str) -> Optional[str]:
        data = await self._request("GET", f"/groups/{_segment(group_id)}/invite-code")
        return validate_payload(InviteCodePayload, data or {}).inviteCode

    async def revoke_invite(self, group_id: str) -> None:
        await self._request("DELETE", f"/groups/{_segment(group_id)}/invite-code")


class BridgeProviderFactory:
    """
    Builds BridgeSessionProvider instances that share one HTTP client.

    The client is opened on first use, so building the factory (and the
    app around it) has no network side effects.
    """

    def __init__(self, config: Optional[Settings] = None, transport: Optional[httpx.AsyncBaseTransport] = None):
        self._config = config or settings
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def is_open(self) -> bool:
        return self._client is not None and not self._client.is_closed

    def _get_client(self) -> httpx.AsyncClient:
        if not self.is_open:
            headers = {"Content-Type": "application/json"}
            if self._config.SESSION_BRIDGE_TOKEN:
                headers["Authorization"] = f"Bearer {self._config.SESSION_BRIDGE_TOKEN}"

            self._client = httpx.AsyncClient(
                base_url=self._config.SESSION_BRIDGE_URL.rstrip("/"),
                timeout=self._config.SESSION_BRIDGE_TIMEOUT,
                headers=headers,
                transport=self._transport,
            )
        return self._client

    def __call__(self, instance_id: str) -> BridgeSessionProvider:
        return BridgeSessionProvider(
            session_id=instance_id,
            client=self._get_client(),
            data_path=os.path.join(self._config.AUTH_DIR, instance_id),
            poll_interval=self._config.SESSION_POLL_INTERVAL,
        )

    async def aclose(self) -> None:
        """Close the HTTP client, if one was opened."""
        if self.is_open:
            await self._client.aclose()
        self._client = None
