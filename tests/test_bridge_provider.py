"""Tests for app.services.bridge_provider against an httpx.MockTransport bridge."""

import asyncio
import json
from typing import Any, Callable, Dict, List

import httpx
import pytest

from fastapi.testclient import TestClient

from app.core.config import Settings
from app.core.exceptions import InviteLinkFailedError
from app.flow.states import SessionEvent
from app.main import create_app
from app.services.bridge_provider import SESSION_NOT_FOUND_REASON, BridgeProviderFactory, parse_chat
from app.services.instance_controller import InstanceController
from app.services.instance_registry import InstanceRegistry
from app.services.session_provider import ChatNotFoundError, SessionProviderError


def make_factory(tmp_path, handler: Callable[[httpx.Request], httpx.Response], **overrides) -> BridgeProviderFactory:
    config = Settings(
        SESSION_BRIDGE_URL="http://bridge.local/",
        SESSION_BRIDGE_TOKEN="secret",
        AUTH_DIR=str(tmp_path / "auth"),
        SESSION_POLL_INTERVAL=overrides.pop("poll_interval", 60.0),
        **overrides,
    )
    return BridgeProviderFactory(config, transport=httpx.MockTransport(handler))


def record_events(provider) -> List[tuple]:
    events: List[tuple] = []
    provider.add_listener(lambda event, payload: events.append((event, payload)))
    return events


class TestParseChat:

    def test_group_payload(self) -> None:
        chat = parse_chat({
            "id": "120363@g.us",
            "name": "Team",
            "isGroup": True,
            "participants": [
                {"id": "1@c.us", "isAdmin": True},
                {"id": "2@c.us", "isSuperAdmin": True},
            ],
            "createdAt": 1700000000,
            "owner": "1@c.us",
            "unreadCount": 3,
            "inviteCode": "AbC",
            "messagesAdminsOnly": True,
        })
        assert chat.is_group is True
        assert [p.id for p in chat.participants] == ["1@c.us", "2@c.us"]
        assert chat.participants[1].is_super_admin is True
        assert chat.unread_count == 3
        assert chat.invite_code == "AbC"
        assert chat.messages_admins_only is True
        assert chat.edit_info_admins_only is False

    def test_direct_chat_defaults(self) -> None:
        chat = parse_chat({"id": "15550100@c.us", "name": None, "participants": None})
        assert chat.is_group is False
        assert chat.name == ""
        assert chat.participants == []
        assert chat.description == ""


class TestRequests:

    @pytest.mark.asyncio
    async def test_send_message_wire_format(self, tmp_path) -> None:
        seen: Dict[str, Any] = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["method"] = request.method
            seen["path"] = request.url.path
            seen["auth"] = request.headers.get("Authorization")
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"id": "MSG1", "timestamp": 1700000000, "to": "15550100@c.us"})

        factory = make_factory(tmp_path, handler)
        provider = factory("bot-1")
        result = await provider.send_message("15550100@c.us", "hello")
        await factory.aclose()

        assert seen == {
            "method": "POST",
            "path": "/sessions/bot-1/messages",
            "auth": "Bearer secret",
            "body": {"chatId": "15550100@c.us", "text": "hello"},
        }
        assert result.id == "MSG1"
        assert result.timestamp == 1700000000

    @pytest.mark.asyncio
    async def test_missing_chat_is_chat_not_found(self, tmp_path) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/sessions/bot-1/chats/120363@g.us"
            return httpx.Response(404, json={"error": "no such chat"})

        factory = make_factory(tmp_path, handler)
        with pytest.raises(ChatNotFoundError):
            await factory("bot-1").get_chat_by_id("120363@g.us")
        await factory.aclose()

    @pytest.mark.asyncio
    async def test_bridge_error_message_is_surfaced(self, tmp_path) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500, json={"error": "not a group admin"})

        factory = make_factory(tmp_path, handler)
        with pytest.raises(SessionProviderError, match="not a group admin"):
            await factory("bot-1").set_group_subject("120363@g.us", "New")
        await factory.aclose()

    @pytest.mark.asyncio
    async def test_error_without_body(self, tmp_path) -> None:
        factory = make_factory(tmp_path, lambda request: httpx.Response(502))
        with pytest.raises(SessionProviderError, match="Session bridge returned 502"):
            await factory("bot-1").get_chats()
        await factory.aclose()

    @pytest.mark.asyncio
    async def test_unreachable_bridge(self, tmp_path) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        factory = make_factory(tmp_path, handler)
        with pytest.raises(SessionProviderError, match="Unable to reach session bridge"):
            await factory("bot-1").get_invite_code("120363@g.us")
        await factory.aclose()

    @pytest.mark.asyncio
    async def test_get_chats_parses_every_chat(self, tmp_path) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json=[
                {"id": "120363@g.us", "name": "Team", "isGroup": True},
                {"id": "15550100@c.us", "name": "Alice"},
            ])

        factory = make_factory(tmp_path, handler)
        chats = await factory("bot-1").get_chats()
        await factory.aclose()
        assert [c.is_group for c in chats] == [True, False]


class TestStatePolling:

    @pytest.mark.asyncio
    async def test_poll_emits_only_on_change(self, tmp_path) -> None:
        states = iter([
            {"state": "qr", "qr": "qr-1"},
            {"state": "qr", "qr": "qr-1"},
            {"state": "qr", "qr": "qr-2"},
            {"state": "ready"},
            {"state": "ready"},
        ])
        factory = make_factory(tmp_path, lambda request: httpx.Response(200, json=next(states)))
        provider = factory("bot-1")
        events = record_events(provider)

        emitted = [await provider.poll_once() for _ in range(5)]
        await factory.aclose()

        assert emitted == [SessionEvent.QR, None, SessionEvent.QR, SessionEvent.READY, None]
        assert events == [
            (SessionEvent.QR, "qr-1"),
            (SessionEvent.QR, "qr-2"),
            (SessionEvent.READY, None),
        ]

    @pytest.mark.asyncio
    async def test_unknown_state_is_ignored(self, tmp_path) -> None:
        factory = make_factory(tmp_path, lambda request: httpx.Response(200, json={"state": "starting"}))
        provider = factory("bot-1")
        events = record_events(provider)

        assert await provider.poll_once() is None
        await factory.aclose()
        assert events == []

    @pytest.mark.asyncio
    async def test_initialize_starts_session_and_polls(self, tmp_path) -> None:
        requests: List[tuple] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append((request.method, request.url.path))
            if request.method == "POST" and request.url.path == "/sessions":
                body = json.loads(request.content)
                assert body["sessionId"] == "bot-1"
                assert body["dataPath"].endswith("bot-1")
                return httpx.Response(201, json={"sessionId": "bot-1"})
            if request.url.path == "/sessions/bot-1/state":
                return httpx.Response(200, json={"state": "qr", "qr": "qr-1"})
            return httpx.Response(204)

        factory = make_factory(tmp_path, handler)
        provider = factory("bot-1")
        events = record_events(provider)

        await provider.initialize()
        await asyncio.sleep(0.05)
        await provider.destroy()
        await factory.aclose()

        assert events == [(SessionEvent.QR, "qr-1")]
        assert requests[0] == ("POST", "/sessions")
        assert requests[-1] == ("DELETE", "/sessions/bot-1")

    @pytest.mark.asyncio
    async def test_initialize_refused(self, tmp_path) -> None:
        factory = make_factory(tmp_path, lambda request: httpx.Response(409))
        with pytest.raises(SessionProviderError):
            await factory("bot-1").initialize()
        await factory.aclose()

    @pytest.mark.asyncio
    async def test_listener_errors_do_not_stop_emission(self, tmp_path) -> None:
        factory = make_factory(tmp_path, lambda request: httpx.Response(200, json={"state": "ready"}))
        provider = factory("bot-1")

        def broken(event, payload):
            raise RuntimeError("listener bug")

        provider.add_listener(broken)
        events = record_events(provider)

        assert await provider.poll_once() == SessionEvent.READY
        await factory.aclose()
        assert events == [(SessionEvent.READY, None)]

    @pytest.mark.asyncio
    async def test_poll_loop_survives_malformed_state(self, tmp_path) -> None:
        bodies = iter([
            httpx.Response(200, content=b"<html>bad gateway</html>"),
            httpx.Response(200, json=["not", "an", "object"]),
        ])

        def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "POST":
                return httpx.Response(201)
            if request.url.path.endswith("/state"):
                return next(bodies, httpx.Response(200, json={"state": "qr", "qr": "qr-1"}))
            return httpx.Response(204)

        factory = make_factory(tmp_path, handler, poll_interval=0.01)
        provider = factory("bot-1")
        events = record_events(provider)

        await provider.initialize()
        await asyncio.sleep(0.1)
        assert provider.is_polling is True
        await provider.destroy()
        await factory.aclose()

        assert events == [(SessionEvent.QR, "qr-1")]

    @pytest.mark.asyncio
    async def test_missing_session_is_reported_as_disconnect(self, tmp_path) -> None:
        factory = make_factory(tmp_path, lambda request: httpx.Response(404, json={"error": "unknown session"}))
        provider = factory("bot-1")
        events = record_events(provider)

        assert await provider.poll_once() == SessionEvent.DISCONNECTED
        assert await provider.poll_once() is None
        await factory.aclose()

        assert events == [(SessionEvent.DISCONNECTED, SESSION_NOT_FOUND_REASON)]

    @pytest.mark.asyncio
    async def test_missing_session_drops_readiness(self, tmp_path) -> None:
        factory = make_factory(tmp_path, lambda request: httpx.Response(404))
        controller = InstanceController("bot-1", factory("bot-1"))
        controller.provider.emit(SessionEvent.READY)

        await controller.provider.poll_once()
        await factory.aclose()

        assert controller.is_ready is False
        assert controller.get_status()["state"] == "DISCONNECTED"


class TestMalformedResponses:

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "response",
        [
            httpx.Response(200),
            httpx.Response(200, json={"name": "no id"}),
            httpx.Response(200, json=["a", "list"]),
            httpx.Response(200, json={"id": "g@g.us", "participants": [{"isAdmin": True}]}),
            httpx.Response(200, content=b"not json"),
        ],
    )
    async def test_chat_lookup(self, tmp_path, response) -> None:
        factory = make_factory(tmp_path, lambda request: response)
        with pytest.raises(SessionProviderError, match="Malformed session bridge response"):
            await factory("bot-1").get_chat_by_id("g@g.us")
        await factory.aclose()

    @pytest.mark.asyncio
    async def test_send_message_without_id(self, tmp_path) -> None:
        factory = make_factory(tmp_path, lambda request: httpx.Response(200, json={"timestamp": 1}))
        with pytest.raises(SessionProviderError, match="Malformed session bridge response"):
            await factory("bot-1").send_message("15550100@c.us", "hi")
        await factory.aclose()

    @pytest.mark.asyncio
    async def test_create_group_without_gid(self, tmp_path) -> None:
        factory = make_factory(tmp_path, lambda request: httpx.Response(200))
        with pytest.raises(SessionProviderError, match="Malformed session bridge response"):
            await factory("bot-1").create_group("Team", ["15550100@c.us"])
        await factory.aclose()

    @pytest.mark.asyncio
    async def test_chat_list_must_be_a_list(self, tmp_path) -> None:
        factory = make_factory(tmp_path, lambda request: httpx.Response(200, json={"chats": []}))
        with pytest.raises(SessionProviderError, match="chat list expected"):
            await factory("bot-1").get_chats()
        await factory.aclose()

    @pytest.mark.asyncio
    async def test_controller_signals_typed_failure(self, tmp_path) -> None:
        factory = make_factory(tmp_path, lambda request: httpx.Response(200))
        controller = InstanceController("bot-1", factory("bot-1"))
        controller.provider.emit(SessionEvent.READY)

        with pytest.raises(InviteLinkFailedError, match="Malformed session bridge response"):
            await controller.get_or_create_group_invite_link("b@g.us")
        await factory.aclose()

    def test_batch_reports_malformed_group_and_continues(self, tmp_path) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            path = request.url.path
            if request.method == "POST" and path == "/sessions":
                return httpx.Response(201)
            if path == "/sessions/bot-1/state":
                return httpx.Response(200, json={"state": "starting"})
            if path == "/sessions/bot-1/chats/a@g.us":
                return httpx.Response(200, json={"id": "a@g.us", "name": "Team", "isGroup": True})
            if path == "/sessions/bot-1/chats/b@g.us":
                return httpx.Response(200)
            if path == "/sessions/bot-1/groups/a@g.us/invite-code":
                return httpx.Response(200, json={"inviteCode": "AbC"})
            return httpx.Response(204)

        registry = InstanceRegistry(make_factory(tmp_path, handler), auth_dir=str(tmp_path / "auth"))
        client = TestClient(create_app(registry))
        assert client.post("/instance/create", json={"instanceId": "bot-1"}).status_code == 200
        registry.get("bot-1").provider.emit(SessionEvent.READY)

        response = client.post(
            "/groups/invite-links/batch",
            json={"instanceId": "bot-1", "groupIds": ["a@g.us", "b@g.us"]},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["summary"] == {"total": 2, "successful": 1, "failed": 1}
        assert body["results"][0]["inviteLink"] == "https://chat.whatsapp.com/AbC"
        assert body["errors"][0]["groupId"] == "b@g.us"
        assert "Malformed session bridge response" in body["errors"][0]["error"]


class TestDestroyDuringStart:

    @pytest.mark.asyncio
    async def test_removed_instance_never_polls(self, tmp_path) -> None:
        start_gate = asyncio.Event()
        requests: List[tuple] = []

        async def handler(request: httpx.Request) -> httpx.Response:
            requests.append((request.method, request.url.path))
            if request.method == "POST" and request.url.path == "/sessions":
                await start_gate.wait()
                return httpx.Response(201)
            if request.url.path.endswith("/state"):
                return httpx.Response(200, json={"state": "qr", "qr": "qr-1"})
            return httpx.Response(204)

        factory = make_factory(tmp_path, handler, poll_interval=0.01)
        registry = InstanceRegistry(factory, auth_dir=str(tmp_path / "auth"))

        creating = asyncio.create_task(registry.create("bot-1"))
        await asyncio.sleep(0.01)
        controller = registry.get("bot-1")

        await registry.remove("bot-1")
        start_gate.set()
        await creating
        await asyncio.sleep(0.05)
        await factory.aclose()

        assert "bot-1" not in registry
        assert controller.provider.is_polling is False
        assert ("GET", "/sessions/bot-1/state") not in requests
        assert requests[-1] == ("DELETE", "/sessions/bot-1")

    @pytest.mark.asyncio
    async def test_destroyed_provider_refuses_to_start(self, tmp_path) -> None:
        factory = make_factory(tmp_path, lambda request: httpx.Response(204))
        provider = factory("bot-1")
        await provider.destroy()

        with pytest.raises(SessionProviderError, match="destroyed"):
            await provider.initialize()
        await factory.aclose()


class TestFactory:

    @pytest.mark.asyncio
    async def test_client_opens_on_first_provider(self, tmp_path) -> None:
        factory = make_factory(tmp_path, lambda request: httpx.Response(204))
        assert factory.is_open is False

        factory("bot-1")
        assert factory.is_open is True

        await factory.aclose()
        assert factory.is_open is False

    def test_building_the_app_opens_no_client(self) -> None:
        app = create_app()
        assert app.state.provider_factory.is_open is False
