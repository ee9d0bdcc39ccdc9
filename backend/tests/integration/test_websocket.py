# backend/tests/integration/test_websocket.py
from unittest.mock import AsyncMock, MagicMock

import pytest
from starlette.websockets import WebSocketDisconnect

from chathub.models.events import CreateChatPayload, JoinChatPayload, ToggleAIPayload, VisitorMessagePayload
from chathub.models.tenant import Owner, StaffMember
from chathub.services.realtime_service import Role


@pytest.fixture
def session_mock(mocker):
    """Replaces the conversation session; each handler acknowledges over the socket."""
    session = mocker.patch("chathub.routes.realtime.conversation_session", new=MagicMock())

    def acknowledging(name):
        async def handler(connection, payload):
            connection.enqueue("test_ack", {
                "handler": name,
                "role": connection.identity.role.value,
                "payload": payload.model_dump(),
            })
        return AsyncMock(side_effect=handler)

    for name in ("create_chat", "join_chat", "handle_visitor_turn", "toggle_ai", "close"):
        setattr(session, name, acknowledging(name))
    return session


@pytest.fixture
def known_tenant(mocker, make_tenant):
    tenant = make_tenant()
    mocker.patch(
        "chathub.routes.realtime.db_service.get_tenant_by_chatbot_code",
        new_callable=AsyncMock,
        side_effect=lambda code: tenant if code == tenant.chatbot_code else None,
    )
    return tenant


def test_visitor_events_are_validated_and_dispatched(test_client, session_mock, known_tenant):
    with test_client.websocket_connect("/ws?chatbotCode=acme-bot") as ws:
        ws.send_json({"event": "create_new_chat", "data": {"email": "sam@example.com", "country": "PT"}})
        ack = ws.receive_json()

    assert ack["event"] == "test_ack"
    assert ack["data"]["handler"] == "create_chat"
    assert ack["data"]["role"] == Role.VISITOR.value
    payload = session_mock.create_chat.await_args.args[1]
    assert isinstance(payload, CreateChatPayload)
    assert payload.country == "PT"
    assert session_mock.create_chat.await_args.args[0].identity.tenant_id == known_tenant.id


def test_legacy_widget_message_fields_are_accepted(test_client, session_mock, known_tenant):
    with test_client.websocket_connect("/ws?chatbotCode=acme-bot") as ws:
        ws.send_json({
            "event": "message",
            "data": {"chatId": "chat1", "email": "sam@example.com", "message": "hi", "currentWebsiteURL": "https://acme.example.com/"},
        })
        ws.receive_json()

    payload = session_mock.handle_visitor_turn.await_args.args[1]
    assert isinstance(payload, VisitorMessagePayload)
    assert payload.text == "hi"
    assert payload.page_url == "https://acme.example.com/"


def test_chat_id_in_handshake_joins_that_chat(test_client, session_mock, known_tenant):
    with test_client.websocket_connect("/ws?chatbotCode=acme-bot&chatId=chat7") as ws:
        ack = ws.receive_json()

    assert ack["data"]["handler"] == "join_chat"
    payload = session_mock.join_chat.await_args.args[1]
    assert isinstance(payload, JoinChatPayload)
    assert payload.chat_id == "chat7"


def test_bad_frames_get_error_events(test_client, session_mock, known_tenant):
    with test_client.websocket_connect("/ws?chatbotCode=acme-bot") as ws:
        ws.send_text("{not json")
        malformed = ws.receive_json()
        ws.send_json({"event": "create_new_chat", "data": {"email": ""}})
        invalid = ws.receive_json()
        ws.send_json({"event": "close_chat", "data": {"chatId": "chat1"}})
        unsupported = ws.receive_json()

    assert malformed == {"event": "error", "data": {"event": None, "detail": "Malformed frame"}}
    assert invalid["data"] == {"event": "create_new_chat", "detail": "Invalid payload"}
    assert unsupported["data"] == {"event": "close_chat", "detail": "Unsupported event"}
    session_mock.create_chat.assert_not_awaited()
    session_mock.close.assert_not_awaited()


def test_unknown_chatbot_code_is_rejected(test_client, session_mock, known_tenant):
    with pytest.raises(WebSocketDisconnect):
        with test_client.websocket_connect("/ws?chatbotCode=nope") as ws:
            ws.receive_json()


def test_foreign_origin_is_rejected(test_client, session_mock, known_tenant):
    with pytest.raises(WebSocketDisconnect):
        with test_client.websocket_connect("/ws?chatbotCode=acme-bot", headers={"origin": "https://evil.example.com"}) as ws:
            ws.receive_json()


def test_tenant_site_origin_is_accepted(test_client, session_mock, known_tenant):
    with test_client.websocket_connect("/ws?chatbotCode=acme-bot", headers={"origin": "https://acme.example.com"}) as ws:
        ws.send_json({"event": "create_new_chat", "data": {"email": "sam@example.com"}})
        assert ws.receive_json()["event"] == "test_ack"


def test_missing_identity_is_rejected(test_client, session_mock):
    with pytest.raises(WebSocketDisconnect):
        with test_client.websocket_connect("/ws") as ws:
            ws.receive_json()


def test_owner_dashboard_dispatches_dashboard_events(test_client, session_mock, mocker):
    mocker.patch(
        "chathub.routes.realtime.db_service.get_owner",
        new_callable=AsyncMock,
        return_value=Owner(id="owner1", email="owner@acme.example.com"),
    )
    with test_client.websocket_connect("/ws?dashboardUser=owner1") as ws:
        ws.send_json({"event": "toggle_ai_responses", "data": {"chatId": "chat1", "enable": False}})
        ack = ws.receive_json()

    assert ack["data"]["role"] == Role.OWNER.value
    payload = session_mock.toggle_ai.await_args.args[1]
    assert isinstance(payload, ToggleAIPayload)
    assert payload.enable is False


def test_staff_handshake_must_match_website(test_client, session_mock, mocker):
    mocker.patch(
        "chathub.routes.realtime.db_service.get_staff",
        new_callable=AsyncMock,
        return_value=StaffMember(id="staff1", tenant_id="t1", name="Bob"),
    )
    with pytest.raises(WebSocketDisconnect):
        with test_client.websocket_connect("/ws?staffId=staff1&websiteId=t2") as ws:
            ws.receive_json()

    with test_client.websocket_connect("/ws?staffId=staff1&websiteId=t1&staffName=Bobby") as ws:
        ws.send_json({"event": "close_chat", "data": {"chatId": "chat1"}})
        ack = ws.receive_json()
    assert ack["data"]["role"] == Role.STAFF.value
    assert session_mock.close.await_args.args[0].identity.name == "Bobby"
