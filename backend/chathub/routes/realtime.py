# /chathub/routes/realtime.py

import asyncio
import json
from typing import Dict, List, Optional, Set, Tuple, Type

import structlog
from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect, status
from pydantic import BaseModel, ValidationError

from chathub.models.events import (
    AssignPayload,
    ChatRefPayload,
    CreateChatPayload,
    DashboardMessagePayload,
    InboundEvent,
    JoinChatPayload,
    NewStaffPayload,
    OutboundEvent,
    ToggleAIPayload,
    VisitorMessagePayload,
)
from chathub.services.db_service import db_service
from chathub.services.realtime_service import (
    Connection,
    ConnectionIdentity,
    Role,
    connection_registry,
    owner_room,
    staff_room,
)
from chathub.services.runtime_config import normalize_origin, runtime_config
from chathub.services.session_service import conversation_session
from chathub.utils.request_utils import get_origin, get_remote_address

# The realtime endpoint: authenticates the handshake, places the connection
# in its channels, then dispatches each inbound frame to the conversation
# session as its own task. Nothing raised by a handler reaches the socket loop.

router = APIRouter()
log = structlog.get_logger(__name__)

# event name -> (payload model, session method)
VISITOR_EVENTS: Dict[str, Tuple[Type[BaseModel], str]] = {
    InboundEvent.CREATE_NEW_CHAT: (CreateChatPayload, "create_chat"),
    InboundEvent.JOIN_CHAT: (JoinChatPayload, "join_chat"),
    InboundEvent.MESSAGE: (VisitorMessagePayload, "handle_visitor_turn"),
}

DASHBOARD_EVENTS: Dict[str, Tuple[Type[BaseModel], str]] = {
    InboundEvent.DASHBOARD_MESSAGE: (DashboardMessagePayload, "handle_dashboard_message"),
    InboundEvent.TOGGLE_AI_RESPONSES: (ToggleAIPayload, "toggle_ai"),
    InboundEvent.ASSIGN_CHAT_LEAD: (AssignPayload, "assign"),
    InboundEvent.UNASSIGN_CHAT_LEAD: (ChatRefPayload, "unassign"),
    InboundEvent.CLOSE_CHAT: (ChatRefPayload, "close"),
    InboundEvent.NEW_STAFF_ADDED: (NewStaffPayload, "new_staff_added"),
}

# Handler tasks outlive their connection so a turn that is already running
# still commits after the visitor disconnects.
_inflight: Set[asyncio.Task] = set()


async def authenticate_handshake(
    websocket: WebSocket,
    chatbot_code: Optional[str],
    dashboard_user: Optional[str],
    staff_id: Optional[str],
    website_id: Optional[str],
    staff_name: Optional[str],
) -> Tuple[Optional[ConnectionIdentity], List[str]]:
    """
    Resolve the handshake query into an identity and its initial channels.

    Returns (None, []) when the handshake must be refused.
    """
    if chatbot_code:
        tenant = await db_service.get_tenant_by_chatbot_code(chatbot_code)
        if tenant is None:
            log.warning("Unknown chatbot code at handshake", chatbot_code=chatbot_code)
            return None, []
        origin = get_origin(websocket)
        if origin and not (
            runtime_config.is_origin_allowed(origin) or normalize_origin(origin) == normalize_origin(tenant.link)
        ):
            log.warning("Origin not allowed for widget", origin=origin, tenant_id=tenant.id)
            return None, []
        identity = ConnectionIdentity(role=Role.VISITOR, tenant_id=tenant.id, chatbot_code=chatbot_code)
        return identity, []

    if dashboard_user:
        owner = await db_service.get_owner(dashboard_user)
        if owner is None:
            log.warning("Unknown dashboard user at handshake", owner_id=dashboard_user)
            return None, []
        identity = ConnectionIdentity(role=Role.OWNER, owner_id=owner.id, name=owner.display_name)
        return identity, [owner_room(owner.id)]

    if staff_id and website_id:
        staff = await db_service.get_staff(staff_id)
        if staff is None or staff.tenant_id != website_id:
            log.warning("Staff handshake rejected", staff_id=staff_id, website_id=website_id)
            return None, []
        identity = ConnectionIdentity(
            role=Role.STAFF,
            tenant_id=website_id,
            staff_id=staff.id,
            name=staff_name or staff.name,
        )
        return identity, [staff_room(website_id)]

    return None, []


def dispatch(connection: Connection, frame: dict) -> Optional[asyncio.Task]:
    """Validate one inbound frame and start its handler; returns the task, if any."""
    event = frame.get("event") if isinstance(frame, dict) else None
    table = VISITOR_EVENTS if connection.identity.role == Role.VISITOR else DASHBOARD_EVENTS
    if event not in table:
        log.warning("Unsupported realtime event", event=event, connection_id=connection.id)
        connection.enqueue(OutboundEvent.ERROR, {"event": event, "detail": "Unsupported event"})
        return None

    model, method_name = table[event]
    try:
        payload = model.model_validate(frame.get("data") or {})
    except ValidationError as e:
        log.warning("Invalid realtime payload", event=event, connection_id=connection.id, errors=e.errors())
        connection.enqueue(OutboundEvent.ERROR, {"event": event, "detail": "Invalid payload"})
        return None

    handler = getattr(conversation_session, method_name)
    task = asyncio.create_task(_run_handler(connection, event, handler, payload))
    _inflight.add(task)
    task.add_done_callback(_inflight.discard)
    return task


async def _run_handler(connection: Connection, event: str, handler, payload: BaseModel):
    try:
        await handler(connection, payload)
    except Exception:
        log.exception("Realtime handler failed", event=event, connection_id=connection.id)


@router.websocket("/ws")
async def websocket_endpoint(
    websocket: WebSocket,
    chatbot_code: Optional[str] = Query(None, alias="chatbotCode"),
    chat_id: Optional[str] = Query(None, alias="chatId"),
    dashboard_user: Optional[str] = Query(None, alias="dashboardUser"),
    staff_id: Optional[str] = Query(None, alias="staffId"),
    website_id: Optional[str] = Query(None, alias="websiteId"),
    staff_name: Optional[str] = Query(None, alias="staffName"),
):
    identity, rooms = await authenticate_handshake(
        websocket, chatbot_code, dashboard_user, staff_id, website_id, staff_name
    )
    if identity is None:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    connection = Connection(websocket.send_json, identity)
    connection_registry.register(connection)
    for room in rooms:
        connection_registry.join(connection, room)
    bound = log.bind(connection_id=connection.id, role=identity.role.value, client=get_remote_address(websocket))
    bound.info("Realtime connection opened", rooms=rooms)

    try:
        if identity.role == Role.VISITOR and chat_id:
            await conversation_session.join_chat(connection, JoinChatPayload(chat_id=chat_id))

        while True:
            raw = await websocket.receive_text()
            try:
                frame = json.loads(raw)
            except ValueError:
                bound.warning("Discarding malformed realtime frame")
                connection.enqueue(OutboundEvent.ERROR, {"event": None, "detail": "Malformed frame"})
                continue
            dispatch(connection, frame)
    except WebSocketDisconnect:
        bound.info("Realtime connection closed by client")
    except Exception:
        bound.exception("Realtime connection failed")
    finally:
        await connection_registry.unregister(connection)
