# /chathub/services/session_service.py

import time
from typing import Any, Dict, List, Optional, Tuple

import structlog

from chathub.config.settings import settings
from chathub.config.strings import get_string
from chathub.models.conversation import (
    AI,
    BOT,
    SYSTEM,
    VISITOR,
    Assignee,
    Chat,
    ChatMessage,
    ChatStatus,
    OwnerSender,
    StaffSender,
    default_name_for,
)
from chathub.models.events import (
    AssignPayload,
    ChatRefPayload,
    CreateChatPayload,
    DashboardMessagePayload,
    JoinChatPayload,
    NewStaffPayload,
    OutboundEvent,
    ToggleAIPayload,
    VisitorMessagePayload,
    reply_data,
)
from chathub.models.tenant import OWNER_DISPLAY_NAME, TenantContext
from chathub.models.workflow import INPUT_BLOCK_TYPES, BlockType, WorkflowGraph, parse_workflow
from chathub.services import authorization_service
from chathub.services.ai_service import ai_service, contains_handoff_sentinel
from chathub.services.db_service import db_service
from chathub.services.notification_service import (
    HumanNotification,
    NotificationKind,
    build_notification,
    notification_service,
)
from chathub.services.realtime_service import (
    Connection,
    Role,
    chat_room,
    connection_registry,
    fanout_router,
    owner_room,
    staff_room,
)
from chathub.services.usage_service import usage_service
from chathub.utils.errors import (
    AuthorizationError,
    ConfigurationError,
    GraphIntegrityError,
    NotFoundError,
    UpstreamFailure,
)
from chathub.utils.locks import chat_locks
from chathub.utils.metrics import dashboard_actions_counter, turn_counter, turn_duration_histogram
from chathub.workflows.engine import BotUtterance, advance, initial_greeting
from chathub.workflows.graph import find_block
from chathub.workflows.validator import validate_graph

# Turn orchestration for visitor chats and the dashboard actions that change
# a chat's state. Every operation on an existing chat runs under that chat's
# lock, reads the chat, computes the new state, persists it in one update
# and only then enqueues the resulting events for delivery.

log = structlog.get_logger(__name__)


class _Turn:
    """Everything one visitor turn produces before it is committed."""

    def __init__(self, chat: Chat, visitor_message: ChatMessage):
        self.chat = chat
        self.visitor_message = visitor_message
        self.bot_messages: List[ChatMessage] = []
        self.notifications: List[HumanNotification] = []
        self.credits_used = 0
        self.outcome = "silent"

    def add_bot_message(self, message: ChatMessage):
        self.chat.messages.append(message)
        self.bot_messages.append(message)


class ConversationSession:
    def __init__(
        self,
        db=None,
        ai=None,
        usage=None,
        notifier=None,
        router=None,
        locks=None,
        handoff_sentinel: Optional[str] = None,
    ):
        self.db = db or db_service
        self.ai = ai or ai_service
        self.usage = usage or usage_service
        self.notifier = notifier or notification_service
        self.router = router or fanout_router
        self.registry = self.router.registry if router else connection_registry
        self.locks = locks or chat_locks
        self.handoff_sentinel = handoff_sentinel or settings.human_handoff_sentinel

    # ==================== Helpers ====================

    async def _load_tenant(self, tenant_id: Optional[str]) -> TenantContext:
        tenant = await self.db.get_tenant_by_id(tenant_id) if tenant_id else None
        if tenant is None:
            raise NotFoundError("tenant", tenant_id)
        return tenant

    async def _load_chat(self, chat_id: str) -> Chat:
        chat = await self.db.load_chat(chat_id)
        if chat is None:
            raise NotFoundError("chat", chat_id)
        return chat

    @staticmethod
    def _dashboard_rooms(tenant: TenantContext) -> List[str]:
        rooms = [staff_room(tenant.id)]
        if tenant.owner_id:
            rooms.insert(0, owner_room(tenant.owner_id))
        return rooms

    def _state_rooms(self, tenant: TenantContext, chat_id: str) -> List[str]:
        return [chat_room(chat_id)] + self._dashboard_rooms(tenant)

    def _send_error_reply(self, connection: Connection, chat_id: Optional[str], language: Optional[str]):
        message = ChatMessage(sender=BOT, text=get_string("TURN_ERROR", language))
        self.router.emit_to(connection, OutboundEvent.BOT_TYPING_STOP, {})
        self.router.emit_to(connection, OutboundEvent.REPLY, reply_data(chat_id or "", message))

    # ==================== Visitor: chat lifecycle ====================

    def _greeting(self, tenant: TenantContext) -> Tuple[str, Optional[str]]:
        text, position = None, None
        try:
            graph = parse_workflow(tenant.workflow_raw)
            if graph is not None:
                text, position = initial_greeting(graph)
        except (ConfigurationError, GraphIntegrityError) as e:
            log.warning("Workflow unusable at chat creation", tenant_id=tenant.id, error=str(e))
            text, position = None, None
        return text or get_string("GREETING", tenant.language), position

    async def create_chat(self, connection: Connection, payload: CreateChatPayload) -> Optional[Chat]:
        """Open a new chat for a visitor connection and send the greeting."""
        tenant_id = connection.identity.tenant_id
        try:
            tenant = await self._load_tenant(tenant_id)
            greeting_text, position = self._greeting(tenant)
            greeting = ChatMessage(sender=BOT, text=greeting_text)
            chat = await self.db.insert_chat(
                tenant_id=tenant.id,
                email=payload.email,
                name=default_name_for(payload.email),
                country=payload.country,
                ai_enabled=tenant.plan_allows_ai and tenant.credit_count > 0,
                messages=[greeting],
                current_workflow_block_id=position,
            )
        except NotFoundError as e:
            log.warning("Chat creation aborted", connection_id=connection.id, reason=str(e))
            return None
        except Exception:
            log.exception("Chat creation failed", connection_id=connection.id, tenant_id=tenant_id)
            self._send_error_reply(connection, None, None)
            return None

        self.registry.switch_chat(connection, chat.id)
        self.router.emit_to(connection, OutboundEvent.NEW_CHAT_DATA, {"chat": chat.model_dump(mode="json")})
        self.router.emit_to(connection, OutboundEvent.BOT_TYPING_START, {})
        self.router.emit([chat_room(chat.id)], OutboundEvent.REPLY, reply_data(chat.id, greeting))
        self.router.emit_to(connection, OutboundEvent.BOT_TYPING_STOP, {})

        rooms = self._dashboard_rooms(tenant)
        self.router.emit(rooms, OutboundEvent.NEW_CHAT, {
            "chat": chat.model_dump(mode="json"),
            "websiteName": tenant.name,
        })
        self.router.emit(rooms, OutboundEvent.NEW_MESSAGE, {
            "chatId": chat.id,
            "message": None,
            "websiteName": tenant.name,
            "chatName": chat.name,
            "botResponses": [greeting.model_dump(mode="json")],
            "websiteCreditCount": tenant.credit_count,
        })
        log.info("Chat created", chat_id=chat.id, tenant_id=tenant.id, workflow_position=position)
        return chat

    async def join_chat(self, connection: Connection, payload: JoinChatPayload) -> bool:
        """Move a visitor connection into an existing chat of its own tenant."""
        try:
            chat = await self._load_chat(payload.chat_id)
        except NotFoundError as e:
            log.warning("Join refused", connection_id=connection.id, reason=str(e))
            return False
        if chat.tenant_id != connection.identity.tenant_id:
            log.warning("Join refused: chat belongs to another tenant", connection_id=connection.id, chat_id=chat.id)
            return False
        self.registry.switch_chat(connection, chat.id)
        return True

    # ==================== Visitor: turn processing ====================

    async def handle_visitor_turn(self, connection: Connection, payload: VisitorMessagePayload) -> Optional[Chat]:
        """
        Process one visitor message end to end.

        Returns the persisted chat, or None when the turn was aborted
        (unknown chat or tenant) or failed; a failed turn leaves the stored
        chat untouched.
        """
        chat_id = payload.chat_id
        bound = log.bind(chat_id=chat_id, tenant_id=connection.identity.tenant_id, connection_id=connection.id)
        if chat_room(chat_id) not in self.registry.rooms_of(connection):
            self.registry.switch_chat(connection, chat_id)

        started = time.monotonic()
        tenant: Optional[TenantContext] = None
        async with self.locks.hold(chat_id):
            try:
                tenant = await self._load_tenant(connection.identity.tenant_id)
                chat = await self._load_chat(chat_id)
                if chat.tenant_id != tenant.id:
                    raise NotFoundError("chat", chat_id)
                turn = await self._run_turn(connection, tenant, chat, payload, bound)
                saved = await self.db.save_chat(turn.chat)
            except NotFoundError as e:
                turn_counter.labels(outcome="not_found").inc()
                bound.warning("Visitor turn aborted", reason=str(e))
                return None
            except Exception:
                turn_counter.labels(outcome="error").inc()
                bound.exception("Visitor turn failed")
                self._send_error_reply(connection, chat_id, tenant.language if tenant else None)
                return None
            finally:
                turn_duration_histogram.observe(time.monotonic() - started)

            self._deliver_turn(connection, tenant, turn)
            for notification in turn.notifications:
                self.notifier.notify_humans(notification)

        turn_counter.labels(outcome=turn.outcome).inc()
        bound.info(
            "Visitor turn processed",
            outcome=turn.outcome,
            replies=len(turn.bot_messages),
            workflow_position=turn.chat.current_workflow_block_id,
        )
        return saved

    async def _run_turn(
        self,
        connection: Connection,
        tenant: TenantContext,
        chat: Chat,
        payload: VisitorMessagePayload,
        bound,
    ) -> _Turn:
        visitor_message = ChatMessage(
            sender=VISITOR,
            text=payload.text,
            page_url=payload.page_url,
            file_url=payload.file_url,
        )
        chat.messages.append(visitor_message)
        if chat.status == ChatStatus.CLOSED:
            chat.status = ChatStatus.OPEN
        turn = _Turn(chat, visitor_message)

        entries, chat.current_workflow_block_id = self._advance_workflow(tenant, chat, payload.text, bound)
        for entry in entries:
            turn.add_bot_message(ChatMessage(sender=BOT, text=entry["text"], options=entry["options"]))
        if entries:
            turn.outcome = "workflow"
        if any(e["requests_human_notification"] for e in entries):
            turn.notifications.append(build_notification(NotificationKind.WORKFLOW_COMPLETED, tenant, chat))

        has_visible_text = any(e["text"].strip() for e in entries)
        path_ended = any(e["ends_workflow_path"] for e in entries)
        handed_off = False
        if not entries or not has_visible_text or path_ended:
            handed_off = await self._fallback(connection, tenant, turn, payload.text, bound)

        if not entries and not handed_off:
            turn.notifications.append(
                build_notification(NotificationKind.UNHANDLED_MESSAGE, tenant, chat, visitor_text=payload.text)
            )
        return turn

    def _advance_workflow(
        self,
        tenant: TenantContext,
        chat: Chat,
        text: str,
        bound,
    ) -> Tuple[List[BotUtterance], Optional[str]]:
        """Run the interpreter for this turn; returns (entries, position to persist)."""
        previous = chat.current_workflow_block_id
        if previous is None:
            return [], None
        try:
            graph = parse_workflow(tenant.workflow_raw)
            if graph is None:
                return [], None
            self._report_graph_problems(graph, bound)
            if find_block(graph, previous).type == BlockType.END:
                # The path already finished on a previous turn.
                return [], None
            result = advance(graph, previous, text, text)
            position = result["next_position"]
            if any(e["requests_human_notification"] for e in result["entries"]):
                waiting_elsewhere = (
                    position != previous and find_block(graph, position).type in INPUT_BLOCK_TYPES
                )
                if not waiting_elsewhere:
                    position = None
            return result["entries"], position
        except (ConfigurationError, GraphIntegrityError) as e:
            bound.warning("Workflow unusable this turn; deactivating for chat", error=str(e))
            return [], None

    @staticmethod
    def _report_graph_problems(graph: WorkflowGraph, bound):
        report = validate_graph(graph)
        if not report["is_valid"]:
            bound.warning("Workflow graph is invalid", error_code=report["error_code"], detail=report["message"])
        for warning in report["warnings"]:
            bound.warning("Workflow graph warning", detail=warning)

    # ==================== AI fallback ====================

    async def _ai_eligible(self, tenant: TenantContext, chat: Chat, bound) -> bool:
        if not chat.ai_enabled:
            return False
        if not (tenant.plan_allows_ai and tenant.credit_count > 0 and tenant.preferences_allow_ai):
            return False
        if tenant.daily_token_limit:
            usage = await self.usage.get_daily_usage(tenant.id)
            if usage is None or usage >= tenant.daily_token_limit:
                bound.info("Daily AI ceiling reached or unknown", usage=usage, limit=tenant.daily_token_limit)
                return False
        return True

    @staticmethod
    def _should_capture_name(chat: Chat) -> bool:
        return len(chat.messages) == 2 and chat.has_default_name

    def _capture_name(self, tenant: TenantContext, turn: _Turn, text: str):
        turn.chat.name = text
        turn.add_bot_message(ChatMessage(sender=BOT, text=get_string("NAME_CAPTURED", tenant.language, name=text)))
        turn.outcome = "name_capture"

    async def _fallback(self, connection: Connection, tenant: TenantContext, turn: _Turn, text: str, bound) -> bool:
        """
        AI fallback with name capture. Returns True when the AI handed the
        chat over to humans.
        """
        chat = turn.chat
        if not await self._ai_eligible(tenant, chat, bound):
            if self._should_capture_name(chat):
                self._capture_name(tenant, turn, text)
            return False

        self.router.emit_to(connection, OutboundEvent.BOT_TYPING_START, {})
        try:
            reply = await self.ai.generate_reply(tenant.chatbot_code, chat.id, text)
        except UpstreamFailure as e:
            bound.warning("AI responder unavailable", error=str(e))
            reply = None
        finally:
            self.router.emit_to(connection, OutboundEvent.BOT_TYPING_STOP, {})

        if reply is None:
            if self._should_capture_name(chat):
                self._capture_name(tenant, turn, text)
            else:
                turn.add_bot_message(ChatMessage(sender=BOT, text=get_string("AI_ERROR", tenant.language)))
                turn.outcome = "ai_error"
            return False

        await self._consume_credit(tenant, turn, bound)
        if contains_handoff_sentinel(reply, self.handoff_sentinel):
            chat.ai_enabled = False
            turn.add_bot_message(ChatMessage(sender=AI, text=get_string("AI_HANDOFF", tenant.language)))
            turn.notifications.append(build_notification(NotificationKind.AI_HANDOFF, tenant, chat))
            turn.outcome = "ai_handoff"
            return True

        turn.add_bot_message(ChatMessage(sender=AI, text=reply))
        turn.outcome = "ai"
        return False

    async def _consume_credit(self, tenant: TenantContext, turn: _Turn, bound):
        # Two independent collaborators; see DESIGN.md on consistency.
        if await self.db.decrement_credit(tenant.id):
            turn.credits_used += 1
        else:
            bound.warning("AI reply delivered but no credit was left to decrement")
        try:
            await self.usage.record_usage(tenant.id, 1)
        except UpstreamFailure as e:
            bound.warning("Failed to record AI usage", error=str(e))

    def _deliver_turn(self, connection: Connection, tenant: TenantContext, turn: _Turn):
        chat = turn.chat
        room = chat_room(chat.id)
        self.router.emit([room], OutboundEvent.REPLY, reply_data(chat.id, turn.visitor_message), exclude=connection)
        for message in turn.bot_messages:
            self.router.emit([room], OutboundEvent.REPLY, reply_data(chat.id, message))

        bot_responses = [m.model_dump(mode="json") for m in turn.bot_messages]
        self.router.emit(self._dashboard_rooms(tenant), OutboundEvent.NEW_MESSAGE, {
            "chatId": chat.id,
            "message": turn.visitor_message.model_dump(mode="json"),
            "botResponses": bot_responses,
            "botResponse": bot_responses[-1] if bot_responses else None,
            "websiteName": tenant.name,
            "chatName": chat.name,
            "websiteCreditCount": max(tenant.credit_count - turn.credits_used, 0),
            "staffId": chat.leading_staff.id if chat.leading_staff else "",
            "currentWorkflowBlockId": chat.current_workflow_block_id,
        })

    # ==================== Dashboard actions ====================

    async def _dashboard_action(self, action: str, connection: Connection, chat_id: str, apply) -> Optional[Chat]:
        """
        Shared frame for dashboard actions: lock, load, authorize, apply,
        persist. ``apply(tenant, chat)`` mutates the chat and returns the
        delivery callback, or None when there is nothing to persist.
        """
        bound = log.bind(action=action, chat_id=chat_id, connection_id=connection.id, actor=connection.identity.actor_id)
        async with self.locks.hold(chat_id):
            try:
                chat = await self._load_chat(chat_id)
                tenant = await self._load_tenant(chat.tenant_id)
                deliver = await apply(tenant, chat)
                if deliver is None:
                    dashboard_actions_counter.labels(action=action, status="noop").inc()
                    return chat
                saved = await self.db.save_chat(chat)
            except NotFoundError as e:
                dashboard_actions_counter.labels(action=action, status="not_found").inc()
                bound.warning("Dashboard action aborted", reason=str(e))
                return None
            except AuthorizationError as e:
                dashboard_actions_counter.labels(action=action, status="refused").inc()
                bound.warning("Dashboard action refused", reason=e.reason)
                return None
            except Exception:
                dashboard_actions_counter.labels(action=action, status="error").inc()
                bound.exception("Dashboard action failed")
                return None
            deliver()
        dashboard_actions_counter.labels(action=action, status="success").inc()
        bound.info("Dashboard action applied")
        return saved

    def _author(self, connection: Connection):
        identity = connection.identity
        if identity.role == Role.OWNER:
            return OwnerSender(owner_id=identity.owner_id, name=identity.name or OWNER_DISPLAY_NAME)
        return StaffSender(staff_id=identity.staff_id, name=identity.name or "Staff")

    def _actor_name(self, connection: Connection) -> str:
        identity = connection.identity
        if identity.role == Role.OWNER:
            return identity.name or OWNER_DISPLAY_NAME
        return identity.name or "Staff"

    async def handle_dashboard_message(self, connection: Connection, payload: DashboardMessagePayload) -> Optional[Chat]:
        """Owner or staff reply: stored in the log, sent to the visitor, mirrored to other dashboards."""
        async def apply(tenant: TenantContext, chat: Chat):
            authorization_service.ensure_tenant_member("dashboard_message", connection.identity, tenant)
            message = ChatMessage(
                sender=self._author(connection),
                text=payload.message.text,
                file_url=payload.message.file_url,
            )
            chat.messages.append(message)

            def deliver():
                self.router.emit([chat_room(chat.id)], OutboundEvent.REPLY, reply_data(chat.id, message))
                self.router.emit(self._dashboard_rooms(tenant), OutboundEvent.NEW_MESSAGE, {
                    "chatId": chat.id,
                    "message": message.model_dump(mode="json"),
                    "websiteName": tenant.name,
                    "chatName": chat.name,
                }, exclude=connection)
            return deliver

        return await self._dashboard_action("dashboard_message", connection, payload.chat_id, apply)

    async def toggle_ai(self, connection: Connection, payload: ToggleAIPayload) -> Optional[Chat]:
        async def apply(tenant: TenantContext, chat: Chat):
            authorization_service.ensure_tenant_member("toggle_ai", connection.identity, tenant)
            chat.ai_enabled = payload.enable
            state = "enabled" if payload.enable else "disabled"

            def deliver():
                self.router.emit(self._state_rooms(tenant, chat.id), OutboundEvent.CHAT_UPDATE, {
                    "chatId": chat.id,
                    "aiResponsesEnabled": chat.ai_enabled,
                    "message": f"AI responses {state} by {self._actor_name(connection)}.",
                })
            return deliver

        return await self._dashboard_action("toggle_ai", connection, payload.chat_id, apply)

    async def assign(self, connection: Connection, payload: AssignPayload) -> Optional[Chat]:
        """Make a staff member or the owner lead the chat; AI is switched off in the same update."""
        async def apply(tenant: TenantContext, chat: Chat):
            authorization_service.ensure_tenant_member("assign", connection.identity, tenant)
            authorization_service.ensure_valid_assignee(tenant, payload.assignee_type, payload.assignee_id)
            if payload.assignee_type == "staff":
                staff = await self.db.get_staff(payload.assignee_id)
                if staff is None:
                    raise NotFoundError("staff", payload.assignee_id)
                name = staff.name
            else:
                name = OWNER_DISPLAY_NAME

            chat.leading_staff = Assignee(kind=payload.assignee_type, id=payload.assignee_id, name=name)
            chat.ai_enabled = False
            system_message = ChatMessage(sender=SYSTEM, text=f"{name} has joined the conversation.")
            chat.messages.append(system_message)

            def deliver():
                self.router.emit([chat_room(chat.id)], OutboundEvent.REPLY, reply_data(chat.id, system_message))
                self.router.emit(self._state_rooms(tenant, chat.id), OutboundEvent.CHAT_UPDATE, {
                    "chatId": chat.id,
                    "message": system_message.text,
                    "sender": system_message.sender.model_dump(mode="json"),
                    "leadingStaff": chat.leading_staff.model_dump(mode="json"),
                    "aiResponsesEnabled": chat.ai_enabled,
                })
            return deliver

        return await self._dashboard_action("assign", connection, payload.chat_id, apply)

    async def unassign(self, connection: Connection, payload: ChatRefPayload) -> Optional[Chat]:
        async def apply(tenant: TenantContext, chat: Chat):
            authorization_service.ensure_can_unassign(connection.identity, tenant, chat)
            if chat.leading_staff is None:
                return None
            system_message = ChatMessage(sender=SYSTEM, text=f"{chat.leading_staff.name} has left the conversation.")
            chat.leading_staff = None
            chat.messages.append(system_message)

            def deliver():
                self.router.emit([chat_room(chat.id)], OutboundEvent.REPLY, reply_data(chat.id, system_message))
                self.router.emit(self._state_rooms(tenant, chat.id), OutboundEvent.CHAT_UPDATE, {
                    "chatId": chat.id,
                    "message": system_message.text,
                    "sender": system_message.sender.model_dump(mode="json"),
                    "leadingStaff": None,
                    "aiResponsesEnabled": chat.ai_enabled,
                })
            return deliver

        return await self._dashboard_action("unassign", connection, payload.chat_id, apply)

    async def close(self, connection: Connection, payload: ChatRefPayload) -> Optional[Chat]:
        """Close the chat and clear its lead; the message history is kept."""
        async def apply(tenant: TenantContext, chat: Chat):
            authorization_service.ensure_tenant_member("close", connection.identity, tenant)
            chat.status = ChatStatus.CLOSED
            chat.leading_staff = None

            def deliver():
                self.router.emit(self._state_rooms(tenant, chat.id), OutboundEvent.CHAT_UPDATE, {
                    "chatId": chat.id,
                    "status": chat.status.value,
                    "message": f"Conversation closed by {self._actor_name(connection)}.",
                    "sender": SYSTEM.model_dump(mode="json"),
                    "leadingStaff": None,
                })
            return deliver

        return await self._dashboard_action("close", connection, payload.chat_id, apply)

    async def new_staff_added(self, connection: Connection, payload: NewStaffPayload) -> bool:
        """Announce a newly created staff member to the tenant's dashboards."""
        try:
            tenant = await self._load_tenant(payload.website_id)
            authorization_service.ensure_tenant_member("new_staff_added", connection.identity, tenant)
        except NotFoundError as e:
            log.warning("Staff announcement aborted", reason=str(e))
            return False
        except AuthorizationError as e:
            log.warning("Staff announcement refused", reason=e.reason, actor=e.actor_id)
            return False

        staff_name = payload.new_staff.get("name", "A staff member")
        data: Dict[str, Any] = {
            "websiteId": tenant.id,
            "message": f"A new staff member, {staff_name}, has been added to {tenant.name}.",
            "staff": payload.new_staff,
        }
        self.router.emit(self._dashboard_rooms(tenant), OutboundEvent.STAFF_ADDED, data)
        return True


# Globally accessible instance
conversation_session = ConversationSession()
