# /chathub/models/events.py

from typing import Any, Dict, Literal, Optional
from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from chathub.models.conversation import ChatMessage

# Wire payloads exchanged over the realtime transport. Frames are JSON objects
# of the form {"event": <name>, "data": {...}}; data keys are camelCase.


class InboundEvent:
    CREATE_NEW_CHAT = "create_new_chat"
    JOIN_CHAT = "join_chat"
    MESSAGE = "message"
    DASHBOARD_MESSAGE = "dashboard_message"
    TOGGLE_AI_RESPONSES = "toggle_ai_responses"
    ASSIGN_CHAT_LEAD = "assign_chat_lead"
    UNASSIGN_CHAT_LEAD = "unassign_chat_lead"
    CLOSE_CHAT = "close_chat"
    NEW_STAFF_ADDED = "new_staff_added"


class OutboundEvent:
    NEW_CHAT_DATA = "new_chat_data"
    REPLY = "reply"
    BOT_TYPING_START = "bot_typing_start"
    BOT_TYPING_STOP = "bot_typing_stop"
    NEW_CHAT = "new_chat"
    NEW_MESSAGE = "new_message"
    CHAT_UPDATE = "chat_update"
    STAFF_ADDED = "staff_added"
    ERROR = "error"


class WirePayload(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class CreateChatPayload(WirePayload):
    email: str = Field(..., min_length=3, max_length=320)
    country: Optional[str] = None


class JoinChatPayload(WirePayload):
    chat_id: str


class VisitorMessagePayload(WirePayload):
    chat_id: str
    email: Optional[str] = None
    # Older widget builds send "message" and "currentWebsiteURL".
    text: str = Field("", validation_alias=AliasChoices("text", "message"))
    page_url: Optional[str] = Field(None, validation_alias=AliasChoices("pageUrl", "page_url", "currentWebsiteURL"))
    file_url: Optional[str] = None


class DashboardMessageBody(WirePayload):
    text: str = ""
    file_url: Optional[str] = None


class DashboardMessagePayload(WirePayload):
    chat_id: str
    message: DashboardMessageBody


class ToggleAIPayload(WirePayload):
    chat_id: str
    enable: bool


class AssignPayload(WirePayload):
    chat_id: str
    assignee_id: str
    assignee_type: Literal["staff", "owner"]


class ChatRefPayload(WirePayload):
    chat_id: str


class NewStaffPayload(WirePayload):
    website_id: str
    new_staff: Dict[str, Any] = Field(default_factory=dict)


def reply_data(chat_id: str, message: ChatMessage) -> Dict[str, Any]:
    """Visitor-facing ``reply`` body for one logged message."""
    data: Dict[str, Any] = {
        "chatId": chat_id,
        "text": message.text,
        "sender": message.sender.model_dump(mode="json"),
        "timestamp": message.timestamp.isoformat(),
    }
    if message.options:
        data["options"] = list(message.options)
    if message.file_url:
        data["fileUrl"] = message.file_url
    return data
