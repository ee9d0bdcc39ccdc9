# /chathub/models/conversation.py

from datetime import datetime
from enum import Enum
from typing import Annotated, List, Literal, Optional, Union
from pydantic import BaseModel, ConfigDict, Field


# --- Message authors ---
# A closed set of sender variants, discriminated on ``kind``. Identity travels
# with the variant instead of being encoded in a string prefix.

class VisitorSender(BaseModel):
    model_config = ConfigDict(frozen=True)
    kind: Literal["visitor"] = "visitor"


class BotSender(BaseModel):
    model_config = ConfigDict(frozen=True)
    kind: Literal["bot"] = "bot"


class AISender(BaseModel):
    model_config = ConfigDict(frozen=True)
    kind: Literal["ai"] = "ai"


class SystemSender(BaseModel):
    model_config = ConfigDict(frozen=True)
    kind: Literal["system"] = "system"


class StaffSender(BaseModel):
    model_config = ConfigDict(frozen=True)
    kind: Literal["staff"] = "staff"
    staff_id: str
    name: str


class OwnerSender(BaseModel):
    model_config = ConfigDict(frozen=True)
    kind: Literal["owner"] = "owner"
    owner_id: str
    name: Optional[str] = None


Sender = Annotated[
    Union[VisitorSender, BotSender, AISender, SystemSender, StaffSender, OwnerSender],
    Field(discriminator="kind"),
]

VISITOR = VisitorSender()
BOT = BotSender()
AI = AISender()
SYSTEM = SystemSender()


class ChatStatus(str, Enum):
    OPEN = "open"
    CLOSED = "closed"


class ChatMessage(BaseModel):
    """One entry of a chat's ordered message log."""
    sender: Sender
    text: str = ""
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    file_url: Optional[str] = None
    page_url: Optional[str] = None
    options: List[str] = Field(default_factory=list)
    silent: bool = False


class Assignee(BaseModel):
    """The staff member or owner leading a chat."""
    model_config = ConfigDict(frozen=True)
    kind: Literal["staff", "owner"]
    id: str
    name: str


class Chat(BaseModel):
    """
    Persisted conversation state for one visitor chat.

    ``current_workflow_block_id`` is the block the chat is paused at; None
    means the workflow is inactive for this chat.
    """
    id: str
    tenant_id: str
    email: str
    name: str
    country: Optional[str] = None
    status: ChatStatus = ChatStatus.OPEN
    messages: List[ChatMessage] = Field(default_factory=list)
    ai_enabled: bool = False
    leading_staff: Optional[Assignee] = None
    current_workflow_block_id: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def default_name(self) -> str:
        return default_name_for(self.email)

    @property
    def has_default_name(self) -> bool:
        return self.name == self.default_name


def default_name_for(email: str) -> str:
    return (email or "").split("@")[0]
