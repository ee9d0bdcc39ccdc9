# /chathub/models/tenant.py

from typing import Any, List, Optional
from pydantic import BaseModel, ConfigDict, Field

# Read-only views of the tenant (website), its plan, its owner and its staff.
# These are assembled by the database service from documents owned by the
# account management side of the platform; the conversation core never
# writes them except for the credit counter.

OWNER_DISPLAY_NAME = "Owner"


class StaffMember(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    tenant_id: str
    name: str
    email: Optional[str] = None


class Owner(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    email: Optional[str] = None
    notify_via_telegram: bool = False

    @property
    def display_name(self) -> str:
        return OWNER_DISPLAY_NAME


class TenantContext(BaseModel):
    """Everything the conversation core needs to know about one website."""
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    link: Optional[str] = None
    chatbot_code: str
    workflow_raw: Any = None
    plan_allows_ai: bool = False
    credit_count: int = 0
    daily_token_limit: Optional[int] = None
    preferences_allow_ai: bool = False
    language: str = "en"
    owner_id: Optional[str] = None
    owner_notify_telegram: bool = False
    staff_ids: List[str] = Field(default_factory=list)

    def has_staff(self, staff_id: Optional[str]) -> bool:
        return staff_id is not None and staff_id in self.staff_ids

    def is_owner(self, user_id: Optional[str]) -> bool:
        return user_id is not None and self.owner_id is not None and user_id == self.owner_id
