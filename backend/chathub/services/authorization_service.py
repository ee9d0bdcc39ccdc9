# /chathub/services/authorization_service.py

"""
Entitlement rules for dashboard actions on a chat.

Every check takes the identity established at connection handshake (never
ids supplied in an event payload) and the tenant that owns the chat, and
raises AuthorizationError when the action must be refused.
"""

from typing import Optional

from chathub.models.conversation import Assignee, Chat
from chathub.models.tenant import TenantContext
from chathub.services.realtime_service import ConnectionIdentity, Role
from chathub.utils.errors import AuthorizationError


def is_tenant_member(identity: ConnectionIdentity, tenant: TenantContext) -> bool:
    """Owner of the tenant, or staff belonging to it."""
    if identity.role == Role.OWNER:
        return tenant.is_owner(identity.owner_id)
    if identity.role == Role.STAFF:
        return tenant.has_staff(identity.staff_id) and identity.tenant_id in (None, tenant.id)
    return False


def ensure_tenant_member(action: str, identity: ConnectionIdentity, tenant: TenantContext) -> None:
    if not is_tenant_member(identity, tenant):
        raise AuthorizationError(action, identity.actor_id, f"not a member of tenant {tenant.id}")


def ensure_valid_assignee(tenant: TenantContext, kind: str, assignee_id: Optional[str]) -> None:
    if kind == "staff" and tenant.has_staff(assignee_id):
        return
    if kind == "owner" and tenant.is_owner(assignee_id):
        return
    raise AuthorizationError("assign", assignee_id, f"{kind} {assignee_id} cannot lead chats of tenant {tenant.id}")


def is_current_assignee(identity: ConnectionIdentity, assignee: Optional[Assignee]) -> bool:
    if assignee is None or identity.actor_id is None:
        return False
    return assignee.kind == identity.role.value and assignee.id == identity.actor_id


def ensure_can_unassign(identity: ConnectionIdentity, tenant: TenantContext, chat: Chat) -> None:
    """
    The current assignee, the tenant owner, or (when nobody leads the chat)
    any staff member of the tenant may unassign.
    """
    if identity.role == Role.OWNER and tenant.is_owner(identity.owner_id):
        return
    if chat.leading_staff is not None:
        if is_current_assignee(identity, chat.leading_staff):
            return
        raise AuthorizationError("unassign", identity.actor_id, "only the current lead or the owner may unassign")
    if identity.role == Role.STAFF and is_tenant_member(identity, tenant):
        return
    raise AuthorizationError("unassign", identity.actor_id, f"not a member of tenant {tenant.id}")
