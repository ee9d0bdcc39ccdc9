# /chathub/utils/errors.py

# Exception taxonomy for the conversation core. Each failure class maps to a
# single degradation policy in the session layer, so callers catch these by
# type instead of inspecting messages.


class ChatHubError(Exception):
    """Base class for all conversation core errors."""


class ConfigurationError(ChatHubError):
    """A tenant's workflow configuration is missing or malformed."""


class GraphIntegrityError(ChatHubError):
    """A workflow graph references a block id that does not exist."""

    def __init__(self, block_id: str, message: str | None = None):
        self.block_id = block_id
        super().__init__(message or f"Block '{block_id}' not found in workflow graph")


class AuthorizationError(ChatHubError):
    """The acting connection is not entitled to perform the requested action."""

    def __init__(self, action: str, actor_id: str | None, reason: str):
        self.action = action
        self.actor_id = actor_id
        self.reason = reason
        super().__init__(f"{action} refused for actor {actor_id}: {reason}")


class UpstreamFailure(ChatHubError):
    """An external collaborator (AI, usage or notification service) failed."""

    def __init__(self, service: str, message: str):
        self.service = service
        super().__init__(f"{service}: {message}")


class NotFoundError(ChatHubError):
    """A chat, tenant or staff record could not be found."""

    def __init__(self, kind: str, identifier: str | None):
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind} '{identifier}' not found")
