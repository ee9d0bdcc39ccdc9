# /chathub/models/workflow.py

import json
from enum import Enum
from typing import Any, List, Optional
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from chathub.utils.errors import ConfigurationError

# Pydantic models for the owner-authored workflow graph. The graph arrives
# from the website editor as JSON (usually stored as a string) and is parsed
# fresh on every turn; models are frozen so a loaded graph is never mutated.


class BlockType(str, Enum):
    START = "start"
    MESSAGE = "message"
    USER_RESPONSE = "userResponse"
    OPTION = "option"
    CONDITION = "condition"
    END = "end"


INPUT_BLOCK_TYPES = frozenset({BlockType.USER_RESPONSE, BlockType.OPTION})
BRANCHING_BLOCK_TYPES = frozenset({BlockType.OPTION})


def _as_identifier(value: Any) -> Any:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return value


class Block(BaseModel):
    """A single node of the workflow graph."""
    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    id: str
    type: BlockType
    message: Optional[str] = None
    options: List[str] = Field(default_factory=list)
    selected_condition: Optional[str] = Field(default=None, alias="selectedCondition")

    @field_validator("id", "selected_condition", mode="before")
    @classmethod
    def coerce_id(cls, v):
        return _as_identifier(v)

    @field_validator("options", mode="before")
    @classmethod
    def drop_missing_options(cls, v):
        if v is None:
            return []
        return [str(option) for option in v if option is not None]


class Connection(BaseModel):
    """A directed edge between two blocks."""
    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    source: str = Field(alias="from")
    target: str = Field(alias="to")
    from_option_index: Optional[int] = Field(default=None, alias="fromOptionIndex")

    @field_validator("source", "target", mode="before")
    @classmethod
    def coerce_endpoints(cls, v):
        return _as_identifier(v)


class WorkflowGraph(BaseModel):
    """Ordered blocks and connections; declaration order is significant."""
    model_config = ConfigDict(frozen=True, extra="ignore")

    blocks: List[Block] = Field(default_factory=list)
    connections: List[Connection] = Field(default_factory=list)

    @property
    def start_block(self) -> Optional[Block]:
        return next((b for b in self.blocks if b.type == BlockType.START), None)


def parse_workflow(raw: Any) -> Optional[WorkflowGraph]:
    """
    Builds a WorkflowGraph from a tenant's stored configuration.

    Args:
        raw: JSON string, dict, or None/empty when no workflow is configured.

    Returns:
        The parsed graph, or None when the tenant has no workflow (no blocks).

    Raises:
        ConfigurationError: the stored value is not valid workflow JSON.
    """
    if raw is None:
        return None
    if isinstance(raw, (bytes, bytearray)):
        raw = raw.decode("utf-8")
    if isinstance(raw, str):
        if not raw.strip():
            return None
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Workflow is not valid JSON: {e.msg}") from e
    if not isinstance(raw, dict):
        raise ConfigurationError(f"Workflow must be an object, got {type(raw).__name__}")

    try:
        graph = WorkflowGraph.model_validate(raw)
    except ValidationError as e:
        raise ConfigurationError(f"Workflow has an invalid shape: {e.error_count()} error(s)") from e

    if not graph.blocks:
        return None
    return graph
