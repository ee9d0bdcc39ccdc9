# /chathub/workflows/graph.py

"""
Pure lookup and branch-resolution helpers over a WorkflowGraph.

All functions are:
- Pure (no side effects)
- Deterministic (same input = same output)
- No database access
- No logging
"""

from typing import List, Optional

from chathub.models.workflow import Block, BlockType, Connection, WorkflowGraph
from chathub.utils.errors import GraphIntegrityError


def find_block(graph: WorkflowGraph, block_id: str) -> Block:
    """
    Return the block with the given id.

    Raises:
        GraphIntegrityError: no block carries that id.
    """
    for block in graph.blocks:
        if block.id == block_id:
            return block
    raise GraphIntegrityError(block_id)


def outgoing_connections(graph: WorkflowGraph, block_id: str) -> List[Connection]:
    """Connections leaving ``block_id``, in declaration order."""
    return [c for c in graph.connections if c.source == block_id]


def match_option(block: Block, user_input: Optional[str]) -> Optional[int]:
    """Index of the option whose text equals ``user_input`` exactly, else None."""
    if user_input is None:
        return None
    try:
        return block.options.index(user_input)
    except ValueError:
        return None


def resolve_next(
    graph: WorkflowGraph,
    block: Block,
    user_input: Optional[str],
    comparison_value: Optional[str] = None,
) -> List[Block]:
    """
    Resolve the block(s) that follow ``block`` for this input.

    - option: the connection whose fromOptionIndex equals the matched option index
    - condition: the first connection when selectedCondition equals comparison_value
    - everything else: the first connection, if any

    An empty list means "do not advance".

    Raises:
        GraphIntegrityError: a followed connection points at a missing block.
    """
    connections = outgoing_connections(graph, block.id)

    if block.type == BlockType.OPTION:
        index = match_option(block, user_input)
        if index is None:
            return []
        chosen = next((c for c in connections if c.from_option_index == index), None)
        return [find_block(graph, chosen.target)] if chosen else []

    if block.type == BlockType.CONDITION:
        if block.selected_condition != comparison_value:
            return []

    if not connections:
        return []
    return [find_block(graph, connections[0].target)]
