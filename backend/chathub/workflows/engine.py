# /chathub/workflows/engine.py

"""
Pure workflow interpreter.

Given a graph, the block a chat is paused at and the visitor's latest text,
``advance`` decides which blocks run this turn, what the bot says, and where
the chat pauses next. The session layer owns everything else (persistence,
AI fallback, notifications, delivery).

All functions are:
- Pure (no side effects)
- Deterministic (same input = same output)
- No database writes
- No AI calls
- No message sending
- No logging
"""

from typing import List, Optional, Tuple, TypedDict

from chathub.config.strings import DEFAULT_END_MESSAGE, DEFAULT_OPTION_PROMPT, INPUT_PATH_EXHAUSTED
from chathub.models.workflow import INPUT_BLOCK_TYPES, Block, BlockType, WorkflowGraph
from chathub.workflows.graph import find_block, resolve_next

RESPONSE_PLACEHOLDERS = ("{{response}}", "{{responce}}")


class BotUtterance(TypedDict):
    """One bot message produced by the workflow."""
    text: str
    options: List[str]
    ends_workflow_path: bool
    requests_human_notification: bool


class TurnResult(TypedDict):
    """Result of advancing the workflow by one visitor turn."""
    entries: List[BotUtterance]
    next_position: str


def _utterance(
    text: str,
    options: Optional[List[str]] = None,
    ends_workflow_path: bool = False,
    requests_human_notification: bool = False,
) -> BotUtterance:
    return {
        "text": text,
        "options": list(options or []),
        "ends_workflow_path": ends_workflow_path,
        "requests_human_notification": requests_human_notification,
    }


def _result(entries: List[BotUtterance], next_position: str) -> TurnResult:
    return {"entries": entries, "next_position": next_position}


def render_message(template: Optional[str], user_input: Optional[str]) -> str:
    """Substitute the visitor's text into a message block's template."""
    text = template or ""
    if user_input:
        for placeholder in RESPONSE_PLACEHOLDERS:
            text = text.replace(placeholder, user_input)
    return text


def option_prompt(block: Block) -> BotUtterance:
    return _utterance(block.message or DEFAULT_OPTION_PROMPT, block.options)


def advance(
    graph: WorkflowGraph,
    current_position_id: str,
    user_input: Optional[str],
    comparison_value: Optional[str] = None,
) -> TurnResult:
    """
    Advance the workflow by one visitor turn.

    Args:
        graph: The tenant's workflow graph.
        current_position_id: Block id the chat is paused at.
        user_input: The visitor's message text.
        comparison_value: Value condition blocks are compared against.
            Defaults to ``user_input``.

    Returns:
        TurnResult with the emitted entries and the position to persist.

    Raises:
        GraphIntegrityError: the position or a followed connection names a
            block that does not exist.
    """
    if comparison_value is None:
        comparison_value = user_input

    current = find_block(graph, current_position_id)

    if current.type in (BlockType.MESSAGE, BlockType.END):
        # Not a waiting point; nothing to resume from.
        return _result([], current.id)

    successors = resolve_next(graph, current, user_input, comparison_value)
    if not successors:
        if current.type == BlockType.OPTION:
            return _result([option_prompt(current)], current.id)
        if current.type == BlockType.USER_RESPONSE:
            return _result(
                [_utterance(INPUT_PATH_EXHAUSTED, ends_workflow_path=True, requests_human_notification=True)],
                current.id,
            )
        # start with no successor, or an unmet condition
        return _result([], current.id)

    return _chain(graph, successors[0], user_input, comparison_value)


def _chain(
    graph: WorkflowGraph,
    first: Block,
    user_input: Optional[str],
    comparison_value: Optional[str],
) -> TurnResult:
    entries: List[BotUtterance] = []
    visited = set()
    block = first
    position = first.id

    while block.id not in visited:
        visited.add(block.id)
        position = block.id

        if block.type in INPUT_BLOCK_TYPES:
            break
        if block.type == BlockType.CONDITION and block.selected_condition != comparison_value:
            break

        entry: Optional[BotUtterance] = None
        if block.type == BlockType.END:
            entry = _utterance(
                block.message or DEFAULT_END_MESSAGE,
                ends_workflow_path=True,
                requests_human_notification=True,
            )
        elif block.type in (BlockType.MESSAGE, BlockType.START):
            text = render_message(block.message, user_input)
            if text.strip():
                entry = _utterance(text)
        if entry is not None:
            entries.append(entry)

        successors = resolve_next(graph, block, user_input, comparison_value)
        if not successors:
            if entries:
                entries[-1]["ends_workflow_path"] = True
            break

        successor = successors[0]
        if block.type == BlockType.MESSAGE and successor.type == BlockType.OPTION:
            if entry is not None:
                entry["options"] = list(successor.options)
            else:
                entries.append(option_prompt(successor))
            position = successor.id
            break

        block = successor

    return _result(entries, position)


def initial_greeting(graph: WorkflowGraph) -> Tuple[Optional[str], Optional[str]]:
    """
    Greeting text and starting position for a new chat.

    Returns:
        (start block message, first successor id) or the start id when the
        start block has no successor. (None, None) when the graph has no
        start block, meaning the workflow is inactive for this chat.

    Raises:
        GraphIntegrityError: start's connection names a missing block.
    """
    start = graph.start_block
    if start is None:
        return None, None
    successors = resolve_next(graph, start, None)
    next_position = successors[0].id if successors else start.id
    return (start.message or None), next_position
