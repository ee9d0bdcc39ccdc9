# /chathub/workflows/validator.py

"""
Pure structural validation for owner-authored workflow graphs.

Validation never blocks execution. The interpreter tolerates the problems
reported here (first connection wins, missing targets degrade the turn);
the results exist so graph authors can be told what is wrong.

All functions are:
- Pure (no side effects)
- Deterministic (same input = same output)
- No database access
- No logging
"""

from collections import deque
from typing import Dict, List, Optional, Set, TypedDict

from chathub.models.workflow import BRANCHING_BLOCK_TYPES, BlockType, WorkflowGraph


class ValidationResult(TypedDict):
    """Result of a validation check."""
    is_valid: bool
    error_code: Optional[str]
    message: Optional[str]
    warnings: List[str]


def _invalid(error_code: str, message: str, warnings: List[str]) -> ValidationResult:
    return {
        "is_valid": False,
        "error_code": error_code,
        "message": message,
        "warnings": warnings,
    }


def validate_graph(graph: WorkflowGraph) -> ValidationResult:
    """
    Check the structural invariants of a workflow graph.

    Errors (first one found is reported):
        MISSING_START, MULTIPLE_START, DUPLICATE_BLOCK_ID,
        DANGLING_CONNECTION, UNREACHABLE_BLOCK

    Warnings (graph still usable):
        end blocks with outgoing connections, and non-branching blocks
        with more than one outgoing connection.
    """
    warnings = collect_warnings(graph)

    starts = [b for b in graph.blocks if b.type == BlockType.START]
    if not starts:
        return _invalid("MISSING_START", "Workflow has no start block", warnings)
    if len(starts) > 1:
        return _invalid("MULTIPLE_START", f"Workflow has {len(starts)} start blocks", warnings)

    ids: Set[str] = set()
    for block in graph.blocks:
        if block.id in ids:
            return _invalid("DUPLICATE_BLOCK_ID", f"Block id '{block.id}' is used more than once", warnings)
        ids.add(block.id)

    for connection in graph.connections:
        for endpoint in (connection.source, connection.target):
            if endpoint not in ids:
                return _invalid(
                    "DANGLING_CONNECTION",
                    f"Connection {connection.source} -> {connection.target} references unknown block '{endpoint}'",
                    warnings,
                )

    unreachable = [b.id for b in graph.blocks if b.id not in reachable_ids(graph, starts[0].id)]
    if unreachable:
        return _invalid(
            "UNREACHABLE_BLOCK",
            f"Blocks not reachable from start: {', '.join(unreachable)}",
            warnings,
        )

    return {"is_valid": True, "error_code": None, "message": None, "warnings": warnings}


def reachable_ids(graph: WorkflowGraph, start_id: str) -> Set[str]:
    adjacency: Dict[str, List[str]] = {}
    for connection in graph.connections:
        adjacency.setdefault(connection.source, []).append(connection.target)

    seen = {start_id}
    queue = deque([start_id])
    while queue:
        for target in adjacency.get(queue.popleft(), []):
            if target not in seen:
                seen.add(target)
                queue.append(target)
    return seen


def collect_warnings(graph: WorkflowGraph) -> List[str]:
    counts: Dict[str, int] = {}
    for connection in graph.connections:
        counts[connection.source] = counts.get(connection.source, 0) + 1

    warnings = []
    for block in graph.blocks:
        outgoing = counts.get(block.id, 0)
        if block.type == BlockType.END and outgoing:
            warnings.append(f"End block '{block.id}' has {outgoing} outgoing connection(s); chaining continues past it")
        elif block.type not in BRANCHING_BLOCK_TYPES and outgoing > 1:
            warnings.append(f"Block '{block.id}' has {outgoing} outgoing connections; only the first is followed")
    return warnings
