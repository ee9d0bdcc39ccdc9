import json

import pytest

from chathub.models.workflow import BlockType, parse_workflow
from chathub.utils.errors import ConfigurationError, GraphIntegrityError
from chathub.workflows.graph import find_block, match_option, outgoing_connections, resolve_next


# --- parse_workflow ---

@pytest.mark.parametrize("raw", [None, "", "   ", {"blocks": []}, json.dumps({"blocks": [], "connections": []})])
def test_parse_workflow_returns_none_when_no_workflow_configured(raw):
    assert parse_workflow(raw) is None


def test_parse_workflow_accepts_json_string_and_coerces_numeric_ids():
    raw = json.dumps({
        "blocks": [
            {"id": 1, "type": "start", "message": "Hi"},
            {"id": 2, "type": "condition", "selectedCondition": 7},
            {"id": 3, "type": "option", "options": ["A", None, "B"]},
        ],
        "connections": [{"from": 1, "to": 2}, {"from": 2, "to": 3}],
    })

    graph = parse_workflow(raw)

    assert [b.id for b in graph.blocks] == ["1", "2", "3"]
    assert graph.blocks[1].selected_condition == "7"
    assert graph.blocks[2].options == ["A", "B"]
    assert graph.connections[0].source == "1"
    assert graph.start_block.id == "1"


def test_parse_workflow_rejects_invalid_json():
    with pytest.raises(ConfigurationError):
        parse_workflow("{not json")


def test_parse_workflow_rejects_unknown_block_type():
    with pytest.raises(ConfigurationError):
        parse_workflow({"blocks": [{"id": "a", "type": "teleport"}]})


def test_parse_workflow_rejects_non_object():
    with pytest.raises(ConfigurationError):
        parse_workflow("[1, 2, 3]")


# --- lookups ---

def test_find_block_raises_for_missing_id(make_graph):
    graph = make_graph([{"id": "s", "type": "start"}])
    assert find_block(graph, "s").type == BlockType.START
    with pytest.raises(GraphIntegrityError) as exc:
        find_block(graph, "ghost")
    assert exc.value.block_id == "ghost"


def test_outgoing_connections_keep_declaration_order(make_graph):
    graph = make_graph(
        [{"id": "s", "type": "start"}, {"id": "a", "type": "message"}, {"id": "b", "type": "message"}],
        [("s", "b"), ("a", "b"), ("s", "a")],
    )
    assert [c.target for c in outgoing_connections(graph, "s")] == ["b", "a"]


def test_match_option_is_exact_and_case_sensitive(make_graph):
    graph = make_graph([{"id": "o", "type": "option", "options": ["Sales", "Support"]}])
    block = graph.blocks[0]
    assert match_option(block, "Support") == 1
    assert match_option(block, "support") is None
    assert match_option(block, None) is None


# --- resolve_next ---

def test_option_follows_connection_for_matched_index(make_graph):
    graph = make_graph(
        [
            {"id": "o", "type": "option", "options": ["Sales", "Support"]},
            {"id": "x", "type": "message"},
            {"id": "y", "type": "message"},
        ],
        [("o", "x", 0), ("o", "y", 1)],
    )
    assert [b.id for b in resolve_next(graph, graph.blocks[0], "Support")] == ["y"]
    assert resolve_next(graph, graph.blocks[0], "Billing") == []


def test_option_with_match_but_no_connection_does_not_advance(make_graph):
    graph = make_graph(
        [{"id": "o", "type": "option", "options": ["Sales", "Support"]}, {"id": "x", "type": "message"}],
        [("o", "x", 0)],
    )
    assert resolve_next(graph, graph.blocks[0], "Support") == []


def test_condition_compares_against_comparison_value(make_graph):
    graph = make_graph(
        [{"id": "c", "type": "condition", "selectedCondition": "yes"}, {"id": "m", "type": "message"}],
        [("c", "m")],
    )
    condition = graph.blocks[0]
    assert [b.id for b in resolve_next(graph, condition, "anything", "yes")] == ["m"]
    assert resolve_next(graph, condition, "yes", "no") == []


def test_first_connection_wins_for_non_branching_blocks(make_graph):
    graph = make_graph(
        [{"id": "m", "type": "message"}, {"id": "a", "type": "message"}, {"id": "b", "type": "message"}],
        [("m", "a"), ("m", "b")],
    )
    assert [b.id for b in resolve_next(graph, graph.blocks[0], "hi")] == ["a"]


def test_dangling_connection_raises(make_graph):
    graph = make_graph([{"id": "m", "type": "message"}], [("m", "nowhere")])
    with pytest.raises(GraphIntegrityError):
        resolve_next(graph, graph.blocks[0], "hi")
