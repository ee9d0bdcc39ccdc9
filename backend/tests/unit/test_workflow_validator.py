from chathub.workflows.validator import reachable_ids, validate_graph


def test_valid_graph_has_no_errors_or_warnings(make_graph):
    graph = make_graph(
        [
            {"id": "s", "type": "start"},
            {"id": "o", "type": "option", "options": ["A", "B"]},
            {"id": "a", "type": "end"},
            {"id": "b", "type": "end"},
        ],
        [("s", "o"), ("o", "a", 0), ("o", "b", 1)],
    )
    result = validate_graph(graph)
    assert result == {"is_valid": True, "error_code": None, "message": None, "warnings": []}


def test_missing_start(make_graph):
    result = validate_graph(make_graph([{"id": "m", "type": "message"}]))
    assert result["is_valid"] is False
    assert result["error_code"] == "MISSING_START"


def test_multiple_start(make_graph):
    result = validate_graph(make_graph([{"id": "s1", "type": "start"}, {"id": "s2", "type": "start"}]))
    assert result["error_code"] == "MULTIPLE_START"


def test_duplicate_block_id(make_graph):
    result = validate_graph(make_graph([{"id": "s", "type": "start"}, {"id": "s", "type": "message"}]))
    assert result["error_code"] == "DUPLICATE_BLOCK_ID"


def test_dangling_connection(make_graph):
    result = validate_graph(make_graph([{"id": "s", "type": "start"}], [("s", "ghost")]))
    assert result["error_code"] == "DANGLING_CONNECTION"
    assert "ghost" in result["message"]


def test_unreachable_block(make_graph):
    graph = make_graph(
        [{"id": "s", "type": "start"}, {"id": "m", "type": "message"}, {"id": "island", "type": "message"}],
        [("s", "m")],
    )
    result = validate_graph(graph)
    assert result["error_code"] == "UNREACHABLE_BLOCK"
    assert "island" in result["message"]


def test_end_block_with_outgoing_connection_is_a_warning(make_graph):
    graph = make_graph(
        [{"id": "s", "type": "start"}, {"id": "e", "type": "end"}, {"id": "m", "type": "message"}],
        [("s", "e"), ("e", "m")],
    )
    result = validate_graph(graph)
    assert result["is_valid"] is True
    assert len(result["warnings"]) == 1
    assert "End block 'e'" in result["warnings"][0]


def test_extra_connections_on_non_branching_block_are_a_warning(make_graph):
    graph = make_graph(
        [{"id": "s", "type": "start"}, {"id": "a", "type": "message"}, {"id": "b", "type": "message"}],
        [("s", "a"), ("s", "b")],
    )
    result = validate_graph(graph)
    assert result["is_valid"] is True
    assert "only the first is followed" in result["warnings"][0]


def test_reachable_ids_handles_cycles(make_graph):
    graph = make_graph(
        [{"id": "s", "type": "start"}, {"id": "a", "type": "message"}, {"id": "b", "type": "message"}],
        [("s", "a"), ("a", "b"), ("b", "a")],
    )
    assert reachable_ids(graph, "s") == {"s", "a", "b"}
