"""Tests for the analysis functions."""

from qda_mcp.store import (
    Code,
    Excerpt,
    Theme,
    build_hierarchical_tree,
    build_network_graph,
    calculate_co_occurrences,
    get_code_document_count,
    get_code_excerpt_count,
    get_code_stats,
)


def make_code(code_id, level="main", parent_id=None, frequency=0):
    return Code(
        id=code_id,
        name=code_id.upper(),
        color="#3b82f6",
        level=level,
        parent_id=parent_id,
        frequency=frequency,
    )


def make_excerpt(excerpt_id, document_id, code_ids):
    return Excerpt(
        id=excerpt_id,
        text="text",
        document_id=document_id,
        start_offset=0,
        end_offset=4,
        code_ids=list(code_ids),
    )


class TestCoOccurrences:
    """Tests for calculate_co_occurrences."""

    def test_pairs_are_unordered(self):
        codes = [make_code("a"), make_code("b")]
        excerpts = [
            make_excerpt("e1", "d1", ["b", "a"]),
            make_excerpt("e2", "d2", ["a", "b"]),
        ]
        pairs = calculate_co_occurrences(codes, excerpts)
        assert len(pairs) == 1
        assert (pairs[0].code1_id, pairs[0].code2_id) == ("a", "b")
        assert pairs[0].weight == 2
        assert pairs[0].document_ids == ["d1", "d2"]

    def test_weight_counts_documents_not_excerpts(self):
        codes = [make_code("a"), make_code("b")]
        excerpts = [
            make_excerpt("e1", "d1", ["a", "b"]),
            make_excerpt("e2", "d1", ["a", "b"]),
        ]
        pairs = calculate_co_occurrences(codes, excerpts)
        assert pairs[0].weight == 1

    def test_codes_in_separate_excerpts_of_same_document(self):
        codes = [make_code("a"), make_code("b"), make_code("c")]
        excerpts = [
            make_excerpt("e1", "d1", ["a"]),
            make_excerpt("e2", "d1", ["b"]),
            make_excerpt("e3", "d2", ["c"]),
        ]
        pairs = calculate_co_occurrences(codes, excerpts)
        assert [(p.code1_id, p.code2_id) for p in pairs] == [("a", "b")]

    def test_unknown_codes_ignored(self):
        codes = [make_code("a")]
        excerpts = [make_excerpt("e1", "d1", ["a", "ghost"])]
        assert calculate_co_occurrences(codes, excerpts) == []

    def test_to_dict(self):
        codes = [make_code("a"), make_code("b")]
        pairs = calculate_co_occurrences(codes, [make_excerpt("e1", "d1", ["a", "b"])])
        assert pairs[0].to_dict() == {
            "code1Id": "a",
            "code2Id": "b",
            "weight": 1,
            "documentIds": ["d1"],
        }


class TestHierarchicalTree:
    """Tests for build_hierarchical_tree."""

    def test_nested_tree(self):
        codes = [
            make_code("main"),
            make_code("child", level="child", parent_id="main"),
            make_code("sub", level="subchild", parent_id="child"),
            make_code("leaf"),
        ]
        tree = build_hierarchical_tree(codes)

        assert [node["id"] for node in tree] == ["main", "leaf"]
        assert tree[0]["children"][0]["id"] == "child"
        assert tree[0]["children"][0]["children"][0]["id"] == "sub"

    def test_children_omitted_when_empty(self):
        tree = build_hierarchical_tree([make_code("leaf", frequency=3)])
        assert tree == [
            {"id": "leaf", "name": "LEAF", "frequency": 3, "level": "main", "color": "#3b82f6"}
        ]
        assert "children" not in tree[0]

    def test_empty(self):
        assert build_hierarchical_tree([]) == []


class TestCounts:
    """Tests for the count helpers."""

    def test_fresh_counts(self):
        excerpts = [
            make_excerpt("e1", "d1", ["a"]),
            make_excerpt("e2", "d1", ["a", "b"]),
            make_excerpt("e3", "d2", ["a"]),
        ]
        assert get_code_excerpt_count("a", excerpts) == 3
        assert get_code_document_count("a", excerpts) == 2
        assert get_code_excerpt_count("b", excerpts) == 1
        assert get_code_document_count("missing", excerpts) == 0

    def test_code_stats(self):
        codes = [
            make_code("a", frequency=2),
            make_code("b", level="child", parent_id="a", frequency=1),
            make_code("c", level="subchild", parent_id="b", frequency=0),
        ]
        stats = get_code_stats(codes, [make_excerpt("e1", "d1", ["a"])])
        assert stats == {
            "totalCodes": 3,
            "mainCodes": 1,
            "childCodes": 1,
            "subchildCodes": 1,
            "totalExcerpts": 1,
            "averageFrequency": 1.0,
        }


class TestNetworkGraph:
    """Tests for build_network_graph."""

    def test_nodes_and_links(self):
        codes = [make_code("a", frequency=4), make_code("b", level="child", parent_id="a")]
        themes = [Theme(id="t", name="Theme", color="#ec4899", code_ids=["a", "ghost"])]

        graph = build_network_graph(codes, themes)

        nodes = {node["id"]: node for node in graph["nodes"]}
        assert nodes["t"]["type"] == "theme"
        assert nodes["t"]["frequency"] == 20
        assert nodes["a"]["frequency"] == 4
        assert nodes["b"]["frequency"] == 1
        assert {"source": "a", "target": "b", "weight": 1} in graph["links"]
        assert {"source": "t", "target": "a", "weight": 1} in graph["links"]
        assert len(graph["links"]) == 2
