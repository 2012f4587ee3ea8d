"""Unit tests for keyword search within the graph."""

from rabbithole.core.models import Author, GraphNode, NodeState, PaperRecord
from rabbithole.graph.search import (
    extract_snippet,
    score_match,
    search_terms,
    search_within_graph,
)


def make_node(
    node_id: str,
    title: str,
    abstract: str | None = None,
    authors: list[str] | None = None,
    venue: str | None = None,
    notes: str | None = None,
    state: NodeState = NodeState.DISCOVERED,
) -> GraphNode:
    return GraphNode(
        id=node_id,
        data=PaperRecord(
            id=node_id,
            title=title,
            abstract=abstract,
            authors=[Author(name=name) for name in (authors or [])],
            venue=venue,
        ),
        state=state,
        user_notes=notes,
    )


class TestSearchHelpers:
    def test_short_terms_dropped(self) -> None:
        assert search_terms("A of GNN models") == ["gnn", "models"]

    def test_score_is_fraction_of_terms(self) -> None:
        assert score_match("Graph attention networks", ["graph", "protein"]) == 0.5
        assert score_match("", ["graph"]) == 0.0

    def test_snippet_ellipses(self) -> None:
        text = "x" * 200 + " needle " + "y" * 200
        snippet = extract_snippet(text, ["needle"])
        assert snippet.startswith("...")
        assert snippet.endswith("...")
        assert "needle" in snippet

    def test_snippet_at_start_has_no_leading_ellipsis(self) -> None:
        text = "needle " + "y" * 200
        snippet = extract_snippet(text, ["needle"])
        assert snippet.startswith("needle")
        assert snippet.endswith("...")

    def test_snippet_without_exact_hit(self) -> None:
        assert extract_snippet("z" * 300, ["needle"]) == "z" * 160


class TestSearchWithinGraph:
    """Tests for ranking nodes against a query."""

    def test_title_outranks_abstract(self) -> None:
        nodes = [
            make_node("abs", "Protein folding dynamics", abstract="We apply graph methods to folding."),
            make_node("title", "Graph neural networks"),
        ]
        hits = search_within_graph("graph", nodes)
        assert [h.node_id for h in hits] == ["title", "abs"]
        assert hits[0].match_field == "title"
        assert hits[0].score == 3.0
        assert hits[1].match_field == "abstract"
        assert hits[1].score == 2.0

    def test_only_short_terms(self) -> None:
        assert search_within_graph("of a", [make_node("n", "of a kind")]) == []

    def test_archived_nodes_skipped(self) -> None:
        nodes = [
            make_node("gone", "Graph theory", state=NodeState.ARCHIVED),
            make_node("kept", "Graph theory"),
        ]
        assert [h.node_id for h in search_within_graph("graph", nodes)] == ["kept"]

    def test_accepts_mapping(self) -> None:
        node = make_node("n", "Graph theory")
        assert search_within_graph("graph", {"n": node})[0].node_id == "n"

    def test_fuzzy_match(self) -> None:
        node = make_node("n", "Learning representations of molecules")
        hits = search_within_graph("representaton", [node])
        assert [h.node_id for h in hits] == ["n"]

    def test_notes_and_authors(self) -> None:
        nodes = [
            make_node("noted", "Untitled draft", notes="Compare against the transformer baseline."),
            make_node("authored", "Another draft", authors=["Ashish Vaswani"]),
        ]
        assert search_within_graph("transformer", nodes)[0].match_field == "notes"
        assert search_within_graph("vaswani", nodes)[0].match_field == "authors"

    def test_partial_term_coverage_scores_lower(self) -> None:
        nodes = [
            make_node("one", "Graph models"),
            make_node("both", "Graph attention models"),
        ]
        hits = search_within_graph("graph attention", nodes)
        assert [h.node_id for h in hits] == ["both", "one"]

    def test_max_results(self) -> None:
        nodes = [make_node(f"n{i}", f"Graph study {i}") for i in range(5)]
        assert len(search_within_graph("graph", nodes, max_results=2)) == 2
