"""Unit tests for relevance scoring."""

import math

import pytest

from rabbithole.core.models import Author, Cluster, GraphNode, NodeScores, NodeState, PaperRecord, WeightConfig
from rabbithole.enrich.scoring import (
    SCORE_DIMENSIONS,
    ScoreEngine,
    compute_author_boosts,
    compute_cluster_boosts,
    compute_node_score,
    compute_raw_scores,
    cosine_similarity,
    influence_score,
    normalize_scores,
    recency_score,
    score_breakdown,
    velocity_score,
)


def make_node(
    node_id: str,
    citation_count: int = 0,
    year: int | None = 2020,
    authors: list[str] | None = None,
    embedding: list[float] | None = None,
    state: NodeState = NodeState.DISCOVERED,
) -> GraphNode:
    """Helper to construct a GraphNode for testing."""
    return GraphNode(
        id=node_id,
        data=PaperRecord(
            id=node_id,
            title=f"Paper {node_id}",
            year=year,
            citation_count=citation_count,
            authors=[Author(name=name) for name in (authors or [])],
            embedding=embedding,
        ),
        state=state,
    )


class TestRawFeatures:
    """Tests for the per-node raw feature functions."""

    def test_influence_is_log_scaled(self) -> None:
        assert influence_score(0) == 0.0
        assert influence_score(99) == pytest.approx(math.log(100))

    def test_recency_unknown_year(self) -> None:
        assert recency_score(None, 100, current_year=2024) == 0.5

    def test_recency_decays_with_age(self) -> None:
        assert recency_score(2024, 0, current_year=2024) == pytest.approx(1.0)
        assert recency_score(2014, 0, current_year=2024) == pytest.approx(math.exp(-1))
        assert recency_score(2024, 9, current_year=2024) == pytest.approx(1.0 + math.log(10) / 10)

    def test_recency_future_year_clamped(self) -> None:
        assert recency_score(2030, 0, current_year=2024) == pytest.approx(1.0)

    def test_velocity(self) -> None:
        assert velocity_score(2020, 100, current_year=2024) == pytest.approx(25.0)
        assert velocity_score(2024, 10, current_year=2024) == pytest.approx(10.0)
        assert velocity_score(None, 10, current_year=2024) == 0.0
        assert velocity_score(2020, 0, current_year=2024) == 0.0

    def test_cosine_similarity(self) -> None:
        assert cosine_similarity([1.0, 0.0], [1.0, 0.0]) == pytest.approx(1.0)
        assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.0)
        assert cosine_similarity([1.0, 0.0], None) == 0.0
        assert cosine_similarity([1.0, 0.0], [1.0, 0.0, 0.0]) == 0.0
        assert cosine_similarity([0.0, 0.0], [1.0, 1.0]) == 0.0

    def test_compute_raw_scores(self) -> None:
        node = make_node("a", citation_count=9, year=2020, embedding=[1.0, 0.0])
        scores = compute_raw_scores(node, 0.3, query_embedding=[1.0, 0.0], current_year=2022)
        assert scores.influence == pytest.approx(math.log(10))
        assert scores.local_centrality == 0.3
        assert scores.semantic_similarity == pytest.approx(1.0)
        assert scores.velocity == pytest.approx(4.5)
        assert scores.relevance == 0.0


class TestNormalization:
    """Tests for min-max normalization."""

    def test_min_max(self) -> None:
        nodes = [make_node("a"), make_node("b"), make_node("c")]
        for node, value in zip(nodes, [2.0, 4.0, 6.0]):
            node.scores = NodeScores(influence=value)
        normalize_scores(nodes)
        assert [n.scores.influence for n in nodes] == [0.0, 0.5, 1.0]

    def test_no_spread_maps_to_half(self) -> None:
        nodes = [make_node("a"), make_node("b")]
        normalize_scores(nodes)
        for node in nodes:
            for dim in SCORE_DIMENSIONS:
                assert getattr(node.scores, dim) == 0.5

    def test_empty(self) -> None:
        assert normalize_scores([]) == []


class TestBoosts:
    """Tests for the author and cluster boosts."""

    def test_shared_author_boost(self) -> None:
        nodes = [
            make_node("a", authors=["Yann LeCun"]),
            make_node("b", authors=["yann  lecun"]),
            make_node("c", authors=["Someone Else"]),
        ]
        boosts = compute_author_boosts(nodes, factor=0.1, cap=0.25)
        assert boosts["a"] == pytest.approx(1.1)
        assert boosts["b"] == pytest.approx(1.1)
        assert boosts["c"] == 1.0

    def test_author_boost_capped(self) -> None:
        nodes = [make_node(str(i), authors=["Prolific"]) for i in range(64)]
        boosts = compute_author_boosts(nodes, factor=0.1, cap=0.25)
        assert boosts["0"] == pytest.approx(1.25)

    def test_cluster_boost(self) -> None:
        nodes = [make_node(n) for n in "abcdef"]
        clusters = [
            Cluster(id="big", label="Big", node_ids=["a", "b", "c", "d"], color="#000000"),
            Cluster(id="small", label="Small", node_ids=["e", "f"], color="#ffffff"),
        ]
        boosts = compute_cluster_boosts(nodes, clusters, factor=0.08, cap=0.2, min_size=3)
        assert boosts["a"] == pytest.approx(1.16)
        assert boosts["e"] == 1.0

    def test_cluster_boost_capped(self) -> None:
        nodes = [make_node(str(i)) for i in range(64)]
        clusters = [Cluster(id="huge", label="Huge", node_ids=[n.id for n in nodes], color="#000000")]
        boosts = compute_cluster_boosts(nodes, clusters, factor=0.08, cap=0.2, min_size=3)
        assert boosts["0"] == pytest.approx(1.2)
        assert boosts["63"] == pytest.approx(1.2)

    def test_combined_boosts_clamped(self) -> None:
        nodes = [make_node(str(i), citation_count=i, authors=["Prolific"]) for i in range(64)]
        clusters = [Cluster(id="huge", label="Huge", node_ids=[n.id for n in nodes], color="#000000")]
        weights = WeightConfig(influence=1.0, recency=0.0, semantic_similarity=0.0, local_centrality=0.0, velocity=0.0)
        engine = ScoreEngine(author_boost_factor=0.1, author_boost_cap=0.25,
                             cluster_boost_factor=0.08, cluster_boost_cap=0.2, cluster_boost_min_size=3)

        engine.recalculate(nodes, clusters=clusters, weights=weights, current_year=2024)

        for node in nodes:
            expected = min(node.scores.influence * 1.25 * 1.2, 1.0)
            assert node.scores.relevance == pytest.approx(expected)
            assert node.scores.relevance <= 1.0
        assert nodes[-1].scores.relevance == 1.0
        assert nodes[0].scores.relevance == 0.0



class TestScoreEngine:
    """Tests for the full recalculation pass."""

    def test_relevance_in_unit_interval(self) -> None:
        nodes = [
            make_node("a", citation_count=1000, year=2010, authors=["X"]),
            make_node("b", citation_count=5, year=2023, authors=["X"]),
            make_node("c", citation_count=50, year=2018),
        ]
        ScoreEngine().recalculate(nodes, centrality={"a": 0.5, "b": 0.2}, current_year=2024)
        for node in nodes:
            assert 0.0 <= node.scores.relevance <= 1.0
            for dim in SCORE_DIMENSIONS:
                assert 0.0 <= getattr(node.scores, dim) <= 1.0

    def test_archived_nodes_untouched(self) -> None:
        archived = make_node("z", citation_count=10, state=NodeState.ARCHIVED)
        archived.scores = NodeScores(relevance=0.42)
        active = [make_node("a", citation_count=1), make_node("b", citation_count=100)]

        result = ScoreEngine().recalculate([*active, archived], current_year=2024)

        assert [n.id for n in result] == ["a", "b"]
        assert archived.scores.relevance == 0.42

    def test_weights_change_ranking(self) -> None:
        old_cited = make_node("old", citation_count=5000, year=1990)
        new_hot = make_node("new", citation_count=300, year=2023)
        engine = ScoreEngine()

        engine.recalculate([old_cited, new_hot], weights=WeightConfig(
            influence=1.0, recency=0.0, semantic_similarity=0.0, local_centrality=0.0, velocity=0.0
        ), current_year=2024)
        assert old_cited.scores.relevance > new_hot.scores.relevance

        engine.recalculate([old_cited, new_hot], weights=WeightConfig(
            influence=0.0, recency=1.0, semantic_similarity=0.0, local_centrality=0.0, velocity=0.0
        ), current_year=2024)
        assert new_hot.scores.relevance > old_cited.scores.relevance

    def test_recalculation_is_idempotent(self) -> None:
        nodes = [make_node("a", citation_count=3), make_node("b", citation_count=30)]
        engine = ScoreEngine()
        engine.recalculate(nodes, current_year=2024)
        first = [n.scores.model_copy() for n in nodes]
        engine.recalculate(nodes, current_year=2024)
        assert [n.scores for n in nodes] == first

    def test_clamped_to_one(self) -> None:
        nodes = [make_node(str(i), citation_count=i, authors=["Same"]) for i in range(4)]
        clusters = [Cluster(id="c", label="C", node_ids=[n.id for n in nodes], color="#000000")]
        weights = WeightConfig(influence=1, recency=1, semantic_similarity=1, local_centrality=1, velocity=1)
        ScoreEngine().recalculate(nodes, clusters=clusters, weights=weights, current_year=2024)
        assert max(n.scores.relevance for n in nodes) == 1.0

    def test_score_table(self) -> None:
        nodes = [make_node("a", citation_count=1), make_node("b", citation_count=100)]
        engine = ScoreEngine()
        engine.recalculate(nodes, current_year=2024)
        df = engine.score_table(nodes)
        assert list(df["node_id"]) == ["b", "a"]
        assert list(df["rank"]) == [1, 2]
        assert "weighted_sum" in df.columns

    def test_score_table_empty(self) -> None:
        df = ScoreEngine().score_table([])
        assert df.empty
        assert "relevance" in df.columns

    def test_breakdown(self) -> None:
        node = make_node("a")
        node.scores = NodeScores(influence=1.0, recency=0.5)
        rows = score_breakdown(node, WeightConfig())
        assert [r.label for r in rows][0] == "Influence"
        assert rows[0].weighted == pytest.approx(0.2)
        assert compute_node_score(node, WeightConfig()) == pytest.approx(0.2 + 0.1)
