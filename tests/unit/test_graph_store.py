"""Unit tests for the GraphStore mutations, commands and queries."""

import pytest

from rabbithole.core.models import (
    AnnotationType,
    Author,
    Cluster,
    EdgeTrust,
    EdgeType,
    ExternalIds,
    GraphEdge,
    GraphNode,
    NodeState,
    PaperRecord,
    Position,
    WeightConfig,
)
from rabbithole.enrich.scoring import compute_node_score
from rabbithole.graph.store import DEFAULT_MATERIALIZE_POSITION, GraphStore
from rabbithole.layout.force_layout import LayoutOptions
from rabbithole.sync.operations import NOTES_KEY, OperationName
from rabbithole.sync.write_queue import WriteQueue


def make_paper(
    title: str = "Sample Paper",
    doi: str | None = None,
    year: int | None = 2020,
    authors: list[str] | None = None,
    citation_count: int = 0,
    abstract: str | None = None,
) -> PaperRecord:
    """Helper to construct a PaperRecord for testing."""
    return PaperRecord(
        title=title,
        year=year,
        authors=[Author(name=name) for name in (authors or [])],
        citation_count=citation_count,
        abstract=abstract,
        external_ids=ExternalIds(doi=doi),
    )


def make_node(
    node_id: str,
    state: NodeState = NodeState.DISCOVERED,
    x: float = 0.0,
    y: float = 0.0,
    citation_count: int = 0,
) -> GraphNode:
    """Helper to construct a GraphNode for testing."""
    return GraphNode(
        id=node_id,
        data=PaperRecord(id=node_id, title=f"Paper {node_id}", year=2020, citation_count=citation_count),
        state=state,
        position=Position(x=x, y=y),
    )


def make_edge(source: str, target: str, edge_type: EdgeType = EdgeType.CITES) -> GraphEdge:
    return GraphEdge(id=f"{source}-{target}", source=source, target=target, type=edge_type)


def op_names(queue: WriteQueue) -> list[str]:
    return [op.name.value for op in queue.pending]


@pytest.fixture
def queue() -> WriteQueue:
    return WriteQueue()


@pytest.fixture
def store(queue) -> GraphStore:
    return GraphStore("rh1", write_queue=queue, layout_options=LayoutOptions(incremental_iterations=20), seed=0)


class TestIngestPapers:
    """Tests for resolving and inserting incoming records."""

    def test_new_records_become_nodes(self, store, queue) -> None:
        result = store.ingest_papers([make_paper("A", doi="10.1/a"), make_paper("B", doi="10.1/b")])

        assert result.added_ids == ["doi:10.1/a", "doi:10.1/b"]
        assert result.merged_ids == []
        node = store.get_node("doi:10.1/a")
        assert node.state == NodeState.DISCOVERED
        assert node.data.id == node.id
        assert node.added_at > 0
        assert op_names(queue) == ["addNode", "addNode", "setClusters", "updateNodeData", "updateNodeData"]

    def test_final_scores_are_persisted(self, store, queue) -> None:
        store.ingest_papers([make_paper("A", doi="1", citation_count=5), make_paper("B", doi="2")])
        sent = {op.payload["nodeId"]: op.payload["scores"] for op in queue.pending if op.name == OperationName.UPDATE_NODE_DATA}
        assert set(sent) == {"doi:1", "doi:2"}
        for node_id, scores in sent.items():
            assert scores == store.get_node(node_id).scores.to_wire()

    def test_every_node_gets_a_cluster_and_relevance(self, store) -> None:
        store.ingest_papers([make_paper("A", doi="1", citation_count=5), make_paper("B", doi="2")])
        for node in store.nodes.values():
            assert node.cluster_id is not None
            assert 0.0 <= node.scores.relevance <= 1.0

    def test_known_paper_is_merged(self, store, queue) -> None:
        store.ingest_papers([make_paper("A", doi="10.1/a", citation_count=5)])
        result = store.ingest_papers([make_paper("A (preprint)", doi="https://doi.org/10.1/A", citation_count=50)])

        assert result.added_ids == []
        assert result.merged_ids == ["doi:10.1/a"]
        assert len(store.nodes) == 1
        node = store.get_node("doi:10.1/a")
        assert node.data.citation_count == 50
        assert node.data.title == "A"
        assert OperationName.UPDATE_NODE_DATA.value in op_names(queue)

    def test_fuzzy_match_against_graph(self, store) -> None:
        store.ingest_papers([make_paper("Attention is all you need", doi="10.1/att", year=2017, authors=["Vaswani"])])
        result = store.ingest_papers([make_paper("Attention Is All You Need", year=2017, authors=["Shazeer"])])
        assert result.merged_ids == ["doi:10.1/att"]
        assert len(store.nodes) == 1

    def test_duplicates_within_batch_collapse(self, store) -> None:
        result = store.ingest_papers([
            make_paper("A", doi="10.1/a", citation_count=1),
            make_paper("A again", doi="10.1/a", citation_count=7),
        ])
        assert result.added_ids == ["doi:10.1/a"]
        assert store.get_node("doi:10.1/a").data.citation_count == 7

    def test_materialize_flag(self, store) -> None:
        store.ingest_papers([make_paper("A", doi="1")], materialize=True)
        assert store.get_node("doi:1").state == NodeState.MATERIALIZED

        store.ingest_papers([make_paper("B", doi="2")])
        store.ingest_papers([make_paper("B", doi="2")], materialize=True)
        assert store.get_node("doi:2").state == NodeState.MATERIALIZED

    def test_new_nodes_placed_around_existing(self, store) -> None:
        store.ingest_papers([make_paper("A", doi="1"), make_paper("B", doi="2")])
        before = {node_id: node.position.model_copy() for node_id, node in store.nodes.items()}

        store.ingest_papers([make_paper("C", doi="3")])

        for node_id, position in before.items():
            assert store.nodes[node_id].position == position
        assert store.get_node("doi:3").position not in before.values()

    def test_empty_batch(self, store, queue) -> None:
        result = store.ingest_papers([])
        assert result.node_ids == []
        assert queue.pending == []


class TestMutations:
    """Tests for individual mutations and their remote operations."""

    def test_add_nodes_scores_before_persisting(self, store, queue) -> None:
        store.add_nodes([make_node("a", citation_count=99)])
        assert store.get_node("a").scores.influence > 0
        assert op_names(queue) == ["addNode"]

    def test_remove_nodes_drops_edges_and_memberships(self, store, queue) -> None:
        store.add_nodes([make_node("a"), make_node("b"), make_node("c")])
        store.add_edges([make_edge("a", "b"), make_edge("b", "c"), make_edge("a", "c")])
        store.set_clusters([
            Cluster(id="c1", label="x", node_ids=["a", "b"], color="#6366f1"),
            Cluster(id="c2", label="y", node_ids=["b"], color="#f59e0b"),
        ])

        assert store.remove_nodes(["b", "missing"]) == ["b"]

        assert [e.id for e in store.edges] == ["a-c"]
        assert [(c.id, c.node_ids) for c in store.clusters] == [("c1", ["a"])]
        assert op_names(queue)[-1] == "removeNode"

    def test_add_edges_ignores_duplicate_ids(self, store, queue) -> None:
        store.add_edges([make_edge("a", "b")])
        added = store.add_edges([make_edge("a", "b"), make_edge("b", "a")])
        assert [e.id for e in added] == ["b-a"]
        assert len(store.edges) == 2
        assert op_names(queue) == ["addEdge", "addEdge"]

    def test_remove_edges(self, store) -> None:
        store.add_edges([make_edge("a", "b"), make_edge("b", "c")])
        assert store.remove_edges(["a-b", "zzz"]) == ["a-b"]
        assert [e.id for e in store.edges] == ["b-c"]

    def test_archived_is_terminal(self, store) -> None:
        store.add_nodes([make_node("a")])
        assert store.archive_node("a")
        assert not store.update_node_state("a", NodeState.MATERIALIZED)
        assert not store.materialize_node("a")
        assert store.get_node("a").state == NodeState.ARCHIVED

    def test_unknown_node(self, store) -> None:
        assert not store.update_node_state("ghost", NodeState.ENRICHED)
        assert not store.update_node_data("ghost")
        assert not store.expand_node("ghost")

    def test_expand_node(self, store, queue) -> None:
        store.add_nodes([make_node("a")])
        assert store.expand_node("a")
        node = store.get_node("a")
        assert node.state == NodeState.ENRICHED
        assert node.expanded_at is not None
        assert op_names(queue)[-1] == "updateNodeState"

    def test_expand_keeps_materialized_state(self, store) -> None:
        store.add_nodes([make_node("a", state=NodeState.MATERIALIZED, x=5, y=5)])
        assert store.expand_node("a")
        assert store.get_node("a").state == NodeState.MATERIALIZED

    def test_materialize_into_empty_canvas(self, store, queue) -> None:
        store.add_nodes([make_node("a")])
        assert store.materialize_node("a")
        node = store.get_node("a")
        assert node.state == NodeState.MATERIALIZED
        assert node.position == DEFAULT_MATERIALIZE_POSITION
        assert op_names(queue)[-2:] == ["updateNodePosition", "updateNodeState"]

    def test_materialize_near_materialized_centroid(self, store) -> None:
        store.add_nodes([
            make_node("m1", NodeState.MATERIALIZED, 1000, 1000),
            make_node("m2", NodeState.MATERIALIZED, 1200, 1000),
            make_node("new"),
        ])
        store.materialize_node("new")
        position = store.get_node("new").position
        assert abs(position.x - 1100) <= 110
        assert abs(position.y - 1000) <= 110

    def test_materialize_keeps_placed_position(self, store) -> None:
        store.add_nodes([make_node("a", x=12, y=34)])
        store.materialize_node("a")
        assert store.get_node("a").position == Position(x=12, y=34)

    def test_update_node_notes(self, store, queue) -> None:
        store.add_nodes([make_node("a")])
        assert store.update_node_notes("a", "Important", ["core"])
        node = store.get_node("a")
        assert node.user_notes == "Important"
        assert node.user_tags == ["core"]
        assert queue.pending[-1].payload["data"][NOTES_KEY] == '[tags:["core"]]\nImportant'

        store.update_node_notes("a", "", [])
        assert node.user_notes is None
        assert node.user_tags is None

    def test_set_clusters_updates_node_cluster_ids(self, store) -> None:
        store.add_nodes([make_node("a"), make_node("b")])
        store.set_clusters([Cluster(id="c1", label="x", node_ids=["a"], color="#6366f1")])
        assert store.get_node("a").cluster_id == "c1"
        assert store.get_node("b").cluster_id is None
        assert [n.id for n in store.cluster_nodes("c1")] == ["a"]

    def test_merge_and_split_clusters(self, store, queue) -> None:
        store.add_nodes([make_node(n) for n in "abc"])
        store.set_clusters([
            Cluster(id="c1", label="x", node_ids=["a"], color="#6366f1"),
            Cluster(id="c2", label="y", node_ids=["b", "c"], color="#f59e0b"),
        ])
        store.merge_clusters("c1", "c2")
        assert [c.id for c in store.clusters] == ["c1"]
        assert store.get_node("c").cluster_id == "c1"

        store.split_cluster("c1", ["c"])
        assert len(store.clusters) == 2
        assert store.get_node("c").cluster_id != "c1"
        assert op_names(queue)[-3:] == ["setClusters", "setClusters", "setClusters"]

    def test_set_weights_rescores(self, store) -> None:
        store.add_nodes([make_node("old", citation_count=5000), make_node("new", citation_count=1)])
        store.set_weights(WeightConfig(
            influence=1.0, recency=0.0, semantic_similarity=0.0, local_centrality=0.0, velocity=0.0
        ))
        assert store.sorted_nodes()[0].id == "old"
        assert store.weights.influence == 1.0

    def test_set_query(self, store) -> None:
        store.set_query("graph neural networks", [0.1, 0.2])
        assert store.query == "graph neural networks"
        assert store.query_embedding == [0.1, 0.2]
        store.set_query("other")
        assert store.query_embedding is None

    def test_clear(self, store, queue) -> None:
        store.add_nodes([make_node("a")])
        store.add_annotation(AnnotationType.INSIGHT, "x", "a")
        store.clear()
        assert store.nodes == {}
        assert store.annotations == {}
        assert op_names(queue)[-1] == "clearRabbitHole"

    def test_works_without_write_queue(self) -> None:
        store = GraphStore("local")
        store.ingest_papers([make_paper("A", doi="1")])
        assert len(store.nodes) == 1


class TestAnnotations:
    """Tests for annotation placement and editing."""

    def test_attached_annotation_sits_beside_node(self, store) -> None:
        store.add_nodes([make_node("a", x=100, y=100)])
        note = store.add_annotation(AnnotationType.KEY_FIND, "this matters", attached_to_node_id="a")
        assert note.position == Position(x=300, y=50)
        assert note.created_at > 0
        assert store.annotations_for_node("a") == [note]

    def test_free_annotation(self, store) -> None:
        note = store.add_annotation(AnnotationType.QUESTION, "why?")
        assert 0 <= note.position.x <= 400
        assert 0 <= note.position.y <= 400

    def test_update_and_remove(self, store) -> None:
        note = store.add_annotation(AnnotationType.SUMMARY, "draft")
        assert store.update_annotation(note.id, "final")
        assert store.annotations[note.id].content == "final"
        assert store.remove_annotation(note.id)
        assert not store.remove_annotation(note.id)
        assert not store.update_annotation(note.id, "gone")


class TestAnalytics:
    """Tests for recalculation over active nodes."""

    def test_archived_nodes_excluded(self, store) -> None:
        store.add_nodes([make_node("a", citation_count=10), make_node("b"), make_node("c", citation_count=3)])
        store.add_edges([make_edge("a", "b"), make_edge("b", "c")])
        store.archive_node("c")
        archived_scores = store.get_node("c").scores.model_copy()

        store.recalculate_all()

        assert store.get_node("c").cluster_id is None
        assert all("c" not in cluster.node_ids for cluster in store.clusters)
        assert store.get_node("c").scores == archived_scores
        assert store.get_node("a").cluster_id is not None

    def test_recalculate_clusters_not_persisted(self, store, queue) -> None:
        store.add_nodes([make_node("a"), make_node("b")])
        store.recalculate_clusters()
        assert "setClusters" not in op_names(queue)
        store.persist_clusters()
        assert op_names(queue)[-1] == "setClusters"

    def test_persist_scores(self, store, queue) -> None:
        store.add_nodes([make_node("a"), make_node("b"), make_node("c", state=NodeState.ARCHIVED)])
        store.recalculate_scores()
        store.persist_scores()
        assert op_names(queue)[-2:] == ["updateNodeData", "updateNodeData"]


    def test_remove_nodes_rescores_remaining(self, store) -> None:
        store.add_nodes([make_node("a", citation_count=1), make_node("b", citation_count=10), make_node("c", citation_count=100)])
        assert store.get_node("b").scores.influence < 1.0

        store.remove_nodes(["c"])

        assert store.get_node("b").scores.influence == pytest.approx(1.0)
        assert store.get_node("a").scores.influence == pytest.approx(0.0)

    def test_edge_changes_rescore(self, store) -> None:
        store.add_nodes([make_node("a"), make_node("b")])
        store.add_edges([make_edge("a", "b")])
        assert store.get_node("b").scores.local_centrality == pytest.approx(1.0)
        assert store.get_node("a").scores.local_centrality == pytest.approx(0.0)

        store.remove_edges(["a-b"])

        assert store.get_node("a").scores.local_centrality == 0.5
        assert store.get_node("b").scores.local_centrality == 0.5

    def test_archive_regroups_and_rescores(self, store, queue) -> None:
        store.add_nodes([make_node(n) for n in "abc"])
        store.add_edges([make_edge("a", "b"), make_edge("b", "c"), make_edge("c", "a")])
        store.recalculate_all()
        assert len(store.clusters) == 1
        assert store.get_node("b").scores.relevance > compute_node_score(store.get_node("b"), store.weights)

        store.archive_node("a")

        assert all("a" not in cluster.node_ids for cluster in store.clusters)
        for node_id in ("b", "c"):
            node = store.get_node(node_id)
            assert node.scores.relevance == pytest.approx(compute_node_score(node, store.weights))
        assert op_names(queue)[-2:] == ["updateNodeState", "setClusters"]

    def test_archived_members_do_not_count_toward_cluster_size(self, store) -> None:
        store.add_nodes([make_node(n) for n in "abc"])
        store.get_node("a").state = NodeState.ARCHIVED
        store.set_clusters([Cluster(id="c1", label="x", node_ids=["a", "b", "c"], color="#6366f1")])

        store.recalculate_scores()

        node = store.get_node("b")
        assert node.scores.relevance == pytest.approx(compute_node_score(node, store.weights))

    def test_cluster_edits_rescore(self, store) -> None:
        store.add_nodes([make_node(n) for n in "abc"])
        store.set_clusters([
            Cluster(id="c1", label="x", node_ids=["a", "b"], color="#6366f1"),
            Cluster(id="c2", label="y", node_ids=["c"], color="#f59e0b"),
        ])
        node = store.get_node("a")
        assert node.scores.relevance == pytest.approx(compute_node_score(node, store.weights))

        store.merge_clusters("c1", "c2")

        assert node.scores.relevance > compute_node_score(node, store.weights)

        store.split_cluster("c1", ["c"])

        assert node.scores.relevance == pytest.approx(compute_node_score(node, store.weights))


class TestCommands:
    """Tests for connect, relayout and ego layout."""

    def test_connect_nodes(self, store) -> None:
        store.add_nodes([make_node("a"), make_node("b")])
        edge = store.connect_nodes("a", "b", EdgeType.EXTENDS, evidence="builds on")
        assert edge is not None
        assert edge.trust == EdgeTrust.INFERRED
        assert edge.weight == 0.5
        assert store.node_edges("a") == [edge]

    def test_connect_unknown_node(self, store) -> None:
        store.add_nodes([make_node("a")])
        assert store.connect_nodes("a", "ghost", EdgeType.CITES) is None
        assert store.edges == []

    def test_relayout(self, store, queue) -> None:
        store.add_nodes([make_node(n) for n in "abc"] + [make_node("z", state=NodeState.ARCHIVED)])
        store.add_edges([make_edge("a", "b"), make_edge("b", "c")])
        positions = store.relayout(LayoutOptions(iterations=20))
        assert set(positions) == {"a", "b", "c"}
        assert op_names(queue).count("updateNodePosition") == 3
        assert store.get_node("a").position == positions["a"]

    def test_ego_layout_is_view_only(self, store) -> None:
        store.add_nodes([make_node("a", x=5, y=5), make_node("b", x=50, y=50)])
        store.add_edges([make_edge("a", "b")])
        positions = store.ego_layout("b")
        assert positions["b"] == Position(x=0, y=0)
        assert store.get_node("b").position == Position(x=50, y=50)


class TestQueries:
    """Tests for the read-only views."""

    def test_state_views(self, store) -> None:
        store.add_nodes([
            make_node("d"),
            make_node("e", state=NodeState.ENRICHED),
            make_node("m", state=NodeState.MATERIALIZED),
            make_node("x", state=NodeState.ARCHIVED),
        ])
        assert [n.id for n in store.frontier_nodes()] == ["d", "e"]
        assert [n.id for n in store.materialized_nodes()] == ["m"]
        assert [n.id for n in store.active_nodes()] == ["d", "e", "m"]

    def test_active_edges(self, store) -> None:
        store.add_nodes([make_node("a"), make_node("b"), make_node("x", state=NodeState.ARCHIVED)])
        store.add_edges([make_edge("a", "b"), make_edge("a", "x")])
        assert [e.id for e in store.active_edges()] == ["a-b"]

    def test_search(self, store) -> None:
        store.ingest_papers([make_paper("Graph transformers", doi="1"), make_paper("Protein folding", doi="2")])
        hits = store.search("transformers")
        assert [h.node_id for h in hits] == ["doi:1"]
