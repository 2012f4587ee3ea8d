"""Core domain models for papers, graph nodes, edges and clusters."""

from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from .ids import normalize_arxiv_id, normalize_doi


class WireModel(BaseModel):
    """Base model: snake_case in Python, camelCase in snapshots and payloads."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> Dict[str, Any]:
        """JSON-safe dict with camelCase keys and unset optionals dropped."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class ExternalIds(WireModel):
    """Identifiers a paper carries in external catalogues."""
    doi: Optional[str] = None
    arxiv_id: Optional[str] = None
    semantic_scholar_id: Optional[str] = None
    corpus_id: Optional[str] = None
    open_alex_id: Optional[str] = None
    pubmed_id: Optional[str] = None

    @field_validator("doi")
    @classmethod
    def _normalize_doi(cls, v: Optional[str]) -> Optional[str]:
        return normalize_doi(v)

    @field_validator("arxiv_id")
    @classmethod
    def _normalize_arxiv(cls, v: Optional[str]) -> Optional[str]:
        return normalize_arxiv_id(v)

    @field_validator("semantic_scholar_id", "corpus_id", "open_alex_id", "pubmed_id", mode="before")
    @classmethod
    def _stringify(cls, v: Any) -> Optional[str]:
        if v is None:
            return None
        v = str(v).strip()
        return v or None


class Author(WireModel):
    """Author information. Order within a paper matters."""
    name: str
    id: Optional[str] = None
    affiliations: List[str] = Field(default_factory=list)
    url: Optional[str] = None


class PaperRecord(WireModel):
    """A paper as handed over by search and citation providers."""

    id: str = Field("", description="Canonical id; empty until resolved")
    external_ids: ExternalIds = Field(default_factory=ExternalIds)

    # Bibliographic metadata
    title: str = ""
    authors: List[Author] = Field(default_factory=list)
    year: Optional[int] = None
    abstract: Optional[str] = None
    tldr: Optional[str] = None
    venue: Optional[str] = None

    # Citation metrics
    citation_count: int = Field(0, ge=0)
    reference_count: int = Field(0, ge=0)
    influential_citation_count: Optional[int] = Field(None, ge=0)

    # Content metadata
    fields_of_study: Optional[List[str]] = None
    publication_types: Optional[List[str]] = None

    # Access
    open_access_pdf: Optional[str] = None
    url: Optional[str] = None

    embedding: Optional[List[float]] = None


class NodeState(str, Enum):
    """Lifecycle of a node. ARCHIVED is terminal."""

    DISCOVERED = "discovered"
    ENRICHED = "enriched"
    MATERIALIZED = "materialized"
    ARCHIVED = "archived"


class Position(WireModel):
    x: float = 0.0
    y: float = 0.0

    @property
    def at_origin(self) -> bool:
        return self.x == 0 and self.y == 0


class NodeScores(WireModel):
    """Raw or normalized score dimensions plus the derived relevance."""
    relevance: float = 0.0
    influence: float = 0.0
    recency: float = 0.0
    semantic_similarity: float = 0.0
    local_centrality: float = 0.0
    velocity: float = 0.0


class GraphNode(WireModel):
    """A resolved paper plus its mutable session state."""

    id: str
    data: PaperRecord
    state: NodeState = NodeState.DISCOVERED
    position: Position = Field(default_factory=Position)
    cluster_id: Optional[str] = None
    scores: NodeScores = Field(default_factory=NodeScores)
    added_at: int = Field(0, description="Epoch milliseconds")
    expanded_at: Optional[int] = None
    user_notes: Optional[str] = None
    user_tags: Optional[List[str]] = None

    @property
    def is_active(self) -> bool:
        """Archived nodes take no part in analytics or rendering."""
        return self.state != NodeState.ARCHIVED


class EdgeType(str, Enum):
    CITES = "cites"
    CITED_BY = "cited-by"
    SEMANTIC_SIMILARITY = "semantic-similarity"
    SAME_AUTHOR = "same-author"
    SAME_DATASET = "same-dataset"
    SAME_VENUE = "same-venue"
    METHODOLOGICALLY_SIMILAR = "methodologically-similar"
    CONTRADICTS = "contradicts"
    EXTENDS = "extends"


# Edge types that link both ways when propagating centrality.
SYMMETRIC_EDGE_TYPES: FrozenSet[EdgeType] = frozenset(
    {EdgeType.SEMANTIC_SIMILARITY, EdgeType.SAME_AUTHOR, EdgeType.SAME_VENUE}
)


class EdgeTrust(str, Enum):
    SOURCE_BACKED = "source-backed"
    INFERRED = "inferred"


class GraphEdge(WireModel):
    """Directed edge between two nodes."""
    id: str
    source: str
    target: str
    type: EdgeType
    trust: EdgeTrust = EdgeTrust.INFERRED
    weight: float = Field(0.5, ge=0.0, le=1.0)
    evidence: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None


class Cluster(WireModel):
    id: str
    label: str
    description: Optional[str] = None
    node_ids: List[str] = Field(default_factory=list)
    color: str
    centroid: Optional[List[float]] = None


class WeightConfig(WireModel):
    """Weights of the relevance sum. Independent; they need not add up to 1."""
    influence: float = Field(0.2, ge=0.0, le=1.0)
    recency: float = Field(0.2, ge=0.0, le=1.0)
    semantic_similarity: float = Field(0.3, ge=0.0, le=1.0)
    local_centrality: float = Field(0.2, ge=0.0, le=1.0)
    velocity: float = Field(0.1, ge=0.0, le=1.0)


DEFAULT_WEIGHTS = WeightConfig()

WEIGHT_PRESETS: Dict[str, WeightConfig] = {
    "foundational": WeightConfig(
        influence=0.4, recency=0.05, semantic_similarity=0.2, local_centrality=0.3, velocity=0.05
    ),
    "cutting-edge": WeightConfig(
        influence=0.1, recency=0.35, semantic_similarity=0.2, local_centrality=0.05, velocity=0.3
    ),
    "balanced": WeightConfig(),
}


class AnnotationType(str, Enum):
    INSIGHT = "insight"
    DEAD_END = "dead-end"
    KEY_FIND = "key-find"
    QUESTION = "question"
    SUMMARY = "summary"


class Annotation(WireModel):
    """Free-standing note attached to a node, a cluster, or nothing."""
    id: str
    type: AnnotationType
    content: str
    position: Position = Field(default_factory=Position)
    attached_to_node_id: Optional[str] = None
    cluster_id: Optional[str] = None
    created_at: int = 0
