"""Keyword search over the nodes of the current graph."""

from typing import Iterable, List, Literal, Mapping, Optional, Sequence, Union

from pydantic import BaseModel
from rapidfuzz import fuzz

from ..core.models import GraphNode

MatchField = Literal["title", "abstract", "notes", "authors", "venue"]

FIELD_WEIGHTS = {
    "title": 3.0,
    "abstract": 2.0,
    "notes": 1.5,
    "authors": 1.0,
    "venue": 1.0,
}

FUZZY_MATCH_THRESHOLD = 90
SNIPPET_CONTEXT = 80


class SearchHit(BaseModel):
    node_id: str
    score: float
    match_field: MatchField
    snippet: Optional[str] = None


def search_terms(query: str) -> List[str]:
    """Lowercased whitespace-separated terms longer than two characters."""
    return [term for term in query.lower().split() if len(term) > 2]


def term_matches(term: str, text: str) -> bool:
    """Substring match, or a near match (typos, inflections) via rapidfuzz."""
    if term in text:
        return True
    return fuzz.partial_ratio(term, text, score_cutoff=FUZZY_MATCH_THRESHOLD) > 0


def score_match(text: str, terms: Sequence[str]) -> float:
    """Fraction of ``terms`` found in ``text``, in [0, 1]."""
    if not terms or not text:
        return 0.0
    lower = text.lower()
    return sum(1 for term in terms if term_matches(term, lower)) / len(terms)


def extract_snippet(text: str, terms: Sequence[str], context: int = SNIPPET_CONTEXT) -> str:
    """Window of ``text`` around the earliest exact term occurrence."""
    lower = text.lower()
    found = [idx for idx in (lower.find(term) for term in terms) if idx >= 0]
    if not found:
        return text[: context * 2]

    earliest = min(found)
    start = max(0, earliest - context)
    end = min(len(text), earliest + context)
    snippet = text[start:end].strip()
    if start > 0:
        snippet = "..." + snippet
    if end < len(text):
        snippet = snippet + "..."
    return snippet


def _candidate_fields(node: GraphNode, terms: Sequence[str]):
    data = node.data
    yield "title", data.title, lambda: data.title
    if data.abstract:
        yield "abstract", data.abstract, lambda: extract_snippet(data.abstract, terms)
    if node.user_notes:
        yield "notes", node.user_notes, lambda: extract_snippet(node.user_notes, terms)
    author_text = " ".join(a.name for a in data.authors)
    yield "authors", author_text, lambda: author_text
    if data.venue:
        yield "venue", data.venue, lambda: data.venue


def search_within_graph(
    query: str,
    nodes: Union[Mapping[str, GraphNode], Iterable[GraphNode]],
    max_results: int = 10,
) -> List[SearchHit]:
    """
    Rank non-archived nodes against ``query``.

    Each searchable field is scored as the fraction of query terms it
    contains, times the field weight; a node is reported with its best
    field. Ties keep node order.

    Args:
        query: Free-text query; terms of up to two characters are ignored
        nodes: Nodes to search, or a node id -> node mapping
        max_results: Maximum number of hits returned

    Returns:
        Hits sorted by descending score
    """
    terms = search_terms(query)
    if not terms:
        return []

    candidates = nodes.values() if isinstance(nodes, Mapping) else nodes
    hits: List[SearchHit] = []
    for node in candidates:
        if not node.is_active:
            continue

        best: Optional[SearchHit] = None
        for field, text, snippet in _candidate_fields(node, terms):
            score = score_match(text, terms) * FIELD_WEIGHTS[field]
            if score > 0 and (best is None or score > best.score):
                best = SearchHit(node_id=node.id, score=score, match_field=field, snippet=snippet())
        if best is not None:
            hits.append(best)

    hits.sort(key=lambda hit: hit.score, reverse=True)
    return hits[:max_results]
