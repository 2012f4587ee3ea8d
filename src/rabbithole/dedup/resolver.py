"""Identity resolution for incoming paper records."""

from typing import Iterable, List, Optional, Sequence, Tuple, TypeVar

from pydantic import BaseModel, Field

from ..config.settings import settings
from ..core.ids import create_canonical_id
from ..core.models import ExternalIds, PaperRecord
from ..core.normalization import normalize_author_name, title_tokens
from ..utils.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

# External ids that identify a paper on their own. PubMed ids only feed
# the canonical id.
_MATCHING_ID_FIELDS = ("doi", "arxiv_id", "semantic_scholar_id", "open_alex_id", "corpus_id")


class DuplicateGroup(BaseModel):
    """Group of records that resolved to the same paper."""
    canonical_id: str
    duplicate_ids: List[str]
    match_type: str = Field(..., description="doi, arxiv_id, ..., title_author, title")
    confidence: float = Field(..., ge=0.0, le=1.0)


def title_similarity(a: str, b: str) -> float:
    """Jaccard overlap of the two titles' word sets."""
    words_a = set(title_tokens(a))
    words_b = set(title_tokens(b))
    if not words_a and not words_b:
        return 1.0
    if not words_a or not words_b:
        return 0.0
    return len(words_a & words_b) / len(words_a | words_b)


def _first_present(*values: Optional[T]) -> Optional[T]:
    for value in values:
        if value:
            return value
    return None


def _longer(a: Optional[str], b: Optional[str]) -> Optional[str]:
    if not a:
        return b or None
    if not b:
        return a
    return a if len(a) >= len(b) else b


def _union(a: Optional[List[str]], b: Optional[List[str]]) -> Optional[List[str]]:
    if a is None and b is None:
        return None
    return list(dict.fromkeys([*(a or []), *(b or [])]))


def _merge_external_ids(a: ExternalIds, b: ExternalIds) -> ExternalIds:
    merged = {
        field: getattr(a, field) or getattr(b, field)
        for field in ExternalIds.model_fields
    }
    return ExternalIds(**merged)


class IdentityResolver:
    """
    Decide whether two records describe the same paper and reconcile them.

    Strategy:
    1. Any shared external identifier (DOI, arXiv, S2, OpenAlex, corpus id)
    2. Title similarity + same year + same first author
    3. Near-identical title + same year

    The title rules favour missed duplicates over false merges.
    """

    def __init__(
        self,
        title_threshold: Optional[float] = None,
        strict_title_threshold: Optional[float] = None,
    ) -> None:
        self.title_threshold = (
            settings.duplicate_title_threshold if title_threshold is None else title_threshold
        )
        self.strict_title_threshold = (
            settings.duplicate_title_strict_threshold
            if strict_title_threshold is None
            else strict_title_threshold
        )

    def match_reason(self, a: PaperRecord, b: PaperRecord) -> Optional[Tuple[str, float]]:
        """Return ``(match_type, confidence)`` if the records are duplicates."""
        for field in _MATCHING_ID_FIELDS:
            value = getattr(a.external_ids, field)
            if value and value == getattr(b.external_ids, field):
                return field, 1.0

        if not (a.year and b.year and a.authors and b.authors and a.title and b.title):
            return None
        if a.year != b.year:
            return None

        similarity = title_similarity(a.title, b.title)
        same_first_author = (
            normalize_author_name(a.authors[0].name) == normalize_author_name(b.authors[0].name)
        )
        if similarity > self.title_threshold and same_first_author:
            return "title_author", similarity
        if similarity > self.strict_title_threshold:
            return "title", similarity
        return None

    def is_duplicate(self, a: PaperRecord, b: PaperRecord) -> bool:
        return self.match_reason(a, b) is not None

    def resolve(self, paper: PaperRecord) -> PaperRecord:
        """Assign a canonical ID if the record has none. Idempotent."""
        if paper.id:
            return paper
        return paper.model_copy(update={"id": create_canonical_id(paper)})

    def merge(self, existing: PaperRecord, incoming: PaperRecord) -> PaperRecord:
        """Reconcile two records of one paper, preferring ``existing``."""
        return PaperRecord(
            id=existing.id or create_canonical_id(existing),
            external_ids=_merge_external_ids(existing.external_ids, incoming.external_ids),
            title=existing.title or incoming.title,
            authors=(
                existing.authors
                if len(existing.authors) >= len(incoming.authors)
                else incoming.authors
            ),
            year=existing.year if existing.year is not None else incoming.year,
            abstract=_longer(existing.abstract, incoming.abstract),
            tldr=_first_present(existing.tldr, incoming.tldr),
            venue=_first_present(existing.venue, incoming.venue),
            citation_count=max(existing.citation_count, incoming.citation_count),
            reference_count=max(existing.reference_count, incoming.reference_count),
            influential_citation_count=(
                existing.influential_citation_count
                if existing.influential_citation_count is not None
                else incoming.influential_citation_count
            ),
            fields_of_study=_union(existing.fields_of_study, incoming.fields_of_study),
            publication_types=_union(existing.publication_types, incoming.publication_types),
            open_access_pdf=_first_present(existing.open_access_pdf, incoming.open_access_pdf),
            url=_first_present(existing.url, incoming.url),
            embedding=_first_present(existing.embedding, incoming.embedding),
        )

    def find_match(
        self, paper: PaperRecord, candidates: Iterable[PaperRecord]
    ) -> Optional[PaperRecord]:
        """First candidate sharing the canonical id or judged a duplicate."""
        resolved = self.resolve(paper)
        for candidate in candidates:
            if candidate.id and candidate.id == resolved.id:
                return candidate
            if self.is_duplicate(candidate, resolved):
                return candidate
        return None

    def deduplicate(
        self, papers: Sequence[PaperRecord]
    ) -> Tuple[List[PaperRecord], List[DuplicateGroup]]:
        """Collapse a batch into one record per paper, in first-seen order."""
        logger.info(f"Starting identity resolution of {len(papers)} records")
        canonical: List[PaperRecord] = []
        groups: List[DuplicateGroup] = []
        group_by_index: dict = {}

        for paper in papers:
            resolved = self.resolve(paper)
            match_index: Optional[int] = None
            reason: Optional[Tuple[str, float]] = None
            for i, kept in enumerate(canonical):
                if kept.id == resolved.id:
                    match_index, reason = i, ("canonical_id", 1.0)
                    break
                reason = self.match_reason(kept, resolved)
                if reason:
                    match_index = i
                    break

            if match_index is None:
                canonical.append(resolved)
                continue

            kept = canonical[match_index]
            canonical[match_index] = self.merge(kept, resolved)
            match_type, confidence = reason  # type: ignore[misc]
            group = group_by_index.get(match_index)
            if group is None:
                group = DuplicateGroup(
                    canonical_id=kept.id,
                    duplicate_ids=[],
                    match_type=match_type,
                    confidence=confidence,
                )
                group_by_index[match_index] = group
                groups.append(group)
            group.duplicate_ids.append(resolved.id)
            group.confidence = min(group.confidence, confidence)

        logger.info(
            f"Identity resolution complete: {len(papers)} -> {len(canonical)} records "
            f"({len(groups)} duplicate groups)"
        )
        return canonical, groups


_default_resolver = IdentityResolver()


def is_duplicate(a: PaperRecord, b: PaperRecord) -> bool:
    return _default_resolver.is_duplicate(a, b)


def merge_papers(existing: PaperRecord, incoming: PaperRecord) -> PaperRecord:
    return _default_resolver.merge(existing, incoming)


def resolve_paper(paper: PaperRecord) -> PaperRecord:
    return _default_resolver.resolve(paper)
