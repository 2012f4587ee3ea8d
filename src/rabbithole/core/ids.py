"""ID normalization and generation utilities."""

import hashlib
import re
import uuid
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from .models import PaperRecord


def normalize_doi(doi: Optional[str]) -> Optional[str]:
    """Normalize DOI to canonical form."""
    if not doi:
        return None
    doi = doi.lower().strip()
    prefixes = [
        "https://doi.org/",
        "http://doi.org/",
        "https://dx.doi.org/",
        "http://dx.doi.org/",
        "doi:",
    ]
    for prefix in prefixes:
        if doi.startswith(prefix):
            doi = doi[len(prefix):]
    return doi.strip() or None


def normalize_arxiv_id(arxiv_id: Optional[str]) -> Optional[str]:
    """Normalize arXiv ID to canonical form."""
    if not arxiv_id:
        return None
    arxiv_id = arxiv_id.strip()
    if arxiv_id.lower().startswith("arxiv:"):
        arxiv_id = arxiv_id[6:]
    if "v" in arxiv_id:
        parts = arxiv_id.rsplit("v", 1)
        if parts[-1].isdigit():
            arxiv_id = parts[0]
    return arxiv_id.strip() or None


def create_canonical_id(paper: "PaperRecord") -> str:
    """
    Derive a stable canonical ID from a paper's identifiers.

    Priority: DOI > Semantic Scholar ID > arXiv ID > OpenAlex ID > PubMed ID,
    falling back to the normalized title (first 60 characters) plus year.
    Never returns an empty string.
    """
    ids = paper.external_ids
    if ids.doi:
        return f"doi:{ids.doi}"
    if ids.semantic_scholar_id:
        return f"s2:{ids.semantic_scholar_id}"
    if ids.arxiv_id:
        return f"arxiv:{ids.arxiv_id}"
    if ids.open_alex_id:
        return f"oa:{ids.open_alex_id}"
    if ids.pubmed_id:
        return f"pmid:{ids.pubmed_id}"

    normalized = re.sub(r"[^a-z0-9]", "", (paper.title or "").lower())
    year_part = f"-{paper.year}" if paper.year else ""
    return f"title:{normalized[:60]}{year_part}"


def generate_edge_id() -> str:
    return f"edge-{uuid.uuid4().hex[:10]}"


def generate_annotation_id() -> str:
    return f"annotation-{uuid.uuid4().hex[:8]}"


def cluster_id_for(seed: str) -> str:
    """Deterministic cluster ID derived from a community's seed node."""
    return f"cluster-{hashlib.md5(seed.encode()).hexdigest()[:8]}"


def generate_cluster_id() -> str:
    return f"cluster-{uuid.uuid4().hex[:8]}"
