"""Text normalization utilities."""

import re
from typing import List


def normalize_title(title: str) -> str:
    """Normalize a title for comparison."""
    if not title:
        return ""
    title = title.lower()
    title = re.sub(r'[^a-z0-9\s]', '', title)
    title = ' '.join(title.split())
    return title


def title_tokens(title: str, min_length: int = 2) -> List[str]:
    """Lower-cased alphanumeric words of at least ``min_length`` characters."""
    return [w for w in normalize_title(title).split() if len(w) >= min_length]


def normalize_author_name(name: str) -> str:
    """Letters and single spaces only, for first-author comparison."""
    if not name:
        return ""
    name = re.sub(r'[^a-z\s]', '', name.lower())
    return ' '.join(name.split())


def author_key(name: str) -> str:
    """Case- and whitespace-insensitive key for counting shared authors."""
    return ' '.join((name or "").lower().split())
