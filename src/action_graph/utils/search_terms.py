"""Turn free-text context into search terms every store understands."""

from __future__ import annotations

import re

# Letters and digits only; underscores and punctuation split terms,
# the same way SQLite's unicode61 tokenizer does.
_TERM_PATTERN = re.compile(r"[^\W_]+", re.UNICODE)

# Guard against pathological context strings
_MAX_TERMS = 32


def extract_terms(text: str, limit: int | None = _MAX_TERMS) -> list[str]:
    """Lowercased, de-duplicated terms in first-seen order.

    ``limit`` caps the number of terms; ``None`` keeps them all.
    """
    seen: set[str] = set()
    terms: list[str] = []
    for match in _TERM_PATTERN.finditer(text.lower()):
        term = match.group(0)
        if term in seen:
            continue
        seen.add(term)
        terms.append(term)
        if limit is not None and len(terms) >= limit:
            break
    return terms


def to_match_query(terms: list[str]) -> str:
    """Build an OR query of quoted terms.

    Quoting keeps operator words (AND, NOT, NEAR) and syntax characters
    from being interpreted by FTS5 or Lucene.
    """
    return " OR ".join(f'"{term}"' for term in terms)
