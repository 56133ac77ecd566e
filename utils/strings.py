"""String processing utilities for the RBI registry.

Name assembly, denormalised search text and the FTS5 prefix query used by
the command-menu search all live here so every route builds them the same
way.
"""

from utils.patterns import WHITESPACE, FTS5_SPECIAL_CHARS

_FTS5_KEYWORDS = {"AND", "OR", "NOT", "NEAR"}


def normalize_whitespace(s: str) -> str:
    """Normalize multiple whitespace characters to single spaces.

    Example:
        "Juan   dela\\n Cruz" -> "Juan dela Cruz"
    """
    return WHITESPACE.sub(" ", s).strip()


def full_name(row) -> str:
    """Join first, middle, last and extension names, skipping blanks.

    Accepts any mapping (dict or sqlite3.Row).
    """
    keys = row.keys()
    parts = [
        row[k] for k in ("first_name", "middle_name", "last_name", "extension_name")
        if k in keys and row[k]
    ]
    return normalize_whitespace(" ".join(parts))


def build_search_text(first_name: str | None, middle_name: str | None,
                      last_name: str | None, extension_name: str | None = None,
                      email: str | None = None) -> str:
    """Build the lowercase denormalised text indexed by ``residents_fts``."""
    parts = [p for p in (first_name, middle_name, last_name, extension_name, email) if p]
    return normalize_whitespace(" ".join(parts)).lower()


def sanitize_fts5_query(query: str) -> list[str]:
    """Split a raw query into FTS5-safe literal terms.

    Strips FTS5 operator characters and boolean keywords; returns the
    remaining terms (possibly empty).
    """
    cleaned = FTS5_SPECIAL_CHARS.sub(" ", query)
    return [t for t in cleaned.split()
            if t.upper() not in _FTS5_KEYWORDS and t.strip("-'.")]


def build_fts_prefix_query(query: str) -> str:
    """Build an AND-joined prefix MATCH expression for typeahead search.

    Example:
        'juan dela' -> '"juan"* AND "dela"*'

    Returns an empty string when nothing searchable remains.
    """
    terms = sanitize_fts5_query(query)
    return " AND ".join(f'"{t.lower()}"*' for t in terms)


def escape_like(value: str) -> str:
    """Escape ``%``, ``_`` and ``\\`` for a ``LIKE ... ESCAPE '\\'`` clause."""
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
