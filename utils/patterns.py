"""Pre-compiled regex patterns for the RBI registry.

All patterns are compiled once at module import.  Sanitizers and validators
share them so the allow-lists cannot drift apart.

Usage:
    from utils.patterns import PHILSYS_FORMAT, PH_MOBILE

    if PH_MOBILE.match(number):
        ...
"""

import re

# Letters accepted in Filipino names: ASCII, Latin-1 accented letters, ñ/Ñ
_NAME_LETTERS = "a-zA-ZÀ-ÿñÑ"

# ── Dangerous markup (sanitize_input) ─────────────────────────────────────────

SCRIPT_BLOCK = re.compile(r"<script\b[^<]*(?:(?!</script>)<[^<]*)*</script>",
                          re.IGNORECASE)
HTML_TAG = re.compile(r"<[^>]*>")
ANGLE_BRACKETS = re.compile(r"[<>]")
JAVASCRIPT_PROTOCOL = re.compile(r"javascript:", re.IGNORECASE)
EVENT_HANDLER = re.compile(r"\bon\w+\s*=", re.IGNORECASE)
DATA_PROTOCOL = re.compile(r"data:", re.IGNORECASE)
VBSCRIPT_PROTOCOL = re.compile(r"vbscript:", re.IGNORECASE)
CSS_EXPRESSION = re.compile(r"expression\s*\(", re.IGNORECASE)

# ── Allow-lists (characters to REMOVE are the complement) ─────────────────────

NAME_DISALLOWED = re.compile(rf"[^{_NAME_LETTERS}\s\-'.]")
PHONE_DISALLOWED = re.compile(r"[^0-9+\-\s()]")
EMAIL_DISALLOWED = re.compile(r"[^a-zA-Z0-9@._+\-]")
SEARCH_DISALLOWED = re.compile(rf"[^{_NAME_LETTERS}0-9\s\-'.]")
NON_DIGITS = re.compile(r"\D")
NUMERIC_DISALLOWED = re.compile(r"[^0-9.]")

# ── Format validators ─────────────────────────────────────────────────────────

NAME_FORMAT = re.compile(rf"^[{_NAME_LETTERS}\s\-'.]{{1,100}}$")
EMAIL_FORMAT = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
PH_MOBILE = re.compile(r"^(\+63|0)[89]\d{9}$")
PHILSYS_FORMAT = re.compile(r"^\d{4}-\d{4}-\d{4}$")
PSGC_CODE = re.compile(r"^\d{9,10}$")
ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")

# Whitespace normalization: multiple spaces/tabs/newlines
WHITESPACE = re.compile(r"\s+")

# FTS5 special characters that need stripping in full-text search queries
FTS5_SPECIAL_CHARS = re.compile(r"[\"()*:^+]")
