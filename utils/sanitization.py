"""Input sanitization for Philippine registry data.

Provides reusable functions for:
- Stripping scripts, markup and dangerous protocols from free text
- Allow-list cleaning of names, emails, phone numbers and PhilSys IDs
- Normalising mobile numbers to +63 form
- Field-type driven sanitization of whole records

All functions are pure and return ``""`` for ``None`` or empty input.
Format *checking* lives in utils.validation; these functions only clean.
"""

import re
import threading
import time
import unicodedata
from collections import defaultdict
from typing import Any

from utils.patterns import (
    ANGLE_BRACKETS,
    CSS_EXPRESSION,
    DATA_PROTOCOL,
    EMAIL_DISALLOWED,
    EVENT_HANDLER,
    HTML_TAG,
    JAVASCRIPT_PROTOCOL,
    NAME_DISALLOWED,
    NON_DIGITS,
    NUMERIC_DISALLOWED,
    PHONE_DISALLOWED,
    SCRIPT_BLOCK,
    SEARCH_DISALLOWED,
    VBSCRIPT_PROTOCOL,
    WHITESPACE,
)

NAME_MAX_LENGTH = 100
PHONE_MAX_LENGTH = 20
EMAIL_MAX_LENGTH = 254
SEARCH_MAX_LENGTH = 100
PSGC_MAX_DIGITS = 10


def sanitize_input(value: str | None, allow_html: bool = False,
                   max_length: int | None = None,
                   allowed_chars: str | None = None) -> str:
    """General-purpose cleaner applied before every type-specific rule.

    Args:
        value: Raw input.
        allow_html: Keep non-script tags when True.
        max_length: Final length clamp.  Input is pre-clamped to twice this
            before any regex work so huge payloads stay cheap.
        allowed_chars: Regex character-class body (e.g. ``"a-z0-9"``);
            every character outside it is removed.

    Returns:
        Cleaned string.
    """
    if not value:
        return ""
    text = str(value)
    if max_length is not None:
        text = text[: max_length * 2]

    text = SCRIPT_BLOCK.sub("", text)
    if not allow_html:
        text = HTML_TAG.sub("", text)
        text = ANGLE_BRACKETS.sub("", text)
    text = JAVASCRIPT_PROTOCOL.sub("", text)
    text = EVENT_HANDLER.sub("", text)
    text = DATA_PROTOCOL.sub("", text)
    text = VBSCRIPT_PROTOCOL.sub("", text)
    text = CSS_EXPRESSION.sub("", text)

    text = unicodedata.normalize("NFC", text).strip()

    if allowed_chars:
        text = re.sub(f"[^{allowed_chars}]", "", text)
    if max_length is not None:
        text = text[:max_length]
    return text


def sanitize_name(value: str | None) -> str:
    """Keep letters (accented and ñ), spaces, hyphens, apostrophes and periods."""
    text = sanitize_input(value, max_length=NAME_MAX_LENGTH)
    text = NAME_DISALLOWED.sub("", text)
    return WHITESPACE.sub(" ", text).strip()[:NAME_MAX_LENGTH]


def sanitize_philsys_number(value: str | None) -> str:
    """Return ``XXXX-XXXX-XXXX`` for exactly 12 digits, else ``""``."""
    if not value:
        return ""
    digits = NON_DIGITS.sub("", str(value))
    if len(digits) != 12:
        return ""
    return f"{digits[:4]}-{digits[4:8]}-{digits[8:]}"


def sanitize_phone(value: str | None) -> str:
    text = sanitize_input(value, max_length=PHONE_MAX_LENGTH)
    return PHONE_DISALLOWED.sub("", text).strip()[:PHONE_MAX_LENGTH]


def sanitize_mobile_number(value: str | None) -> str:
    """Normalise a Philippine mobile number to ``+63`` form.

    Examples:
        "0917 123 4567"   -> "+639171234567"
        "639171234567"    -> "+639171234567"
        "9171234567"      -> "+639171234567"
        "12345"           -> "12345" (left for the validator to reject)
    """
    if not value:
        return ""
    raw = str(value).strip()
    digits = NON_DIGITS.sub("", raw)
    if digits.startswith("63"):
        return f"+{digits}"
    if digits.startswith("0"):
        return f"+63{digits[1:]}"
    if len(digits) == 10:
        return f"+63{digits}"
    return raw


def sanitize_email(value: str | None) -> str:
    text = sanitize_input(value, max_length=EMAIL_MAX_LENGTH).lower()
    return EMAIL_DISALLOWED.sub("", text)[:EMAIL_MAX_LENGTH]


def sanitize_psgc_code(value: str | None) -> str:
    """Digits only, first 10 (barangay codes are the longest PSGC codes)."""
    if not value:
        return ""
    return NON_DIGITS.sub("", str(value))[:PSGC_MAX_DIGITS]


sanitize_barangay_code = sanitize_psgc_code


def sanitize_search_query(value: str | None) -> str:
    text = sanitize_input(value, max_length=SEARCH_MAX_LENGTH)
    text = SEARCH_DISALLOWED.sub("", text)
    return WHITESPACE.sub(" ", text).strip()[:SEARCH_MAX_LENGTH]


def sanitize_numeric(value: str | None) -> str:
    """Digits plus at most one decimal point."""
    if value is None or value == "":
        return ""
    text = NUMERIC_DISALLOWED.sub("", str(value))
    whole, dot, frac = text.partition(".")
    return whole + (dot + frac.replace(".", "") if dot else "")


_TYPE_HANDLERS = {
    "text": lambda v: sanitize_input(v),
    "name": sanitize_name,
    "email": sanitize_email,
    "mobile": sanitize_mobile_number,
    "phone": sanitize_phone,
    "philsys": sanitize_philsys_number,
    "psgc": sanitize_psgc_code,
    "numeric": sanitize_numeric,
    "search": sanitize_search_query,
}


def sanitize_by_type(value: str | None, field_type: str = "text",
                     max_length: int | None = None,
                     custom_pattern: str | re.Pattern | None = None,
                     replacement: str = "") -> str:
    """Dispatch to the sanitizer for *field_type*.

    ``none`` returns the value untouched (as a string).  ``custom_pattern``
    is substituted with ``replacement`` after the type rule; ``max_length``
    is applied last.

    Raises:
        ValueError: If *field_type* is unknown.
    """
    if value is None:
        return ""
    if field_type == "none":
        result = str(value)
    else:
        handler = _TYPE_HANDLERS.get(field_type)
        if handler is None:
            raise ValueError(f"Unknown sanitization type: '{field_type}'")
        result = handler(value)
    if custom_pattern is not None:
        result = re.sub(custom_pattern, replacement, result)
    if max_length is not None:
        result = result[:max_length]
    return result


# Resident/household form fields -> sanitization type.  Unlisted string
# fields are treated as free text.
DEFAULT_FIELD_TYPE_MAPPING: dict[str, str] = {
    "first_name": "name",
    "middle_name": "name",
    "last_name": "name",
    "extension_name": "name",
    "mother_maiden_first": "name",
    "mother_maiden_middle": "name",
    "mother_maiden_last": "name",
    "email": "email",
    "mobile_number": "mobile",
    "telephone_number": "phone",
    "philsys_card_number": "philsys",
    "region_code": "psgc",
    "province_code": "psgc",
    "city_municipality_code": "psgc",
    "barangay_code": "psgc",
    "birth_place_code": "psgc",
    "previous_barangay_code": "psgc",
    "height": "numeric",
    "weight": "numeric",
}


def sanitize_object_by_field_types(data: dict[str, Any],
                                   mapping: dict[str, str] | None = None) -> dict[str, Any]:
    """Sanitize the string values of *data* according to *mapping*.

    Non-string values (numbers, booleans, None, nested objects) pass through.
    """
    mapping = DEFAULT_FIELD_TYPE_MAPPING if mapping is None else mapping
    cleaned: dict[str, Any] = {}
    for key, value in data.items():
        if isinstance(value, str):
            cleaned[key] = sanitize_by_type(value, mapping.get(key, "text"))
        else:
            cleaned[key] = value
    return cleaned


def sanitize_object(data: Any) -> Any:
    """Recursively run sanitize_input over every string in dicts and lists."""
    if isinstance(data, str):
        return sanitize_input(data)
    if isinstance(data, dict):
        return {k: sanitize_object(v) for k, v in data.items()}
    if isinstance(data, list):
        return [sanitize_object(v) for v in data]
    return data


class RateLimiter:
    """Sliding-window attempt limiter keyed by an identifier (e.g. email).

    Usage::

        limiter = RateLimiter(max_attempts=5, window_seconds=300)
        if not limiter.check(email):
            raise ...
    """

    def __init__(self, max_attempts: int = 5, window_seconds: float = 300.0) -> None:
        self.max_attempts = max_attempts
        self.window_seconds = window_seconds
        self._attempts: dict[str, list[float]] = defaultdict(list)
        self._lock = threading.Lock()

    def check(self, identifier: str) -> bool:
        """Record an attempt; return False once the window is exhausted."""
        now = time.monotonic()
        with self._lock:
            recent = [t for t in self._attempts[identifier]
                      if now - t < self.window_seconds]
            if len(recent) >= self.max_attempts:
                self._attempts[identifier] = recent
                return False
            recent.append(now)
            self._attempts[identifier] = recent
            return True

    def reset(self, identifier: str | None = None) -> None:
        with self._lock:
            if identifier is None:
                self._attempts.clear()
            else:
                self._attempts.pop(identifier, None)
