"""Data validation utilities for the RBI registry.

Provides reusable functions for:
- Format checks for names, emails, mobile numbers, PhilSys and PSGC codes
- Enumerations accepted by the resident and household forms
- Whole-record validation of resident payloads
- Validation check registries (used by environment validation)
"""

import dataclasses
from datetime import date
from typing import Any, Callable, Dict, List, Optional

from utils.patterns import (
    EMAIL_FORMAT,
    ISO_DATE,
    NAME_FORMAT,
    PH_MOBILE,
    PHILSYS_FORMAT,
    PSGC_CODE,
)

# ── Enumerations ──────────────────────────────────────────────────────────────

SEX = ("male", "female")

CIVIL_STATUS = (
    "single", "married", "widowed", "divorced", "separated", "annulled",
    "registered_partnership", "live_in",
)

EMPLOYMENT_STATUS = (
    "employed", "unemployed", "underemployed", "self_employed", "student",
    "retired", "homemaker", "unable_to_work", "looking_for_work",
    "not_in_labor_force",
)

EDUCATION_LEVELS = (
    "no_formal_education", "preschool", "elementary", "high_school",
    "senior_high", "vocational", "college", "post_graduate",
)

CITIZENSHIP = ("filipino", "dual_citizen", "foreigner")

ETHNICITIES = (
    "tagalog", "cebuano", "ilocano", "bisaya", "hiligaynon", "bikolano",
    "waray", "kapampangan", "pangasinense", "maranao", "maguindanao",
    "tausug", "yakan", "samal", "badjao", "aeta", "agta", "ifugao",
    "kankanaey", "ibaloi", "kalinga", "manobo", "mangyan", "lumad",
    "tboli", "subanen", "other", "not_reported",
)

RELIGIONS = (
    "roman_catholic", "islam", "iglesia_ni_cristo", "christian",
    "aglipayan", "seventh_day_adventist", "bible_baptist_church",
    "jehovahs_witness", "church_of_jesus_christ_latter_day_saints",
    "united_church_of_christ_philippines", "buddhism", "none", "others",
    "prefer_not_to_say",
)

HOUSEHOLD_TYPES = (
    "nuclear", "single_parent", "extended", "childless", "one_person",
    "non_family", "other",
)

TENURE_STATUS = (
    "owned", "owned_with_mortgage", "rented", "occupied_for_free",
    "occupied_without_consent", "others",
)

ENUM_FIELDS: Dict[str, tuple] = {
    "sex": SEX,
    "civil_status": CIVIL_STATUS,
    "employment_status": EMPLOYMENT_STATUS,
    "education_attainment": EDUCATION_LEVELS,
    "citizenship": CITIZENSHIP,
    "ethnicity": ETHNICITIES,
    "religion": RELIGIONS,
    "household_type": HOUSEHOLD_TYPES,
    "tenure_status": TENURE_STATUS,
}

NAME_FIELDS = ("first_name", "middle_name", "last_name", "extension_name",
               "mother_maiden_first", "mother_maiden_middle", "mother_maiden_last")
PSGC_FIELDS = ("barangay_code", "city_municipality_code", "province_code",
               "region_code", "birth_place_code", "previous_barangay_code")
REQUIRED_RESIDENT_FIELDS = ("first_name", "last_name", "birthdate", "sex")


# ── Format checks ─────────────────────────────────────────────────────────────

def validate_name(value: str | None) -> bool:
    """True for a non-blank name of allowed characters, at most 100 long."""
    if not value or not value.strip():
        return False
    return bool(NAME_FORMAT.match(value))


def validate_email_format(value: str | None) -> bool:
    if not value or len(value) > 254:
        return False
    return bool(EMAIL_FORMAT.match(value))


def validate_philippine_mobile(value: str | None) -> bool:
    """Accept ``09XXXXXXXXX``, ``08XXXXXXXXX`` or ``+639XXXXXXXXX`` forms."""
    if not value:
        return False
    return bool(PH_MOBILE.match(value.replace(" ", "")))


def validate_philsys_format(value: str | None) -> bool:
    return bool(value) and bool(PHILSYS_FORMAT.match(value))


def validate_psgc_code(value: str | None) -> bool:
    return bool(value) and bool(PSGC_CODE.match(value))


def validate_birthdate(value: str | None, today: date | None = None) -> bool:
    """ISO ``YYYY-MM-DD`` between 1900-01-01 and today inclusive."""
    if not value or not ISO_DATE.match(value):
        return False
    try:
        parsed = date.fromisoformat(value)
    except ValueError:
        return False
    today = today or date.today()
    return date(1900, 1, 1) <= parsed <= today


# ── Record validation ─────────────────────────────────────────────────────────

class FieldError:
    """A single failed field check, serialised as ``{field, message}``."""

    def __init__(self, field: str, message: str):
        self.field = field
        self.message = message

    def to_dict(self) -> Dict[str, str]:
        return {"field": self.field, "message": self.message}

    def __repr__(self) -> str:
        return f"FieldError(field={self.field!r}, message={self.message!r})"


class RecordValidationError(ValueError):
    """Raised when a submitted record fails validation.

    The API turns this into a 422 response carrying ``errors``.
    """

    def __init__(self, errors: List[FieldError], detail: str = "Validation failed"):
        super().__init__(detail)
        self.errors = errors
        self.detail = detail

    def prefixed(self, prefix: str) -> "RecordValidationError":
        """Return a copy whose field paths are prefixed (e.g. ``members[2].``)."""
        return RecordValidationError(
            [FieldError(f"{prefix}{e.field}", e.message) for e in self.errors],
            self.detail,
        )


def validate_enum(field: str, value: Any) -> Optional[FieldError]:
    allowed = ENUM_FIELDS.get(field)
    if allowed is None or value in (None, ""):
        return None
    if value not in allowed:
        return FieldError(field, f"Must be one of: {', '.join(allowed)}")
    return None


_EMPTIED_MESSAGES = {
    "philsys_card_number": "PhilSys number must have 12 digits",
    **{f: "Must be a 9-10 digit PSGC code" for f in PSGC_FIELDS},
}


def validate_sanitized(raw: Dict[str, Any], cleaned: Dict[str, Any]) -> List[FieldError]:
    """Fields that held text before sanitizing and nothing after.

    A sanitizer strips what it cannot keep, so a non-blank input that comes
    out empty was malformed rather than omitted.
    """
    errors: List[FieldError] = []
    for field, value in raw.items():
        if not isinstance(value, str) or not value.strip():
            continue
        if cleaned.get(field) in (None, ""):
            errors.append(FieldError(
                field, _EMPTIED_MESSAGES.get(field, "Contains invalid characters")))
    return errors


def validate_resident_data(data: Dict[str, Any], partial: bool = False,
                           today: date | None = None) -> List[FieldError]:
    """Validate a (sanitized) resident payload.

    Args:
        data: Field values after sanitize_object_by_field_types().
        partial: When True (updates) only the fields present are checked
            and required fields may be absent, but not blanked.
        today: Reference date for the birthdate check.

    Returns:
        List of FieldError, empty when the record is valid.
    """
    errors: List[FieldError] = []

    for field in REQUIRED_RESIDENT_FIELDS:
        if partial and field not in data:
            continue
        if data.get(field) in (None, ""):
            errors.append(FieldError(field, "This field is required"))

    for field in NAME_FIELDS:
        value = data.get(field)
        if value and not validate_name(value):
            errors.append(FieldError(field, "Contains invalid characters"))

    birthdate = data.get("birthdate")
    if birthdate and not validate_birthdate(birthdate, today=today):
        errors.append(FieldError("birthdate", "Must be a valid past date (YYYY-MM-DD)"))

    if data.get("email") and not validate_email_format(data["email"]):
        errors.append(FieldError("email", "Invalid email format"))

    if data.get("mobile_number") and not validate_philippine_mobile(data["mobile_number"]):
        errors.append(FieldError("mobile_number",
                                 "Must be a Philippine mobile number (09XXXXXXXXX)"))

    if data.get("philsys_card_number") and not validate_philsys_format(
            data["philsys_card_number"]):
        errors.append(FieldError("philsys_card_number",
                                 "PhilSys number must have 12 digits"))

    for field in PSGC_FIELDS:
        value = data.get(field)
        if value and not validate_psgc_code(value):
            errors.append(FieldError(field, "Must be a 9-10 digit PSGC code"))

    for field in ENUM_FIELDS:
        issue = validate_enum(field, data.get(field))
        if issue:
            errors.append(issue)

    for field in ("height", "weight"):
        value = data.get(field)
        if value not in (None, ""):
            try:
                if float(value) <= 0:
                    raise ValueError
            except (TypeError, ValueError):
                errors.append(FieldError(field, "Must be a positive number"))

    return errors


# ── Check registries ──────────────────────────────────────────────────────────


@dataclasses.dataclass(frozen=True)
class ValidationIssue:
    """One finding of a named check; ``severity`` is error, warning or info."""
    check_name: str
    severity: str
    detail: str


@dataclasses.dataclass
class ValidationResult:
    issues: List[ValidationIssue] = dataclasses.field(default_factory=list)
    passed_checks: List[str] = dataclasses.field(default_factory=list)
    failed_checks: List[str] = dataclasses.field(default_factory=list)

    def _details(self, severity: str) -> List[str]:
        return [i.detail for i in self.issues if i.severity == severity]

    @property
    def errors(self) -> List[str]:
        return self._details("error")

    @property
    def warnings(self) -> List[str]:
        return self._details("warning")

    def is_valid(self) -> bool:
        return not self.errors


class ValidationRegistry:
    """Named checks run in registration order against one target.

    A check takes the target (e.g. an AppConfig) and returns a list of
    ValidationIssue.  It fails when any issue is an error.
    """

    def __init__(self) -> None:
        self.checks: Dict[str, Callable[[Any], List[ValidationIssue]]] = {}

    def register(self, name: str, check_fn: Callable[[Any], List[ValidationIssue]]) -> None:
        self.checks[name] = check_fn

    def run_all(self, target: Any,
                skip_checks: Optional[List[str]] = None) -> ValidationResult:
        """Run every check not in *skip_checks*.

        A check that raises is recorded as an error issue, not propagated.
        """
        result = ValidationResult()
        for name, check_fn in self.checks.items():
            if name in (skip_checks or ()):
                continue
            try:
                issues = list(check_fn(target))
            except Exception as exc:
                issues = [ValidationIssue(name, "error", f"Check raised exception: {exc}"[:120])]
            failed = any(i.severity == "error" for i in issues)
            (result.failed_checks if failed else result.passed_checks).append(name)
            result.issues.extend(issues)
        return result
