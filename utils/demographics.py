"""Population statistics and resident classification.

Feeds GET /api/v1/dashboard/stats and the ``classification`` block of the
resident detail endpoint.  Functions take plain mappings (dicts or
sqlite3.Row) with the residents-table column names.
"""

from __future__ import annotations

from collections import Counter
from datetime import date
from typing import Any, Iterable, Mapping

# ── Age ───────────────────────────────────────────────────────────────────────

AGE_GROUPS: list[str] = [f"{lo}-{lo + 4}" for lo in range(0, 100, 5)] + ["100+"]

SENIOR_CITIZEN_AGE = 60
RECENT_MIGRATION_YEARS = 5


def _parse_date(value: Any) -> date | None:
    if isinstance(value, date):
        return value
    if not value:
        return None
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        return None


def calculate_age(birthdate: Any, today: date | None = None) -> int | None:
    """Age in completed years, or None when *birthdate* is missing/invalid."""
    born = _parse_date(birthdate)
    if born is None:
        return None
    today = today or date.today()
    age = today.year - born.year - ((today.month, today.day) < (born.month, born.day))
    return max(age, 0)


def get_age_group(age: int) -> str:
    """Five-year bucket label: 0-4, 5-9, ... 95-99, 100+."""
    if age >= 100:
        return "100+"
    lo = (age // 5) * 5
    return f"{lo}-{lo + 4}"


# ── Aggregates ────────────────────────────────────────────────────────────────

def build_population_pyramid(residents: Iterable[Mapping[str, Any]],
                             today: date | None = None) -> list[dict[str, Any]]:
    """Male/female counts per age group with percentages of the total.

    Residents without a usable birthdate are skipped.  Any sex other than
    ``male`` is counted as female.
    """
    counts = {g: {"male": 0, "female": 0} for g in AGE_GROUPS}
    total = 0
    for r in residents:
        age = calculate_age(r["birthdate"], today)
        if age is None:
            continue
        key = "male" if r["sex"] == "male" else "female"
        counts[get_age_group(age)][key] += 1
        total += 1

    pyramid = []
    for group in AGE_GROUPS:
        male, female = counts[group]["male"], counts[group]["female"]
        pyramid.append({
            "age_group": group,
            "male": male,
            "female": female,
            "male_percentage": round(male / total * 100, 2) if total else 0.0,
            "female_percentage": round(female / total * 100, 2) if total else 0.0,
        })
    return pyramid


def calculate_dependency_ratios(residents: Iterable[Mapping[str, Any]],
                                today: date | None = None) -> dict[str, Any]:
    """Young (0-14), working-age (15-64) and old (65+) counts and ratios.

    Ratios are per 100 working-age persons; 0 when there are none.
    """
    young = working = old = 0
    for r in residents:
        age = calculate_age(r["birthdate"], today)
        if age is None:
            continue
        if age <= 14:
            young += 1
        elif age <= 64:
            working += 1
        else:
            old += 1

    def ratio(n: int) -> float:
        return round(n / working * 100, 2) if working else 0.0

    return {
        "young": young,
        "working_age": working,
        "old": old,
        "young_dependency_ratio": ratio(young),
        "old_dependency_ratio": ratio(old),
        "total_dependency_ratio": ratio(young + old),
    }


def count_distribution(residents: Iterable[Mapping[str, Any]], field: str) -> dict[str, int]:
    """Count residents per value of *field*; NULL/empty becomes ``unknown``."""
    counter: Counter = Counter()
    for r in residents:
        counter[r[field] or "unknown"] += 1
    return dict(sorted(counter.items(), key=lambda kv: (-kv[1], kv[0])))


def sex_distribution(residents: Iterable[Mapping[str, Any]]) -> dict[str, int]:
    male = female = 0
    for r in residents:
        if r["sex"] == "male":
            male += 1
        else:
            female += 1
    return {"male": male, "female": female}


# ── Classification ────────────────────────────────────────────────────────────

EMPLOYED = frozenset({"employed", "self_employed"})
UNEMPLOYED = frozenset({"unemployed", "looking_for_work"})
LABOR_FORCE = EMPLOYED | UNEMPLOYED | {"underemployed"}

INDIGENOUS_ETHNICITIES = frozenset({
    "maranao", "maguindanao", "tausug", "yakan", "samal", "badjao", "aeta",
    "agta", "ifugao", "kankanaey", "ibaloi", "kalinga", "manobo", "mangyan",
    "lumad", "tboli", "subanen",
})

_NOT_IN_SCHOOL_EDUCATION = {None, "", "no_formal_education", "preschool"}
_TERTIARY_EDUCATION = {"college", "post_graduate"}

_MIGRATION_REASON_KEYWORDS: list[tuple[str, tuple[str, ...]]] = [
    ("employment", ("work", "job", "employ", "business", "trabaho")),
    ("education", ("school", "study", "studies", "education", "college", "aral")),
    ("family", ("family", "marriage", "married", "spouse", "parent", "pamilya")),
    ("housing", ("house", "housing", "relocat", "rent", "bahay")),
    ("security", ("conflict", "disaster", "flood", "typhoon", "evacuat", "security")),
]


def is_employed(status: str | None) -> bool:
    return status in EMPLOYED


def is_unemployed(status: str | None) -> bool:
    return status in UNEMPLOYED


def is_in_labor_force(status: str | None) -> bool:
    return status in LABOR_FORCE


def is_senior_citizen(age: int | None) -> bool:
    return age is not None and age >= SENIOR_CITIZEN_AGE


def is_indigenous(resident: Mapping[str, Any]) -> bool:
    return bool(_get(resident, "is_indigenous")) or \
        _get(resident, "ethnicity") in INDIGENOUS_ETHNICITIES


def is_out_of_school_children(age: int | None, education: str | None) -> bool:
    """Ages 5-17 with no formal education or only preschool."""
    return age is not None and 5 <= age <= 17 and education in _NOT_IN_SCHOOL_EDUCATION


def is_out_of_school_youth(age: int | None, education: str | None,
                           employment_status: str | None) -> bool:
    """Ages 15-30, not in tertiary education, and not working."""
    if age is None or not 15 <= age <= 30:
        return False
    if education in _TERTIARY_EDUCATION:
        return False
    return employment_status in (None, "") or is_unemployed(employment_status)


def is_migrant(resident: Mapping[str, Any]) -> bool:
    return bool(_get(resident, "previous_barangay_code"))


def is_recent_migrant(resident: Mapping[str, Any], today: date | None = None) -> bool:
    """Migrant whose date of transfer falls within the last five years."""
    moved = _parse_date(_get(resident, "date_of_transfer"))
    if not is_migrant(resident) or moved is None:
        return False
    today = today or date.today()
    years = today.year - moved.year - ((today.month, today.day) < (moved.month, moved.day))
    return years < RECENT_MIGRATION_YEARS


def categorize_migration_reason(reason: str | None) -> str | None:
    if not reason:
        return None
    text = reason.lower()
    for category, keywords in _MIGRATION_REASON_KEYWORDS:
        if any(k in text for k in keywords):
            return category
    return "other"


def vulnerabilities(resident: Mapping[str, Any], age: int | None) -> list[str]:
    flags: list[str] = []
    if age is not None:
        if age < 5:
            flags.append("under_five")
        if age < 18:
            flags.append("minor")
        if is_senior_citizen(age):
            flags.append("senior_citizen")
    if _get(resident, "is_pwd"):
        flags.append("pwd")
    if _get(resident, "is_solo_parent"):
        flags.append("solo_parent")
    if _get(resident, "sex") == "female" and age is not None and 15 <= age <= 19:
        flags.append("young_female")
    return flags


def classify_resident(resident: Mapping[str, Any], today: date | None = None) -> dict[str, Any]:
    """All derived flags for one resident."""
    age = calculate_age(_get(resident, "birthdate"), today)
    education = _get(resident, "education_attainment")
    employment = _get(resident, "employment_status")
    return {
        "age": age,
        "age_group": get_age_group(age) if age is not None else None,
        "is_employed": is_employed(employment),
        "is_unemployed": is_unemployed(employment),
        "is_in_labor_force": is_in_labor_force(employment),
        "is_senior_citizen": is_senior_citizen(age),
        "is_indigenous": is_indigenous(resident),
        "is_out_of_school_children": is_out_of_school_children(age, education),
        "is_out_of_school_youth": is_out_of_school_youth(age, education, employment),
        "is_migrant": is_migrant(resident),
        "is_recent_migrant": is_recent_migrant(resident, today),
        "migration_reason_category": categorize_migration_reason(
            _get(resident, "reason_for_migration")),
        "vulnerabilities": vulnerabilities(resident, age),
    }


def sectoral_summary(residents: Iterable[Mapping[str, Any]],
                     today: date | None = None) -> dict[str, int]:
    """Counts of residents per sector for the dashboard."""
    totals = Counter({k: 0 for k in (
        "labor_force", "employed", "unemployed", "senior_citizens", "pwd",
        "solo_parents", "ofw", "indigenous", "registered_voters",
        "out_of_school_children", "out_of_school_youth", "migrants",
    )})
    for r in residents:
        c = classify_resident(r, today)
        totals["labor_force"] += c["is_in_labor_force"]
        totals["employed"] += c["is_employed"]
        totals["unemployed"] += c["is_unemployed"]
        totals["senior_citizens"] += c["is_senior_citizen"]
        totals["indigenous"] += c["is_indigenous"]
        totals["out_of_school_children"] += c["is_out_of_school_children"]
        totals["out_of_school_youth"] += c["is_out_of_school_youth"]
        totals["migrants"] += c["is_migrant"]
        totals["pwd"] += bool(_get(r, "is_pwd"))
        totals["solo_parents"] += bool(_get(r, "is_solo_parent"))
        totals["ofw"] += bool(_get(r, "is_ofw"))
        totals["registered_voters"] += bool(_get(r, "is_voter"))
    return dict(totals)


def _get(row: Mapping[str, Any], key: str) -> Any:
    """dict.get() that also works for sqlite3.Row."""
    return row[key] if key in row.keys() else None
