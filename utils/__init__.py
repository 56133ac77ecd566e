"""Shared utilities for the RBI registry."""

# Pattern definitions
from utils.patterns import (
    PH_MOBILE,
    PHILSYS_FORMAT,
    PSGC_CODE,
    FTS5_SPECIAL_CHARS,
)

# String utilities
from utils.strings import (
    normalize_whitespace,
    full_name,
    build_search_text,
    sanitize_fts5_query,
    build_fts_prefix_query,
    escape_like,
)

# Database utilities
from utils.database import (
    batch_insert,
    get_table_count,
    transaction,
)

# Sanitization
from utils.sanitization import (
    sanitize_input,
    sanitize_name,
    sanitize_philsys_number,
    sanitize_phone,
    sanitize_mobile_number,
    sanitize_email,
    sanitize_psgc_code,
    sanitize_barangay_code,
    sanitize_search_query,
    sanitize_numeric,
    sanitize_by_type,
    sanitize_object_by_field_types,
    sanitize_object,
    DEFAULT_FIELD_TYPE_MAPPING,
    RateLimiter,
)

# Validation utilities
from utils.validation import (
    FieldError,
    RecordValidationError,
    ValidationIssue,
    ValidationResult,
    ValidationRegistry,
    validate_resident_data,
    validate_sanitized,
)

# Demographics
from utils.demographics import (
    calculate_age,
    get_age_group,
    build_population_pyramid,
    calculate_dependency_ratios,
    classify_resident,
    sectoral_summary,
)

# Query building
from utils.query import (
    build_resident_where,
    build_household_where,
    build_order_clause,
    paginate,
    page_meta,
)

# Caching
from utils.cache import TTLCache

# Configuration
from utils.config import (
    Config,
    AppConfig,
    EnvironmentConfigError,
    validate_environment,
)

__all__ = [
    # Patterns
    "PH_MOBILE",
    "PHILSYS_FORMAT",
    "PSGC_CODE",
    "FTS5_SPECIAL_CHARS",
    # Strings
    "normalize_whitespace",
    "full_name",
    "build_search_text",
    "sanitize_fts5_query",
    "build_fts_prefix_query",
    "escape_like",
    # Database
    "batch_insert",
    "get_table_count",
    "transaction",
    # Sanitization
    "sanitize_input",
    "sanitize_name",
    "sanitize_philsys_number",
    "sanitize_phone",
    "sanitize_mobile_number",
    "sanitize_email",
    "sanitize_psgc_code",
    "sanitize_barangay_code",
    "sanitize_search_query",
    "sanitize_numeric",
    "sanitize_by_type",
    "sanitize_object_by_field_types",
    "sanitize_object",
    "DEFAULT_FIELD_TYPE_MAPPING",
    "RateLimiter",
    # Validation
    "FieldError",
    "RecordValidationError",
    "ValidationIssue",
    "ValidationResult",
    "ValidationRegistry",
    "validate_resident_data",
    "validate_sanitized",
    # Demographics
    "calculate_age",
    "get_age_group",
    "build_population_pyramid",
    "calculate_dependency_ratios",
    "classify_resident",
    "sectoral_summary",
    # Query
    "build_resident_where",
    "build_household_where",
    "build_order_clause",
    "paginate",
    "page_meta",
    # Cache
    "TTLCache",
    # Config
    "Config",
    "AppConfig",
    "EnvironmentConfigError",
    "validate_environment",
]
