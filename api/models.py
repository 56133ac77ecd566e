"""
Pydantic request/response models for the API.

Request models only coerce types; field-level rules (required names,
formats, enums) are enforced by utils.validation after sanitization so every
rejection carries the same ``{field, message}`` shape.  Optional fields
default to None so partial payloads are accepted.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


# ── Auth ──────────────────────────────────────────────────────────────────────

class SignUpIn(BaseModel):
    """Self-service registration for barangay staff."""
    email: str = Field(..., description="Login email", examples=["clerk@sanantonio.gov.ph"])
    password: str = Field(..., description="At least 8 characters")
    first_name: str | None = Field(None, examples=["Maria"])
    last_name: str | None = Field(None, examples=["Santos"])
    barangay_code: str | None = Field(None, description="PSGC code of the assigned barangay",
                                      examples=["0402108001"])


class SignInIn(BaseModel):
    email: str
    password: str


class UserOut(BaseModel):
    """The signed-in user as returned by sign-in and /auth/me."""
    id: str
    email: str
    role: str
    access_level: str = Field(..., description="national | region | province | city | barangay")
    first_name: str | None = None
    last_name: str | None = None
    barangay_code: str | None = None
    city_municipality_code: str | None = None
    province_code: str | None = None
    region_code: str | None = None


class TokenOut(BaseModel):
    """Response body for POST /api/v1/auth/sign-in."""
    access_token: str
    token_type: str = Field("bearer", examples=["bearer"])
    expires_in: int = Field(..., description="Token lifetime in seconds", examples=[28800])
    csrf_token: str = Field(..., description="Send as X-CSRF-Token on mutating requests")
    user: UserOut


# ── Residents ─────────────────────────────────────────────────────────────────

class ResidentBase(BaseModel):
    """All resident form fields; every one optional at the model level."""
    model_config = ConfigDict(extra="ignore")

    first_name: str | None = Field(None, examples=["Juan"])
    middle_name: str | None = Field(None, examples=["Reyes"])
    last_name: str | None = Field(None, examples=["dela Cruz"])
    extension_name: str | None = Field(None, examples=["Jr."])
    birthdate: str | None = Field(None, description="ISO date YYYY-MM-DD", examples=["1990-05-15"])
    birth_place_code: str | None = Field(None, description="PSGC code of the birthplace")
    sex: str | None = Field(None, examples=["male"])
    civil_status: str | None = Field(None, examples=["single"])
    citizenship: str | None = Field(None, examples=["filipino"])
    education_attainment: str | None = Field(None, examples=["college"])
    employment_status: str | None = Field(None, examples=["employed"])
    occupation: str | None = None
    mobile_number: str | None = Field(None, examples=["09171234567"])
    telephone_number: str | None = None
    email: str | None = None
    philsys_card_number: str | None = Field(
        None, description="Only the last 4 digits and a hash are stored",
        examples=["1234-5678-9012"])
    height: float | None = Field(None, description="Centimetres")
    weight: float | None = Field(None, description="Kilograms")
    ethnicity: str | None = None
    religion: str | None = None
    mother_maiden_first: str | None = None
    mother_maiden_middle: str | None = None
    mother_maiden_last: str | None = None
    is_voter: bool | None = None
    is_resident_voter: bool | None = None
    is_pwd: bool | None = None
    is_solo_parent: bool | None = None
    is_ofw: bool | None = None
    is_indigenous: bool | None = None
    previous_barangay_code: str | None = None
    date_of_transfer: str | None = None
    reason_for_migration: str | None = None
    relationship_to_head: str | None = None
    household_code: str | None = Field(None, examples=["0402108001-000001"])
    barangay_code: str | None = Field(None, examples=["0402108001"])


class ResidentCreate(ResidentBase):
    pass


class ResidentUpdate(ResidentBase):
    """Partial update; only fields present in the body are changed."""


# ── Households ────────────────────────────────────────────────────────────────

class HouseholdCreate(BaseModel):
    """Register a household together with its members."""
    model_config = ConfigDict(extra="ignore")

    barangay_code: str | None = Field(None, description="Defaults to the user's barangay")
    household_number: int | None = Field(None, ge=1, le=999999,
                                         description="Next free number when omitted")
    street_name: str | None = None
    house_number: str | None = None
    subdivision: str | None = None
    household_type: str | None = Field(None, examples=["nuclear"])
    tenure_status: str | None = Field(None, examples=["owned"])
    monthly_income: float | None = Field(None, ge=0)
    household_head_index: int | None = Field(None, ge=0,
                                             description="Index into members; default 0")
    members: list[ResidentCreate] = Field(default_factory=list)


class HouseholdUpdate(BaseModel):
    model_config = ConfigDict(extra="ignore")

    street_name: str | None = None
    house_number: str | None = None
    subdivision: str | None = None
    household_type: str | None = None
    tenure_status: str | None = None
    monthly_income: float | None = Field(None, ge=0)
    household_head_id: int | None = None


class MemberAdd(BaseModel):
    resident_id: int
    relationship_to_head: str | None = None


# ── Shared ────────────────────────────────────────────────────────────────────

class OptionsResponse(BaseModel):
    """Response body for the address option endpoints."""
    data: list[dict[str, Any]] = Field(..., description="Options as {value, label, ...}")
    count: int

