"""
Boundary input schemas

Validate raw payloads (camelCase or snake_case keys) before they reach the
consent components, and convert them to core values.
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from consent_gateway.clock import as_utc
from consent_gateway.models import (
    AccessMode, ConsentRequestMetadata, DataCategory, Frequency, FrequencyUnit, HiType
)


class InputModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
        extra="ignore",
    )


class ConsentRequestMetadataInput(InputModel):
    department: str | None = None
    doctor_id: str | None = None
    speciality: str | None = None
    care_context_reference: str | None = None

    def to_core(self) -> ConsentRequestMetadata:
        return ConsentRequestMetadata(**self.model_dump())


class CreateConsentRequestInput(InputModel):
    """Payload for opening a consent request."""

    patient_id: str = Field(min_length=1)
    requester_id: str = Field(min_length=1)
    purpose: str = Field(min_length=1)
    hip_id: str = Field(min_length=1)
    hiu_id: str = Field(min_length=1)
    expiry_date: datetime
    metadata: ConsentRequestMetadataInput | None = None

    @field_validator("expiry_date")
    @classmethod
    def normalize_expiry(cls, value: datetime) -> datetime:
        return as_utc(value)

    def to_kwargs(self) -> dict:
        return {
            "patient_id": self.patient_id,
            "requester_id": self.requester_id,
            "purpose": self.purpose,
            "hip_id": self.hip_id,
            "hiu_id": self.hiu_id,
            "expiry_date": self.expiry_date,
            "metadata": self.metadata.to_core() if self.metadata else None,
        }


class HiTypeInput(InputModel):
    type: str = Field(min_length=1)
    version: str = Field(min_length=1)


class DataCategoryInput(InputModel):
    category: str = Field(min_length=1)
    description: str = ""
    hi_types: list[HiTypeInput] = Field(default_factory=list)

    def to_core(self) -> DataCategory:
        return DataCategory(
            category=self.category,
            description=self.description,
            hi_types=tuple(HiType(h.type, h.version) for h in self.hi_types),
        )


class FrequencyInput(InputModel):
    unit: FrequencyUnit
    value: int = Field(ge=1)
    repeats: int = Field(ge=1)

    def to_core(self) -> Frequency:
        return Frequency(unit=self.unit, value=self.value, repeats=self.repeats)


class GrantConsentInput(InputModel):
    """Payload for granting a consent request."""

    request_id: str = Field(min_length=1)
    access_mode: AccessMode
    date_range_from: datetime
    date_range_to: datetime
    data_categories: list[DataCategoryInput] = Field(min_length=1)
    frequency: FrequencyInput | None = None

    @field_validator("date_range_from", "date_range_to")
    @classmethod
    def normalize_range(cls, value: datetime) -> datetime:
        return as_utc(value)

    @model_validator(mode="after")
    def check_date_range(self):
        if self.date_range_from > self.date_range_to:
            raise ValueError("dateRangeFrom must not be after dateRangeTo")
        return self

    def to_kwargs(self) -> dict:
        return {
            "request_id": self.request_id,
            "access_mode": self.access_mode,
            "date_range_from": self.date_range_from,
            "date_range_to": self.date_range_to,
            "data_categories": [c.to_core() for c in self.data_categories],
            "frequency": self.frequency.to_core() if self.frequency else None,
        }


class AccessInput(InputModel):
    """Payload for checking or recording access against an artefact."""

    artefact_id: str = Field(min_length=1)
    categories: list[str] = Field(min_length=1)
    accessed_by: str | None = None
    purpose: str | None = None
