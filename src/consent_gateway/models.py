"""Consent Data Models - consent requests, artefacts and the access ledger"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class ConsentStatus(str, Enum):
    REQUESTED = "REQUESTED"
    GRANTED = "GRANTED"
    DENIED = "DENIED"
    REVOKED = "REVOKED"
    EXPIRED = "EXPIRED"


TERMINAL_STATUSES = frozenset({ConsentStatus.DENIED, ConsentStatus.REVOKED, ConsentStatus.EXPIRED})
OPEN_STATUSES = frozenset({ConsentStatus.REQUESTED, ConsentStatus.GRANTED})


class AccessMode(str, Enum):
    VIEW = "VIEW"
    STORE = "STORE"
    QUERY = "QUERY"
    STREAM = "STREAM"


class FrequencyUnit(str, Enum):
    HOUR = "HOUR"
    DAY = "DAY"
    WEEK = "WEEK"
    MONTH = "MONTH"
    YEAR = "YEAR"


class KnownCategory(str, Enum):
    """Well-known health information categories. Other codes are accepted."""
    OBSERVATION = "OBSERVATION"
    CONDITION = "CONDITION"
    PROCEDURE = "PROCEDURE"
    MEDICATION = "MEDICATION"
    ALLERGY = "ALLERGY"
    DOCUMENT = "DOCUMENT"


@dataclass(frozen=True)
class HiType:
    type: str
    version: str


@dataclass(frozen=True)
class DataCategory:
    """A class of health information covered by a grant."""
    category: str
    description: str = ""
    hi_types: tuple[HiType, ...] = ()


@dataclass(frozen=True)
class Frequency:
    """Repeatable-access quota. `repeats` is a lifetime cap."""
    unit: FrequencyUnit
    value: int
    repeats: int


@dataclass(frozen=True)
class ConsentRequestMetadata:
    department: str | None = None
    doctor_id: str | None = None
    speciality: str | None = None
    care_context_reference: str | None = None


@dataclass(frozen=True)
class ConsentRequest:
    """A pending or resolved ask for access to a patient's records."""
    id: str
    patient_id: str
    requester_id: str
    purpose: str
    hip_id: str
    hiu_id: str
    request_date: datetime
    expiry_date: datetime
    status: ConsentStatus = ConsentStatus.REQUESTED
    metadata: ConsentRequestMetadata | None = None
    updated_at: datetime | None = None
    version: int = 0


@dataclass(frozen=True)
class ConsentArtefact:
    """Immutable signed grant, one per granted consent request."""
    id: str
    consent_request_id: str
    signature: str
    access_mode: AccessMode
    date_range_from: datetime
    date_range_to: datetime
    data_categories: tuple[DataCategory, ...]
    created_at: datetime
    frequency: Frequency | None = None
    revoked_at: datetime | None = None
    version: int = 0


@dataclass(frozen=True)
class AccessRecord:
    """One entry in the usage ledger of an artefact."""
    id: str
    artefact_id: str
    timestamp: datetime
    categories_accessed: tuple[str, ...]
    accessed_by: str | None = None
    purpose: str | None = None


@dataclass(frozen=True)
class ConsentArtefactSummary:
    id: str
    consent_request_id: str
    access_mode: AccessMode
    date_range_from: datetime
    date_range_to: datetime
    categories: list[str] = field(default_factory=list)


# =============================================================================
# Predicates
# =============================================================================

def is_request_expired(request: ConsentRequest, now: datetime) -> bool:
    return request.expiry_date < now


def can_be_granted(request: ConsentRequest, now: datetime) -> bool:
    return request.status == ConsentStatus.REQUESTED and not is_request_expired(request, now)


def can_be_revoked(request: ConsentRequest, now: datetime) -> bool:
    return request.status == ConsentStatus.GRANTED and not is_request_expired(request, now)


def is_within_date_range(artefact: ConsentArtefact, now: datetime) -> bool:
    """Inclusive at both ends."""
    return artefact.date_range_from <= now <= artefact.date_range_to


def is_artefact_valid(artefact: ConsentArtefact, request: ConsentRequest | None, now: datetime) -> bool:
    if request is None:
        return False
    return is_within_date_range(artefact, now) and request.status == ConsentStatus.GRANTED


def artefact_categories(artefact: ConsentArtefact) -> list[str]:
    return [dc.category for dc in artefact.data_categories]


def allows_access_to(artefact: ConsentArtefact, category: str) -> bool:
    return any(dc.category == category for dc in artefact.data_categories)


def normalize_categories(categories) -> tuple[DataCategory, ...]:
    """
    Coerce category input to an ordered tuple without duplicate codes.

    Accepts DataCategory values, bare category codes or KnownCategory
    members. First occurrence of a code wins.
    """
    seen: set[str] = set()
    result = []
    for item in categories or ():
        if isinstance(item, DataCategory):
            dc = item
        else:
            dc = DataCategory(category=getattr(item, "value", item))
        if dc.category in seen:
            continue
        seen.add(dc.category)
        result.append(dc)
    return tuple(result)


def summarize(artefact: ConsentArtefact) -> ConsentArtefactSummary:
    return ConsentArtefactSummary(
        id=artefact.id,
        consent_request_id=artefact.consent_request_id,
        access_mode=artefact.access_mode,
        date_range_from=artefact.date_range_from,
        date_range_to=artefact.date_range_to,
        categories=artefact_categories(artefact),
    )
