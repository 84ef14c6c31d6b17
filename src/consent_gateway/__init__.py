"""
Consent Gateway: patient consent for cross-organization health-data exchange

Components:
- Consent request lifecycle (request, grant, deny, revoke, expire)
- Consent artefact generation and signing
- Access validation with usage quotas
- Expiry reconciliation
"""
from consent_gateway.errors import (
    ConsentError, Conflict, InvalidStateTransition, NotFound, ValidationError
)
from consent_gateway.models import (
    AccessMode, AccessRecord, ConsentArtefact, ConsentRequest,
    ConsentRequestMetadata, ConsentStatus, DataCategory, Frequency,
    FrequencyUnit, HiType
)
from consent_gateway.service import ConsentService, build_consent_service

__version__ = "0.1.0"

__all__ = [
    "ConsentService", "build_consent_service",
    "ConsentError", "Conflict", "InvalidStateTransition", "NotFound", "ValidationError",
    "AccessMode", "AccessRecord", "ConsentArtefact", "ConsentRequest",
    "ConsentRequestMetadata", "ConsentStatus", "DataCategory", "Frequency",
    "FrequencyUnit", "HiType",
]
