"""
Consent Service - library API over the consent components

Usage:
    from consent_gateway import build_consent_service
    service = build_consent_service(patients=InMemoryPatientDirectory(["PAT-1"]))
    request = service.create_consent_request("PAT-1", "DR-9", "CARE_MGMT", "HIP-1", "HIU-1", expiry)
    artefact = service.grant_consent(request.id, AccessMode.VIEW, start, end, ["OBSERVATION"])
    if service.check_access(artefact.id, ["OBSERVATION"]):
        service.record_access(artefact.id, ["OBSERVATION"])
"""
from datetime import datetime
from typing import Any, Iterable
import structlog

from consent_gateway.access import AccessValidator
from consent_gateway.artefacts import ConsentArtefactGenerator
from consent_gateway.clock import Clock, SystemClock
from consent_gateway.config import Settings, get_settings
from consent_gateway.directory import InMemoryPatientDirectory, PatientDirectory
from consent_gateway.errors import ConsentError
from consent_gateway.expiry import ExpiryReconciler
from consent_gateway.models import (
    AccessMode, AccessRecord, ConsentArtefact, ConsentArtefactSummary, ConsentRequest,
    ConsentRequestMetadata, ConsentStatus, DataCategory, Frequency
)
from consent_gateway.observability.metrics import ConsentMetrics
from consent_gateway.requests import ConsentRequestManager
from consent_gateway.schemas import AccessInput, CreateConsentRequestInput, GrantConsentInput
from consent_gateway.signing import DigestSignatureProvider, JWTSignatureProvider, SignatureProvider
from consent_gateway.store import ConsentStore, InMemoryConsentStore


class ConsentService:
    """Consent lifecycle and access-control operations."""

    def __init__(
        self,
        requests: ConsentRequestManager,
        artefacts: ConsentArtefactGenerator,
        access: AccessValidator,
        reconciler: ExpiryReconciler,
        metrics: ConsentMetrics,
    ):
        self.requests = requests
        self.artefacts = artefacts
        self.access = access
        self.reconciler = reconciler
        self.metrics = metrics

    # Requests

    def create_consent_request(
        self,
        patient_id: str,
        requester_id: str,
        purpose: str,
        hip_id: str,
        hiu_id: str,
        expiry_date: datetime,
        metadata: ConsentRequestMetadata | None = None,
    ) -> ConsentRequest:
        return self.requests.create(
            patient_id, requester_id, purpose, hip_id, hiu_id, expiry_date, metadata
        )

    def get_consent_request(self, request_id: str) -> ConsentRequest:
        return self.requests.get(request_id)

    def deny_consent(self, request_id: str, reason: str | None = None) -> None:
        self.requests.deny(request_id, reason)

    def list_requests_by_patient(
        self, patient_id: str, status: ConsentStatus | None = None
    ) -> list[ConsentRequest]:
        return self.requests.list_by_patient(patient_id, status)

    # Artefacts

    def grant_consent(
        self,
        request_id: str,
        access_mode: AccessMode,
        date_range_from: datetime,
        date_range_to: datetime,
        data_categories: Iterable[DataCategory | str],
        frequency: Frequency | None = None,
    ) -> ConsentArtefact:
        return self.artefacts.grant(
            request_id, access_mode, date_range_from, date_range_to, data_categories, frequency
        )

    def revoke_consent(self, artefact_id: str) -> None:
        self.artefacts.revoke(artefact_id)

    def get_consent_artefact(self, artefact_id: str) -> ConsentArtefact:
        return self.artefacts.get(artefact_id)

    def list_patient_artefacts(self, patient_id: str) -> list[ConsentArtefactSummary]:
        return self.artefacts.list_valid_by_patient(patient_id)

    def verify_artefact_signature(self, artefact_id: str) -> bool:
        return self.artefacts.verify_signature(artefact_id)

    # Access

    def check_access(self, artefact_id: str, categories: Iterable[DataCategory | str]) -> bool:
        return self.access.check_access(artefact_id, categories)

    def record_access(
        self,
        artefact_id: str,
        categories: Iterable[DataCategory | str],
        accessed_by: str | None = None,
        purpose: str | None = None,
    ) -> AccessRecord:
        return self.access.record_access(artefact_id, categories, accessed_by, purpose)

    def validate_and_record(
        self,
        artefact_id: str,
        categories: Iterable[DataCategory | str],
        accessed_by: str | None = None,
        purpose: str | None = None,
    ) -> bool:
        """Check access and, when admitted, record it. Returns the admission."""
        categories = list(categories)
        if not self.access.check_access(artefact_id, categories):
            return False
        try:
            self.access.record_access(artefact_id, categories, accessed_by, purpose)
        except ConsentError:
            # Lost a race against another access, a revoke or a sweep.
            return False
        return True

    def get_remaining_access(self, artefact_id: str) -> int | None:
        return self.access.get_remaining_access(artefact_id)

    def access_history(self, artefact_id: str) -> list[AccessRecord]:
        return self.access.access_history(artefact_id)

    # Expiry

    def sweep(self, now: datetime | None = None) -> int:
        return self.reconciler.sweep(now)

    # Raw payloads

    def create_consent_request_from_payload(self, payload: dict[str, Any]) -> ConsentRequest:
        """Validate a raw payload, then create the request."""
        data = CreateConsentRequestInput.model_validate(payload)
        return self.requests.create(**data.to_kwargs())

    def grant_consent_from_payload(self, payload: dict[str, Any]) -> ConsentArtefact:
        """Validate a raw payload, then grant the request it names."""
        data = GrantConsentInput.model_validate(payload)
        return self.artefacts.grant(**data.to_kwargs())

    def validate_and_record_from_payload(self, payload: dict[str, Any]) -> bool:
        data = AccessInput.model_validate(payload)
        return self.validate_and_record(data.artefact_id, data.categories, data.accessed_by, data.purpose)


def build_signer(settings: Settings) -> SignatureProvider:
    if settings.signing.provider == "digest":
        return DigestSignatureProvider()
    return JWTSignatureProvider(
        settings.signing.secret_key.get_secret_value(),
        algorithm=settings.signing.algorithm,
    )


def build_consent_service(
    settings: Settings | None = None,
    *,
    store: ConsentStore | None = None,
    patients: PatientDirectory | None = None,
    clock: Clock | None = None,
    signer: SignatureProvider | None = None,
    metrics: ConsentMetrics | None = None,
) -> ConsentService:
    """Wire the consent components around shared collaborators."""
    settings = settings or get_settings()
    store = store or InMemoryConsentStore()
    patients = patients if patients is not None else InMemoryPatientDirectory()
    clock = clock or SystemClock()
    signer = signer or build_signer(settings)
    metrics = metrics or ConsentMetrics()
    retries = settings.consent.conflict_retries
    logger = structlog.get_logger("consent_gateway")

    requests = ConsentRequestManager(
        store, patients, clock, metrics,
        logger=logger.bind(component="consent_requests"),
        conflict_retries=retries,
    )
    artefacts = ConsentArtefactGenerator(
        store, signer, clock, metrics,
        logger=logger.bind(component="consent_artefacts"),
        conflict_retries=retries,
    )
    access = AccessValidator(
        store, clock, metrics,
        logger=logger.bind(component="consent_access"),
        conflict_retries=retries,
    )
    reconciler = ExpiryReconciler(
        store, requests, clock,
        logger=logger.bind(component="consent_expiry"),
    )
    return ConsentService(requests, artefacts, access, reconciler, metrics)
