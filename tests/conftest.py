from datetime import datetime, timedelta, timezone

import pytest

from consent_gateway.clock import ManualClock
from consent_gateway.config import ConsentSettings, Settings, SigningSettings
from consent_gateway.directory import InMemoryPatientDirectory
from consent_gateway.models import AccessMode, Frequency, FrequencyUnit
from consent_gateway.service import build_consent_service
from consent_gateway.store import InMemoryConsentStore


T0 = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)
PATIENT = "PAT-00012345"


@pytest.fixture
def clock():
    return ManualClock(T0)


@pytest.fixture
def patients():
    return InMemoryPatientDirectory([PATIENT, "PAT-00099999"])


@pytest.fixture
def store():
    return InMemoryConsentStore()


@pytest.fixture
def settings():
    return Settings(
        consent=ConsentSettings(log_json=False),
        signing=SigningSettings(provider="jwt", secret_key="test-signing-secret-for-consent-artefacts"),
    )


@pytest.fixture
def service(settings, store, patients, clock):
    return build_consent_service(settings, store=store, patients=patients, clock=clock)


@pytest.fixture
def open_request(service, clock):
    def _open(patient_id=PATIENT, expires_in=timedelta(days=30), **kwargs):
        fields = {
            "requester_id": "DR-4411",
            "purpose": "CARE_MGMT",
            "hip_id": "HIP-CITY-HOSPITAL",
            "hiu_id": "HIU-NORTH-CLINIC",
        }
        fields.update(kwargs)
        return service.create_consent_request(
            patient_id=patient_id,
            expiry_date=clock.now() + expires_in,
            **fields,
        )
    return _open


@pytest.fixture
def granted(service, clock, open_request):
    """Open and grant a request, returning (request_id, artefact)."""
    def _grant(
        categories=("OBSERVATION", "MEDICATION"),
        repeats=None,
        starts_in=timedelta(0),
        lasts=timedelta(days=10),
        request_expires_in=timedelta(days=30),
    ):
        request = open_request(expires_in=request_expires_in)
        frequency = Frequency(FrequencyUnit.DAY, 1, repeats) if repeats is not None else None
        start = clock.now() + starts_in
        artefact = service.grant_consent(
            request.id, AccessMode.VIEW, start, start + lasts, list(categories), frequency
        )
        return request.id, artefact
    return _grant
