from datetime import timedelta

import pytest
from pydantic import ValidationError as PayloadError

from consent_gateway import build_consent_service
from consent_gateway.directory import InMemoryPatientDirectory
from consent_gateway.errors import NotFound
from consent_gateway.models import AccessMode, ConsentStatus, Frequency, FrequencyUnit

from conftest import PATIENT


def test_consent_end_to_end(service, clock):
    request = service.create_consent_request(
        PATIENT, "DR-4411", "CARE_MGMT", "HIP-CITY", "HIU-NORTH", clock.now() + timedelta(days=30)
    )
    artefact = service.grant_consent(
        request.id,
        AccessMode.VIEW,
        clock.now(),
        clock.now() + timedelta(days=30),
        ["OBSERVATION", "MEDICATION"],
        Frequency(FrequencyUnit.DAY, 1, 3),
    )

    assert service.check_access(artefact.id, ["OBSERVATION"]) is True
    for _ in range(3):
        service.record_access(artefact.id, ["OBSERVATION"])
        clock.advance(hours=1)
    assert service.check_access(artefact.id, ["OBSERVATION"]) is False

    service.revoke_consent(artefact.id)
    assert service.check_access(artefact.id, ["OBSERVATION"]) is False
    assert service.get_consent_request(request.id).status == ConsentStatus.REVOKED

    snapshot = service.metrics.snapshot()
    assert snapshot["consent_grants_total"] == 1
    assert snapshot["consent_access_records_total"] == 3
    assert snapshot["consent_revocations_total"] == 1


def test_validate_and_record(service, granted):
    _, artefact = granted(categories=["OBSERVATION"], repeats=2)

    assert service.validate_and_record(artefact.id, ["OBSERVATION"], accessed_by="DR-1")
    assert not service.validate_and_record(artefact.id, ["MEDICATION"])
    assert service.validate_and_record(artefact.id, ["OBSERVATION"])
    assert not service.validate_and_record(artefact.id, ["OBSERVATION"])
    assert service.get_remaining_access(artefact.id) == 0


def test_payload_flow_with_camel_case_keys(service, clock):
    request = service.create_consent_request_from_payload({
        "patientId": PATIENT,
        "requesterId": "DR-4411",
        "purpose": "CARE_MGMT",
        "hipId": "HIP-CITY",
        "hiuId": "HIU-NORTH",
        "expiryDate": (clock.now() + timedelta(days=30)).isoformat(),
        "metadata": {"department": "Cardiology", "careContextReference": "CC-77"},
    })
    assert request.metadata.care_context_reference == "CC-77"

    artefact = service.grant_consent_from_payload({
        "requestId": request.id,
        "accessMode": "VIEW",
        "dateRangeFrom": clock.now().isoformat(),
        "dateRangeTo": (clock.now() + timedelta(days=7)).isoformat(),
        "frequency": {"unit": "DAY", "value": 1, "repeats": 2},
        "dataCategories": [
            {"category": "OBSERVATION", "description": "Vitals",
             "hiTypes": [{"type": "Observation", "version": "R4"}]},
        ],
    })
    assert artefact.frequency.repeats == 2

    assert service.validate_and_record_from_payload({
        "artefactId": artefact.id, "categories": ["OBSERVATION"], "accessedBy": "DR-4411",
    })
    assert service.get_remaining_access(artefact.id) == 1


def test_payload_validation_runs_before_core(service, clock):
    with pytest.raises(PayloadError):
        service.create_consent_request_from_payload({"patientId": PATIENT})
    assert service.list_requests_by_patient(PATIENT) == []


def test_build_with_defaults():
    service = build_consent_service(patients=InMemoryPatientDirectory(["PAT-1"]))
    with pytest.raises(NotFound):
        service.get_consent_artefact("missing")
    assert service.list_requests_by_patient("PAT-1") == []
