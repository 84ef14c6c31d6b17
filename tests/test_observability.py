from datetime import timedelta

import structlog
from structlog.testing import capture_logs

from consent_gateway.config import ConsentSettings, Settings, SigningSettings, get_settings
from consent_gateway.observability.logging import (
    configure_logging, mask_identifier, patient_redaction_processor
)
from consent_gateway.observability.metrics import ConsentMetrics, Counter
from consent_gateway.service import build_consent_service

from conftest import PATIENT


def test_counter_labels():
    counter = Counter("consent_test_total")
    counter.inc()
    counter.inc(2, labels={"outcome": "denied"})
    assert counter.get() == 1
    assert counter.get(labels={"outcome": "denied"}) == 2
    assert counter.total() == 3


def test_metrics_snapshot_names():
    snapshot = ConsentMetrics().snapshot()
    assert snapshot["consent_grants_total"] == 0
    assert "consent_access_checks_total" in snapshot


def test_patient_identifiers_are_masked():
    assert mask_identifier("PAT-00012345") == "********2345"
    assert mask_identifier("P1") == "**"
    event = patient_redaction_processor(None, "info", {"event": "x", "patient_id": "PAT-00012345"})
    assert event["patient_id"] == "********2345"


def test_settings_from_environment(monkeypatch):
    monkeypatch.setenv("CONSENT_CONFLICT_RETRIES", "3")
    monkeypatch.setenv("SIGNING_PROVIDER", "digest")
    settings = Settings()
    assert settings.consent.conflict_retries == 3
    assert settings.signing.provider == "digest"
    assert not settings.is_production
    assert get_settings() is get_settings()


def test_configure_logging():
    try:
        configure_logging(Settings(consent=ConsentSettings(log_level="DEBUG", log_json=True)))
        assert structlog.is_configured()
    finally:
        structlog.reset_defaults()


def test_access_denial_is_logged(patients, clock):
    settings = Settings(signing=SigningSettings(provider="digest"))
    with capture_logs() as logs:
        service = build_consent_service(settings, patients=patients, clock=clock)
        request = service.create_consent_request(
            PATIENT, "DR-1", "CARE_MGMT", "HIP-1", "HIU-1", clock.now() + timedelta(days=1)
        )
        artefact = service.grant_consent(request.id, "VIEW", clock.now(), clock.now(), ["OBSERVATION"])
        assert not service.check_access(artefact.id, ["MEDICATION"])

    events = [entry["event"] for entry in logs]
    assert "Consent request created" in events
    assert "Consent granted" in events
    denial = next(entry for entry in logs if entry["event"] == "Consent access denied")
    assert denial["artefact_id"] == artefact.id
    assert denial["component"] == "consent_access"
