from dataclasses import replace
from datetime import timedelta

import pytest

from consent_gateway.errors import StaleWrite
from consent_gateway.models import (
    AccessMode, AccessRecord, ConsentArtefact, ConsentRequest, ConsentStatus, normalize_categories
)
from consent_gateway.store import InMemoryConsentStore

from conftest import T0


def request(rid="req-1", patient="PAT-1", expiry=T0 + timedelta(days=1)):
    return ConsentRequest(
        id=rid, patient_id=patient, requester_id="DR-1", purpose="CARE_MGMT",
        hip_id="HIP-1", hiu_id="HIU-1", request_date=T0, expiry_date=expiry,
    )


def artefact(aid="art-1", rid="req-1", end=T0 + timedelta(days=1)):
    return ConsentArtefact(
        id=aid, consent_request_id=rid, signature="sig", access_mode=AccessMode.VIEW,
        date_range_from=T0, date_range_to=end,
        data_categories=normalize_categories(["OBSERVATION"]), created_at=T0,
    )


def record(aid="art-1", n=0):
    return AccessRecord(id=f"rec-{n}", artefact_id=aid, timestamp=T0 + timedelta(minutes=n),
                        categories_accessed=("OBSERVATION",))


def test_update_is_compare_and_swap():
    store = InMemoryConsentStore()
    original = store.add_request(request())

    updated = store.update_request(replace(original, purpose="RESEARCH"), expected_version=0)
    assert updated.version == 1
    assert store.get_request("req-1").purpose == "RESEARCH"

    with pytest.raises(StaleWrite):
        store.update_request(replace(original, purpose="OTHER"), expected_version=0)


def test_duplicate_request_is_rejected():
    store = InMemoryConsentStore()
    store.add_request(request())
    with pytest.raises(StaleWrite):
        store.add_request(request())


def test_one_artefact_per_request():
    store = InMemoryConsentStore()
    req = store.add_request(request())
    granted, _ = store.save_grant(replace(req, status=ConsentStatus.GRANTED), 0, artefact())

    with pytest.raises(StaleWrite):
        store.save_grant(granted, granted.version, artefact(aid="art-2"))
    assert store.get_artefact("art-2") is None
    assert store.get_artefact_by_request("req-1").id == "art-1"


def test_failed_grant_leaves_no_artefact():
    store = InMemoryConsentStore()
    req = store.add_request(request())
    store.update_request(req, 0)

    with pytest.raises(StaleWrite):
        store.save_grant(replace(req, status=ConsentStatus.GRANTED), 0, artefact())
    assert store.get_artefact("art-1") is None
    assert store.get_request("req-1").status == ConsentStatus.REQUESTED


def test_append_access_checks_ledger_length():
    store = InMemoryConsentStore()
    req = store.add_request(request())
    req, art = store.save_grant(replace(req, status=ConsentStatus.GRANTED), 0, artefact())

    assert store.append_access(record(n=0), 0, art.version, req.version) == 1
    with pytest.raises(StaleWrite):
        store.append_access(record(n=1), 0, art.version, req.version)
    assert store.append_access(record(n=1), 1, art.version, req.version) == 2
    assert [r.id for r in store.list_access("art-1")] == ["rec-0", "rec-1"]


def test_append_access_checks_parent_versions():
    store = InMemoryConsentStore()
    req = store.add_request(request())
    req, art = store.save_grant(replace(req, status=ConsentStatus.GRANTED), 0, artefact())
    store.save_revocation(replace(art, date_range_to=T0), art.version,
                          replace(req, status=ConsentStatus.REVOKED), req.version)

    with pytest.raises(StaleWrite):
        store.append_access(record(), 0, art.version, req.version)
    with pytest.raises(StaleWrite):
        store.append_access(record(aid="missing"), 0, 0, 0)


def test_expiry_queries():
    store = InMemoryConsentStore()
    store.add_request(request("req-open", expiry=T0 + timedelta(hours=1)))
    denied = store.add_request(request("req-denied", expiry=T0 + timedelta(hours=1)))
    store.update_request(replace(denied, status=ConsentStatus.DENIED), 0)
    granted = store.add_request(request("req-granted", expiry=T0 + timedelta(days=30)))
    store.save_grant(replace(granted, status=ConsentStatus.GRANTED), 0,
                     artefact(aid="art-g", rid="req-granted", end=T0 + timedelta(hours=2)))

    later = T0 + timedelta(hours=3)
    assert [r.id for r in store.find_expiring_requests(later)] == ["req-open"]
    assert [a.id for a in store.find_lapsed_artefacts(later)] == ["art-g"]
    assert store.find_lapsed_artefacts(T0) == []


def test_list_by_patient():
    store = InMemoryConsentStore()
    store.add_request(request("req-1", patient="PAT-1"))
    store.add_request(request("req-2", patient="PAT-2"))
    req3 = store.add_request(request("req-3", patient="PAT-1"))
    store.save_grant(replace(req3, status=ConsentStatus.GRANTED), 0, artefact(aid="art-3", rid="req-3"))

    assert {r.id for r in store.list_requests_by_patient("PAT-1")} == {"req-1", "req-3"}
    assert [a.id for a in store.list_artefacts_by_patient("PAT-1")] == ["art-3"]
    assert store.list_artefacts_by_patient("PAT-2") == []
