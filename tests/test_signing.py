from datetime import datetime, timezone

from consent_gateway.signing import DigestSignatureProvider, JWTSignatureProvider, canonical_payload

SECRET = "unit-test-secret-with-enough-length-for-hs256"


def payload(hiu_id="HIU-1"):
    return canonical_payload("req-1", "PAT-1", hiu_id, "HIP-1", datetime(2026, 3, 1, tzinfo=timezone.utc))


def test_canonical_payload_shape():
    assert payload() == {
        "requestId": "req-1",
        "patientId": "PAT-1",
        "hiuId": "HIU-1",
        "hipId": "HIP-1",
        "timestamp": "2026-03-01T00:00:00+00:00",
    }


def test_jwt_provider_round_trip():
    signer = JWTSignatureProvider(SECRET)
    signature = signer.sign(payload())
    assert signer.verify(signature, payload())
    assert not signer.verify(signature, payload(hiu_id="HIU-2"))
    assert not JWTSignatureProvider(SECRET + "-other").verify(signature, payload())
    assert not signer.verify("garbage", payload())


def test_digest_provider_is_deterministic():
    signer = DigestSignatureProvider()
    assert signer.sign(payload()) == signer.sign(dict(reversed(list(payload().items()))))
    assert signer.verify(signer.sign(payload()), payload())
    assert not signer.verify(signer.sign(payload()), payload(hiu_id="HIU-2"))
