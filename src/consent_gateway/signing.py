"""
Artefact signing

The core treats signatures as opaque strings produced and checked by a
SignatureProvider. Two providers ship here: a JWT provider keyed with a
shared secret and an unkeyed SHA-256 digest provider.
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any
import hashlib
import hmac
import json

import jwt
import structlog

logger = structlog.get_logger(__name__)


def canonical_payload(
    request_id: str, patient_id: str, hiu_id: str, hip_id: str, timestamp: datetime
) -> dict[str, Any]:
    """Payload every artefact signature is computed over."""
    return {
        "requestId": request_id,
        "patientId": patient_id,
        "hiuId": hiu_id,
        "hipId": hip_id,
        "timestamp": timestamp.isoformat(),
    }


class SignatureProvider(ABC):

    @abstractmethod
    def sign(self, payload: dict[str, Any]) -> str:
        pass

    @abstractmethod
    def verify(self, signature: str, payload: dict[str, Any]) -> bool:
        pass


class JWTSignatureProvider(SignatureProvider):
    """Signs the payload as a compact JWS using PyJWT."""

    def __init__(self, secret_key: str, algorithm: str = "HS256"):
        self._secret = secret_key
        self._algorithm = algorithm

    def sign(self, payload):
        return jwt.encode(dict(payload), self._secret, algorithm=self._algorithm)

    def verify(self, signature, payload):
        try:
            claims = jwt.decode(signature, self._secret, algorithms=[self._algorithm])
        except jwt.InvalidTokenError as e:
            logger.warning("Artefact signature rejected", error=str(e))
            return False
        return claims == dict(payload)


class DigestSignatureProvider(SignatureProvider):
    """SHA-256 over the canonical JSON form of the payload."""

    def sign(self, payload):
        return hashlib.sha256(json.dumps(payload, sort_keys=True).encode()).hexdigest()

    def verify(self, signature, payload):
        return hmac.compare_digest(signature, self.sign(payload))
