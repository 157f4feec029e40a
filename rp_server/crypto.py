"""Pluggable signature verification over COSE public keys."""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, Protocol

import cbor2
from cryptography.exceptions import InvalidSignature
from fido2.cose import CoseKey

LOGGER = logging.getLogger(__name__)

COSE_ALG = 3

ALGORITHM_NAMES: Dict[int, str] = {
    -7: "ES256",
    -8: "EdDSA",
    -257: "RS256",
}


class SignatureVerifier(Protocol):
    def supports(self, algorithm: int) -> bool:
        ...

    def verify(self, signature: bytes, payload: bytes, public_key: bytes, algorithm: int) -> bool:
        ...


def encode_public_key(cose_key: Dict[int, Any]) -> bytes:
    return cbor2.dumps(cose_key)


class CoseSignatureVerifier:
    """Verifies signatures with python-fido2's COSE key implementations.

    ``public_key`` is the CBOR encoded COSE_Key exactly as it was attested.
    """

    def __init__(self, algorithms: Iterable[int] = (-7, -257, -8)) -> None:
        self.algorithms = frozenset(algorithms)

    def supports(self, algorithm: int) -> bool:
        return algorithm in self.algorithms and algorithm in ALGORITHM_NAMES

    def verify(self, signature: bytes, payload: bytes, public_key: bytes, algorithm: int) -> bool:
        if not self.supports(algorithm):
            return False
        try:
            cose_map = cbor2.loads(public_key)
        except (cbor2.CBORDecodeError, ValueError):
            LOGGER.warning("Stored public key is not valid CBOR")
            return False
        if not isinstance(cose_map, dict) or cose_map.get(COSE_ALG) != algorithm:
            return False
        try:
            key = CoseKey.parse(cose_map)
            key.verify(payload, signature)
        except InvalidSignature:
            return False
        except (ValueError, TypeError, KeyError) as exc:
            LOGGER.warning("Unusable %s key: %s", ALGORITHM_NAMES[algorithm], exc)
            return False
        return True
