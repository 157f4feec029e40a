"""Credential key pairs for the virtual authenticator, built on cryptography."""

from __future__ import annotations

import logging
from typing import Any, Dict, Union

from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, ed25519, padding, rsa
from fido2.cose import EdDSA, ES256, RS256

LOGGER = logging.getLogger(__name__)

PrivateKey = Union[ec.EllipticCurvePrivateKey, rsa.RSAPrivateKey, ed25519.Ed25519PrivateKey]

COSE_ALGORITHMS = {
    -7: ES256,
    -8: EdDSA,
    -257: RS256,
}


class KeyPair:
    def __init__(self, private_key: PrivateKey, algorithm: int):
        if algorithm not in COSE_ALGORITHMS:
            raise ValueError(f"Unsupported COSE algorithm: {algorithm}")
        self.private_key = private_key
        self.algorithm = algorithm

    @property
    def public_key(self):
        return self.private_key.public_key()

    def cose_public_key(self) -> Dict[int, Any]:
        return dict(COSE_ALGORITHMS[self.algorithm].from_cryptography_key(self.public_key))

    def public_key_der(self) -> bytes:
        return self.public_key.public_bytes(
            serialization.Encoding.DER,
            serialization.PublicFormat.SubjectPublicKeyInfo,
        )

    def private_key_der(self) -> bytes:
        return self.private_key.private_bytes(
            serialization.Encoding.DER,
            serialization.PrivateFormat.PKCS8,
            serialization.NoEncryption(),
        )

    def sign(self, payload: bytes) -> bytes:
        if self.algorithm == -7:
            return self.private_key.sign(payload, ec.ECDSA(hashes.SHA256()))
        if self.algorithm == -257:
            return self.private_key.sign(payload, padding.PKCS1v15(), hashes.SHA256())
        return self.private_key.sign(payload)

    @classmethod
    def generate(cls, algorithm: int) -> "KeyPair":
        if algorithm == -7:
            private_key: PrivateKey = ec.generate_private_key(ec.SECP256R1())
        elif algorithm == -257:
            private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
        elif algorithm == -8:
            private_key = ed25519.Ed25519PrivateKey.generate()
        else:
            raise ValueError(f"Unsupported COSE algorithm: {algorithm}")
        LOGGER.debug("Generated keypair for COSE algorithm %d", algorithm)
        return cls(private_key, algorithm)

    @classmethod
    def load(cls, private_key_der: bytes, algorithm: int) -> "KeyPair":
        private_key = serialization.load_der_private_key(private_key_der, password=None)
        return cls(private_key, algorithm)
