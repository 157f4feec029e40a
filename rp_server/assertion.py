"""Authentication (assertion) response verification."""

from __future__ import annotations

import binascii
import logging
from typing import Optional

from .attestation import verify_authenticator_data, verify_client_data
from .config import RPSettings
from .crypto import SignatureVerifier
from .errors import ErrorKind, VerificationError
from .records import CEREMONY_GET, Challenge, CredentialRecord
from .registry import CredentialRegistry
from .schemas import AuthenticationCredential
from .webauthn import b64url_decode, b64url_encode, decode_b64_field, parse_authenticator_data

LOGGER = logging.getLogger(__name__)


def encode_user_handle(user_handle: str) -> str:
    """Wire form of a user handle: base64url of its UTF-8 bytes."""
    return b64url_encode(user_handle.encode("utf-8"))


def decode_user_handle(value: str) -> str:
    try:
        return b64url_decode(value).decode("utf-8")
    except (binascii.Error, ValueError) as exc:
        raise VerificationError(ErrorKind.USER_MISMATCH, "undecodable userHandle") from exc


def canonical_credential_id(credential: AuthenticationCredential) -> Optional[str]:
    try:
        return b64url_encode(b64url_decode(credential.rawId or credential.id))
    except (binascii.Error, ValueError):
        return None


class AssertionVerifier:
    def __init__(
        self,
        settings: RPSettings,
        registry: CredentialRegistry,
        signatures: SignatureVerifier,
    ) -> None:
        self.settings = settings
        self.registry = registry
        self.signatures = signatures

    def verify(self, challenge: Challenge, credential: AuthenticationCredential) -> CredentialRecord:
        credential_id = canonical_credential_id(credential)
        record = self.registry.find(credential_id) if credential_id else None
        if record is None:
            raise VerificationError(ErrorKind.UNKNOWN_CREDENTIAL)

        response = credential.response
        client_data = verify_client_data(
            response.clientDataJSON, challenge, CEREMONY_GET, self.settings
        )
        auth_data = parse_authenticator_data(
            decode_b64_field(
                response.authenticatorData,
                ErrorKind.MALFORMED_AUTHENTICATOR_DATA,
                "authenticatorData",
            )
        )
        verify_authenticator_data(auth_data, self.settings)

        signature = decode_b64_field(response.signature, ErrorKind.SIGNATURE_INVALID, "signature")
        payload = auth_data.raw + client_data.hash
        if not self.signatures.verify(signature, payload, record.public_key, record.algorithm):
            raise VerificationError(ErrorKind.SIGNATURE_INVALID, record.credential_id)

        # Ownership is settled before the counter moves so that a rejected
        # assertion leaves the stored counter untouched.
        if response.userHandle and decode_user_handle(response.userHandle) != record.user_handle:
            raise VerificationError(ErrorKind.USER_MISMATCH, "userHandle does not own credential")
        if challenge.user_handle is not None and challenge.user_handle != record.user_handle:
            raise VerificationError(ErrorKind.USER_MISMATCH, "credential not allowed for user")

        self.registry.update_counter(record.credential_id, auth_data.sign_count)
        LOGGER.debug(
            "Counter for %s advanced %d -> %d",
            record.credential_id,
            record.sign_count,
            auth_data.sign_count,
        )
        return self.registry.find(record.credential_id) or record
