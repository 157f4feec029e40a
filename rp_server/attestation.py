"""Registration (attestation) response verification."""

from __future__ import annotations

import hmac
import logging
from typing import Optional

from .config import RPSettings, normalize_origin
from .crypto import COSE_ALG, SignatureVerifier, encode_public_key
from .errors import ErrorKind, VerificationError
from .records import CEREMONY_CREATE, Challenge, CredentialRecord
from .registry import CredentialRegistry
from .schemas import RegistrationCredential
from .webauthn import (
    AttestationObject,
    AuthenticatorData,
    ClientData,
    b64url_encode,
    decode_b64_field,
    parse_attestation_object,
    parse_client_data,
    rp_id_hash,
)

LOGGER = logging.getLogger(__name__)

SUPPORTED_FORMATS = ("none", "packed")


def verify_client_data(
    client_data_json: Optional[str],
    challenge: Challenge,
    expected_type: str,
    settings: RPSettings,
) -> ClientData:
    client_data = parse_client_data(client_data_json)
    if not challenge.matches(client_data.challenge):
        raise VerificationError(ErrorKind.CHALLENGE_MISMATCH)
    if client_data.type != expected_type:
        raise VerificationError(
            ErrorKind.TYPE_MISMATCH, f"expected {expected_type}, got {client_data.type}"
        )
    if normalize_origin(client_data.origin) not in settings.expected_origins:
        raise VerificationError(ErrorKind.ORIGIN_MISMATCH, client_data.origin)
    return client_data


def verify_authenticator_data(auth_data: AuthenticatorData, settings: RPSettings) -> None:
    if not hmac.compare_digest(auth_data.rp_id_hash, rp_id_hash(settings.rp_id)):
        raise VerificationError(ErrorKind.RP_ID_MISMATCH)
    if not auth_data.user_present:
        raise VerificationError(ErrorKind.USER_NOT_PRESENT)
    if settings.user_verification == "required" and not auth_data.user_verified:
        raise VerificationError(ErrorKind.USER_NOT_VERIFIED)


class AttestationVerifier:
    def __init__(
        self,
        settings: RPSettings,
        registry: CredentialRegistry,
        signatures: SignatureVerifier,
    ) -> None:
        self.settings = settings
        self.registry = registry
        self.signatures = signatures

    def verify(
        self,
        challenge: Challenge,
        credential: RegistrationCredential,
        label: Optional[str] = None,
    ) -> CredentialRecord:
        """Validate a registration response and persist the new credential.

        Checks run in a fixed order and the first failure wins: client data,
        challenge, ceremony type, origin, then the authenticator data and
        attestation statement. The owning user row is created only once every
        check has passed.
        """
        user_handle = challenge.user_handle
        if user_handle is None:
            raise ValueError("registration challenges must be bound to a user handle")
        response = credential.response
        client_data = verify_client_data(
            response.clientDataJSON, challenge, CEREMONY_CREATE, self.settings
        )
        attestation = parse_attestation_object(response.attestationObject)
        auth_data = attestation.auth_data
        verify_authenticator_data(auth_data, self.settings)

        if auth_data.credential_id is None or auth_data.credential_public_key is None:
            raise VerificationError(
                ErrorKind.MALFORMED_AUTHENTICATOR_DATA, "missing attested credential data"
            )
        claimed_id = decode_b64_field(
            credential.rawId or credential.id,
            ErrorKind.MALFORMED_AUTHENTICATOR_DATA,
            "rawId",
        )
        if not hmac.compare_digest(claimed_id, auth_data.credential_id):
            raise VerificationError(
                ErrorKind.MALFORMED_AUTHENTICATOR_DATA, "credential id does not match rawId"
            )

        algorithm = auth_data.credential_public_key.get(COSE_ALG)
        if algorithm not in self.settings.pub_key_cred_algorithms or not self.signatures.supports(
            algorithm
        ):
            raise VerificationError(ErrorKind.UNSUPPORTED_ALGORITHM, str(algorithm))
        public_key = encode_public_key(auth_data.credential_public_key)

        self._verify_statement(attestation, client_data, algorithm, public_key)

        record = CredentialRecord(
            credential_id=b64url_encode(auth_data.credential_id),
            user_handle=user_handle,
            algorithm=algorithm,
            public_key=public_key,
            sign_count=auth_data.sign_count,
            label=label,
            aaguid=auth_data.aaguid_str,
            transports=list(response.transports or []),
            backup_eligible=auth_data.backup_eligible,
            backed_up=auth_data.backed_up,
        )
        self.registry.ensure_user(
            user_handle,
            challenge.username or user_handle,
            challenge.display_name or challenge.username or user_handle,
        )
        self.registry.add(user_handle, record)
        return self.registry.find(record.credential_id) or record

    def _verify_statement(
        self,
        attestation: AttestationObject,
        client_data: ClientData,
        algorithm: int,
        public_key: bytes,
    ) -> None:
        if attestation.fmt not in SUPPORTED_FORMATS:
            raise VerificationError(ErrorKind.ATTESTATION_INVALID, f"unsupported fmt {attestation.fmt}")
        statement = attestation.att_stmt
        if attestation.fmt == "none":
            if statement:
                raise VerificationError(ErrorKind.ATTESTATION_INVALID, "none with a statement")
            return
        if "x5c" in statement:
            # TODO: validate packed full attestation against a trust store of
            # authenticator vendor roots.
            raise VerificationError(ErrorKind.ATTESTATION_INVALID, "x5c attestation not trusted")
        if statement.get("alg") != algorithm:
            raise VerificationError(ErrorKind.ATTESTATION_INVALID, "alg does not match credential")
        signature = statement.get("sig")
        if not isinstance(signature, (bytes, bytearray)):
            raise VerificationError(ErrorKind.ATTESTATION_INVALID, "missing sig")
        payload = attestation.auth_data.raw + client_data.hash
        if not self.signatures.verify(bytes(signature), payload, public_key, algorithm):
            raise VerificationError(ErrorKind.SIGNATURE_INVALID, "self attestation signature")
        LOGGER.debug("Accepted packed self attestation")
