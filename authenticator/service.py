"""Core virtual authenticator implementation."""

from __future__ import annotations

import hashlib
import json
import logging
import secrets
from typing import Dict, List, Optional

from .config import AuthenticatorSettings
from .keys import COSE_ALGORITHMS, KeyPair
from .models import (
    AuthenticatorAssertionResponse,
    AuthenticatorAttestationResponse,
    CredentialRecord,
    PubKeyCredParam,
    PublicKeyCredentialCreationOptions,
    PublicKeyCredentialDescriptor,
    PublicKeyCredentialRequestOptions,
    b64url_decode,
    b64url_encode,
)
from .storage import CredentialStore, CredentialStoreError
from .webauthn import (
    build_attestation_object,
    build_authenticator_data,
    build_credential_public_key,
)

LOGGER = logging.getLogger(__name__)

STAGE_LABELS = {"register": "Register", "authn": "Authenticate"}
EVENT_LABELS = {
    ("register", "start"): "Processing credential creation",
    ("register", "exclude.hit"): "Credential excluded by RP",
    ("register", "success"): "Credential creation completed",
    ("authn", "start"): "Processing assertion",
    ("authn", "no_credential"): "No credential available",
    ("authn", "success"): "Assertion completed",
}


def _log(stage: str, event: str, req: str, level: int = logging.INFO, **fields: object) -> None:
    stage_label = STAGE_LABELS.get(stage, stage.title())
    event_label = EVENT_LABELS.get((stage, event), event)
    payload = {"request_id": req, **{k: v for k, v in fields.items() if v is not None}}
    message = f"[Authenticator: {stage_label}]: {event_label}\n{json.dumps(payload, indent=2, sort_keys=True)}"
    LOGGER.log(level, message)


class Authenticator:
    """Software authenticator that mimics navigator.credentials flows."""

    def __init__(
        self,
        settings: Optional[AuthenticatorSettings] = None,
        credential_store: Optional[CredentialStore] = None,
    ) -> None:
        self.settings = settings or AuthenticatorSettings()
        self.store = credential_store or CredentialStore()

    # ------------------------------------------------------------------
    def make_credential(
        self,
        options_data: Dict,
        origin: Optional[str] = None,
        user_verified: bool = True,
    ) -> Dict:
        options = PublicKeyCredentialCreationOptions.model_validate(options_data)
        req_id = secrets.token_hex(4)
        resolved_origin = origin or self.settings.origin
        _log(
            "register",
            "start",
            req_id,
            user=options.user.name,
            user_handle=options.user.id,
            origin=resolved_origin,
        )
        try:
            self._enforce_exclude_list(options.rp.id, options.excludeCredentials)
        except CredentialStoreError:
            _log(
                "register",
                "exclude.hit",
                req_id,
                user=options.user.name,
                user_handle=options.user.id,
                level=logging.WARNING,
            )
            raise
        alg = self._select_algorithm(options.pubKeyCredParams)
        keypair = KeyPair.generate(alg)
        record = CredentialRecord.new(
            user_handle=options.user.id,
            rp_id=options.rp.id,
            algorithm=alg,
            private_key=keypair.private_key_der(),
        )
        self.store.save(record)

        client_data = {
            "type": "webauthn.create",
            "challenge": options.challenge,
            "origin": resolved_origin,
            "crossOrigin": False,
        }
        client_data_json = json.dumps(client_data, separators=(",", ":")).encode("utf-8")
        auth_data = build_authenticator_data(
            rp_id=options.rp.id,
            sign_count=record.sign_count,
            credential_id=b64url_decode(record.credential_id),
            credential_public_key=build_credential_public_key(keypair.cose_public_key()),
            user_verified=user_verified,
            backup_eligible=self.settings.backup_eligible,
        )
        if self.settings.attestation_format == "packed":
            signature = keypair.sign(auth_data + hashlib.sha256(client_data_json).digest())
            attestation_object = build_attestation_object(
                auth_data, "packed", {"alg": alg, "sig": signature}
            )
        else:
            attestation_object = build_attestation_object(auth_data)

        response = AuthenticatorAttestationResponse(
            clientDataJSON=b64url_encode(client_data_json),
            attestationObject=b64url_encode(attestation_object),
            authenticatorData=b64url_encode(auth_data),
            publicKeyAlgorithm=alg,
            publicKey=b64url_encode(keypair.public_key_der()),
        )

        result = {
            "id": record.credential_id,
            "rawId": record.credential_id,
            "type": "public-key",
            "authenticatorAttachment": "platform",
            "response": response.model_dump(),
            "clientExtensionResults": {},
        }
        _log(
            "register",
            "success",
            req_id,
            user=options.user.name,
            user_handle=options.user.id,
            credential_id=record.credential_id,
            algorithm=alg,
        )
        return result

    # ------------------------------------------------------------------
    def get_assertion(
        self,
        options_data: Dict,
        origin: Optional[str] = None,
        user_verified: bool = True,
        sign_count: Optional[int] = None,
    ) -> Dict:
        """Sign an assertion for the first usable credential.

        ``sign_count`` replays a fixed counter value, which is what a cloned
        authenticator would report.
        """
        options = PublicKeyCredentialRequestOptions.model_validate(options_data)
        req_id = secrets.token_hex(4)
        resolved_origin = origin or self.settings.origin
        _log(
            "authn",
            "start",
            req_id,
            rp_id=options.rpId,
            allowed=len(options.allowCredentials),
            origin=resolved_origin,
        )
        record = self._locate_credential(options.allowCredentials, options.rpId)
        if record is None:
            _log("authn", "no_credential", req_id, rp_id=options.rpId, level=logging.WARNING)
            raise CredentialStoreError("No credential available for assertion")
        keypair = KeyPair.load(b64url_decode(record.private_key), record.algorithm)

        client_data = {
            "type": "webauthn.get",
            "challenge": options.challenge,
            "origin": resolved_origin,
            "crossOrigin": False,
        }
        client_data_json = json.dumps(client_data, separators=(",", ":")).encode("utf-8")
        client_data_hash = hashlib.sha256(client_data_json).digest()

        if sign_count is not None:
            new_sign_count = sign_count
        elif self.settings.supports_counter:
            new_sign_count = record.sign_count + 1
        else:
            new_sign_count = 0
        auth_data_bytes = build_authenticator_data(
            rp_id=options.rpId,
            sign_count=new_sign_count,
            user_verified=user_verified,
            backup_eligible=self.settings.backup_eligible,
        )
        signature = keypair.sign(auth_data_bytes + client_data_hash)
        record.sign_count = max(record.sign_count, new_sign_count)
        self.store.save(record)

        response = AuthenticatorAssertionResponse(
            clientDataJSON=b64url_encode(client_data_json),
            authenticatorData=b64url_encode(auth_data_bytes),
            signature=b64url_encode(signature),
            userHandle=record.user_handle,
        )

        result = {
            "id": record.credential_id,
            "rawId": record.credential_id,
            "type": "public-key",
            "authenticatorAttachment": "platform",
            "response": response.model_dump(),
            "clientExtensionResults": {},
        }
        _log(
            "authn",
            "success",
            req_id,
            credential_id=record.credential_id,
            sign_count=new_sign_count,
        )
        return result

    # Helpers -----------------------------------------------------------
    @staticmethod
    def _select_algorithm(params: List[PubKeyCredParam]) -> int:
        for param in params:
            if param.alg in COSE_ALGORITHMS:
                return param.alg
        raise ValueError("No supported algorithm from pubKeyCredParams")

    def _locate_credential(
        self,
        allow_credentials: List[PublicKeyCredentialDescriptor],
        rp_id: str,
    ) -> Optional[CredentialRecord]:
        if allow_credentials:
            return self.store.find_first([cred.id for cred in allow_credentials])
        matches = self.store.find_by_rp(rp_id)
        return matches[0] if matches else None

    def _enforce_exclude_list(
        self,
        rp_id: str,
        exclude_credentials: List[PublicKeyCredentialDescriptor],
    ) -> None:
        for descriptor in exclude_credentials:
            try:
                record = self.store.load(descriptor.id)
            except CredentialStoreError:
                continue
            if record.rp_id == rp_id:
                raise CredentialStoreError("Credential creation excluded by RP")
