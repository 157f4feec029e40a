"""Relying Party orchestration: the only entry point external callers use."""

from __future__ import annotations

import logging
import secrets
import string
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional, TypeVar, Union

from pydantic import BaseModel, ValidationError

from .assertion import AssertionVerifier, encode_user_handle
from .attestation import AttestationVerifier
from .challenges import ChallengeStore
from .config import RPSettings
from .crypto import CoseSignatureVerifier, SignatureVerifier
from .errors import ErrorKind, VerificationError
from .logs import log_event
from .records import CEREMONY_CREATE, CEREMONY_GET, Challenge, CredentialRecord
from .registry import CredentialRegistry
from .schemas import (
    AuthenticateOptionsResponse,
    AuthenticationCredential,
    PubKeyCredParam,
    PublicKeyCredentialDescriptor,
    RegisterOptionsResponse,
    RegistrationCredential,
)
from .webauthn import b64url_encode

ALPHABET = string.ascii_letters + string.digits

M = TypeVar("M", bound=BaseModel)

STAGES = {CEREMONY_CREATE: "register", CEREMONY_GET: "authn"}


def _generate_user_handle(length: int = 21) -> str:
    return "".join(secrets.choice(ALPHABET) for _ in range(length))


class FlowState(str, Enum):
    ISSUED = "issued"
    VERIFYING = "verifying"
    COMPLETED = "completed"
    FAILED = "failed"


_TRANSITIONS = {
    FlowState.ISSUED: frozenset({FlowState.VERIFYING}),
    FlowState.VERIFYING: frozenset({FlowState.COMPLETED, FlowState.FAILED}),
}


@dataclass
class Flow:
    token: str
    ceremony: str
    state: FlowState = FlowState.ISSUED

    def advance(self, state: FlowState) -> None:
        if state not in _TRANSITIONS.get(self.state, frozenset()):
            raise RuntimeError(f"illegal flow transition {self.state.value} -> {state.value}")
        self.state = state


def _parse(model: type[M], payload: Union[M, dict]) -> M:
    if isinstance(payload, model):
        return payload
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        raise VerificationError(ErrorKind.MALFORMED_CLIENT_DATA, "unparsable credential") from exc


class RelyingPartyService:
    def __init__(
        self,
        settings: RPSettings,
        challenges: ChallengeStore,
        registry: CredentialRegistry,
        signatures: Optional[SignatureVerifier] = None,
    ) -> None:
        self.settings = settings
        self.challenges = challenges
        self.registry = registry
        self.signatures = signatures or CoseSignatureVerifier(settings.pub_key_cred_algorithms)
        self.attestation = AttestationVerifier(settings, registry, self.signatures)
        self.assertion = AssertionVerifier(settings, registry, self.signatures)

    # Registration ------------------------------------------------------
    def start_registration(
        self,
        user_handle: Optional[str],
        display_name: str,
        username: Optional[str] = None,
    ) -> RegisterOptionsResponse:
        req_id = secrets.token_hex(4)
        log_event("register", "options.start", req_id, user=username, display=display_name)
        if user_handle is None and username:
            existing = self.registry.find_user_by_name(username)
            if existing:
                user_handle = existing.user_handle
        user_handle = user_handle or _generate_user_handle()
        username = username or user_handle
        credentials = self.registry.list_for(user_handle)
        challenge = self.challenges.issue(
            user_handle, CEREMONY_CREATE, username=username, display_name=display_name
        )
        selection = {
            "residentKey": self.settings.resident_key,
            "requireResidentKey": self.settings.resident_key == "required",
            "userVerification": self.settings.user_verification,
        }
        if self.settings.authenticator_attachment:
            selection["authenticatorAttachment"] = self.settings.authenticator_attachment
        options = RegisterOptionsResponse(
            session_token=challenge.token,
            challenge=b64url_encode(challenge.value),
            rp={"id": self.settings.rp_id, "name": self.settings.rp_name},
            user={
                "id": encode_user_handle(user_handle),
                "name": username,
                "displayName": display_name,
            },
            pubKeyCredParams=[
                PubKeyCredParam(alg=alg) for alg in self.settings.pub_key_cred_algorithms
            ],
            timeout=self.settings.timeout_ms,
            attestation=self.settings.attestation,
            authenticatorSelection=selection,
            excludeCredentials=[
                PublicKeyCredentialDescriptor(id=cred.credential_id, transports=cred.transports or None)
                for cred in credentials
            ],
        )
        log_event(
            "register",
            "options.success",
            req_id,
            user=username,
            user_handle=user_handle,
            credential_count=len(credentials),
        )
        return options

    def finish_registration(
        self,
        session_token: str,
        client_response: Union[RegistrationCredential, dict],
        label: Optional[str] = None,
    ) -> CredentialRecord:
        def verify(challenge: Challenge) -> CredentialRecord:
            credential = _parse(RegistrationCredential, client_response)
            return self.attestation.verify(challenge, credential, label=label)

        return self._run(session_token, CEREMONY_CREATE, verify)

    # Authentication ----------------------------------------------------
    def start_authentication(
        self,
        user_handle: Optional[str] = None,
        username: Optional[str] = None,
    ) -> AuthenticateOptionsResponse:
        req_id = secrets.token_hex(4)
        log_event("authn", "options.start", req_id, user=username, user_handle=user_handle)
        if user_handle is None and username:
            existing = self.registry.find_user_by_name(username)
            # Unknown names still get a challenge so responses do not reveal
            # which accounts exist.
            user_handle = existing.user_handle if existing else _generate_user_handle()
        credentials = self.registry.list_for(user_handle) if user_handle else []
        challenge = self.challenges.issue(user_handle, CEREMONY_GET)
        options = AuthenticateOptionsResponse(
            session_token=challenge.token,
            challenge=b64url_encode(challenge.value),
            rpId=self.settings.rp_id,
            allowCredentials=[
                PublicKeyCredentialDescriptor(id=cred.credential_id, transports=cred.transports or None)
                for cred in credentials
            ],
            timeout=self.settings.timeout_ms,
            userVerification=self.settings.user_verification,
        )
        log_event(
            "authn",
            "options.success",
            req_id,
            user_handle=user_handle,
            credential_count=len(credentials),
        )
        return options

    def finish_authentication(
        self,
        session_token: str,
        client_response: Union[AuthenticationCredential, dict],
    ) -> str:
        def verify(challenge: Challenge) -> CredentialRecord:
            credential = _parse(AuthenticationCredential, client_response)
            return self.assertion.verify(challenge, credential)

        record = self._run(session_token, CEREMONY_GET, verify)
        return record.user_handle

    # Credential management ---------------------------------------------
    def list_credentials(self, user_handle: str) -> List[CredentialRecord]:
        return self.registry.list_for(user_handle)

    def remove_credential(self, credential_id: str) -> bool:
        removed = self.registry.remove(credential_id)
        if removed:
            log_event("registry", "credential.removed", secrets.token_hex(4), credential_id=credential_id)
        return removed

    def rename_credential(self, credential_id: str, label: Optional[str]) -> CredentialRecord:
        record = self.registry.rename(credential_id, label)
        log_event(
            "registry", "credential.renamed", secrets.token_hex(4), credential_id=credential_id, label=label
        )
        return record

    # Helpers -----------------------------------------------------------
    def _run(
        self,
        session_token: str,
        ceremony: str,
        verify: Callable[[Challenge], CredentialRecord],
    ) -> CredentialRecord:
        stage = STAGES[ceremony]
        req_id = secrets.token_hex(4)
        flow = Flow(token=session_token, ceremony=ceremony)
        flow.advance(FlowState.VERIFYING)
        log_event(stage, "verify.start", req_id, session=session_token)
        try:
            challenge = self.challenges.take(session_token, ceremony)
            record = verify(challenge)
        except VerificationError as exc:
            flow.advance(FlowState.FAILED)
            if exc.kind.security_relevant:
                log_event(
                    stage,
                    "verify.security",
                    req_id,
                    level=logging.ERROR,
                    security=True,
                    error=exc.kind.value,
                    detail=exc.detail,
                    session=session_token,
                )
            else:
                log_event(
                    stage,
                    "verify.failed",
                    req_id,
                    level=logging.WARNING,
                    error=exc.kind.value,
                    detail=exc.detail,
                    session=session_token,
                )
            raise
        except Exception as exc:
            flow.advance(FlowState.FAILED)
            log_event(
                stage,
                "verify.error",
                req_id,
                level=logging.ERROR,
                error=type(exc).__name__,
                detail=str(exc),
                session=session_token,
            )
            raise
        flow.advance(FlowState.COMPLETED)
        log_event(
            stage,
            "verify.success",
            req_id,
            user_handle=record.user_handle,
            credential_id=record.credential_id,
            sign_count=record.sign_count,
        )
        return record
