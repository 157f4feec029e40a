"""Pydantic models shared across authenticator modules."""

from __future__ import annotations

import base64
import secrets
from dataclasses import dataclass
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, model_validator


def b64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def b64url_decode(data: str) -> bytes:
    padding = "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(data + padding)


class RelyingPartyEntity(BaseModel):
    id: str
    name: str


class UserEntity(BaseModel):
    id: str = Field(min_length=1)
    name: str
    displayName: str


class PubKeyCredParam(BaseModel):
    type: Literal["public-key"] = "public-key"
    alg: int


class AuthenticatorSelectionCriteria(BaseModel):
    authenticatorAttachment: Optional[Literal["platform", "cross-platform"]] = None
    residentKey: Literal["required", "preferred", "discouraged"] = "discouraged"
    requireResidentKey: bool = False
    userVerification: Literal["required", "preferred", "discouraged"] = "preferred"


class PublicKeyCredentialDescriptor(BaseModel):
    id: str
    type: Literal["public-key"] = "public-key"
    transports: Optional[List[str]] = None


class PublicKeyCredentialCreationOptions(BaseModel):
    challenge: str
    rp: RelyingPartyEntity
    user: UserEntity
    pubKeyCredParams: List[PubKeyCredParam]
    timeout: int = 90_000
    attestation: Literal["none", "indirect", "direct"] = "none"
    authenticatorSelection: AuthenticatorSelectionCriteria = Field(
        default_factory=AuthenticatorSelectionCriteria
    )
    excludeCredentials: List[PublicKeyCredentialDescriptor] = Field(default_factory=list)

    @model_validator(mode="after")
    def ensure_supported_algorithm(self) -> "PublicKeyCredentialCreationOptions":
        if not self.pubKeyCredParams:
            raise ValueError("pubKeyCredParams cannot be empty")
        return self


class PublicKeyCredentialRequestOptions(BaseModel):
    challenge: str
    rpId: str
    timeout: int = 90_000
    userVerification: Literal["required", "preferred", "discouraged"] = "preferred"
    allowCredentials: List[PublicKeyCredentialDescriptor] = Field(default_factory=list)


class AuthenticatorResponse(BaseModel):
    clientDataJSON: str


class AuthenticatorAttestationResponse(AuthenticatorResponse):
    attestationObject: str
    authenticatorData: Optional[str] = None
    publicKeyAlgorithm: int
    publicKey: str
    transports: List[str] = Field(default_factory=lambda: ["internal"])


class AuthenticatorAssertionResponse(AuthenticatorResponse):
    authenticatorData: str
    signature: str
    userHandle: Optional[str] = None


@dataclass
class CredentialRecord:
    credential_id: str
    user_handle: str
    rp_id: str
    algorithm: int
    private_key: str
    sign_count: int = 0

    @classmethod
    def new(
        cls,
        user_handle: str,
        rp_id: str,
        algorithm: int,
        private_key: bytes,
    ) -> "CredentialRecord":
        credential_id = b64url_encode(secrets.token_bytes(32))
        return cls(
            credential_id=credential_id,
            user_handle=user_handle,
            rp_id=rp_id,
            algorithm=algorithm,
            private_key=b64url_encode(private_key),
            sign_count=0,
        )

