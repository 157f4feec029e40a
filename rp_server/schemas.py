"""Pydantic schemas for request/response payloads."""

from __future__ import annotations

from typing import List, Literal, Optional

from pydantic import BaseModel, Field


class RegisterOptionsRequest(BaseModel):
    display_name: str = Field(min_length=1)
    username: Optional[str] = None
    user_handle: Optional[str] = None


class AuthenticateOptionsRequest(BaseModel):
    user_handle: Optional[str] = None
    username: Optional[str] = None


class VerifyRequest(BaseModel):
    session_token: str
    credential: dict
    label: Optional[str] = None


class RenameCredentialRequest(BaseModel):
    label: Optional[str] = Field(default=None, max_length=128)


class RPResponse(BaseModel):
    success: bool = True
    error: Optional[str] = None
    data: Optional[dict] = None


class PublicKeyCredentialDescriptor(BaseModel):
    id: str
    type: Literal["public-key"] = "public-key"
    transports: Optional[List[str]] = None


class PubKeyCredParam(BaseModel):
    type: Literal["public-key"] = "public-key"
    alg: int


class RegisterOptionsResponse(BaseModel):
    session_token: str
    challenge: str
    rp: dict
    user: dict
    pubKeyCredParams: List[PubKeyCredParam]
    timeout: int
    attestation: Literal["none", "indirect", "direct"] = "none"
    authenticatorSelection: dict
    excludeCredentials: List[PublicKeyCredentialDescriptor] = Field(default_factory=list)


class AuthenticateOptionsResponse(BaseModel):
    session_token: str
    challenge: str
    rpId: str
    allowCredentials: List[PublicKeyCredentialDescriptor]
    timeout: int
    userVerification: Literal["required", "preferred", "discouraged"] = "preferred"


# Client responses. Binary members stay base64url strings here; unknown
# members such as clientExtensionResults are ignored.


class AttestationResponse(BaseModel):
    clientDataJSON: Optional[str] = None
    attestationObject: Optional[str] = None
    transports: Optional[List[str]] = None


class AssertionResponse(BaseModel):
    clientDataJSON: Optional[str] = None
    authenticatorData: Optional[str] = None
    signature: Optional[str] = None
    userHandle: Optional[str] = None


class RegistrationCredential(BaseModel):
    id: str
    rawId: Optional[str] = None
    type: Literal["public-key"] = "public-key"
    response: AttestationResponse


class AuthenticationCredential(BaseModel):
    id: str
    rawId: Optional[str] = None
    type: Literal["public-key"] = "public-key"
    response: AssertionResponse
