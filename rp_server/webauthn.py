"""Decoding of the binary WebAuthn structures the RP receives."""

from __future__ import annotations

import base64
import binascii
import hashlib
import json
import uuid
from dataclasses import dataclass
from io import BytesIO
from typing import Any, Dict, Optional

import cbor2

from .errors import ErrorKind, VerificationError

FLAG_UP = 0x01
FLAG_UV = 0x04
FLAG_BE = 0x08
FLAG_BS = 0x10
FLAG_AT = 0x40
FLAG_ED = 0x80

AUTH_DATA_MIN_LENGTH = 37


def b64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def b64url_decode(value: str) -> bytes:
    padding = "=" * (-len(value) % 4)
    return base64.urlsafe_b64decode(value + padding)


def rp_id_hash(rp_id: str) -> bytes:
    return hashlib.sha256(rp_id.encode("idna")).digest()


@dataclass(frozen=True)
class ClientData:
    type: str
    challenge: bytes
    origin: str
    raw: bytes
    cross_origin: bool = False

    @property
    def hash(self) -> bytes:
        return hashlib.sha256(self.raw).digest()


@dataclass(frozen=True)
class AuthenticatorData:
    raw: bytes
    rp_id_hash: bytes
    flags: int
    sign_count: int
    aaguid: Optional[bytes] = None
    credential_id: Optional[bytes] = None
    credential_public_key: Optional[Dict[int, Any]] = None
    extensions: Optional[Dict[Any, Any]] = None

    @property
    def user_present(self) -> bool:
        return bool(self.flags & FLAG_UP)

    @property
    def user_verified(self) -> bool:
        return bool(self.flags & FLAG_UV)

    @property
    def backup_eligible(self) -> bool:
        return bool(self.flags & FLAG_BE)

    @property
    def backed_up(self) -> bool:
        return bool(self.flags & FLAG_BS)

    @property
    def aaguid_str(self) -> Optional[str]:
        if self.aaguid is None:
            return None
        return str(uuid.UUID(bytes=self.aaguid))


def decode_b64_field(value: Optional[str], kind: ErrorKind, name: str) -> bytes:
    if not value or not isinstance(value, str):
        raise VerificationError(kind, f"missing {name}")
    try:
        return b64url_decode(value)
    except (binascii.Error, ValueError) as exc:
        raise VerificationError(kind, f"{name} is not base64url") from exc


def parse_client_data(client_data_json: Optional[str]) -> ClientData:
    raw = decode_b64_field(client_data_json, ErrorKind.MALFORMED_CLIENT_DATA, "clientDataJSON")
    try:
        payload = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise VerificationError(ErrorKind.MALFORMED_CLIENT_DATA, "clientDataJSON is not JSON") from exc
    if not isinstance(payload, dict):
        raise VerificationError(ErrorKind.MALFORMED_CLIENT_DATA, "clientDataJSON is not an object")
    fields = {name: payload.get(name) for name in ("type", "challenge", "origin")}
    for name, value in fields.items():
        if not isinstance(value, str):
            raise VerificationError(ErrorKind.MALFORMED_CLIENT_DATA, f"missing {name}")
    try:
        challenge = b64url_decode(fields["challenge"])
    except (binascii.Error, ValueError) as exc:
        raise VerificationError(ErrorKind.MALFORMED_CLIENT_DATA, "challenge is not base64url") from exc
    return ClientData(
        type=fields["type"],
        challenge=challenge,
        origin=fields["origin"],
        raw=raw,
        cross_origin=bool(payload.get("crossOrigin", False)),
    )


def _malformed(detail: str) -> VerificationError:
    return VerificationError(ErrorKind.MALFORMED_AUTHENTICATOR_DATA, detail)


def parse_authenticator_data(data: bytes) -> AuthenticatorData:
    if len(data) < AUTH_DATA_MIN_LENGTH:
        raise _malformed("authenticator data too short")
    idx = 0
    rp_hash = data[idx : idx + 32]
    idx += 32
    flags = data[idx]
    idx += 1
    sign_count = int.from_bytes(data[idx : idx + 4], "big")
    idx += 4

    aaguid = None
    credential_id = None
    credential_public_key = None
    extensions = None

    stream = BytesIO(data)
    stream.seek(idx)
    if flags & FLAG_AT:
        if len(data) < idx + 18:
            raise _malformed("malformed attested credential data")
        aaguid = data[idx : idx + 16]
        idx += 16
        cred_len = int.from_bytes(data[idx : idx + 2], "big")
        idx += 2
        if len(data) < idx + cred_len:
            raise _malformed("credential id overruns authenticator data")
        credential_id = data[idx : idx + cred_len]
        idx += cred_len
        stream.seek(idx)
        credential_public_key = _decode_cbor_item(stream, "credential public key")
        if not isinstance(credential_public_key, dict):
            raise _malformed("credential public key is not a COSE map")
    if flags & FLAG_ED:
        extensions = _decode_cbor_item(stream, "extensions")
    if stream.tell() != len(data):
        raise _malformed("trailing bytes after authenticator data")

    return AuthenticatorData(
        raw=data,
        rp_id_hash=rp_hash,
        flags=flags,
        sign_count=sign_count,
        aaguid=aaguid,
        credential_id=credential_id,
        credential_public_key=credential_public_key,
        extensions=extensions,
    )


def _decode_cbor_item(stream: BytesIO, name: str) -> Any:
    try:
        return cbor2.CBORDecoder(stream).decode()
    except (cbor2.CBORDecodeError, EOFError, ValueError) as exc:
        raise _malformed(f"undecodable {name}") from exc


@dataclass(frozen=True)
class AttestationObject:
    fmt: str
    att_stmt: Dict[str, Any]
    auth_data: AuthenticatorData


def parse_attestation_object(value: Optional[str]) -> AttestationObject:
    raw = decode_b64_field(value, ErrorKind.MALFORMED_AUTHENTICATOR_DATA, "attestationObject")
    try:
        decoded = cbor2.loads(raw)
    except (cbor2.CBORDecodeError, EOFError, ValueError) as exc:
        raise _malformed("attestationObject is not CBOR") from exc
    if not isinstance(decoded, dict):
        raise _malformed("attestationObject is not a map")
    fmt = decoded.get("fmt")
    att_stmt = decoded.get("attStmt", {})
    auth_data_bytes = decoded.get("authData")
    if not isinstance(fmt, str) or not isinstance(att_stmt, dict):
        raise _malformed("attestationObject is missing fmt or attStmt")
    if not isinstance(auth_data_bytes, (bytes, bytearray)):
        raise _malformed("invalid authenticator data")
    return AttestationObject(
        fmt=fmt,
        att_stmt=att_stmt,
        auth_data=parse_authenticator_data(bytes(auth_data_bytes)),
    )
