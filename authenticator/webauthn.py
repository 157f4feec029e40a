"""Utilities for constructing WebAuthn-compliant binary structures."""

from __future__ import annotations

import hashlib
from typing import Any, Dict, Optional

from fido2 import cbor

FLAG_UP = 0x01
FLAG_UV = 0x04
FLAG_BE = 0x08
FLAG_BS = 0x10
FLAG_AT = 0x40
AAGUID = bytes(16)


def build_credential_public_key(cose_key: Dict[int, Any]) -> bytes:
    return cbor.encode(cose_key)


def build_authenticator_data(
    rp_id: str,
    sign_count: int,
    credential_id: Optional[bytes] = None,
    credential_public_key: Optional[bytes] = None,
    user_present: bool = True,
    user_verified: bool = True,
    backup_eligible: bool = False,
    aaguid: bytes = AAGUID,
) -> bytes:
    rp_hash = hashlib.sha256(rp_id.encode("idna")).digest()
    flags = 0
    if user_present:
        flags |= FLAG_UP
    if user_verified:
        flags |= FLAG_UV
    if backup_eligible:
        flags |= FLAG_BE | FLAG_BS
    include_attestation = credential_id is not None and credential_public_key is not None
    if include_attestation:
        flags |= FLAG_AT

    data = bytearray()
    data.extend(rp_hash)
    data.append(flags)
    data.extend(sign_count.to_bytes(4, "big"))

    if include_attestation:
        data.extend(aaguid)
        data.extend(len(credential_id).to_bytes(2, "big"))
        data.extend(credential_id)
        data.extend(credential_public_key)

    return bytes(data)


def build_attestation_object(
    auth_data: bytes,
    fmt: str = "none",
    att_stmt: Optional[Dict[str, Any]] = None,
) -> bytes:
    return cbor.encode({"fmt": fmt, "authData": auth_data, "attStmt": att_stmt or {}})
