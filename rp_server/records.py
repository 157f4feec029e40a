"""Value types handed across the RP core boundaries."""

from __future__ import annotations

import hmac
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

CEREMONY_CREATE = "webauthn.create"
CEREMONY_GET = "webauthn.get"


@dataclass(frozen=True)
class Challenge:
    token: str
    value: bytes
    ceremony: str
    created_at: float
    expires_at: float
    user_handle: Optional[str] = None
    username: Optional[str] = None
    display_name: Optional[str] = None

    def expired(self, now: float) -> bool:
        return now >= self.expires_at

    def matches(self, provided: bytes) -> bool:
        return hmac.compare_digest(self.value, provided)


@dataclass(frozen=True)
class CredentialRecord:
    credential_id: str
    user_handle: str
    algorithm: int
    public_key: bytes
    sign_count: int = 0
    created_at: Optional[datetime] = None
    label: Optional[str] = None
    aaguid: Optional[str] = None
    transports: List[str] = field(default_factory=list)
    backup_eligible: bool = False
    backed_up: bool = False
    last_used_at: Optional[datetime] = None

    def summary(self) -> dict:
        return {
            "id": self.credential_id,
            "user_handle": self.user_handle,
            "algorithm": self.algorithm,
            "sign_count": self.sign_count,
            "label": self.label,
            "aaguid": self.aaguid,
            "transports": list(self.transports),
            "backup_eligible": self.backup_eligible,
            "backed_up": self.backed_up,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "last_used_at": self.last_used_at.isoformat() if self.last_used_at else None,
        }


@dataclass(frozen=True)
class UserRecord:
    user_handle: str
    username: str
    display_name: str
    credential_ids: List[str] = field(default_factory=list)
