"""Error taxonomy shared by every RP verification step."""

from __future__ import annotations

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    CHALLENGE_NOT_FOUND = "ChallengeNotFound"
    CHALLENGE_EXPIRED = "ChallengeExpired"
    CHALLENGE_MISMATCH = "ChallengeMismatch"
    MALFORMED_CLIENT_DATA = "MalformedClientData"
    TYPE_MISMATCH = "TypeMismatch"
    ORIGIN_MISMATCH = "OriginMismatch"
    RP_ID_MISMATCH = "RpIdMismatch"
    DUPLICATE_CREDENTIAL = "DuplicateCredential"
    UNKNOWN_CREDENTIAL = "UnknownCredential"
    SIGNATURE_INVALID = "SignatureInvalid"
    COUNTER_ROLLBACK = "CounterRollback"
    USER_MISMATCH = "UserMismatch"
    MALFORMED_AUTHENTICATOR_DATA = "MalformedAuthenticatorData"
    UNSUPPORTED_ALGORITHM = "UnsupportedAlgorithm"
    ATTESTATION_INVALID = "AttestationInvalid"
    USER_NOT_PRESENT = "UserNotPresent"
    USER_NOT_VERIFIED = "UserNotVerified"

    @property
    def security_relevant(self) -> bool:
        return self in SECURITY_KINDS


SECURITY_KINDS = frozenset(
    {
        ErrorKind.SIGNATURE_INVALID,
        ErrorKind.COUNTER_ROLLBACK,
        ErrorKind.CHALLENGE_MISMATCH,
        ErrorKind.USER_MISMATCH,
    }
)

NOT_FOUND_KINDS = frozenset({ErrorKind.UNKNOWN_CREDENTIAL})


class VerificationError(Exception):
    """Terminal failure of a registration or authentication flow.

    Callers branch on ``kind``; ``detail`` is diagnostic only and never meant
    for end users.
    """

    def __init__(self, kind: ErrorKind, detail: Optional[str] = None) -> None:
        self.kind = kind
        self.detail = detail
        super().__init__(f"{kind.value}: {detail}" if detail else kind.value)
