"""WebAuthn Relying Party core and its Flask app factory."""

from .app import create_app
from .challenges import ChallengeStore
from .config import RPSettings
from .errors import ErrorKind, VerificationError
from .records import Challenge, CredentialRecord, UserRecord
from .registry import CredentialRegistry
from .service import FlowState, RelyingPartyService

__all__ = [
    "create_app",
    "ChallengeStore",
    "Challenge",
    "CredentialRecord",
    "CredentialRegistry",
    "ErrorKind",
    "FlowState",
    "RelyingPartyService",
    "RPSettings",
    "UserRecord",
    "VerificationError",
]
