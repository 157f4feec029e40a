"""Virtual WebAuthn authenticator used to drive RP flows end to end."""

from .config import AuthenticatorSettings
from .keys import KeyPair
from .service import Authenticator
from .storage import CredentialRecord, CredentialStore, CredentialStoreError

__all__ = [
    "Authenticator",
    "AuthenticatorSettings",
    "CredentialStore",
    "CredentialStoreError",
    "CredentialRecord",
    "KeyPair",
]
