"""Pydantic based configuration for the RP server."""

from __future__ import annotations

from pathlib import Path
from typing import List, Literal, Optional
from urllib.parse import urlsplit

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DATA_DIR = Path(__file__).resolve().parent / "data"
DEFAULT_DB_PATH = DATA_DIR / "rp.db"

Requirement = Literal["required", "preferred", "discouraged"]


class RPSettings(BaseSettings):
    """Runtime settings, overridable through ``RP_*`` environment variables."""

    model_config = SettingsConfigDict(env_prefix="RP_")

    database_url: str = Field(
        default=f"sqlite:///{DEFAULT_DB_PATH}",
        description="SQLAlchemy connection string used by the credential registry",
    )
    rp_id: str = Field(default="localhost", description="Relying Party identifier")
    rp_name: str = Field(default="Passkey RP Server", description="Human readable RP name")
    origin: str = Field(
        default="http://localhost:3000",
        description="Expected origin for clientDataJSON validation",
    )
    allowed_origins: List[str] = Field(
        default_factory=list,
        description="Additional accepted origins, e.g. android:apk-key-hash:<hash>",
    )
    challenge_ttl_seconds: float = Field(default=300.0, gt=0)
    challenge_size: int = Field(default=32, ge=16, le=64)
    max_pending_challenges: int = Field(default=10_000, ge=1)
    pub_key_cred_algorithms: List[int] = Field(
        default_factory=lambda: [-7, -257],
        description="COSE algorithm identifiers the RP will accept, in preference order",
    )
    user_verification: Requirement = "preferred"
    resident_key: Requirement = "required"
    authenticator_attachment: Optional[Literal["platform", "cross-platform"]] = "platform"
    attestation: Literal["none", "indirect", "direct"] = "none"
    timeout_ms: int = Field(default=90_000, gt=0)

    @field_validator("pub_key_cred_algorithms")
    @classmethod
    def ensure_algorithms(cls, value: List[int]) -> List[int]:
        if not value:
            raise ValueError("pub_key_cred_algorithms cannot be empty")
        return value

    @property
    def expected_origins(self) -> List[str]:
        origins = [normalize_origin(self.origin)]
        origins.extend(normalize_origin(origin) for origin in self.allowed_origins)
        return origins


def normalize_origin(origin: str) -> str:
    if origin.startswith("android:"):
        return origin
    parts = urlsplit(origin)
    if not parts.scheme or not parts.netloc:
        return origin.rstrip("/")
    return f"{parts.scheme.lower()}://{parts.netloc.lower()}"
