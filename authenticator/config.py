"""Configuration for the virtual authenticator."""

from __future__ import annotations

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class AuthenticatorSettings(BaseSettings):
    """Runtime settings for the authenticator."""

    model_config = SettingsConfigDict(env_prefix="AUTHENTICATOR_")

    origin: str = Field(
        default="http://localhost:3000",
        description="Origin reported in clientDataJSON when the caller gives none",
    )
    attestation_format: Literal["none", "packed"] = Field(
        default="none",
        description="'packed' emits self attestation signed with the new credential key",
    )
    supports_counter: bool = Field(
        default=True,
        description="When false the signature counter is always reported as 0",
    )
    backup_eligible: bool = False
