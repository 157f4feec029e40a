from __future__ import annotations

from pathlib import Path
import sys

import pytest

ROOT = Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from authenticator import Authenticator, AuthenticatorSettings
from rp_server.challenges import ChallengeStore
from rp_server.config import RPSettings
from rp_server.database import Database
from rp_server.registry import CredentialRegistry
from rp_server.service import RelyingPartyService

RP_ID = "example.com"
ORIGIN = "https://example.com"


class FakeClock:
    def __init__(self, now: float = 1_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings(tmp_path: Path) -> RPSettings:
    return RPSettings(
        database_url=f"sqlite:///{tmp_path / 'rp.db'}",
        rp_id=RP_ID,
        rp_name="Example RP",
        origin=ORIGIN,
        pub_key_cred_algorithms=[-7, -257, -8],
    )


@pytest.fixture
def db(settings: RPSettings):
    database = Database(settings)
    database.create_all()
    yield database
    database.dispose()


@pytest.fixture
def registry(db: Database) -> CredentialRegistry:
    return CredentialRegistry(db)


@pytest.fixture
def challenges(settings: RPSettings, clock: FakeClock) -> ChallengeStore:
    return ChallengeStore(ttl_seconds=settings.challenge_ttl_seconds, clock=clock)


@pytest.fixture
def service(settings, challenges, registry) -> RelyingPartyService:
    return RelyingPartyService(settings, challenges, registry)


@pytest.fixture
def authenticator() -> Authenticator:
    return Authenticator(AuthenticatorSettings(origin=ORIGIN))


@pytest.fixture
def registered(service: RelyingPartyService, authenticator: Authenticator):
    """A user with one ES256 passkey registered through the full flow."""
    options = service.start_registration(None, "Test User", username="user@example.com")
    credential = authenticator.make_credential(options.model_dump(exclude_none=True))
    return service.finish_registration(options.session_token, credential)
