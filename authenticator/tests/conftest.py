from __future__ import annotations

from pathlib import Path
import sys

import pytest

ROOT = Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from authenticator import Authenticator
from authenticator.config import AuthenticatorSettings


@pytest.fixture
def temp_settings() -> AuthenticatorSettings:
    return AuthenticatorSettings(origin="https://example.com")


@pytest.fixture
def authenticator(temp_settings) -> Authenticator:
    return Authenticator(settings=temp_settings)
