import pytest
from fastapi.testclient import TestClient

from verifier_backend.config import Settings
from verifier_backend.main import create_app
from verifier_backend.sessions import SessionController
from verifier_backend.storage import TTLCache

from tests.factories import MAIN_SENDER_DID, MUMBAI_SENDER_DID, FakeClock, FakeVerifier


@pytest.fixture
def settings() -> Settings:
    return Settings(
        HOST="http://localhost",
        AUDIT_ENABLED=False,
        SENDER_DIDS={"80001": MUMBAI_SENDER_DID, "137": MAIN_SENDER_DID},
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cache(settings, clock) -> TTLCache:
    return TTLCache(settings.CACHE_EXPIRATION_SECONDS, clock=clock)


@pytest.fixture
def verifier() -> FakeVerifier:
    return FakeVerifier()


@pytest.fixture
def controller(settings, verifier, cache) -> SessionController:
    return SessionController(settings, verifier, cache=cache)


@pytest.fixture
def client(settings, controller) -> TestClient:
    return TestClient(create_app(settings, controller=controller))
