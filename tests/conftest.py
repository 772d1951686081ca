import logging
import random

import pytest

from shared.helper.HelperConfig import HelperConfig
from shared.logging.logging_setup import ColorLogger
from sync_fakes import FakeSleep, InMemoryStore

TEST_ENV = {
    "REGISTRY_MYINVOIS_BASE_URL": "https://registry.test",
    "AUTH_MYINVOIS_BASE_URL": "https://auth.test",
    "AUTH_MYINVOIS_CLIENT_ID": "client-id",
    "AUTH_MYINVOIS_CLIENT_SECRET": "client-secret",
    "APP_API_KEY": "test-api-key",
}


@pytest.fixture
def helper_config(monkeypatch) -> HelperConfig:
    for key, value in TEST_ENV.items():
        monkeypatch.setenv(key, value)
    return HelperConfig(logger=ColorLogger(logging.getLogger("tests")))


@pytest.fixture
def fake_sleep() -> FakeSleep:
    return FakeSleep()


@pytest.fixture
def rand() -> random.Random:
    return random.Random(42)


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()
