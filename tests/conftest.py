import pytest

from focusflare.config import ClassifierConfig
from focusflare.modules.sessions.tasks import SessionMaterializer

from .helpers import InMemorySessionStore


@pytest.fixture
def store():
    """Empty in-memory session store"""
    return InMemorySessionStore()


@pytest.fixture
def fallback_only_config():
    """Classifier settings with the external classifier switched off"""
    return ClassifierConfig(ai_enabled=False)


@pytest.fixture
def materializer(store, fallback_only_config):
    return SessionMaterializer(store, config=fallback_only_config)
