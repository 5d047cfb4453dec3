"""Shared fixtures for the Proof-of-Attention tests."""

import pytest

from poa.app import create_app
from poa.config import AttentionConfig
from poa.inference.bot_classifier import BotClassifier
from poa.issuance import InMemoryArtifactStore, InMemoryIssuer, ProofIssuer
from poa.lifecycle import AttentionLifecycle
from poa.models.store import SessionStore

START_MS = 1_731_652_000_000
ADDRESS = "0xABCDEF0123456789abcdef0123456789ABCDEF01"


class ManualClock:
    """Millisecond clock advanced explicitly by tests."""

    def __init__(self, start=START_MS):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, ms):
        self.now += ms
        return self.now


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def config():
    return AttentionConfig(min_attention_ms=10_000, heartbeat_interval_ms=30_000)


@pytest.fixture
def store(clock):
    return SessionStore(clock=clock)


@pytest.fixture
def classifier(config):
    return BotClassifier.from_config(config)


@pytest.fixture
def lifecycle(store, config):
    return AttentionLifecycle.from_config(store, config)


@pytest.fixture
def issuer(clock):
    return ProofIssuer(InMemoryArtifactStore(), InMemoryIssuer(clock=clock))


@pytest.fixture
def app(config, store, issuer, clock):
    app = create_app(config=config, store=store, issuer=issuer, clock=clock)
    app.config["TESTING"] = True
    return app


@pytest.fixture
def client(app):
    return app.test_client()
