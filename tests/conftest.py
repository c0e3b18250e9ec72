"""Global test configuration and fixtures."""

import os
from uuid import uuid4

import pytest

# Set test environment
os.environ["ENVIRONMENT"] = "testing"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["BROKER_BACKEND"] = "memory"
os.environ["PROMETHEUS_METRICS_ENABLED"] = "false"
os.environ["LOG_FORMAT"] = "text"

from memorix.api.schemas import CardRequest, DeckRequest
from memorix.core.config import Settings
from memorix.domain.entities import Card, Deck
from tests._helpers.fakes import (
    FakeCardRepository,
    FakeDeckRepository,
    FakeExistenceOracle,
    RecordingEventPublisher,
)


class FakeClock:
    """Millisecond clock that only moves when told to."""

    def __init__(self, now_ms: int = 1_700_000_000_000) -> None:
        self.now_ms = now_ms

    def __call__(self) -> int:
        return self.now_ms

    def advance(self, ms: int) -> None:
        self.now_ms += ms


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    """Settings for a self-contained process: file database, in-memory channel."""
    return Settings(
        environment="testing",
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'memorix.db'}",
        broker_backend="memory",
        publish_retry_delay_seconds=0,
        prometheus_metrics_enabled=False,
        _env_file=None,
    )


# Domain fixtures
@pytest.fixture
def sample_deck() -> Deck:
    return Deck(name="Spanish verbs", description="Irregular preterite forms")


@pytest.fixture
def sample_card(sample_deck) -> Card:
    return Card(question="tener (yo)", answer="tuve", deck_id=sample_deck.id)


@pytest.fixture
def deck_request() -> DeckRequest:
    return DeckRequest(
        name="Spanish verbs",
        description="Irregular preterite forms",
        cover_image_url="https://example.com/cover.png",
        hex_color="#FFAA00",
    )


@pytest.fixture
def card_request() -> CardRequest:
    return CardRequest(question="tener (yo)", answer="tuve")


# Fake collaborators
@pytest.fixture
def deck_repo() -> FakeDeckRepository:
    return FakeDeckRepository()


@pytest.fixture
def card_repo() -> FakeCardRepository:
    return FakeCardRepository()


@pytest.fixture
def publisher() -> RecordingEventPublisher:
    return RecordingEventPublisher()


@pytest.fixture
def missing_deck_id():
    return uuid4()


@pytest.fixture
def oracle(sample_deck) -> FakeExistenceOracle:
    return FakeExistenceOracle([sample_deck.id])
