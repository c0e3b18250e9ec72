"""Unit tests for the retrying event publisher."""

import asyncio
from unittest.mock import AsyncMock, patch
from uuid import uuid4

import pytest

from memorix.adapters.events.retrying_event_publisher import RetryingEventPublisher
from memorix.domain.events import CardCreated, DeckDeleted
from memorix.domain.exceptions import MessagingException


@pytest.fixture
def broker():
    broker = AsyncMock()
    broker.publish = AsyncMock(return_value=1)
    return broker


class TestPublishNow:
    @pytest.mark.asyncio
    async def test_sends_serialized_event(self, broker):
        publisher = RetryingEventPublisher(broker, retry_delay=0)
        event = CardCreated(card_id=uuid4(), deck_id=uuid4())

        assert await publisher.publish_now(event) is True

        broker.publish.assert_awaited_once_with(
            "card.exchange", "card.created", event.to_json()
        )

    @pytest.mark.asyncio
    async def test_transient_failure_is_retried(self, broker):
        broker.publish.side_effect = [MessagingException("blip"), 1]
        publisher = RetryingEventPublisher(broker, retry_delay=0)

        assert await publisher.publish_now(DeckDeleted(deck_id=uuid4())) is True
        assert broker.publish.await_count == 2

    @pytest.mark.asyncio
    async def test_abandons_after_three_attempts(self, broker):
        broker.publish.side_effect = MessagingException("down")
        publisher = RetryingEventPublisher(broker, retry_delay=0)

        assert await publisher.publish_now(DeckDeleted(deck_id=uuid4())) is False
        assert broker.publish.await_count == 3

    @pytest.mark.asyncio
    async def test_cancellation_is_not_retried(self, broker):
        broker.publish.side_effect = asyncio.CancelledError()
        publisher = RetryingEventPublisher(broker, retry_delay=0)

        with pytest.raises(asyncio.CancelledError):
            await publisher.publish_now(DeckDeleted(deck_id=uuid4()))

        assert broker.publish.await_count == 1

    @pytest.mark.asyncio
    async def test_fixed_delay_between_attempts(self, broker):
        broker.publish.side_effect = MessagingException("down")
        publisher = RetryingEventPublisher(broker)

        with patch(
            "memorix.adapters.events.retrying_event_publisher.asyncio.sleep",
            new=AsyncMock(),
        ) as sleep:
            await publisher.publish_now(DeckDeleted(deck_id=uuid4()))

        # Two waits between three attempts, none after the last one
        assert [c.args[0] for c in sleep.await_args_list] == [1.0, 1.0]


class TestPublish:
    @pytest.mark.asyncio
    async def test_publish_does_not_block_caller(self, broker):
        release = asyncio.Event()

        async def slow_publish(*args):
            await release.wait()
            return 1

        broker.publish.side_effect = slow_publish
        publisher = RetryingEventPublisher(broker, retry_delay=0)

        publisher.publish(DeckDeleted(deck_id=uuid4()))

        assert publisher.pending == 1
        release.set()
        await publisher.drain(timeout=1)
        assert publisher.pending == 0
        broker.publish.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_failed_publish_is_not_surfaced(self, broker):
        broker.publish.side_effect = MessagingException("down")
        publisher = RetryingEventPublisher(broker, retry_delay=0)

        publisher.publish(DeckDeleted(deck_id=uuid4()))
        await publisher.drain(timeout=1)

        assert publisher.pending == 0
        assert broker.publish.await_count == 3

    @pytest.mark.asyncio
    async def test_drain_with_nothing_pending(self, broker):
        await RetryingEventPublisher(broker).drain(timeout=0.1)
