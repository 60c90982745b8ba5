"""
Tests for the in-process event bus: fan-out, retries and dead letters.
"""
import asyncio

import pytest
import pytest_asyncio

from app.core.events import DomainEvent, EventBus, compute_backoff_seconds
from app.core.logging import configure_logging

pytestmark = pytest.mark.asyncio


@pytest_asyncio.fixture
async def fast_bus():
    event_bus = EventBus(workers=1, max_attempts=3, retry_base_seconds=0, retry_max_seconds=0)
    await event_bus.start()
    yield event_bus
    await event_bus.stop()


class TestBackoff:

    @pytest.mark.parametrize("attempt,expected", [(1, 1.0), (2, 2.0), (3, 4.0), (10, 30.0)])
    async def test_exponential_with_cap(self, attempt, expected):
        assert compute_backoff_seconds(attempt, base=1.0, maximum=30.0) == expected

    async def test_zero_base_disables_delay(self):
        assert compute_backoff_seconds(5, base=0, maximum=30.0) == 0.0


class TestEventBus:

    async def test_publish_fans_out_to_every_handler(self, fast_bus):
        received = []

        async def first(event):
            received.append(("first", event.payload["n"]))

        async def second(event):
            received.append(("second", event.payload["n"]))

        fast_bus.subscribe(DomainEvent.VOTE_CAST, first)
        fast_bus.subscribe(DomainEvent.VOTE_CAST, second)
        event = await fast_bus.publish(DomainEvent.VOTE_CAST, {"n": 1})
        await fast_bus.join()

        assert sorted(received) == [("first", 1), ("second", 1)]
        assert event.name == DomainEvent.VOTE_CAST
        assert event.to_dict()["name"] == "submission.vote_cast"

    async def test_subscribe_twice_delivers_once(self, fast_bus):
        received = []

        async def handler(event):
            received.append(event.event_id)

        fast_bus.subscribe(DomainEvent.BADGE_AWARDED, handler)
        fast_bus.subscribe(DomainEvent.BADGE_AWARDED, handler)
        await fast_bus.publish(DomainEvent.BADGE_AWARDED, {})
        await fast_bus.join()

        assert len(received) == 1

    async def test_publish_without_handlers(self, fast_bus):
        event = await fast_bus.publish(DomainEvent.CHALLENGE_ARCHIVED, {"challenge_id": "c1"})
        await fast_bus.join()

        assert event.payload == {"challenge_id": "c1"}

    async def test_failing_handler_is_retried(self, fast_bus):
        attempts = []

        async def flaky(event):
            attempts.append(1)
            if len(attempts) < 2:
                raise RuntimeError("temporary failure")

        fast_bus.subscribe(DomainEvent.SUBMISSION_CREATED, flaky)
        await fast_bus.publish(DomainEvent.SUBMISSION_CREATED, {})
        await fast_bus.join()

        assert len(attempts) == 2
        assert len(fast_bus.dead_letters) == 0

    async def test_permanent_failure_is_dead_lettered(self, fast_bus):
        attempts = []

        async def broken(event):
            attempts.append(1)
            raise RuntimeError("always fails")

        async def healthy(event):
            attempts.append(0)

        fast_bus.subscribe(DomainEvent.CHALLENGE_COMPLETED, broken)
        fast_bus.subscribe(DomainEvent.CHALLENGE_COMPLETED, healthy)
        await fast_bus.publish(DomainEvent.CHALLENGE_COMPLETED, {"challenge_id": "c1"})
        await fast_bus.join()

        assert attempts.count(1) == 3
        assert attempts.count(0) == 1
        assert len(fast_bus.dead_letters) == 1
        assert fast_bus.dead_letters[0]["error"] == "always fails"
        assert fast_bus.dead_letters[0]["event"]["payload"] == {"challenge_id": "c1"}

    async def test_events_queued_before_start_are_delivered(self):
        received = []

        async def handler(event):
            received.append(event.payload)

        event_bus = EventBus(workers=1, retry_base_seconds=0)
        event_bus.subscribe(DomainEvent.ACCOUNT_CREATED, handler)
        await event_bus.publish(DomainEvent.ACCOUNT_CREATED, {"user_id": "1"})
        assert received == []

        await event_bus.start()
        await event_bus.join()
        await event_bus.stop()

        assert received == [{"user_id": "1"}]
        assert not event_bus.running

    async def test_publish_with_logging_configured(self):
        configure_logging("DEBUG")
        received = []

        async def handler(event):
            received.append(event.payload)

        event_bus = EventBus(workers=1, retry_base_seconds=0)
        event_bus.subscribe(DomainEvent.LIKE_COUNT_CHANGED, handler)
        await event_bus.start()
        try:
            event = await event_bus.publish(DomainEvent.LIKE_COUNT_CHANGED, {"like_count": 1})
            await event_bus.join()
        finally:
            await event_bus.stop()

        assert event.name == DomainEvent.LIKE_COUNT_CHANGED
        assert received == [{"like_count": 1}]

    async def test_dead_letters_are_bounded(self):
        async def broken(event):
            raise RuntimeError("always fails")

        event_bus = EventBus(workers=1, max_attempts=1, retry_base_seconds=0, dead_letter_limit=2)
        event_bus.subscribe(DomainEvent.VOTE_CAST, broken)
        await event_bus.start()
        for n in range(5):
            await event_bus.publish(DomainEvent.VOTE_CAST, {"n": n})
        await event_bus.join()
        await event_bus.stop()

        assert [letter["event"]["payload"]["n"] for letter in event_bus.dead_letters] == [3, 4]


class TestShutdown:

    async def test_stop_drains_queued_deliveries(self):
        received = []

        async def slow(event):
            await asyncio.sleep(0.01)
            received.append(event.payload["n"])

        event_bus = EventBus(workers=1, retry_base_seconds=0)
        event_bus.subscribe(DomainEvent.SUBMISSION_CREATED, slow)
        await event_bus.start()
        for n in range(3):
            await event_bus.publish(DomainEvent.SUBMISSION_CREATED, {"n": n})

        await event_bus.stop(drain_timeout=5)

        assert received == [0, 1, 2]
        assert len(event_bus.dead_letters) == 0
        assert not event_bus.running

    async def test_undelivered_work_is_dead_lettered(self):
        async def stuck(event):
            await asyncio.Event().wait()

        event_bus = EventBus(workers=1, retry_base_seconds=0)
        event_bus.subscribe(DomainEvent.CHALLENGE_SUBMISSION_MADE, stuck)
        await event_bus.start()
        await event_bus.publish(DomainEvent.CHALLENGE_SUBMISSION_MADE, {"n": 1})
        await event_bus.publish(DomainEvent.CHALLENGE_SUBMISSION_MADE, {"n": 2})

        await event_bus.stop(drain_timeout=0.05)

        errors = sorted(letter["error"] for letter in event_bus.dead_letters)
        assert errors == ["Event bus stopped before delivery", "Event bus stopped during delivery"]
        assert not event_bus.running

    async def test_stopped_bus_keeps_queue_for_next_start(self, services, factory, bus):
        await bus.stop()
        challenge = await factory.challenge()
        await factory.submit("alice", challenge)

        await bus.start()
        await bus.stop()

        profile = await factory.profile("alice")
        assert set(profile["badges"]) == {"first-project", "first-challenge-submit"}
        assert len(bus.dead_letters) == 0
