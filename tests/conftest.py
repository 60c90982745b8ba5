"""
Test Configuration and Fixtures

Every test gets its own in-memory Motor database (mongomock-motor), a
started event bus that retries without delay, and a clock frozen at START.
"""
import os
import uuid
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ.setdefault("SCHEDULER_ENABLED", "false")
os.environ.setdefault("SECRET_KEY", "test-secret")

import pytest
import pytest_asyncio
from mongomock_motor import AsyncMongoMockClient

from app.core.clock import FrozenClock
from app.core.container import Services, build_services
from app.core.events import DomainEvent, Event, EventBus
from app.database import create_indexes
from app.models.challenge.challenge import ChallengeStatus
from app.services.gamification.badge_catalog import seed_badges

START = datetime(2026, 3, 1, 12, 0, 0)


class EventRecorder:
    """Bus handler that keeps every event it receives"""

    def __init__(self):
        self.events: List[Event] = []

    async def __call__(self, event: Event):
        self.events.append(event)

    def named(self, name: DomainEvent) -> List[Event]:
        return [event for event in self.events if event.name == name]


class Factory:
    """Builders for challenges, submissions and votes"""

    def __init__(self, services: Services, clock: FrozenClock):
        self.services = services
        self.clock = clock
        self.db = services.db

    async def challenge(
        self,
        status: ChallengeStatus = ChallengeStatus.ACTIVE,
        title: str = "Landing Page Challenge",
        **overrides
    ) -> Dict[str, Any]:
        """Challenge started a day ago; voting opens in one day, closes in two"""
        now = self.clock.now()
        data = {
            "title": title,
            "description": "Build a landing page",
            "start_date": now - timedelta(days=1),
            "voting_start_date": now + timedelta(days=1),
            "voting_end_date": now + timedelta(days=2),
            "status": ChallengeStatus.DRAFT if status == ChallengeStatus.DRAFT else ChallengeStatus.ACTIVE,
        }
        data.update(overrides)
        challenge = await self.services.challenges.create_challenge(data)

        if status in (ChallengeStatus.VOTING, ChallengeStatus.COMPLETED, ChallengeStatus.ARCHIVED):
            await self.db.challenges.update_one(
                {"_id": challenge["_id"]},
                {"$set": {"status": status.value}}
            )
            challenge = await self.db.challenges.find_one({"_id": challenge["_id"]})
        return challenge

    async def submit(
        self,
        user_id: str,
        challenge: Dict[str, Any],
        name: str = "My project",
        **kwargs
    ):
        return await self.services.submissions.submit(
            user_id,
            str(challenge["_id"]),
            {"name": name, "html_code": "<h1>Hello</h1>", "css_code": "h1 { color: red; }"},
            **kwargs
        )

    async def set_votes(self, submission: Dict[str, Any], count: int):
        """Give a submission `count` votes from throwaway voters"""
        voters = [f"voter-{submission['_id']}-{index}" for index in range(count)]
        await self.db.challenge_submissions.update_one(
            {"_id": submission["_id"]},
            {"$set": {"vote_count": count, "voted_by": voters}}
        )

    async def profile(self, user_id: str) -> Optional[Dict[str, Any]]:
        return await self.db.profiles.find_one({"user_id": user_id})


@pytest_asyncio.fixture
async def db():
    client = AsyncMongoMockClient()
    database = client[f"codearena_test_{uuid.uuid4().hex}"]
    await create_indexes(database)
    await seed_badges(database)
    yield database


@pytest.fixture
def clock():
    return FrozenClock(START)


@pytest_asyncio.fixture
async def bus():
    event_bus = EventBus(workers=2, max_attempts=3, retry_base_seconds=0, retry_max_seconds=0)
    await event_bus.start()
    yield event_bus
    await event_bus.stop()


@pytest_asyncio.fixture
async def services(db, bus, clock):
    return build_services(db, bus, clock)


@pytest.fixture
def recorder(bus, services):
    event_recorder = EventRecorder()
    for name in DomainEvent:
        bus.subscribe(name, event_recorder)
    return event_recorder


@pytest.fixture
def factory(services, clock):
    return Factory(services, clock)
