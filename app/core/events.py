"""
In-process domain event bus.

Services publish a typed event after their write has been applied; handlers
subscribed to that event run later on worker tasks. Delivery is
at-least-once: every (event, handler) pair is queued separately and a
failing handler is redelivered with exponential backoff until it succeeds
or runs out of attempts. Handlers therefore have to be idempotent.

stop() drains the queue first. Deliveries still pending when the drain
times out are moved to the dead letters; the badge reconcile sweep covers
anything lost with the process.
"""
import asyncio
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional

import structlog

from app.config import (
    EVENT_DEAD_LETTER_LIMIT,
    EVENT_DRAIN_TIMEOUT_SECONDS,
    EVENT_MAX_ATTEMPTS,
    EVENT_RETRY_BASE_SECONDS,
    EVENT_RETRY_MAX_SECONDS,
    EVENT_WORKERS,
)
from app.core.clock import utc_now_naive

logger = structlog.get_logger()


class DomainEvent(str, Enum):
    """Events emitted by the challenge platform"""
    # Accounts (published by the account service)
    ACCOUNT_CREATED = "account.created"

    # Submissions
    SUBMISSION_CREATED = "submission.created"
    CHALLENGE_SUBMISSION_MADE = "challenge.submission_made"
    LIKE_COUNT_CHANGED = "submission.like_count_changed"
    VOTE_CAST = "submission.vote_cast"

    # Challenge lifecycle
    CHALLENGE_VOTING_STARTED = "challenge.voting_started"
    CHALLENGE_COMPLETED = "challenge.completed"
    CHALLENGE_ARCHIVED = "challenge.archived"

    # Achievements
    BADGE_AWARDED = "badge.awarded"


@dataclass
class Event:
    """A published domain event"""
    name: DomainEvent
    payload: Dict[str, Any]
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    occurred_at: datetime = field(default_factory=utc_now_naive)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_id": self.event_id,
            "name": self.name.value,
            "payload": self.payload,
            "occurred_at": self.occurred_at.isoformat(),
        }


EventHandler = Callable[[Event], Awaitable[Any]]


@dataclass
class _Delivery:
    event: Event
    handler: EventHandler
    attempt: int = 1


def compute_backoff_seconds(attempt: int, base: float, maximum: float) -> float:
    # attempt=1 -> base, attempt=2 -> 2*base, attempt=3 -> 4*base
    if base <= 0:
        return 0.0
    return min(maximum, base * (2 ** (attempt - 1)))


class EventBus:
    """Queue-backed publish/subscribe with retrying worker tasks"""

    def __init__(
        self,
        workers: int = EVENT_WORKERS,
        max_attempts: int = EVENT_MAX_ATTEMPTS,
        retry_base_seconds: float = EVENT_RETRY_BASE_SECONDS,
        retry_max_seconds: float = EVENT_RETRY_MAX_SECONDS,
        drain_timeout_seconds: float = EVENT_DRAIN_TIMEOUT_SECONDS,
        dead_letter_limit: int = EVENT_DEAD_LETTER_LIMIT,
    ):
        self.workers = max(1, workers)
        self.max_attempts = max(1, max_attempts)
        self.retry_base_seconds = retry_base_seconds
        self.retry_max_seconds = retry_max_seconds
        self.drain_timeout_seconds = drain_timeout_seconds
        self._handlers: Dict[DomainEvent, List[EventHandler]] = {}
        self._queue: Optional[asyncio.Queue] = None
        self._tasks: List[asyncio.Task] = []
        # Oldest entries are dropped once the limit is reached
        self.dead_letters: Deque[Dict[str, Any]] = deque(maxlen=max(1, dead_letter_limit))

    @property
    def running(self) -> bool:
        return bool(self._tasks)

    def _get_queue(self) -> asyncio.Queue:
        if self._queue is None:
            self._queue = asyncio.Queue()
        return self._queue

    def subscribe(self, name: DomainEvent, handler: EventHandler):
        """Register a handler; subscribing the same handler twice is a no-op."""
        handlers = self._handlers.setdefault(DomainEvent(name), [])
        if handler not in handlers:
            handlers.append(handler)

    def handlers_for(self, name: DomainEvent) -> List[EventHandler]:
        return list(self._handlers.get(DomainEvent(name), []))

    async def publish(self, name: DomainEvent, payload: Dict[str, Any]) -> Event:
        """Queue one delivery per subscribed handler and return the event."""
        event = Event(name=DomainEvent(name), payload=dict(payload))
        queue = self._get_queue()
        for handler in self.handlers_for(event.name):
            queue.put_nowait(_Delivery(event=event, handler=handler))

        logger.debug("Event published", event_name=event.name.value, event_id=event.event_id)
        return event

    async def start(self):
        if self.running:
            return
        queue = self._get_queue()
        self._tasks = [
            asyncio.create_task(self._worker(queue, index))
            for index in range(self.workers)
        ]
        logger.info("Event bus started", workers=self.workers)

    async def stop(self, drain_timeout: Optional[float] = None):
        """Let workers finish queued deliveries, then cancel them."""
        if not self.running:
            return
        timeout = self.drain_timeout_seconds if drain_timeout is None else drain_timeout
        try:
            await asyncio.wait_for(self.join(), timeout)
        except asyncio.TimeoutError:
            logger.warning("Event bus drain timed out", pending=self._get_queue().qsize(), timeout=timeout)

        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []

        abandoned = self._abandon_pending()
        logger.info("Event bus stopped", abandoned=abandoned)

    def _abandon_pending(self) -> int:
        queue = self._get_queue()
        abandoned = 0
        while True:
            try:
                delivery = queue.get_nowait()
            except asyncio.QueueEmpty:
                return abandoned
            self._dead_letter(delivery, "Event bus stopped before delivery")
            queue.task_done()
            abandoned += 1

    def _dead_letter(self, delivery: _Delivery, error: str):
        self.dead_letters.append({
            "event": delivery.event.to_dict(),
            "handler": getattr(delivery.handler, "__qualname__", repr(delivery.handler)),
            "attempts": delivery.attempt,
            "error": error,
        })

    async def join(self):
        """Wait until every queued delivery (including retries) has settled."""
        await self._get_queue().join()

    async def _worker(self, queue: asyncio.Queue, index: int):
        while True:
            delivery = await queue.get()
            try:
                await self._deliver(queue, delivery, index)
            except asyncio.CancelledError:
                self._dead_letter(delivery, "Event bus stopped during delivery")
                raise
            finally:
                queue.task_done()

    async def _deliver(self, queue: asyncio.Queue, delivery: _Delivery, index: int):
        event = delivery.event
        handler_name = getattr(delivery.handler, "__qualname__", repr(delivery.handler))
        try:
            await delivery.handler(event)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if delivery.attempt >= self.max_attempts:
                logger.error(
                    "Event handler failed permanently",
                    event_name=event.name.value,
                    event_id=event.event_id,
                    handler=handler_name,
                    attempts=delivery.attempt,
                    error=str(e),
                )
                self._dead_letter(delivery, str(e))
                return

            delay = compute_backoff_seconds(
                delivery.attempt, self.retry_base_seconds, self.retry_max_seconds
            )
            logger.warning(
                "Event handler failed, retrying",
                event_name=event.name.value,
                event_id=event.event_id,
                handler=handler_name,
                attempt=delivery.attempt,
                retry_in=delay,
                worker=index,
                error=str(e),
            )
            if delay:
                await asyncio.sleep(delay)
            # Requeued before task_done so join() keeps waiting for it
            queue.put_nowait(_Delivery(event=event, handler=delivery.handler, attempt=delivery.attempt + 1))
