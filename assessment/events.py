"""
Fire-and-forget domain events.

AttemptSubmitted is pushed onto the `exam_events` rq queue; notification,
gamification and certificate workers consume it. Publishing never blocks or
fails a submission.
"""

import logging
import os
from abc import ABC, abstractmethod
from typing import List, Optional

from pydantic import BaseModel
from rq import Queue

log = logging.getLogger("assessment.events")

EXAM_EVENTS_QUEUE = os.getenv("EXAM_EVENTS_QUEUE", "exam_events")
ATTEMPT_SUBMITTED_HANDLER = "worker.handle_attempt_submitted"


class AttemptSubmitted(BaseModel):
    attempt_id: int
    score: float
    passed: bool


class EventPublisher(ABC):
    @abstractmethod
    def publish(self, event: AttemptSubmitted) -> None:
        pass


class RqEventPublisher(EventPublisher):
    """Enqueue events for the background worker (see worker.py)."""

    def __init__(self, queue: Queue):
        self.queue = queue

    def publish(self, event: AttemptSubmitted) -> None:
        self.queue.enqueue(ATTEMPT_SUBMITTED_HANDLER, event.model_dump())


class RecordingPublisher(EventPublisher):
    """Keeps events in memory; used when no queue is wired (scripts, tests)."""

    def __init__(self):
        self.events: List[AttemptSubmitted] = []

    def publish(self, event: AttemptSubmitted) -> None:
        self.events.append(event)


def publish_safely(publisher: Optional[EventPublisher], event: AttemptSubmitted) -> None:
    if publisher is None:
        return
    try:
        publisher.publish(event)
    except Exception:
        log.exception(f"[EVENTS] Failed to publish AttemptSubmitted for attempt {event.attempt_id}")
