"""
Background worker for exam events.
Listens on the exam events queue; AttemptSubmitted jobs land in handle_attempt_submitted.
"""

from dotenv import load_dotenv
load_dotenv()

import logging

from rq import Worker, Queue

from assessment.events import EXAM_EVENTS_QUEUE, AttemptSubmitted

log = logging.getLogger("worker")


def handle_attempt_submitted(payload: dict) -> AttemptSubmitted:
    """Consume one AttemptSubmitted event. Downstream notification hooks plug in here."""
    event = AttemptSubmitted.model_validate(payload)
    log.info(f"[EVENTS] Attempt {event.attempt_id} finished with score {event.score:.2f} (passed={event.passed})")
    return event


if __name__ == '__main__':
    from database.redis_client import get_redis

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    redis_conn = get_redis()
    # Listen strictly to the exam events queue
    worker = Worker([Queue(EXAM_EVENTS_QUEUE, connection=redis_conn)], connection=redis_conn)
    log.info(f"Background worker is listening on '{EXAM_EVENTS_QUEUE}'...")
    worker.work()
