"""Celery application for durable drill outcome logging."""

import os
from celery import Celery

REDIS_URL = os.environ.get("REDIS_URL", "redis://localhost:6379/0")

app = Celery("repertoire", broker=REDIS_URL, backend=REDIS_URL)
app.conf.update(
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    task_acks_late=True,
    worker_prefetch_multiplier=1,
)


@app.task(bind=True, max_retries=3)
def record_outcome_task(self, payload: dict):
    """Celery task: write one training log row, retrying on store errors."""
    from db import get_connection, insert_training_log
    from models import OutcomeRecord

    record = OutcomeRecord(**payload)
    try:
        with get_connection() as conn:
            insert_training_log(conn, record)
    except Exception as exc:
        raise self.retry(exc=exc, countdown=5)
