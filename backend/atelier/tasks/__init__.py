"""Celery app for the variant pipeline.

Project-wide generation can hold a worker for many minutes, so it gets its
own queue; callback ingestion and the stuck sweep share the default one.
"""

import asyncio
import threading

from celery import Celery
from celery.schedules import crontab

from atelier.config import get_settings

settings = get_settings()

celery_app = Celery(
    "atelier",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
    include=["atelier.tasks.variant_tasks"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    result_expires=24 * 3600,
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    worker_prefetch_multiplier=1,
    task_routes={
        "atelier.tasks.variant_tasks.generate_project_variants": {"queue": "batch"},
    },
    beat_schedule={
        "sweep-stuck-variants": {
            "task": "atelier.tasks.variant_tasks.sweep_stuck_variants",
            "schedule": crontab(minute=f"*/{settings.SWEEP_INTERVAL_MINUTES}"),
        },
    },
)

_thread_local = threading.local()


def run_async(coro):
    """Drive a coroutine to completion from a sync task.

    The loop is kept per worker thread: pooled asyncmy connections are tied
    to the loop that opened them.
    """
    loop = getattr(_thread_local, "loop", None)
    if loop is None or loop.is_closed():
        loop = asyncio.new_event_loop()
        _thread_local.loop = loop
    return loop.run_until_complete(coro)
