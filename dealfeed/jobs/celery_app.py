"""Celery configuration for scheduled pipeline runs."""

from __future__ import annotations

import os

from celery import Celery
from celery.schedules import crontab

from dealfeed.utils.dates import timezone_name

broker_url = os.environ.get("REDIS_URL", "redis://redis:6379/0")
backend_url = os.environ.get("REDIS_URL", "redis://redis:6379/0")

celery_app = Celery("dealfeed", broker=broker_url, backend=backend_url)
celery_app.conf.timezone = timezone_name()
celery_app.conf.beat_schedule = {
    "daily-ingestion": {
        "task": "dealfeed.jobs.run_daily_ingestion",
        "schedule": crontab(hour=int(os.environ.get("INGEST_HOUR", "2")), minute=0),
    },
    "hourly-refresh": {
        "task": "dealfeed.jobs.run_hourly_refresh",
        "schedule": crontab(minute=0),
    },
    "weekly-maintenance": {
        "task": "dealfeed.jobs.run_weekly_maintenance",
        "schedule": crontab(day_of_week="sun", hour=3, minute=0),
    },
    "health-check": {
        "task": "dealfeed.jobs.run_health_check",
        "schedule": crontab(minute="*/15"),
    },
}


def _run(command: str):
    import asyncio

    from dealfeed.jobs.pipeline import run_command

    return asyncio.run(run_command(command))


@celery_app.task(name="dealfeed.jobs.run_daily_ingestion")
def run_daily_ingestion_task():  # pragma: no cover - executed by worker
    results = _run("daily")
    return {name: {"success": r.success, "products": r.products, "error": r.error} for name, r in results.items()}


@celery_app.task(name="dealfeed.jobs.run_hourly_refresh")
def run_hourly_refresh_task():  # pragma: no cover - executed by worker
    return _run("hourly")


@celery_app.task(name="dealfeed.jobs.run_weekly_maintenance")
def run_weekly_maintenance_task():  # pragma: no cover - executed by worker
    return _run("weekly")


@celery_app.task(name="dealfeed.jobs.run_health_check")
def run_health_check_task():  # pragma: no cover - executed by worker
    return _run("health")
