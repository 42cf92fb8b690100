"""Datetime helpers."""

from __future__ import annotations

import os
from datetime import datetime

import pendulum

DEFAULT_TZ = "Asia/Kolkata"


def timezone_name() -> str:
    return os.environ.get("TIMEZONE", DEFAULT_TZ)


def utc_now() -> pendulum.DateTime:
    return pendulum.now("UTC")


def amz_date(value: datetime) -> str:
    """Basic ISO 8601 timestamp used by request signing, e.g. ``20240131T083000Z``."""
    return pendulum.instance(value).in_timezone("UTC").strftime("%Y%m%dT%H%M%SZ")


def start_of_day_utc() -> datetime:
    return utc_now().start_of("day").naive()
