"""Signed admin tokens for the trigger endpoints."""

from __future__ import annotations

import os

from itsdangerous import URLSafeTimedSerializer

ADMIN_PURPOSE = "pipeline-admin"
DEFAULT_EXPIRY = int(os.environ.get("ADMIN_TOKEN_EXPIRY", 60 * 60 * 24 * 30))


def _serializer() -> URLSafeTimedSerializer:
    secret = os.environ.get("SIGNING_SECRET", "change-me")
    return URLSafeTimedSerializer(secret_key=secret)


def generate_admin_token(subject: str) -> str:
    serializer = _serializer()
    return serializer.dumps({"sub": subject}, salt=ADMIN_PURPOSE)


def load_admin_token(token: str, max_age: int = DEFAULT_EXPIRY) -> dict[str, object]:
    serializer = _serializer()
    data = serializer.loads(token, max_age=max_age, salt=ADMIN_PURPOSE)
    if not isinstance(data, dict) or not data.get("sub"):
        raise TypeError("Invalid token payload")
    return data
