"""Parameterized query/execute interface over the relational store."""

from __future__ import annotations

import asyncio
import functools
import logging
from dataclasses import dataclass
from typing import Any, Callable, Mapping, TypeVar

from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.sql import Executable

from dealfeed.errors import StorageError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(slots=True)
class ExecuteResult:
    insert_id: int | None
    affected_rows: int


class Store:
    """Each call runs in its own transaction.

    Statements are either SQL strings with ``:name`` placeholders or SQLAlchemy
    Core constructs; values are always passed as bound parameters.
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def query(self, statement: str | Executable, params: Mapping[str, Any] | None = None) -> list[dict[str, Any]]:
        stmt = text(statement) if isinstance(statement, str) else statement
        try:
            with self.engine.connect() as conn:
                result = conn.execute(stmt, dict(params or {}))
                return [dict(row) for row in result.mappings()]
        except SQLAlchemyError as exc:
            logger.error("Query failed: %s", exc)
            raise StorageError(str(exc)) from exc

    def execute(self, statement: str | Executable, params: Mapping[str, Any] | None = None) -> ExecuteResult:
        stmt = text(statement) if isinstance(statement, str) else statement
        try:
            with self.engine.begin() as conn:
                result = conn.execute(stmt, dict(params or {}))
                insert_id = None
                if result.is_insert and result.inserted_primary_key:
                    insert_id = int(result.inserted_primary_key[0])
                return ExecuteResult(insert_id=insert_id, affected_rows=result.rowcount)
        except SQLAlchemyError as exc:
            logger.error("Execute failed: %s", exc)
            raise StorageError(str(exc)) from exc

    def scalar(self, statement: str | Executable, params: Mapping[str, Any] | None = None) -> Any:
        rows = self.query(statement, params)
        if not rows:
            return None
        return next(iter(rows[0].values()))


async def run_blocking(func: Callable[..., T], *args: Any) -> T:
    """Run a blocking store call in the default executor."""
    return await asyncio.get_running_loop().run_in_executor(None, functools.partial(func, *args))
