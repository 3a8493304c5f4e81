"""
Supabase Database Client.

Thin wrapper around the official Supabase Python client that exposes the
handful of query shapes the stores need (filtered select, insert, filtered
update). Stores receive a ``DatabaseClient`` through their constructor; the
process-wide instance is created once by ``get_db()`` at startup.

Any PostgREST / network failure is re-raised as ``StoreError`` so callers
can tell an unreachable store apart from an empty result.
"""

from __future__ import annotations

from collections.abc import Iterable
from functools import lru_cache
from typing import Any, Optional

from supabase import Client, create_client

from intake.config import get_settings
from intake.logging_config import get_logger

logger = get_logger(__name__)


class StoreError(RuntimeError):
    """The relational store could not complete a read or write."""


class DatabaseClient:
    """Wrapper around a Supabase client with typed helper methods."""

    def __init__(self, client: Optional[Client] = None) -> None:
        if client is None:
            client = _create_supabase_client()
        self._client = client

    @property
    def client(self) -> Client:
        """Access the raw Supabase client."""
        return self._client

    async def select(
        self,
        table: str,
        filters: dict[str, Any] | None = None,
        *,
        null_columns: Iterable[str] = (),
        order_by: str | None = None,
        desc: bool = False,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        """Return rows of ``table`` matching equality ``filters`` and IS NULL ``null_columns``."""
        try:
            query = self.client.table(table).select("*")
            for column, value in (filters or {}).items():
                query = query.eq(column, value)
            for column in null_columns:
                query = query.is_(column, "null")
            if order_by:
                query = query.order(order_by, desc=desc)
            if limit is not None:
                query = query.limit(limit)
            response = query.execute()
            return list(response.data or [])
        except Exception as e:
            logger.error("db_select_error", table=table, filters=filters, error=str(e))
            raise StoreError(f"select from {table} failed: {e}") from e

    async def select_one(self, table: str, filters: dict[str, Any]) -> dict[str, Any] | None:
        """Return the first row matching ``filters`` or None."""
        rows = await self.select(table, filters, limit=1)
        return rows[0] if rows else None

    async def insert(self, table: str, payload: dict[str, Any]) -> dict[str, Any]:
        """Insert one row and return it as stored."""
        try:
            response = self.client.table(table).insert(payload).execute()
        except Exception as e:
            logger.error("db_insert_error", table=table, error=str(e))
            raise StoreError(f"insert into {table} failed: {e}") from e

        if not response.data:
            raise StoreError(f"insert into {table} returned no row")
        return response.data[0]

    async def update(
        self,
        table: str,
        values: dict[str, Any],
        filters: dict[str, Any],
        *,
        null_columns: Iterable[str] = (),
        exclude: dict[str, Any] | None = None,
    ) -> list[dict[str, Any]]:
        """Update rows matching ``filters``, skipping rows equal to ``exclude``; return the updated rows."""
        if not filters:
            # An unfiltered update would rewrite the whole table.
            raise ValueError("update requires at least one filter")
        try:
            query = self.client.table(table).update(values)
            for column, value in filters.items():
                query = query.eq(column, value)
            for column in null_columns:
                query = query.is_(column, "null")
            for column, value in (exclude or {}).items():
                query = query.neq(column, value)
            response = query.execute()
            return list(response.data or [])
        except Exception as e:
            logger.error("db_update_error", table=table, filters=filters, error=str(e))
            raise StoreError(f"update of {table} failed: {e}") from e


def _create_supabase_client() -> Client:
    settings = get_settings()

    if not settings.supabase_url or not settings.supabase_service_key:
        logger.warning(
            "Supabase credentials missing. Database operations will fail.",
            url=bool(settings.supabase_url),
            key=bool(settings.supabase_service_key),
        )

    client = create_client(settings.supabase_url, settings.supabase_service_key)
    logger.info("Supabase client initialized", url=settings.supabase_url)
    return client


@lru_cache(maxsize=1)
def get_db() -> DatabaseClient:
    """Process-wide store handle, created on first use at startup."""
    return DatabaseClient()
