"""Shared fixtures: an in-memory stand-in for the Supabase query builder."""
from __future__ import annotations

import copy
import itertools
import uuid
from types import SimpleNamespace
from typing import Any

import pytest

from intake.db import DatabaseClient
from intake.schemas.transcript import Speaker, Turn
from intake.services.locks import LocalKeyedLock


class FakeQuery:
    """Chainable query mimicking the postgrest builder methods the client uses."""

    def __init__(self, backend: "FakeSupabase", table: str) -> None:
        self.backend = backend
        self.table = table
        self.action = "select"
        self.payload: dict[str, Any] | None = None
        self.filters: list[tuple[str, Any]] = []
        self.null_columns: list[str] = []
        self.excluded: list[tuple[str, Any]] = []
        self.order_by: tuple[str, bool] | None = None
        self.row_limit: int | None = None

    def select(self, columns: str = "*") -> "FakeQuery":
        self.action = "select"
        return self

    def insert(self, payload: dict[str, Any]) -> "FakeQuery":
        self.action = "insert"
        self.payload = payload
        return self

    def update(self, values: dict[str, Any]) -> "FakeQuery":
        self.action = "update"
        self.payload = values
        return self

    def eq(self, column: str, value: Any) -> "FakeQuery":
        self.filters.append((column, value))
        return self

    def neq(self, column: str, value: Any) -> "FakeQuery":
        self.excluded.append((column, value))
        return self

    def is_(self, column: str, value: str) -> "FakeQuery":
        assert value == "null"
        self.null_columns.append(column)
        return self

    def order(self, column: str, desc: bool = False) -> "FakeQuery":
        self.order_by = (column, desc)
        return self

    def limit(self, n: int) -> "FakeQuery":
        self.row_limit = n
        return self

    def _matches(self, row: dict[str, Any]) -> bool:
        if any(row.get(column) != value for column, value in self.filters):
            return False
        if any(row.get(column) == value for column, value in self.excluded):
            return False
        return all(row.get(column) is None for column in self.null_columns)

    def execute(self) -> SimpleNamespace:
        if self.table in self.backend.failing_tables or (self.table, self.action) in self.backend.failing_actions:
            raise RuntimeError(f"connection to {self.table} refused")

        rows = self.backend.tables.setdefault(self.table, [])

        if self.action == "insert":
            row = dict(self.payload)
            row.setdefault("id", str(uuid.uuid4()))
            row["_seq"] = next(self.backend.sequence)
            rows.append(row)
            return SimpleNamespace(data=[_public(row)])

        matched = [row for row in rows if self._matches(row)]

        if self.action == "update":
            for row in matched:
                row.update(copy.deepcopy(self.payload))
            return SimpleNamespace(data=[_public(row) for row in matched])

        if self.order_by:
            column, desc = self.order_by
            matched.sort(key=lambda r: (r.get(column) or "", r["_seq"]), reverse=desc)
        if self.row_limit is not None:
            matched = matched[: self.row_limit]
        return SimpleNamespace(data=[_public(row) for row in matched])


def _public(row: dict[str, Any]) -> dict[str, Any]:
    return {k: copy.deepcopy(v) for k, v in row.items() if k != "_seq"}


class FakeSupabase:
    def __init__(self) -> None:
        self.tables: dict[str, list[dict[str, Any]]] = {}
        self.failing_tables: set[str] = set()
        self.failing_actions: set[tuple[str, str]] = set()
        self.sequence = itertools.count()

    def table(self, name: str) -> FakeQuery:
        return FakeQuery(self, name)

    def rows(self, name: str) -> list[dict[str, Any]]:
        return [_public(row) for row in self.tables.get(name, [])]


@pytest.fixture
def fake_supabase() -> FakeSupabase:
    return FakeSupabase()


@pytest.fixture
def db(fake_supabase: FakeSupabase) -> DatabaseClient:
    return DatabaseClient(client=fake_supabase)


@pytest.fixture
def locks() -> LocalKeyedLock:
    return LocalKeyedLock(wait_seconds=1.0)


def agent(text: str) -> Turn:
    return Turn(speaker=Speaker.AGENT, text=text)


def caller(text: str) -> Turn:
    return Turn(speaker=Speaker.CALLER, text=text)
