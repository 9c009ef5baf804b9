"""
Database Query Adapter

Runs `database_query` node operations against PostgreSQL with psycopg2.
The blocking driver call runs in a worker thread so the event loop keeps
serving other conversations.

DATABASE_URL comes from config; when unset it is fetched once from the Dapr
kubernetes-secrets store (the `flow-orchestrator-secrets` secret).

Filter syntax for select: {"col": value} for equality, or
{"col": {"$gte": 1, "$lt": 5, "$ne": 3}} for comparisons.
"""

from __future__ import annotations

import asyncio
import logging
import re
import time
from typing import Any

import psycopg2
import psycopg2.extras
import requests
from psycopg2 import sql

logger = logging.getLogger(__name__)

SECRET_STORE_NAME = "kubernetes-secrets"
SECRET_NAME = "flow-orchestrator-secrets"

_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

_FILTER_OPERATORS = {
    "$gte": ">=",
    "$lte": "<=",
    "$gt": ">",
    "$lt": "<",
    "$ne": "<>",
}


def _identifier(name: str) -> sql.Identifier:
    if not _IDENTIFIER_RE.match(name or ""):
        raise ValueError(f"Invalid identifier: {name!r}")
    return sql.Identifier(name)


def _where_clause(filters: dict[str, Any]) -> tuple[sql.Composable, list[Any]]:
    parts: list[sql.Composable] = []
    params: list[Any] = []
    for column, value in filters.items():
        ident = _identifier(column)
        if isinstance(value, dict):
            for op_key, op_value in value.items():
                op = _FILTER_OPERATORS.get(op_key)
                if op is None:
                    raise ValueError(f"Unsupported filter operator: {op_key}")
                parts.append(sql.SQL("{} {} %s").format(ident, sql.SQL(op)))
                params.append(op_value)
        else:
            parts.append(sql.SQL("{} = %s").format(ident))
            params.append(value)
    if not parts:
        return sql.SQL(""), params
    return sql.SQL(" WHERE ") + sql.SQL(" AND ").join(parts), params


def build_statement(operation: str, table: str, filters: dict[str, Any]) -> tuple[sql.Composable, list[Any]]:
    """
    Build a parameterized statement for a structured operation.

    insert uses `filters` as the row; update/delete target `filters["id"]`
    (update writes the remaining keys).
    """
    tbl = _identifier(table)
    if operation == "select":
        where, params = _where_clause(filters)
        return sql.SQL("SELECT * FROM {}").format(tbl) + where, params

    if operation == "insert":
        if not filters:
            raise ValueError("Insert requires at least one column")
        columns = list(filters.keys())
        stmt = sql.SQL("INSERT INTO {} ({}) VALUES ({}) RETURNING *").format(
            tbl,
            sql.SQL(", ").join(_identifier(c) for c in columns),
            sql.SQL(", ").join(sql.Placeholder() for _ in columns),
        )
        return stmt, [filters[c] for c in columns]

    if operation == "update":
        data = dict(filters)
        row_id = data.pop("id", None)
        if row_id is None:
            raise ValueError("ID is required for update operations")
        if not data:
            raise ValueError("Update requires at least one column besides id")
        assignments = sql.SQL(", ").join(
            sql.SQL("{} = %s").format(_identifier(c)) for c in data
        )
        stmt = sql.SQL("UPDATE {} SET {} WHERE id = %s RETURNING *").format(tbl, assignments)
        return stmt, [*data.values(), row_id]

    if operation == "delete":
        row_id = filters.get("id")
        if row_id is None:
            raise ValueError("ID is required for delete operations")
        return sql.SQL("DELETE FROM {} WHERE id = %s RETURNING *").format(tbl), [row_id]

    raise ValueError(f"Invalid operation: {operation}")


class DatabaseAdapter:
    def __init__(self, database_url: str = "", dapr_host: str = "localhost", dapr_http_port: str = "3500"):
        self._database_url = database_url or None
        self.dapr_host = dapr_host
        self.dapr_http_port = dapr_http_port

    def _get_database_url(self) -> str:
        """
        Return the configured DATABASE_URL, or fetch it from Dapr secrets.

        Raises:
            RuntimeError: If no URL is configured and the secret cannot be fetched
        """
        if self._database_url is not None:
            return self._database_url

        url = (
            f"http://{self.dapr_host}:{self.dapr_http_port}"
            f"/v1.0/secrets/{SECRET_STORE_NAME}/{SECRET_NAME}"
        )
        try:
            response = requests.get(url, timeout=10)
            response.raise_for_status()
            db_url = response.json().get("DATABASE_URL")
            if not db_url:
                raise RuntimeError(f"DATABASE_URL not found in secret '{SECRET_NAME}'")
            self._database_url = db_url
            logger.info("[Database Query] Fetched DATABASE_URL from Dapr secrets")
            return db_url
        except requests.exceptions.RequestException as e:
            raise RuntimeError(f"Failed to fetch DATABASE_URL from Dapr secrets: {e}")

    def _execute(self, statement: Any, params: list[Any]) -> list[dict[str, Any]]:
        conn = psycopg2.connect(self._get_database_url())
        try:
            with conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
                cur.execute(statement, params or None)
                rows = [dict(r) for r in cur.fetchall()] if cur.description else []
            conn.commit()
            return rows
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    async def run(
        self,
        operation: str,
        table: str = "",
        filters: dict[str, Any] | None = None,
        query: str = "",
    ) -> dict[str, Any]:
        """
        Run a raw `query`, or a structured operation on `table`.

        Returns:
            {"success", "data": [rows], "count", "error", "duration_ms"}
        """
        start_time = time.time()
        try:
            if query:
                statement, params = query, []
            else:
                if not table:
                    return {"success": False, "error": "Table name is required", "duration_ms": 0}
                statement, params = build_statement(operation, table, filters or {})

            rows = await asyncio.to_thread(self._execute, statement, params)
            duration_ms = int((time.time() - start_time) * 1000)
            logger.info(f"[Database Query] {operation or 'query'} on {table or 'raw SQL'} returned {len(rows)} row(s)")
            return {"success": True, "data": rows, "count": len(rows), "error": None, "duration_ms": duration_ms}

        except (ValueError, RuntimeError, psycopg2.Error) as e:
            duration_ms = int((time.time() - start_time) * 1000)
            logger.error(f"[Database Query] {operation} failed: {e}")
            return {"success": False, "error": str(e), "duration_ms": duration_ms}
