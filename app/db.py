"""Postgres connection pool and query helpers."""

from __future__ import annotations

import contextvars
import logging
import threading
import time
from contextlib import contextmanager
from typing import Any, Iterable

import psycopg2
import psycopg2.extras
from psycopg2.pool import SimpleConnectionPool

from model_errors import CollaboratorFailure


_POOL: SimpleConnectionPool | None = None
_POOL_LOCK = threading.Lock()
_POOL_CONFIG: dict = {"dsn": None, "minconn": 1, "maxconn": 10}
_logger = logging.getLogger("modelkit.db")
_query_logger = logging.getLogger("modelkit.db.query")
_DB_STATS: contextvars.ContextVar[dict | None] = contextvars.ContextVar("modelkit_db_stats", default=None)
_SLOW_MS = 200.0


def configure(dsn: str | None, minconn: int = 1, maxconn: int = 10, slow_ms: float | None = None) -> None:
    global _SLOW_MS
    _POOL_CONFIG.update({"dsn": dsn, "minconn": minconn, "maxconn": maxconn})
    if slow_ms is not None:
        _SLOW_MS = slow_ms


def _redact_params(params: Iterable[Any] | None) -> list[Any] | None:
    if params is None:
        return None
    redacted: list[Any] = []
    for val in params:
        if isinstance(val, (bytes, bytearray)):
            redacted.append(f"<bytes:{len(val)}>")
        elif isinstance(val, str) and len(val) > 80:
            redacted.append(f"{val[:40]}…{val[-10:]}")
        else:
            redacted.append(val)
    return redacted


def _log_query(query_name: str | None, params: Iterable[Any] | None, elapsed_ms: float, rowcount: int | None) -> None:
    message = {
        "query": query_name or "unnamed",
        "ms": round(elapsed_ms, 2),
        "rowcount": rowcount,
        "params": _redact_params(params),
    }
    if elapsed_ms >= _SLOW_MS:
        _query_logger.warning("db_slow_query=%s", message)
    else:
        _query_logger.debug("db_query=%s", message)


def reset_db_stats() -> None:
    _DB_STATS.set({"queries": 0, "total_ms": 0.0})


def get_db_stats() -> dict:
    stats = _DB_STATS.get()
    if not isinstance(stats, dict):
        return {"queries": 0, "total_ms": 0.0}
    return stats


def _add_db_ms(delta: float) -> None:
    # mutated in place so worker threads report into the request's context
    stats = _DB_STATS.get()
    if not isinstance(stats, dict):
        stats = {"queries": 0, "total_ms": 0.0}
        _DB_STATS.set(stats)
    stats["total_ms"] = stats.get("total_ms", 0.0) + delta
    stats["queries"] = stats.get("queries", 0) + 1


def _get_pool() -> SimpleConnectionPool:
    global _POOL
    with _POOL_LOCK:
        if _POOL is None:
            dsn = _POOL_CONFIG.get("dsn")
            if not dsn:
                raise RuntimeError("DATABASE_URL is required when USE_DB=1")
            try:
                _POOL = SimpleConnectionPool(_POOL_CONFIG["minconn"], _POOL_CONFIG["maxconn"], dsn=dsn)
            except psycopg2.Error as exc:
                raise CollaboratorFailure(f"Database unavailable: {exc}") from exc
        return _POOL


@contextmanager
def get_conn():
    pool = _get_pool()
    try:
        conn = pool.getconn()
    except psycopg2.Error as exc:
        raise CollaboratorFailure(f"Database unavailable: {exc}") from exc
    try:
        yield conn
        conn.commit()
    except psycopg2.Error as exc:
        conn.rollback()
        _logger.warning("db_error error=%s", exc)
        raise CollaboratorFailure(f"Database error: {exc}") from exc
    except Exception:
        conn.rollback()
        raise
    finally:
        pool.putconn(conn)


def fetch_one(conn, sql: str, params: Iterable[Any] | None = None, query_name: str | None = None) -> dict | None:
    start = time.perf_counter()
    with conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
        cur.execute(sql, params or [])
        row = cur.fetchone()
        rowcount = cur.rowcount
    elapsed_ms = (time.perf_counter() - start) * 1000
    _add_db_ms(elapsed_ms)
    _log_query(query_name, params, elapsed_ms, rowcount)
    return dict(row) if row else None


def fetch_all(conn, sql: str, params: Iterable[Any] | None = None, query_name: str | None = None) -> list[dict]:
    start = time.perf_counter()
    with conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
        cur.execute(sql, params or [])
        rows = [dict(r) for r in cur.fetchall()]
        rowcount = cur.rowcount
    elapsed_ms = (time.perf_counter() - start) * 1000
    _add_db_ms(elapsed_ms)
    _log_query(query_name, params, elapsed_ms, rowcount)
    return rows


def execute(conn, sql: str, params: Iterable[Any] | None = None, query_name: str | None = None) -> int:
    start = time.perf_counter()
    with conn.cursor() as cur:
        cur.execute(sql, params or [])
        rowcount = cur.rowcount
    elapsed_ms = (time.perf_counter() - start) * 1000
    _add_db_ms(elapsed_ms)
    _log_query(query_name, params, elapsed_ms, rowcount)
    return rowcount
