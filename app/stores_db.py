"""Postgres-backed descriptor and record stores."""

from __future__ import annotations

import copy
import json
import logging
from typing import List, Tuple

from app.db import execute, fetch_all, fetch_one, get_conn
from model_errors import DescriptorNotFound, RecordNotFound


logger = logging.getLogger("modelkit.db")

SCHEMA_SQL = """
create table if not exists model_descriptors (
    name text primary key,
    descriptor jsonb not null,
    created_at timestamptz not null default now(),
    updated_at timestamptz not null default now()
);
create table if not exists model_records (
    model_key text not null,
    id text not null,
    data jsonb not null,
    created_at timestamptz not null default now(),
    updated_at timestamptz not null default now(),
    primary key (model_key, id)
);
"""


def ensure_schema() -> None:
    with get_conn() as conn:
        execute(conn, SCHEMA_SQL, query_name="schema.ensure")
    logger.info("db_schema_ready")


def _record_from_row(row: dict | None) -> dict | None:
    if not row:
        return None
    data = row.get("data")
    if isinstance(data, str):
        data = json.loads(data)
    record = copy.deepcopy(data) if isinstance(data, dict) else {}
    record["id"] = str(row.get("id"))
    return record


class DbDescriptorStore:
    def list_all(self) -> List[Tuple[str, str]]:
        with get_conn() as conn:
            rows = fetch_all(
                conn,
                "select name, descriptor::text as descriptor from model_descriptors order by created_at, name",
                query_name="model_descriptors.list_all",
            )
        return [(row["name"], row["descriptor"]) for row in rows]

    def read_one(self, name: str) -> str | None:
        with get_conn() as conn:
            row = fetch_one(
                conn,
                "select descriptor::text as descriptor from model_descriptors where name=%s",
                [name],
                query_name="model_descriptors.read_one",
            )
        return row.get("descriptor") if row else None

    def write_one(self, name: str, blob: str) -> None:
        with get_conn() as conn:
            execute(
                conn,
                """
                insert into model_descriptors (name, descriptor)
                values (%s, %s::jsonb)
                on conflict (name) do update
                set descriptor=excluded.descriptor, updated_at=now()
                """,
                [name, blob],
                query_name="model_descriptors.write_one",
            )

    def delete_one(self, name: str) -> None:
        with get_conn() as conn:
            deleted = execute(
                conn,
                "delete from model_descriptors where name=%s",
                [name],
                query_name="model_descriptors.delete_one",
            )
        if not deleted:
            raise DescriptorNotFound(f"Descriptor '{name}' not found", path="name")


class DbRecordStore:
    def insert(self, model_key: str, record: dict) -> dict:
        with get_conn() as conn:
            row = fetch_one(
                conn,
                """
                insert into model_records (model_key, id, data)
                values (%s, %s, %s::jsonb)
                returning id, data
                """,
                [model_key, record["id"], json.dumps(record)],
                query_name="model_records.insert",
            )
        return _record_from_row(row)

    def find_all(self, model_key: str) -> list[dict]:
        with get_conn() as conn:
            rows = fetch_all(
                conn,
                "select id, data from model_records where model_key=%s order by created_at, id",
                [model_key],
                query_name="model_records.find_all",
            )
        return [_record_from_row(row) for row in rows]

    def find_one(self, model_key: str, record_id: str) -> dict | None:
        with get_conn() as conn:
            row = fetch_one(
                conn,
                "select id, data from model_records where model_key=%s and id=%s",
                [model_key, record_id],
                query_name="model_records.find_one",
            )
        return _record_from_row(row)

    def merge(self, model_key: str, record_id: str, partial: dict) -> dict:
        with get_conn() as conn:
            row = fetch_one(
                conn,
                """
                update model_records
                set data = data || %s::jsonb, updated_at = now()
                where model_key=%s and id=%s
                returning id, data
                """,
                [json.dumps(partial), model_key, record_id],
                query_name="model_records.merge",
            )
        if not row:
            raise RecordNotFound("Record not found", path="id")
        return _record_from_row(row)

    def remove(self, model_key: str, record_id: str) -> None:
        with get_conn() as conn:
            deleted = execute(
                conn,
                "delete from model_records where model_key=%s and id=%s",
                [model_key, record_id],
                query_name="model_records.remove",
            )
        if not deleted:
            raise RecordNotFound("Record not found", path="id")
