"""PostgreSQL persistence for the security audit trail."""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Optional, Sequence, Tuple

import asyncpg

from velonx.community.infra.postgres_repo import json_field
from velonx.security.audit import (
    ActionCount,
    AuditLogEntry,
    AuditLogFilters,
    AuditRepository,
    AuditResult,
    AuditStats,
    ResourceCount,
)

_COLUMNS = "id, user_id, action, resource, ip_address, user_agent, result, metadata, timestamp"


def _row_to_entry(row: asyncpg.Record) -> AuditLogEntry:
    return AuditLogEntry(
        id=str(row["id"]),
        user_id=str(row["user_id"]) if row["user_id"] is not None else None,
        action=str(row["action"]),
        resource=str(row["resource"]),
        ip_address=str(row["ip_address"]),
        user_agent=str(row["user_agent"]),
        result=AuditResult(str(row["result"])),
        metadata=json_field(row["metadata"]),
        timestamp=row["timestamp"],
    )


def _where(filters: AuditLogFilters) -> Tuple[str, list[Any]]:
    clauses: list[str] = []
    args: list[Any] = []

    def add(clause: str, value: Any) -> None:
        args.append(value)
        clauses.append(clause.format(idx=len(args)))

    if filters.user_id is not None:
        add("user_id = ${idx}", filters.user_id)
    if filters.action is not None:
        add("action = ${idx}", filters.action)
    if filters.resource is not None:
        add("resource = ${idx}", filters.resource)
    if filters.result is not None:
        add("result = ${idx}", filters.result.value)
    if filters.start_date is not None:
        add("timestamp >= ${idx}", filters.start_date)
    if filters.end_date is not None:
        add("timestamp <= ${idx}", filters.end_date)
    return (" AND ".join(clauses) if clauses else "TRUE"), args


class PostgresAuditRepository(AuditRepository):
    """Stores audit entries in audit_log. Rows are only ever inserted or aged out."""

    def __init__(self, pool: asyncpg.Pool) -> None:
        self._pool = pool

    async def insert(self, entry: AuditLogEntry) -> None:
        await self._pool.execute(
            f"""
            INSERT INTO audit_log ({_COLUMNS})
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8::jsonb, $9)
            """,
            entry.id,
            entry.user_id,
            entry.action,
            entry.resource,
            entry.ip_address,
            entry.user_agent,
            entry.result.value,
            json.dumps(entry.metadata, default=str),
            entry.timestamp,
        )

    async def query(self, filters: AuditLogFilters, *, offset: int, limit: int) -> Tuple[Sequence[AuditLogEntry], int]:
        where, args = _where(filters)
        page_args = [*args, offset, limit]
        async with self._pool.acquire() as conn:
            rows = await conn.fetch(
                f"""
                SELECT {_COLUMNS}
                FROM audit_log
                WHERE {where}
                ORDER BY timestamp DESC
                OFFSET ${len(args) + 1} LIMIT ${len(args) + 2}
                """,
                *page_args,
            )
            total = await conn.fetchval(f"SELECT COUNT(*) FROM audit_log WHERE {where}", *args)
        return [_row_to_entry(row) for row in rows], int(total or 0)

    async def stats(self, start_date: Optional[datetime], end_date: Optional[datetime], *, top_n: int) -> AuditStats:
        where, args = _where(AuditLogFilters(start_date=start_date, end_date=end_date))
        async with self._pool.acquire() as conn:
            totals = await conn.fetchrow(
                f"""
                SELECT
                    COUNT(*) AS total,
                    COUNT(*) FILTER (WHERE result = 'success') AS successful,
                    COUNT(*) FILTER (WHERE result = 'failure') AS failed,
                    COUNT(DISTINCT user_id) AS users
                FROM audit_log
                WHERE {where}
                """,
                *args,
            )
            actions = await conn.fetch(
                f"""
                SELECT action, COUNT(*) AS count
                FROM audit_log
                WHERE {where}
                GROUP BY action
                ORDER BY count DESC, action ASC
                LIMIT ${len(args) + 1}
                """,
                *args,
                top_n,
            )
            resources = await conn.fetch(
                f"""
                SELECT resource, COUNT(*) AS count
                FROM audit_log
                WHERE {where}
                GROUP BY resource
                ORDER BY count DESC, resource ASC
                LIMIT ${len(args) + 1}
                """,
                *args,
                top_n,
            )
        return AuditStats(
            total_events=int(totals["total"] or 0),
            successful_events=int(totals["successful"] or 0),
            failed_events=int(totals["failed"] or 0),
            unique_users=int(totals["users"] or 0),
            top_actions=[ActionCount(action=str(row["action"]), count=int(row["count"])) for row in actions],
            top_resources=[ResourceCount(resource=str(row["resource"]), count=int(row["count"])) for row in resources],
        )

    async def delete_older_than(self, cutoff: datetime) -> int:
        status = await self._pool.execute("DELETE FROM audit_log WHERE timestamp < $1", cutoff)
        try:
            return int(str(status).rsplit(" ", 1)[-1])
        except ValueError:
            return 0
