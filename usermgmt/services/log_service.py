"""Log service — read access, statistics and retention for request logs."""

import json
import logging
from datetime import timedelta
from typing import Optional

from sqlalchemy.orm import Session

from usermgmt.core.exceptions import ResourceNotFoundError
from usermgmt.core.filters import Op, Predicate, compile_filters
from usermgmt.core.pagination import assemble
from usermgmt.core.query_params import NormalizedQuery
from usermgmt.core.resources import LOGS
from usermgmt.core.timeutil import utcnow
from usermgmt.db.store import log_store
from usermgmt.models.log_entry import LogEntry, LogLevel

logger = logging.getLogger("user_management.logs")


def serialize_log(entry: LogEntry) -> dict:
    metadata = None
    if entry.metadata_json:
        try:
            metadata = json.loads(entry.metadata_json)
        except ValueError:
            metadata = None
    return {
        "id": entry.id,
        "user_id": entry.user_id,
        "action": entry.action,
        "resource": entry.resource,
        "method": entry.method,
        "path": entry.path,
        "status_code": entry.status_code,
        "user_agent": entry.user_agent,
        "ip": entry.ip,
        "timestamp": entry.timestamp,
        "duration_ms": entry.duration_ms,
        "error": entry.error,
        "level": LogLevel(entry.level).value,
        "metadata": metadata,
    }


class LogService:
    """Request logs are written by the middleware; this reads and purges them."""

    def __init__(self, db: Session):
        self.db = db
        self.store = log_store(db)

    def list_page(self, query: NormalizedQuery) -> dict:
        predicates = compile_filters(LOGS, query.filters)
        rows = self.store.find_many(
            predicates,
            sort=LOGS.resolve_sort(query.sort),
            limit=query.pagination.limit,
            offset=query.pagination.offset,
        )
        total = self.store.count(predicates)
        return assemble([serialize_log(r) for r in rows], total, query.pagination)

    def get(self, log_id: int) -> LogEntry:
        entry = self.store.get(log_id)
        if entry is None:
            raise ResourceNotFoundError(f"Log entry {log_id} not found")
        return entry

    def stats(self, filters: Optional[dict] = None) -> dict:
        """Aggregate counts over the entries matching ``filters``."""
        predicates = compile_filters(LOGS, filters or {})
        by_action = self.store.group_counts("action", predicates)
        top_actions = dict(sorted(by_action.items(), key=lambda kv: kv[1], reverse=True)[:10])
        average = self.store.average("duration_ms", predicates)
        return {
            "total": self.store.count(predicates),
            "by_level": self.store.group_counts("level", predicates),
            "by_resource": self.store.group_counts("resource", predicates),
            "top_actions": top_actions,
            "error_count": self.store.count(
                predicates + [Predicate("level", Op.EQ, LogLevel.error.value)]
            ),
            "average_duration_ms": round(average, 2) if average is not None else None,
        }

    def cleanup(self, days: int) -> int:
        """Delete entries older than ``days`` days. Returns the number removed."""
        cutoff = utcnow() - timedelta(days=days)
        removed = self.store.delete_where([Predicate("timestamp", Op.LT, cutoff)])
        logger.info("Removed %d log entries older than %s", removed, cutoff.isoformat())
        return removed
