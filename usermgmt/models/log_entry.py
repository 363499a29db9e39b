"""Request audit log model — append-only."""

import enum
from typing import Optional

from sqlalchemy import Column, DateTime, Enum, ForeignKey, Integer, String, Text, func

from usermgmt.db.base import Base


class LogLevel(str, enum.Enum):
    error = "error"
    warn = "warn"
    info = "info"
    debug = "debug"


def level_for(status_code: Optional[int], error: Optional[str] = None) -> LogLevel:
    """Derive the log level from the response status."""
    if error or (status_code is not None and status_code >= 500):
        return LogLevel.error
    if status_code is not None and status_code >= 400:
        return LogLevel.warn
    return LogLevel.info


class LogEntry(Base):
    """One handled request.

    Rows are only ever inserted by the request middleware and removed in
    bulk by retention cleanup.
    """
    __tablename__ = "log_entries"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    action = Column(String(100), nullable=False, index=True)  # e.g. "users.list"
    resource = Column(String(50), nullable=False, index=True)
    method = Column(String(10), nullable=False)
    path = Column(String(500), nullable=False)
    status_code = Column(Integer, nullable=False)
    user_agent = Column(String(500), nullable=True)
    ip = Column(String(45), nullable=True)
    timestamp = Column(DateTime, server_default=func.now(), nullable=False, index=True)
    duration_ms = Column(Integer, nullable=True)
    error = Column(Text, nullable=True)
    level = Column(Enum(LogLevel), default=LogLevel.info, nullable=False, index=True)
    metadata_json = Column(Text, nullable=True)
