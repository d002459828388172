from __future__ import annotations

"""SQLAlchemy ORM models for agent persistence.

These ORM models define the SQL schema used by the SQL repository
implementation in ``lakitu_ai.agent_core.repos.sql``.

Design
------

- Steps form an append-only, per-thread ordered trace (``seq`` is unique per
  thread).
- Checkpoints hold resumable snapshots. A partial unique index guarantees at
  most one ``active`` checkpoint per thread, on top of the store's own
  per-thread serialization.
- Subagents record delegated child tasks and their lifecycle.
- The sync outbox records local writes that still have to reach the cloud.

JSON columns use JSONB on Postgres and plain JSON elsewhere (SQLite in tests).

Table names are prefixed with ``lk_`` to avoid collisions in shared databases.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import JSON, DateTime, Index, Integer, String, Text, UniqueConstraint, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

JsonType = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """Declarative base for all ORM models."""


class StepRow(Base):
    """Row model for ``lk_steps``.

    One chain-of-thought step. ``status`` only moves forward
    (pending -> active -> complete|error).
    """

    __tablename__ = "lk_steps"
    __table_args__ = (UniqueConstraint("thread_id", "seq", name="uq_lk_steps_thread_seq"),)

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    thread_id: Mapped[str] = mapped_column(String(64), index=True)
    seq: Mapped[int] = mapped_column(Integer)

    type: Mapped[str] = mapped_column(String(16))
    status: Mapped[str] = mapped_column(String(16))
    label: Mapped[str] = mapped_column(Text)

    tool_name: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    input: Mapped[Optional[Dict[str, Any]]] = mapped_column(JsonType, nullable=True)

    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class CheckpointRow(Base):
    """Row model for ``lk_checkpoints``.

    Key fields:

    - ``iteration``: increases by one each time a checkpoint supersedes the
      previous one for the same logical task.
    - ``status``: active/restored/completed/failed/superseded.
    - ``message_history``: bounded snapshot of the conversation.
    - ``file_state``/``beads_state``/``artifacts_produced``: collaborator snapshots.
    """

    __tablename__ = "lk_checkpoints"
    __table_args__ = (
        Index(
            "uq_lk_checkpoints_one_active",
            "thread_id",
            unique=True,
            postgresql_where=text("status = 'active'"),
            sqlite_where=text("status = 'active'"),
        ),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    thread_id: Mapped[str] = mapped_column(String(64), index=True)
    session_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)

    iteration: Mapped[int] = mapped_column(Integer)
    next_task: Mapped[str] = mapped_column(Text)
    reason: Mapped[str] = mapped_column(String(32))
    status: Mapped[str] = mapped_column(String(16), index=True)

    message_history: Mapped[List[Dict[str, Any]]] = mapped_column(JsonType, default=list)
    file_state: Mapped[List[Dict[str, Any]]] = mapped_column(JsonType, default=list)
    beads_state: Mapped[List[Dict[str, Any]]] = mapped_column(JsonType, default=list)
    artifacts_produced: Mapped[List[str]] = mapped_column(JsonType, default=list)
    # ``metadata`` is reserved on declarative classes.
    meta: Mapped[Dict[str, Any]] = mapped_column("metadata", JsonType, default=dict)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    restored_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)


class SubagentRow(Base):
    """Row model for ``lk_subagents``.

    Delegated child tasks. Status only advances
    pending -> running -> completed|failed.
    """

    __tablename__ = "lk_subagents"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    parent_thread_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)

    name: Mapped[str] = mapped_column(String(128))
    task: Mapped[str] = mapped_column(Text)
    tools: Mapped[List[str]] = mapped_column(JsonType, default=list)
    model: Mapped[str] = mapped_column(String(128))

    status: Mapped[str] = mapped_column(String(16), index=True)
    result: Mapped[Optional[Dict[str, Any]]] = mapped_column(JsonType, nullable=True)
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)


class OutboxRow(Base):
    """Row model for ``lk_sync_outbox``.

    ``idempotency_key`` is unique: adding the same local write twice yields
    the existing row.
    """

    __tablename__ = "lk_sync_outbox"
    __table_args__ = (Index("ix_lk_sync_outbox_status_priority", "status", "priority", "created_at"),)

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    idempotency_key: Mapped[str] = mapped_column(String(256), unique=True)

    entity_type: Mapped[str] = mapped_column(String(64), index=True)
    entity_id: Mapped[str] = mapped_column(String(128))
    operation: Mapped[str] = mapped_column(String(16))
    payload: Mapped[Dict[str, Any]] = mapped_column(JsonType, default=dict)
    cloud_path: Mapped[str] = mapped_column(String(256))

    status: Mapped[str] = mapped_column(String(16))
    attempts: Mapped[int] = mapped_column(Integer, default=0)
    max_attempts: Mapped[int] = mapped_column(Integer, default=3)
    priority: Mapped[int] = mapped_column(Integer, default=5)

    session_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True, index=True)
    thread_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    cloud_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    last_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    last_attempt_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    synced_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
