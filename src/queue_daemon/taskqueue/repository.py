"""Persistent queue repository for daemon tasks."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from uuid import uuid4

from sqlalchemy import ColumnElement, func, or_
from sqlalchemy import delete as sa_delete
from sqlalchemy import update as sa_update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from queue_daemon.storage.alembic_runner import upgrade_head
from queue_daemon.storage.common import (
    build_sqlite_engine,
    to_db_datetime,
    to_utc_aware_datetime,
    utc_now,
)
from queue_daemon.storage.sqlmodel_models import QueuedTask
from queue_daemon.taskqueue.models import (
    QueueDepth,
    QueueTaskCreate,
    QueueTaskView,
    TaskClaimState,
)

logger = logging.getLogger(__name__)


class MalformedTaskError(ValueError):
    """A stored task row cannot be decoded into a task view."""


class TaskQueueRepository:
    """Queue persistence facade backed by SQLModel + SQLite."""

    def __init__(self, db_path: Path, *, sqlite_busy_timeout_ms: int = 5_000) -> None:
        self.db_path = db_path
        self.engine = build_sqlite_engine(
            db_path=db_path,
            busy_timeout_ms=sqlite_busy_timeout_ms,
        )

    def close(self) -> None:
        """Close underlying DB resources."""

        self.engine.dispose()

    def init_schema(self) -> None:
        """Run schema migrations."""

        upgrade_head(self.db_path)

    def enqueue_task(self, payload: QueueTaskCreate) -> QueueTaskView:
        """Create an unclaimed task at the tail of the queue."""

        route = payload.route.strip()
        if not route:
            raise ValueError("Task route must be a non-empty string.")
        task_id = payload.task_id or str(uuid4())
        with Session(self.engine) as session:
            row = QueuedTask(
                task_id=task_id,
                route=route,
                params_json=_dump_params(payload.params),
                claimed=None,
                created_at=utc_now(),
            )
            session.add(row)
            try:
                session.commit()
            except IntegrityError as error:
                session.rollback()
                raise ValueError(f"Task already exists: {task_id}") from error
            session.refresh(row)
            return _to_task_view(row)

    def claim_next(self, *, claimed_by: str) -> QueueTaskView | None:
        """Atomically claim the earliest unclaimed task.

        The UPDATE re-checks availability, so two supervisors racing for the
        same row cannot both see ``rowcount == 1``; the loser moves on to the
        next candidate.
        """

        while True:
            now = utc_now()
            with Session(self.engine) as session:
                candidate = session.exec(
                    select(QueuedTask)
                    .where(_is_available())
                    .order_by(col(QueuedTask.seq).asc())
                    .limit(1),
                ).one_or_none()
                if candidate is None:
                    return None

                result = session.exec(
                    sa_update(QueuedTask)
                    .where(
                        col(QueuedTask.seq) == candidate.seq,
                        _is_available(),
                    )
                    .values(
                        claimed=True,
                        claimed_by=claimed_by,
                        claimed_at=to_db_datetime(now),
                    ),
                )
                if result.rowcount != 1:
                    session.rollback()
                    continue

                claimed = session.exec(
                    select(QueuedTask)
                    .where(QueuedTask.seq == candidate.seq)
                    .execution_options(populate_existing=True),
                ).one()
                try:
                    view = _to_task_view(claimed)
                except MalformedTaskError:
                    logger.exception(
                        "Dropping malformed task - task_id: %s, route: %s",
                        candidate.task_id,
                        candidate.route,
                    )
                    session.exec(
                        sa_delete(QueuedTask).where(col(QueuedTask.seq) == candidate.seq),
                    )
                    session.commit()
                    continue
                session.commit()
                return view

    def release_claim(self, *, task_id: str) -> bool:
        """Return a claimed task to the pending pool."""

        with Session(self.engine) as session:
            result = session.exec(
                sa_update(QueuedTask)
                .where(
                    col(QueuedTask.task_id) == task_id,
                    col(QueuedTask.claimed).is_(True),
                )
                .values(claimed=None, claimed_by=None, claimed_at=None),
            )
            if result.rowcount != 1:
                session.rollback()
                return False
            session.commit()
            return True

    def delete_task(self, *, task_id: str) -> bool:
        """Remove a task; deleting a missing task is a no-op returning False."""

        with Session(self.engine) as session:
            result = session.exec(
                sa_delete(QueuedTask).where(col(QueuedTask.task_id) == task_id),
            )
            session.commit()
            return result.rowcount == 1

    def count_all(self) -> int:
        """Total number of tasks in the store, claimed or not."""

        with Session(self.engine) as session:
            return int(session.exec(select(func.count()).select_from(QueuedTask)).one())

    def count_by_state(self) -> QueueDepth:
        """Queue size split into pending and claimed tasks."""

        with Session(self.engine) as session:
            total = int(session.exec(select(func.count()).select_from(QueuedTask)).one())
            pending = int(
                session.exec(
                    select(func.count()).select_from(QueuedTask).where(_is_available()),
                ).one(),
            )
        return QueueDepth(total=total, pending=pending, claimed=total - pending)

    def get_task(self, *, task_id: str) -> QueueTaskView | None:
        with Session(self.engine) as session:
            row = session.exec(
                select(QueuedTask).where(QueuedTask.task_id == task_id),
            ).one_or_none()
            if row is None:
                return None
            return _to_task_view(row)

    def list_tasks(
        self,
        *,
        state: TaskClaimState = TaskClaimState.ALL,
        limit: int = 50,
    ) -> list[QueueTaskView]:
        """List tasks in claim order, optionally filtered by claim state."""

        with Session(self.engine) as session:
            statement = select(QueuedTask).order_by(col(QueuedTask.seq).asc()).limit(limit)
            if state is TaskClaimState.PENDING:
                statement = statement.where(_is_available())
            elif state is TaskClaimState.CLAIMED:
                statement = statement.where(col(QueuedTask.claimed).is_(True))
            rows = session.exec(statement).all()
            return [_to_task_view(row) for row in rows]


def _is_available() -> ColumnElement[bool]:
    return or_(
        col(QueuedTask.claimed).is_(None),
        col(QueuedTask.claimed).is_(False),
    )


def _dump_params(params: tuple[tuple[str, str], ...]) -> str:
    return json.dumps([[str(key), str(value)] for key, value in params], ensure_ascii=False)


def _load_params(raw: str | None) -> tuple[tuple[str, str], ...]:
    if not raw:
        return ()
    try:
        parsed = json.loads(raw)
        if not isinstance(parsed, list):
            raise TypeError(f"expected a JSON array, got {type(parsed).__name__}")
        return tuple((str(key), str(value)) for key, value in parsed)
    except (TypeError, ValueError) as error:
        raise MalformedTaskError(f"Task params must be a JSON array of pairs: {error}") from error


def _to_task_view(row: QueuedTask) -> QueueTaskView:
    return QueueTaskView(
        task_id=row.task_id,
        seq=row.seq or 0,
        route=row.route,
        params=_load_params(row.params_json),
        claimed=bool(row.claimed),
        claimed_by=row.claimed_by,
        claimed_at=(
            to_utc_aware_datetime(row.claimed_at) if row.claimed_at is not None else None
        ),
        created_at=to_utc_aware_datetime(row.created_at),
    )
