from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta
from typing import Any, Optional

from sqlalchemy import desc, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from robojs.core.errors import StoreError
from robojs.core.execution import Failure, Outcome, Success, dump_json
from robojs.core.mailer import Mailer, failure_email, notification_email
from robojs.models.notification import Notification
from robojs.models.result import Result
from robojs.models.task import Task
from robojs.models.user import User

logger = logging.getLogger(__name__)


def load_prev_result(db: Session, task_id: int) -> Any:
    """Latest non-error result value for a task, decoded; None if there is none."""
    raw = db.execute(
        select(Result.result)
        .where(Result.task_id == task_id, Result.is_error.is_(False))
        .order_by(desc(Result.created_at), desc(Result.id))
        .limit(1)
    ).scalar_one_or_none()
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except ValueError:
        logger.warning("task %s: stored result is not JSON; passing it through as text", task_id)
        return raw


def _commit(db: Session, task_id: int, what: str) -> None:
    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise StoreError(f"{what} failed: {exc}", task_id=task_id) from exc


def _release_lease(task: Task, worker_id: str) -> None:
    # release lock only if we own it
    if task.locked_by == worker_id:
        task.locked_by = None
        task.locked_until = None


def _lease_lost(task: Task, worker_id: str) -> bool:
    return task.locked_by is not None and task.locked_by != worker_id


def _send_email(db: Session, mailer: Optional[Mailer], task: Task, subject: str, body: str) -> None:
    if mailer is None:
        return
    try:
        user = db.get(User, task.user_id)
    except SQLAlchemyError:
        logger.exception("task %s: could not load owner %s for email", task.id, task.user_id)
        return
    if user is None:
        logger.warning("task %s: owner %s not found; email skipped", task.id, task.user_id)
        return
    mailer.send(to=user.email, subject=subject, html_body=body)


def handle_success(
    session_factory: sessionmaker,
    *,
    task_id: int,
    outcome: Success,
    now: datetime,
    worker_id: str,
    mailer: Optional[Mailer] = None,
    scheduled_for: Optional[datetime] = None,
) -> bool:
    with session_factory() as db:
        task = db.get(Task, task_id)
        if task is None:
            logger.info("task %s was deleted while running; outcome dropped", task_id)
            return False
        if _lease_lost(task, worker_id):
            logger.warning("task %s: lease now held by %s; outcome dropped", task_id, task.locked_by)
            return False

        # null results are discarded, and a notification only ever rides on a stored result
        if outcome.result is not None:
            result = Result(
                task_id=task.id,
                user_id=task.user_id,
                result=dump_json(outcome.result),
                is_error=False,
            )
            db.add(result)
            _commit(db, task_id, "insert result")

            if outcome.notification:
                db.add(
                    Notification(
                        task_id=task.id,
                        user_id=task.user_id,
                        result_id=result.id,
                        notification=outcome.notification,
                        is_read=False,
                    )
                )
                _commit(db, task_id, "insert notification")
                subject, body = notification_email(task.name, outcome.notification)
                _send_email(db, mailer, task, subject, body)

        if scheduled_for is not None and task.next_run < scheduled_for:
            # re-armed while running; keep the earlier next_run
            logger.info("task %s was re-armed during its run; next_run kept at %s", task_id, task.next_run)
        else:
            # interval is read from the row as it is now; it may have been edited mid-run
            task.next_run = now + timedelta(minutes=max(1, int(task.interval or 1)))
        _release_lease(task, worker_id)
        _commit(db, task_id, "reschedule task")
        return True


def handle_failure(
    session_factory: sessionmaker,
    *,
    task_id: int,
    outcome: Failure,
    worker_id: str,
    mailer: Optional[Mailer] = None,
) -> bool:
    with session_factory() as db:
        task = db.get(Task, task_id)
        if task is None:
            logger.info("task %s was deleted while running; failure dropped", task_id)
            return False
        if _lease_lost(task, worker_id):
            logger.warning("task %s: lease now held by %s; failure dropped", task_id, task.locked_by)
            return False

        task.active = False
        _release_lease(task, worker_id)
        _commit(db, task_id, "disable task")

        db.add(
            Result(
                task_id=task.id,
                user_id=task.user_id,
                result=f"Error: {outcome.message}",
                is_error=True,
            )
        )
        _commit(db, task_id, "insert error result")

        subject, body = failure_email(task.name, outcome.message)
        _send_email(db, mailer, task, subject, body)
        return True


def handle_outcome(
    session_factory: sessionmaker,
    *,
    task_id: int,
    outcome: Outcome,
    now: datetime,
    worker_id: str,
    mailer: Optional[Mailer] = None,
    scheduled_for: Optional[datetime] = None,
) -> Optional[bool]:
    """
    Persist one execution outcome. Returns True for Success, False for Failure,
    None when the outcome was dropped (task deleted or lease taken over).

    Each write commits on its own, so a StoreError half-way leaves the earlier
    writes in place.
    """
    if isinstance(outcome, Success):
        recorded = handle_success(
            session_factory,
            task_id=task_id,
            outcome=outcome,
            now=now,
            worker_id=worker_id,
            mailer=mailer,
            scheduled_for=scheduled_for,
        )
        return True if recorded else None
    recorded = handle_failure(
        session_factory, task_id=task_id, outcome=outcome, worker_id=worker_id, mailer=mailer
    )
    return False if recorded else None
