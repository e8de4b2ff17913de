from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import desc, func, select
from sqlalchemy.orm import Session

from robojs.api.deps import get_current_user
from robojs.core.config import get_settings
from robojs.core.db import get_db
from robojs.models.collection import Collection
from robojs.models.notification import Notification
from robojs.models.result import Result
from robojs.models.task import Task
from robojs.models.user import User
from robojs.schemas.entities import (
    NotificationOut,
    ResultWithNotificationOut,
    TaskOut,
    TaskUpdate,
    notification_out,
    result_out,
    task_out,
)

router = APIRouter(prefix="/tasks", tags=["tasks"])

# re-armed tasks get a next_run in the past so the next cycle picks them up
_RUN_NOW = datetime(1970, 1, 1)


def _latest_result(db: Session, task_id: int) -> Optional[Result]:
    return db.execute(
        select(Result)
        .where(Result.task_id == task_id)
        .order_by(desc(Result.created_at), desc(Result.id))
        .limit(1)
    ).scalar_one_or_none()


def _get_owned_task(db: Session, task_id: int, user: User) -> Task:
    task = db.get(Task, task_id)
    if not task or task.user_id != user.id:
        raise HTTPException(status_code=404, detail="Task not found")
    return task


def _count_active_tasks(db: Session, *, user_id: str, exclude_task_id: int | None = None) -> int:
    q = (
        select(func.count())
        .select_from(Task)
        .where(Task.user_id == user_id, Task.active.is_(True))
    )
    if exclude_task_id is not None:
        q = q.where(Task.id != exclude_task_id)
    return int(db.execute(q).scalar_one() or 0)


def can_enable_task(db: Session, user: User, task_id: int) -> bool:
    settings = get_settings()
    limit = settings.TASKS_MAX_ACTIVE_MEMBER if user.role == "member" else settings.TASKS_MAX_ACTIVE_FREE
    return _count_active_tasks(db, user_id=user.id, exclude_task_id=task_id) < int(limit)


@router.get("", response_model=List[TaskOut])
def list_tasks(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    tasks = db.execute(
        select(Task).where(Task.user_id == current_user.id).order_by(desc(Task.updated_at))
    ).scalars().all()
    return [task_out(t, _latest_result(db, t.id)) for t in tasks]


@router.get("/{task_id}", response_model=TaskOut)
def get_task(
    task_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    task = _get_owned_task(db, task_id, current_user)
    return task_out(task, _latest_result(db, task.id))


@router.put("/{task_id}", response_model=TaskOut)
def update_task(
    task_id: int,
    payload: TaskUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    task = _get_owned_task(db, task_id, current_user)

    if payload.active is True and not can_enable_task(db, current_user, task.id):
        raise HTTPException(status_code=409, detail="Active tasks limit exceeded")

    if payload.collection_id is not None:
        collection = db.get(Collection, payload.collection_id)
        if not collection or collection.user_id != current_user.id:
            raise HTTPException(status_code=400, detail="Unknown collection")
        task.collection_id = collection.id
    if payload.name is not None:
        name = payload.name.strip()
        if not name:
            raise HTTPException(status_code=400, detail="name must not be empty")
        task.name = name
    if payload.description is not None:
        task.description = payload.description
    if payload.code is not None:
        task.code = payload.code
    if payload.interval is not None:
        task.interval = int(payload.interval)
    if payload.active is not None:
        task.active = bool(payload.active)
        if payload.active:
            # run (or re-run after an error) as soon as possible
            task.next_run = _RUN_NOW

    db.commit()
    db.refresh(task)
    return task_out(task, _latest_result(db, task.id))


@router.delete("/{task_id}")
def delete_task(
    task_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    task = _get_owned_task(db, task_id, current_user)
    # row-by-row so every removal reaches the owner's other sessions
    for n in db.execute(select(Notification).where(Notification.task_id == task.id)).scalars():
        db.delete(n)
    for r in db.execute(select(Result).where(Result.task_id == task.id)).scalars():
        db.delete(r)
    db.delete(task)
    db.commit()
    return {"ok": True}


@router.get("/{task_id}/results", response_model=List[ResultWithNotificationOut])
def list_task_results(
    task_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    task = _get_owned_task(db, task_id, current_user)
    results = db.execute(
        select(Result)
        .where(Result.task_id == task.id, Result.user_id == current_user.id)
        .order_by(desc(Result.created_at), desc(Result.id))
        .limit(100)
    ).scalars().all()
    notes = {
        n.result_id: n
        for n in db.execute(
            select(Notification).where(Notification.result_id.in_([r.id for r in results]))
        ).scalars()
    } if results else {}

    out = []
    for r in results:
        item = ResultWithNotificationOut(**result_out(r).model_dump())
        if r.id in notes:
            item.notification = notification_out(notes[r.id])
        out.append(item)
    return out


@router.get("/{task_id}/notifications", response_model=List[NotificationOut])
def list_task_notifications(
    task_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    task = _get_owned_task(db, task_id, current_user)
    rows = db.execute(
        select(Notification)
        .where(Notification.task_id == task.id, Notification.user_id == current_user.id)
        .order_by(desc(Notification.created_at), desc(Notification.id))
    ).scalars().all()
    return [notification_out(n) for n in rows]
