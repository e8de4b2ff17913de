from __future__ import annotations

import argparse
import asyncio
import logging
import socket
import time
import uuid
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy import asc, or_, select
from sqlalchemy.orm import Session, sessionmaker

from robojs.core.change_events import HttpPublisher, install_change_capture
from robojs.core.config import get_settings
from robojs.core.db import SessionLocal
from robojs.core.errors import StoreError
from robojs.core.execution import ExecutionCapability, Failure, invoke_task
from robojs.core.executor_client import HttpExecutionCapability
from robojs.core.mailer import Mailer
from robojs.core.outcomes import handle_outcome, load_prev_result
from robojs.models.base import utcnow
from robojs.models.task import Task


logger = logging.getLogger("scheduler-worker")


@dataclass
class TickResult:
    claimed: int = 0
    executed: int = 0
    ok: int = 0
    failed: int = 0
    errored: int = 0
    skipped: int = 0


def claim_due_tasks(
    db: Session,
    *,
    now: datetime,
    limit: int,
    lease_seconds: int,
    worker_id: str,
) -> List[int]:
    """
    Lease every task that is due (active, next_run <= now), earliest first.

    The lease keeps an overlapping cycle (or a second worker) from picking the
    same rows until this cycle releases them or the lease runs out.
    """
    lease_until = now + timedelta(seconds=max(10, lease_seconds))
    q = (
        select(Task)
        .where(
            Task.active.is_(True),
            Task.next_run <= now,
            or_(Task.locked_until.is_(None), Task.locked_until <= now),
        )
        .order_by(asc(Task.next_run), asc(Task.id))
        .with_for_update(skip_locked=True)
    )
    if limit > 0:
        q = q.limit(limit)
    tasks = db.execute(q).scalars().all()
    ids: List[int] = []
    for t in tasks:
        t.locked_by = worker_id
        t.locked_until = lease_until
        ids.append(int(t.id))
    if ids:
        db.commit()
    return ids


def run_one_task(
    task_id: int,
    *,
    worker_id: str,
    session_factory: sessionmaker,
    capability: ExecutionCapability,
    mailer: Optional[Mailer] = None,
    timeout_seconds: float = 30.0,
) -> Optional[bool]:
    """
    Run one claimed task and persist its outcome.

    Returns True on success, False on failure, None when the task was skipped
    (deleted, disabled or lease lost since the claim) or its outcome dropped.
    """
    now = utcnow()
    with session_factory() as db:
        task = db.get(Task, task_id)
        if not task:
            return None
        if task.locked_by != worker_id or not task.locked_until or task.locked_until < now:
            # lease lost
            return None
        if not task.active:
            # disabled between claim and run
            task.locked_by = None
            task.locked_until = None
            db.commit()
            return None

        code = task.code or ""
        scheduled_for = task.next_run
        prev_result = load_prev_result(db, task.id)

    started = time.monotonic()
    outcome = asyncio.run(
        invoke_task(capability, code=code, prev_result=prev_result, timeout_seconds=timeout_seconds)
    )
    finished_at = utcnow()

    if isinstance(outcome, Failure):
        logger.info(
            "task %s failed in %.2fs: %s", task_id, time.monotonic() - started, outcome.message
        )
    else:
        logger.info("task %s succeeded in %.2fs", task_id, time.monotonic() - started)

    return handle_outcome(
        session_factory,
        task_id=task_id,
        outcome=outcome,
        now=finished_at,
        worker_id=worker_id,
        mailer=mailer,
        scheduled_for=scheduled_for,
    )


def tick(
    *,
    worker_id: str,
    batch: int = 0,
    lease_seconds: Optional[int] = None,
    concurrency: Optional[int] = None,
    timeout_seconds: Optional[float] = None,
    session_factory: Optional[sessionmaker] = None,
    capability: Optional[ExecutionCapability] = None,
    mailer: Optional[Mailer] = None,
) -> TickResult:
    """
    One scheduler cycle: claim everything due, run it concurrently, wait for all.

    A task's error never stops the others; store errors are counted in `errored`.
    """
    settings = get_settings()
    session_factory = session_factory or SessionLocal
    capability = capability or HttpExecutionCapability(settings.EXECUTOR_URL)
    timeout = float(timeout_seconds or settings.EXECUTOR_TIMEOUT_SECONDS or 30)
    lease = int(lease_seconds if lease_seconds is not None else settings.SCHEDULER_LEASE_SECONDS)
    # lease must outlive the slowest possible invocation
    lease = max(lease, int(timeout) + 30)
    concurrency = int(concurrency if concurrency is not None else settings.SCHEDULER_CONCURRENCY)

    now = utcnow()
    with session_factory() as db:
        ids = claim_due_tasks(
            db,
            now=now,
            limit=int(batch or 0),
            lease_seconds=lease,
            worker_id=worker_id,
        )

    res = TickResult(claimed=len(ids))
    if not ids:
        return res

    max_workers = concurrency if concurrency > 0 else len(ids)
    with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="robojs-task") as pool:
        futures = {
            pool.submit(
                run_one_task,
                task_id,
                worker_id=worker_id,
                session_factory=session_factory,
                capability=capability,
                mailer=mailer,
                timeout_seconds=timeout,
            ): task_id
            for task_id in ids
        }
        for fut in as_completed(futures):
            task_id = futures[fut]
            try:
                ok = fut.result()
            except StoreError:
                res.executed += 1
                res.errored += 1
                logger.exception("task %s: outcome not fully persisted", task_id)
                continue
            except Exception:
                res.executed += 1
                res.errored += 1
                logger.exception("task %s: processing failed", task_id)
                continue
            if ok is None:
                res.skipped += 1
                continue
            res.executed += 1
            if ok:
                res.ok += 1
            else:
                res.failed += 1
    return res


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="robojs scheduler worker")
    parser.add_argument("--once", action="store_true", help="Run one cycle and exit")
    parser.add_argument("--poll", type=int, default=60, help="Poll interval seconds (loop mode)")
    parser.add_argument("--batch", type=int, default=0, help="Max tasks claimed per cycle (0 = all due)")
    parser.add_argument("--lease", type=int, default=None, help="Lease seconds for claimed tasks")
    parser.add_argument(
        "--concurrency", type=int, default=None, help="Max simultaneous executions (0 = unbounded)"
    )
    parser.add_argument("--log-level", type=str, default="INFO")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    settings = get_settings()
    logger.info(
        "starting scheduler-worker executor=%s concurrency=%s",
        settings.EXECUTOR_URL,
        args.concurrency if args.concurrency is not None else settings.SCHEDULER_CONCURRENCY,
    )

    if settings.FANOUT_URL and settings.FANOUT_SECRET:
        install_change_capture(SessionLocal, HttpPublisher.from_settings())
    else:
        logger.warning("FANOUT_URL/FANOUT_SECRET not set; clients will only see changes after a reload")

    host = socket.gethostname()
    worker_id = f"{host}:{uuid.uuid4().hex[:8]}"
    mailer = Mailer.from_settings()

    def _tick() -> TickResult:
        return tick(
            worker_id=worker_id,
            batch=args.batch,
            lease_seconds=args.lease,
            concurrency=args.concurrency,
            mailer=mailer,
        )

    if args.once:
        res = _tick()
        logger.info(
            "tick claimed=%s executed=%s ok=%s failed=%s errored=%s skipped=%s",
            res.claimed,
            res.executed,
            res.ok,
            res.failed,
            res.errored,
            res.skipped,
        )
        return 0

    while True:
        try:
            res = _tick()
            if res.claimed:
                logger.info(
                    "tick claimed=%s executed=%s ok=%s failed=%s errored=%s skipped=%s",
                    res.claimed,
                    res.executed,
                    res.ok,
                    res.failed,
                    res.errored,
                    res.skipped,
                )
        except Exception:
            logger.exception("tick failed")
        time.sleep(max(1, int(args.poll)))


if __name__ == "__main__":
    raise SystemExit(main())
