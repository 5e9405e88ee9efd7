from __future__ import annotations

import threading
from datetime import date
from typing import Any, Callable, Mapping

from sqlalchemy.orm import Session as SASession

from logging_utils import get_logger
from models.crawl_runs import (
    COUNTER_FIELDS,
    STATUS_CANCELLED,
    STATUS_COMPLETED,
    STATUS_FAILED,
    STATUS_PENDING,
    STATUS_RUNNING,
    TERMINAL_STATUSES,
    CrawlRun,
)
from utils.time_utils import utcnow

logger = get_logger(__name__)

_ERROR_MAX_CHARS = 4000


class CrawlAlreadyRunning(RuntimeError):
    def __init__(self, job_name: str, run_id: int):
        super().__init__(f"{job_name} already has run {run_id} in progress")
        self.job_name = job_name
        self.run_id = run_id


class RunNotFound(LookupError):
    pass


class RunTracker:
    """Lifecycle of CrawlRun rows: pending -> running -> completed|failed|cancelled.

    Each call opens and closes its own session, so the tracker is safe to use
    from crawler worker threads and from request handlers at the same time.
    """

    # Guards the "one running run per job" check-then-set within this process.
    _start_lock = threading.Lock()

    def __init__(
        self,
        session_factory: Callable[[], SASession],
        *,
        job_name: str = "exhibit_crawler",
    ) -> None:
        self.session_factory = session_factory
        self.job_name = job_name

    def _load(self, session: SASession, run_id: int) -> CrawlRun:
        run = session.get(CrawlRun, run_id)
        if run is None:
            raise RunNotFound(f"crawl run {run_id} not found")
        return run

    def create(
        self,
        *,
        mode: str = "refresh",
        date_from: date | None = None,
        date_to: date | None = None,
        triggered_by: str = "api",
    ) -> int:
        with self.session_factory() as s:
            run = CrawlRun(
                job_name=self.job_name,
                mode=mode,
                status=STATUS_PENDING,
                triggered_by=triggered_by,
                date_from=date_from,
                date_to=date_to,
            )
            s.add(run)
            s.commit()
            logger.info(
                "Crawl run created | run_id=%s mode=%s date_from=%s date_to=%s triggered_by=%s",
                run.id,
                mode,
                date_from,
                date_to,
                triggered_by,
            )
            return int(run.id)

    def running_run_id(self) -> int | None:
        with self.session_factory() as s:
            run = (
                s.query(CrawlRun)
                .filter(CrawlRun.job_name == self.job_name, CrawlRun.status == STATUS_RUNNING)
                .order_by(CrawlRun.id.desc())
                .first()
            )
            return int(run.id) if run is not None else None

    def start(self, run_id: int) -> None:
        """Move a pending run to running.

        Raises:
            CrawlAlreadyRunning: another run of this job is running.
            ValueError: the run is not pending.
        """

        with self._start_lock, self.session_factory() as s:
            other = (
                s.query(CrawlRun.id)
                .filter(
                    CrawlRun.job_name == self.job_name,
                    CrawlRun.status == STATUS_RUNNING,
                    CrawlRun.id != run_id,
                )
                .first()
            )
            if other is not None:
                raise CrawlAlreadyRunning(self.job_name, int(other[0]))

            run = self._load(s, run_id)
            if run.status != STATUS_PENDING:
                raise ValueError(f"crawl run {run_id} is {run.status}, not pending")

            run.status = STATUS_RUNNING
            run.started_at = utcnow()
            s.commit()
            logger.info("Crawl run started | run_id=%s", run_id)

    @staticmethod
    def _apply_counters(run: CrawlRun, counters: Mapping[str, int] | None) -> None:
        if not counters:
            return
        for name in COUNTER_FIELDS:
            if name in counters:
                current = getattr(run, name) or 0
                setattr(run, name, max(current, int(counters[name])))

    def progress(self, run_id: int, counters: Mapping[str, int]) -> None:
        """Persist counters of a live run; counters never go down."""

        with self.session_factory() as s:
            run = self._load(s, run_id)
            if run.status != STATUS_RUNNING:
                return
            self._apply_counters(run, counters)
            s.commit()

    def _finish(
        self,
        run_id: int,
        status: str,
        *,
        counters: Mapping[str, int] | None = None,
        error_message: str | None = None,
    ) -> bool:
        with self.session_factory() as s:
            run = self._load(s, run_id)
            if run.status in TERMINAL_STATUSES:
                logger.warning(
                    "Ignoring transition of finished run | run_id=%s status=%s requested=%s",
                    run_id,
                    run.status,
                    status,
                )
                return False

            self._apply_counters(run, counters)
            run.status = status
            run.completed_at = utcnow()
            if error_message:
                run.error_message = error_message[:_ERROR_MAX_CHARS]
            s.commit()

            logger.info(
                "Crawl run finished | run_id=%s status=%s checked=%s found=%s imported=%s duplicates=%s failed=%s",
                run_id,
                status,
                run.checked,
                run.found,
                run.imported,
                run.duplicates,
                run.failed,
            )
            return True

    def complete(self, run_id: int, counters: Mapping[str, int] | None = None) -> bool:
        return self._finish(run_id, STATUS_COMPLETED, counters=counters)

    def fail(
        self, run_id: int, error_message: str, counters: Mapping[str, int] | None = None
    ) -> bool:
        return self._finish(
            run_id, STATUS_FAILED, counters=counters, error_message=error_message
        )

    def cancel(
        self,
        run_id: int,
        reason: str = "cancelled",
        counters: Mapping[str, int] | None = None,
    ) -> bool:
        return self._finish(
            run_id, STATUS_CANCELLED, counters=counters, error_message=reason
        )

    def recover_interrupted(self) -> int:
        """Fail runs a dead process left 'running' or never started.

        Call once at process start, before any crawl is launched.
        """

        with self.session_factory() as s:
            stale = (
                s.query(CrawlRun)
                .filter(
                    CrawlRun.job_name == self.job_name,
                    CrawlRun.status.in_([STATUS_RUNNING, STATUS_PENDING]),
                )
                .all()
            )
            now = utcnow()
            for run in stale:
                run.status = STATUS_FAILED
                run.completed_at = now
                run.error_message = "interrupted: process exited before the run finished"
            s.commit()

        if stale:
            logger.warning("Recovered interrupted crawl runs | count=%s", len(stale))
        return len(stale)

    def get(self, run_id: int) -> dict[str, Any] | None:
        with self.session_factory() as s:
            run = s.get(CrawlRun, run_id)
            return run.as_dict() if run is not None else None

    def list_recent(self, limit: int = 10) -> list[dict[str, Any]]:
        with self.session_factory() as s:
            rows = (
                s.query(CrawlRun)
                .filter(CrawlRun.job_name == self.job_name)
                .order_by(CrawlRun.id.desc())
                .limit(max(1, int(limit)))
                .all()
            )
            return [r.as_dict() for r in rows]
