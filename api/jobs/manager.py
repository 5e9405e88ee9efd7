import threading
import time
import traceback
from dataclasses import dataclass
from datetime import date
from typing import Any, Callable, Dict, Optional

import db
from jobs.exhibit_crawler import CrawlConfig, ExhibitCrawler, resolve_date_range
from logging_utils import get_logger
from utils.run_tracker import CrawlAlreadyRunning, RunTracker

logger = get_logger(__name__)

JOB_NAME = "exhibit_crawler"


def _default_session_factory():
    # Resolved per call so tests can swap db.SessionLocal.
    return db.SessionLocal()


@dataclass
class JobState:
    running: bool = False
    run_id: Optional[int] = None
    started_at: Optional[float] = None
    ended_at: Optional[float] = None
    error: Optional[str] = None
    stop_requested: bool = False

    def as_dict(self) -> Dict[str, Any]:
        return {
            "running": self.running,
            "run_id": self.run_id,
            "started_at": self.started_at,
            "ended_at": self.ended_at,
            "error": self.error,
            "stop_requested": self.stop_requested,
        }


class CrawlJobManager:
    """Runs one exhibit crawl at a time in a background thread.

    The HTTP trigger returns as soon as the run row exists; the outcome is
    observed through the run tracker, never through the trigger response.
    """

    def __init__(
        self,
        *,
        session_factory: Callable[[], Any] = _default_session_factory,
        crawler_factory: Callable[[CrawlConfig, RunTracker], ExhibitCrawler] | None = None,
    ) -> None:
        self._lock = threading.Lock()
        self._state = JobState()
        self._cancel_event: threading.Event | None = None
        self._thread: threading.Thread | None = None
        self.session_factory = session_factory
        self.tracker = RunTracker(session_factory, job_name=JOB_NAME)
        self._crawler_factory = crawler_factory or (
            lambda config, tracker: ExhibitCrawler(
                config, session_factory=session_factory, tracker=tracker
            )
        )

    def get_state(self) -> Dict[str, Any]:
        with self._lock:
            return self._state.as_dict()

    def is_running(self) -> bool:
        with self._lock:
            return self._state.running

    def recover_interrupted(self) -> int:
        """Fail runs a previous process left behind; skip while a crawl is live here."""

        if self.is_running():
            return 0
        return self.tracker.recover_interrupted()

    def launch(
        self,
        *,
        mode: str = "refresh",
        date_from: date | None = None,
        date_to: date | None = None,
        ciks: Any = None,
        workers: int | None = None,
        discover: bool | None = None,
        discover_limit: int | None = None,
        triggered_by: str = "api",
    ) -> int:
        """Create a run and start crawling it in the background.

        Raises:
            CrawlAlreadyRunning: a run of this job is already running.
            ValueError: bad mode, date window, CIK list or worker count.
        """

        with self._lock:
            if self._state.running and self._state.run_id is not None:
                raise CrawlAlreadyRunning(JOB_NAME, self._state.run_id)
            other = self.tracker.running_run_id()
            if other is not None:
                raise CrawlAlreadyRunning(JOB_NAME, other)

            config = CrawlConfig.from_settings(
                ciks=ciks, workers=workers, discover=discover, discover_limit=discover_limit
            )
            with self.session_factory() as s:
                window = resolve_date_range(
                    s,
                    mode=mode,
                    date_from=date_from,
                    date_to=date_to,
                    lookback_days=config.lookback_days,
                )

            run_id = self.tracker.create(
                mode=mode, date_from=window[0], date_to=window[1], triggered_by=triggered_by
            )
            cancel_event = threading.Event()

            self._state = JobState(running=True, run_id=run_id, started_at=time.time())
            self._cancel_event = cancel_event

        def _runner() -> None:
            try:
                crawler = self._crawler_factory(config, self.tracker)
                crawler.run(
                    run_id,
                    date_from=window[0],
                    date_to=window[1],
                    cancel_event=cancel_event,
                )
            except Exception as e:
                logger.exception("Background crawl failed | run_id=%s", run_id)
                with self._lock:
                    self._state.error = traceback.format_exc()
                # No-op when the crawler already recorded the failure.
                self.tracker.fail(run_id, f"{type(e).__name__}: {e}")
            finally:
                with self._lock:
                    self._state.running = False
                    self._state.ended_at = time.time()
                    self._cancel_event = None

        t = threading.Thread(target=_runner, name=f"exhibit_crawler-{run_id}", daemon=True)
        with self._lock:
            self._thread = t
        t.start()
        logger.info("Crawl launched | run_id=%s mode=%s triggered_by=%s", run_id, mode, triggered_by)
        return run_id

    def request_stop(self, run_id: int | None = None) -> bool:
        """Ask the live crawl to stop; in-flight requests finish first.

        Returns False when `run_id` is not the crawl running in this process.
        """

        with self._lock:
            if not self._state.running or self._cancel_event is None:
                return False
            if run_id is not None and run_id != self._state.run_id:
                return False
            self._state.stop_requested = True
            self._cancel_event.set()
            logger.info("Crawl stop requested | run_id=%s", self._state.run_id)
            return True

    def wait(self, timeout: float | None = None) -> bool:
        """Join the background thread; True when no crawl is left running."""

        with self._lock:
            t = self._thread
        if t is not None:
            t.join(timeout)
        return not self.is_running()


# Module-level singleton shared by the API blueprints and app startup.
crawl_job_manager = CrawlJobManager()
