from __future__ import annotations

import argparse
import os
import signal
import sys
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import date, timedelta
from pathlib import Path
from typing import Any, Callable, Iterable

# Allow running this file directly (e.g. `python jobs/exhibit_crawler.py`) by
# ensuring the project root is importable.
_PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(_PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(_PROJECT_ROOT))

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session as SASession

from db import Base, SessionLocal, engine
from logging_utils import configure_app_logging, get_logger
from settings import SETTINGS
from utils.document_store import latest_filing_date, upsert_candidate
from utils.exhibit_detector import (
    DEFAULT_PATTERNS,
    LABEL_TECHNICAL_REPORT_SUMMARY,
    CandidateDocument,
    DetectionPatterns,
    build_candidate,
    detect_exhibits,
    guess_exhibit_filenames,
    parse_manifest,
)
from utils.filing_index import (
    DEFAULT_FORM_TYPES,
    DEFAULT_MINING_CIKS,
    FilingRecord,
    FilingRef,
    discover_mining_companies,
    iter_company_filings,
    refresh_date_range,
)
from utils.rate_limiter import AcquireCancelled
from utils.run_tracker import CrawlAlreadyRunning, RunTracker
from utils.sec_edgar_api import SecEdgarClient, SecRateLimitedError, archive_url, normalize_cik
from utils.time_utils import parse_ymd_date, utc_today

logger = get_logger(__name__)

__all__ = [
    "CrawlAlreadyRunning",
    "CrawlConfig",
    "CrawlCounters",
    "ExhibitCrawler",
    "resolve_date_range",
    "main",
]

MODE_REFRESH = "refresh"
MODE_FULL = "full"
MODES = (MODE_REFRESH, MODE_FULL)


def _parse_cik_list(value: str | Iterable[str] | None) -> tuple[str, ...]:
    if not value:
        return ()
    items = value.split(",") if isinstance(value, str) else list(value)
    out: list[str] = []
    for raw in items:
        raw = str(raw).strip()
        if not raw:
            continue
        cik = normalize_cik(raw)
        if cik not in out:
            out.append(cik)
    return tuple(out)


@dataclass(frozen=True)
class CrawlConfig:
    """Everything that differs between crawls: targets, forms, keywords, pacing."""

    ciks: tuple[str, ...] = DEFAULT_MINING_CIKS
    form_types: tuple[str, ...] = DEFAULT_FORM_TYPES
    patterns: DetectionPatterns = DEFAULT_PATTERNS
    workers: int = 5
    progress_every: int = 25
    guess_filenames: bool = True
    lookback_days: int = 30
    # Replace `ciks` with issuers found in the EDGAR ticker directory.
    discover: bool = False
    discover_limit: int | None = None

    def __post_init__(self) -> None:
        if not self.ciks:
            raise ValueError("CrawlConfig needs at least one CIK")
        if self.workers < 1:
            raise ValueError("workers must be >= 1")
        if self.progress_every < 1:
            raise ValueError("progress_every must be >= 1")
        if self.discover_limit is not None and self.discover_limit < 1:
            raise ValueError("discover_limit must be >= 1")

    @classmethod
    def from_settings(
        cls,
        *,
        ciks: str | Iterable[str] | None = None,
        workers: int | None = None,
        discover: bool | None = None,
        discover_limit: int | None = None,
        **overrides: Any,
    ) -> "CrawlConfig":
        targets = _parse_cik_list(ciks) or _parse_cik_list(
            str(SETTINGS.get("CRAWL_TARGET_CIKS") or "")
        )
        return cls(
            ciks=targets or DEFAULT_MINING_CIKS,
            workers=int(workers if workers is not None else SETTINGS["CRAWL_WORKERS"]),
            progress_every=int(SETTINGS["CRAWL_PROGRESS_EVERY"]),
            lookback_days=int(SETTINGS["CRAWL_DEFAULT_LOOKBACK_DAYS"]),
            discover=bool(discover if discover is not None else SETTINGS["CRAWL_DISCOVER"]),
            discover_limit=(
                discover_limit
                if discover_limit is not None
                else (int(SETTINGS["CRAWL_DISCOVER_LIMIT"]) or None)
            ),
            **overrides,
        )


@dataclass
class CrawlCounters:
    checked: int = 0
    found: int = 0
    imported: int = 0
    duplicates: int = 0
    failed: int = 0
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def add(self, name: str, n: int = 1) -> int:
        with self._lock:
            value = getattr(self, name) + n
            setattr(self, name, value)
            return value

    def snapshot(self) -> dict[str, int]:
        with self._lock:
            return {
                "checked": self.checked,
                "found": self.found,
                "imported": self.imported,
                "duplicates": self.duplicates,
                "failed": self.failed,
            }


def resolve_date_range(
    session: SASession,
    *,
    mode: str = MODE_REFRESH,
    date_from: date | None = None,
    date_to: date | None = None,
    today: date | None = None,
    lookback_days: int = 30,
) -> tuple[date | None, date]:
    """Filing-date window ``[date_from, date_to)`` for a new run.

    refresh: resume the day after the newest stored filing (or look back
    `lookback_days` on an empty store). When the store already holds today's
    filings the refresh window is today alone. full: open lower bound.
    Explicit dates always win over computed ones; an explicit empty window
    raises ValueError.
    """

    if mode not in MODES:
        raise ValueError(f"unknown crawl mode: {mode!r}")

    today = today or utc_today()
    if mode == MODE_REFRESH:
        computed_from, computed_to = refresh_date_range(
            latest_filing_date(session), today=today, lookback_days=lookback_days
        )
    else:
        computed_from, computed_to = None, refresh_date_range(None, today=today)[1]

    start = date_from if date_from is not None else computed_from
    end = date_to if date_to is not None else computed_to
    if start is not None and start >= end:
        if mode == MODE_REFRESH and date_from is None and date_to is None:
            # Store already holds today's filings: re-scan today, dedup drops repeats.
            start = end - timedelta(days=1)
        else:
            raise ValueError(f"empty date range: {start.isoformat()} >= {end.isoformat()}")
    return start, end


class ExhibitCrawler:
    """Walk target companies' filings and store technical-report exhibits.

    Companies are fanned out over a thread pool; filings of one company are
    handled in upstream order by the same worker. Every HTTP call goes through
    the client's shared rate limiter.
    """

    def __init__(
        self,
        config: CrawlConfig,
        *,
        client: SecEdgarClient | None = None,
        client_factory: Callable[[threading.Event], SecEdgarClient] | None = None,
        session_factory: Callable[[], SASession] | None = None,
        tracker: RunTracker | None = None,
    ) -> None:
        self.config = config
        self._client = client
        self._client_factory = client_factory or (lambda ev: SecEdgarClient(cancel_event=ev))
        self.session_factory = session_factory or SessionLocal
        self.tracker = tracker or RunTracker(self.session_factory)

    # -- per item -----------------------------------------------------------

    def _store(self, candidate: CandidateDocument, *, run_id: int, counters: CrawlCounters) -> None:
        with self.session_factory() as s:
            inserted = upsert_candidate(s, candidate, crawl_run_id=run_id)
        if inserted:
            counters.add("imported")
            logger.info(
                "Stored technical document | run_id=%s cik=%s accession=%s doc=%s label=%s",
                run_id,
                candidate.cik,
                candidate.accession_number,
                candidate.document_name,
                candidate.exhibit_label,
            )
        else:
            counters.add("duplicates")

    def _guess_candidates(
        self, client: SecEdgarClient, record: FilingRecord, filing: FilingRef
    ) -> list[CandidateDocument]:
        out: list[CandidateDocument] = []
        for name in guess_exhibit_filenames(filing, record.ticker):
            url = archive_url(record.cik, filing.accession_number, name)
            if client.document_exists(url):
                out.append(
                    build_candidate(
                        record,
                        filing,
                        document_name=name,
                        exhibit_label=LABEL_TECHNICAL_REPORT_SUMMARY,
                    )
                )
        return out

    def _process_filing(
        self,
        client: SecEdgarClient,
        record: FilingRecord,
        filing: FilingRef,
        *,
        run_id: int,
        counters: CrawlCounters,
    ) -> None:
        manifest = client.fetch_filing_manifest(record.cik, filing.accession_number)
        if manifest is not None:
            candidates = detect_exhibits(
                record, filing, parse_manifest(manifest), self.config.patterns
            )
        elif self.config.guess_filenames:
            logger.debug(
                "No manifest, probing filename guesses | cik=%s accession=%s",
                record.cik,
                filing.accession_number,
            )
            candidates = self._guess_candidates(client, record, filing)
        else:
            candidates = []

        if candidates:
            counters.add("found", len(candidates))
        for candidate in candidates:
            self._store(candidate, run_id=run_id, counters=counters)

    def _company_failed(self, counters: CrawlCounters, cik: str, err: Exception) -> None:
        if isinstance(err, SecRateLimitedError):
            logger.warning("Company skipped while rate limited | cik=%s err=%s", cik, err)
            return
        if isinstance(err, SQLAlchemyError):
            raise err
        counters.add("failed")
        logger.warning("Company fetch failed | cik=%s err=%s", cik, err)

    def _crawl_company(
        self,
        client: SecEdgarClient,
        cik: str,
        *,
        run_id: int,
        date_from: date | None,
        date_to: date | None,
        counters: CrawlCounters,
        stop: threading.Event,
    ) -> bool:
        """Walk one company; False when a stop request cut the walk short."""

        if stop.is_set():
            return False

        filings = iter_company_filings(
            client,
            [cik],
            form_types=self.config.form_types,
            date_from=date_from,
            date_to=date_to,
            on_error=lambda c, e: self._company_failed(counters, c, e),
        )
        for record, filing in filings:
            if stop.is_set():
                return False
            try:
                self._process_filing(client, record, filing, run_id=run_id, counters=counters)
            except (AcquireCancelled, SQLAlchemyError):
                raise
            except SecRateLimitedError as e:
                # Systemic condition, not an item failure.
                logger.warning(
                    "Filing skipped while rate limited | cik=%s accession=%s err=%s",
                    record.cik,
                    filing.accession_number,
                    e,
                )
            except Exception as e:
                counters.add("failed")
                logger.warning(
                    "Filing failed | cik=%s accession=%s form_type=%s err=%s",
                    record.cik,
                    filing.accession_number,
                    filing.form_type,
                    e,
                )

            checked = counters.add("checked")
            if checked % self.config.progress_every == 0:
                self.tracker.progress(run_id, counters.snapshot())
        return True

    # -- run ----------------------------------------------------------------

    def _target_ciks(self, client: SecEdgarClient) -> tuple[str, ...]:
        if not self.config.discover:
            return self.config.ciks
        found = discover_mining_companies(client, limit=self.config.discover_limit)
        logger.info(
            "Crawl targets from ticker directory | companies=%s limit=%s",
            len(found),
            self.config.discover_limit,
        )
        return tuple(found)

    def run(
        self,
        run_id: int,
        *,
        date_from: date | None,
        date_to: date | None,
        cancel_event: threading.Event | None = None,
    ) -> dict[str, Any]:
        """Execute run `run_id` to a terminal state and return its counters.

        Raises whatever aborted the run after recording it as failed.
        """

        stop = cancel_event or threading.Event()
        try:
            self.tracker.start(run_id)
        except CrawlAlreadyRunning as e:
            self.tracker.fail(run_id, str(e))
            raise

        counters = CrawlCounters()
        client = self._client or self._client_factory(stop)
        fatal: Exception | None = None
        interrupted = False

        try:
            ciks = self._target_ciks(client)
        except AcquireCancelled:
            ciks, interrupted = (), True
        except Exception as e:
            self.tracker.fail(run_id, f"company discovery failed: {type(e).__name__}: {e}")
            raise

        logger.info(
            "Crawl starting | run_id=%s companies=%s workers=%s date_from=%s date_to=%s",
            run_id,
            len(ciks),
            self.config.workers,
            date_from,
            date_to,
        )

        with ThreadPoolExecutor(
            max_workers=self.config.workers, thread_name_prefix=f"crawl-{run_id}"
        ) as ex:
            futs = [
                ex.submit(
                    self._crawl_company,
                    client,
                    cik,
                    run_id=run_id,
                    date_from=date_from,
                    date_to=date_to,
                    counters=counters,
                    stop=stop,
                )
                for cik in ciks
            ]
            for fut in as_completed(futs):
                try:
                    if not fut.result():
                        interrupted = True
                except AcquireCancelled:
                    interrupted = True
                except Exception as e:
                    if fatal is None:
                        fatal = e
                        # Drain the remaining workers quickly.
                        stop.set()
                        logger.error("Crawl aborting | run_id=%s err=%s", run_id, e)

        summary = counters.snapshot()
        if fatal is not None:
            self.tracker.fail(run_id, f"{type(fatal).__name__}: {fatal}", summary)
            raise fatal

        # A stop that lands after the last company finished skipped nothing.
        if interrupted:
            self.tracker.cancel(run_id, "cancel requested", summary)
            status = "cancelled"
        else:
            self.tracker.complete(run_id, summary)
            status = "completed"

        logger.info(
            "Crawl %s | run_id=%s checked=%s found=%s imported=%s duplicates=%s failed=%s",
            status,
            run_id,
            summary["checked"],
            summary["found"],
            summary["imported"],
            summary["duplicates"],
            summary["failed"],
        )
        return {"run_id": run_id, "status": status, **summary}


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(
        description="Discover technical-report exhibits in EDGAR filings"
    )
    p.add_argument("--mode", choices=MODES, default=MODE_REFRESH)
    p.add_argument("--date-from", default=None, help="Inclusive lower bound, YYYY-MM-DD")
    p.add_argument("--date-to", default=None, help="Exclusive upper bound, YYYY-MM-DD")
    p.add_argument(
        "--ciks",
        default=None,
        help="Comma-separated CIKs; defaults to CRAWL_TARGET_CIKS or the built-in mining list",
    )
    p.add_argument("--workers", type=int, default=None)
    p.add_argument("--no-guess", action="store_true", help="Skip filename guesses when a filing has no index")
    p.add_argument(
        "--discover",
        action="store_true",
        help="Pick targets from the EDGAR ticker directory by mining keywords",
    )
    p.add_argument("--discover-limit", type=int, default=None, help="Cap on discovered companies")
    p.add_argument(
        "--log-level",
        default=None,
        help="Override LOG_LEVEL for this run (e.g. DEBUG, INFO, WARNING)",
    )
    return p.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    configure_app_logging(str(args.log_level or SETTINGS["LOG_LEVEL"]).upper())

    overrides: dict[str, Any] = {}
    if args.no_guess:
        overrides["guess_filenames"] = False

    Base.metadata.create_all(bind=engine)
    tracker = RunTracker(SessionLocal)

    try:
        date_from = parse_ymd_date(args.date_from) if args.date_from else None
        date_to = parse_ymd_date(args.date_to) if args.date_to else None
        config = CrawlConfig.from_settings(
            ciks=args.ciks,
            workers=args.workers,
            discover=True if args.discover else None,
            discover_limit=args.discover_limit,
            **overrides,
        )
        with SessionLocal() as s:
            window = resolve_date_range(
                s,
                mode=args.mode,
                date_from=date_from,
                date_to=date_to,
                lookback_days=config.lookback_days,
            )
    except ValueError as e:
        print(f"\nexhibit_crawler: invalid arguments: {e}")
        return 2

    run_id = tracker.create(
        mode=args.mode, date_from=window[0], date_to=window[1], triggered_by="cli"
    )

    cancel_event = threading.Event()

    def _handle_signal(signum, _frame):
        logger.warning("Signal received, stopping after in-flight requests | signal=%s", signum)
        cancel_event.set()

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)

    logger.info(
        "exhibit_crawler starting | pid=%s run_id=%s mode=%s cwd=%s",
        os.getpid(),
        run_id,
        args.mode,
        os.getcwd(),
    )

    try:
        summary = ExhibitCrawler(config, session_factory=SessionLocal, tracker=tracker).run(
            run_id, date_from=window[0], date_to=window[1], cancel_event=cancel_event
        )
    except CrawlAlreadyRunning as e:
        print(f"\nexhibit_crawler: {e}")
        return 2
    except Exception:
        logger.exception("exhibit_crawler crashed | run_id=%s", run_id)
        return 1

    print(
        f"\nexhibit_crawler: {summary['status']} | run_id={run_id} checked={summary['checked']} "
        f"found={summary['found']} imported={summary['imported']} "
        f"duplicates={summary['duplicates']} failed={summary['failed']}"
    )
    return 130 if summary["status"] == "cancelled" else 0


if __name__ == "__main__":
    raise SystemExit(main())
