from __future__ import annotations

from sqlalchemy import Column, Date, DateTime, Integer, String, Text

from db import Base
from utils.time_utils import utcnow_sa_default

STATUS_PENDING = "pending"
STATUS_RUNNING = "running"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"
STATUS_CANCELLED = "cancelled"

TERMINAL_STATUSES = frozenset({STATUS_COMPLETED, STATUS_FAILED, STATUS_CANCELLED})

COUNTER_FIELDS = ("checked", "found", "imported", "duplicates", "failed")


class CrawlRun(Base):
    """One execution of the exhibit crawler.

    - status: pending -> running -> completed | failed | cancelled
    - date_from/date_to: half-open filing-date window [date_from, date_to)
    - counters only ever grow while the run is live
    """

    __tablename__ = "crawl_runs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    job_name = Column(String, nullable=False, default="exhibit_crawler", index=True)
    mode = Column(String, nullable=False, default="refresh")  # 'refresh' | 'full'
    status = Column(String, nullable=False, default=STATUS_PENDING, index=True)
    triggered_by = Column(String, nullable=False, default="api")

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow_sa_default)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    date_from = Column(Date, nullable=True)
    date_to = Column(Date, nullable=True)

    checked = Column(Integer, nullable=False, default=0)
    found = Column(Integer, nullable=False, default=0)
    imported = Column(Integer, nullable=False, default=0)
    duplicates = Column(Integer, nullable=False, default=0)
    failed = Column(Integer, nullable=False, default=0)

    error_message = Column(Text, nullable=True)

    def as_dict(self) -> dict:
        def _iso(v):
            return v.isoformat() if v is not None else None

        return {
            "id": self.id,
            "job_name": self.job_name,
            "mode": self.mode,
            "status": self.status,
            "triggered_by": self.triggered_by,
            "created_at": _iso(self.created_at),
            "started_at": _iso(self.started_at),
            "completed_at": _iso(self.completed_at),
            "date_from": _iso(self.date_from),
            "date_to": _iso(self.date_to),
            "checked": self.checked or 0,
            "found": self.found or 0,
            "imported": self.imported or 0,
            "duplicates": self.duplicates or 0,
            "failed": self.failed or 0,
            "error_message": self.error_message,
        }
