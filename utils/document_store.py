"""Persistence for discovered technical documents.

Dedup lives in the database: ``technical_documents`` carries a unique
constraint on (accession_number, document_name) and inserts use
``ON CONFLICT DO NOTHING``, so concurrent crawler workers never need a shared
in-memory "seen" set.
"""

from __future__ import annotations

from datetime import date

from sqlalchemy import func, insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session as SASession

from logging_utils import get_logger
from models.technical_documents import TechnicalDocument
from utils.exhibit_detector import CandidateDocument
from utils.time_utils import utcnow

logger = get_logger(__name__)

_CONFLICT_COLUMNS = ("accession_number", "document_name")


def _row_values(candidate: CandidateDocument, crawl_run_id: int | None) -> dict:
    return {
        "accession_number": candidate.accession_number,
        "document_name": candidate.document_name,
        "cik": candidate.cik,
        "company_name": candidate.company_name,
        "form_type": candidate.form_type,
        "filing_date": candidate.filing_date,
        "document_url": candidate.document_url,
        "exhibit_label": candidate.exhibit_label,
        "exhibit_number": candidate.exhibit_number,
        "description": candidate.description,
        "file_size": candidate.file_size,
        "commodities": list(candidate.commodities),
        "discovered_at": utcnow(),
        "crawl_run_id": crawl_run_id,
        "processed": False,
    }


def _insert_ignore_stmt(session: SASession, values: dict):
    dialect = session.get_bind().dialect.name
    if dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert as dialect_insert
    elif dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert as dialect_insert
    else:
        return None
    return (
        dialect_insert(TechnicalDocument)
        .values(**values)
        .on_conflict_do_nothing(index_elements=list(_CONFLICT_COLUMNS))
    )


def upsert_candidate(
    session: SASession,
    candidate: CandidateDocument,
    *,
    crawl_run_id: int | None = None,
) -> bool:
    """Insert `candidate` unless its natural key is already stored.

    Returns True when a new row was written, False for an existing key.
    Commits on success; a key collision is not an error.
    """

    values = _row_values(candidate, crawl_run_id)
    stmt = _insert_ignore_stmt(session, values)

    if stmt is not None:
        result = session.execute(stmt)
        session.commit()
        return bool(result.rowcount)

    # Other dialects: plain insert, the unique constraint decides.
    try:
        session.execute(insert(TechnicalDocument).values(**values))
        session.commit()
        return True
    except IntegrityError:
        session.rollback()
        logger.debug(
            "Document already stored | accession=%s doc=%s",
            candidate.accession_number,
            candidate.document_name,
        )
        return False


def latest_filing_date(session: SASession) -> date | None:
    return session.query(func.max(TechnicalDocument.filing_date)).scalar()


def count_documents(session: SASession, *, processed: bool | None = None) -> int:
    q = session.query(func.count(TechnicalDocument.id))
    if processed is not None:
        q = q.filter(TechnicalDocument.processed == processed)
    return int(q.scalar() or 0)


def mark_processed(session: SASession, document_id: int) -> bool:
    """Flag a document as handled by downstream extraction."""

    doc = session.get(TechnicalDocument, document_id)
    if doc is None:
        return False
    if not doc.processed:
        doc.processed = True
        doc.processed_at = utcnow()
        session.commit()
    return True


def search_documents(
    session: SASession,
    *,
    cik: str | None = None,
    form_type: str | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
    processed: bool | None = None,
    limit: int = 50,
) -> list[TechnicalDocument]:
    """Newest filings first; `date_to` is exclusive like the crawl window."""

    q = session.query(TechnicalDocument)
    if cik:
        q = q.filter(TechnicalDocument.cik == (str(int(cik)) if cik.isdigit() else cik))
    if form_type:
        q = q.filter(TechnicalDocument.form_type == form_type)
    if date_from is not None:
        q = q.filter(TechnicalDocument.filing_date >= date_from)
    if date_to is not None:
        q = q.filter(TechnicalDocument.filing_date < date_to)
    if processed is not None:
        q = q.filter(TechnicalDocument.processed == processed)

    return (
        q.order_by(TechnicalDocument.filing_date.desc(), TechnicalDocument.id.desc())
        .limit(max(1, int(limit)))
        .all()
    )
