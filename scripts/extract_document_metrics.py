#!/usr/bin/env python3
"""
Read headline economics out of stored technical report exhibits.

For each unprocessed row in technical_documents:
  - fetch the exhibit from EDGAR (through the shared rate limiter)
  - run the extraction strategies (post-tax NPV, post-tax IRR, initial CAPEX)
  - log every field with its confidence, including fields that were not found
  - flag the document as processed

PDF exhibits are skipped and stay unprocessed. Documents that fail to download
stay unprocessed too, so the next run retries them.
"""
from __future__ import annotations

import argparse
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable

_PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(_PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(_PROJECT_ROOT))

import requests
from sqlalchemy.orm import Session as SASession

from db import SessionLocal
from logging_utils import configure_app_logging, get_logger
from settings import SETTINGS
from utils.document_store import mark_processed, search_documents
from utils.extraction import ExtractionResult, extract_metrics, html_to_text
from utils.rate_limiter import AcquireCancelled
from utils.sec_edgar_api import SecEdgarApiError, SecEdgarClient

logger = get_logger(__name__)

_HTML_SUFFIXES = (".htm", ".html")
_TEXT_SUFFIXES = (".txt",)


@dataclass(frozen=True)
class _PendingDocument:
    id: int
    cik: str
    accession_number: str
    document_name: str
    document_url: str


def _pending(session_factory: Callable[[], SASession], limit: int) -> list[_PendingDocument]:
    with session_factory() as s:
        return [
            _PendingDocument(
                id=int(d.id),
                cik=d.cik,
                accession_number=d.accession_number,
                document_name=d.document_name,
                document_url=d.document_url,
            )
            for d in search_documents(s, processed=False, limit=limit)
        ]


def extract_document(client: SecEdgarClient, doc: _PendingDocument) -> dict[str, ExtractionResult] | None:
    """Metrics for one exhibit; None when the format is not readable as text."""

    name = doc.document_name.lower()
    if not name.endswith(_HTML_SUFFIXES + _TEXT_SUFFIXES):
        return None

    body = client.fetch_document(doc.document_url).text()
    text = html_to_text(body) if name.endswith(_HTML_SUFFIXES) else body
    return extract_metrics(text)


def _log_results(doc: _PendingDocument, results: dict[str, ExtractionResult]) -> None:
    for field_name in sorted(results):
        r = results[field_name]
        if r.found:
            logger.info(
                "Metric extracted | doc_id=%s accession=%s field=%s value=%s unit=%s confidence=%.2f snippet=%s",
                doc.id,
                doc.accession_number,
                r.field,
                r.value,
                r.unit,
                r.confidence,
                r.source_snippet,
            )
        else:
            logger.info(
                "Metric not found | doc_id=%s accession=%s field=%s",
                doc.id,
                doc.accession_number,
                r.field,
            )


def extract_pending(
    client: SecEdgarClient,
    *,
    session_factory: Callable[[], SASession] | None = None,
    limit: int = 25,
    mark: bool = True,
) -> dict[str, Any]:
    """Process up to `limit` unprocessed documents, newest filings first."""

    session_factory = session_factory or SessionLocal
    summary: dict[str, Any] = {"documents": 0, "extracted": 0, "skipped": 0, "failed": 0, "results": {}}

    for doc in _pending(session_factory, limit):
        summary["documents"] += 1
        try:
            results = extract_document(client, doc)
        except AcquireCancelled:
            raise
        except (SecEdgarApiError, requests.RequestException) as e:
            summary["failed"] += 1
            logger.warning(
                "Document fetch failed | doc_id=%s url=%s err=%s", doc.id, doc.document_url, e
            )
            continue

        if results is None:
            summary["skipped"] += 1
            logger.info("Skipping non-text exhibit | doc_id=%s doc=%s", doc.id, doc.document_name)
            continue

        _log_results(doc, results)
        summary["results"][doc.id] = results
        summary["extracted"] += 1
        if mark:
            with session_factory() as s:
                mark_processed(s, doc.id)

    return summary


def main(argv: list[str] | None = None) -> int:
    p = argparse.ArgumentParser(description="Extract NPV/IRR/CAPEX from stored technical reports")
    p.add_argument("--limit", type=int, default=25, help="Max documents to process")
    p.add_argument("--dry-run", action="store_true", help="Do not flag documents as processed")
    p.add_argument("--log-level", default=None, help="Override LOG_LEVEL for this run")
    args = p.parse_args(argv)

    configure_app_logging(str(args.log_level or SETTINGS["LOG_LEVEL"]).upper())

    summary = extract_pending(SecEdgarClient(), limit=max(1, args.limit), mark=not args.dry_run)

    for doc_id, results in summary["results"].items():
        found = ", ".join(
            f"{r.field}={r.value:g} {r.unit} ({r.confidence:.2f})" for r in results.values() if r.found
        )
        print(f"doc {doc_id}: {found or 'no metrics found'}")
    print(
        f"\nDocuments: {summary['documents']} extracted={summary['extracted']} "
        f"skipped={summary['skipped']} failed={summary['failed']}"
    )
    return 1 if summary["failed"] else 0


if __name__ == "__main__":
    raise SystemExit(main())
