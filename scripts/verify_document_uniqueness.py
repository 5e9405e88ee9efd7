#!/usr/bin/env python3
"""
Verify that stored technical documents are unique.

Checks, over the whole technical_documents table:
  - no (accession_number, document_name) pair appears twice
  - no document_url appears twice

Accessions carrying several exhibits are reported for information only; they
are expected when one filing attaches more than one technical report.

Exit code is 1 when any duplicate is found.
"""
from __future__ import annotations

import argparse
import sys
from pathlib import Path

_PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(_PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(_PROJECT_ROOT))

from sqlalchemy import func
from sqlalchemy.orm import Session as SASession

from db import SessionLocal
from logging_utils import get_logger
from models.technical_documents import TechnicalDocument

logger = get_logger(__name__)


def _dupes(session: SASession, *cols) -> list[tuple]:
    return (
        session.query(*cols, func.count(TechnicalDocument.id))
        .group_by(*cols)
        .having(func.count(TechnicalDocument.id) > 1)
        .all()
    )


def verify_uniqueness(session: SASession) -> dict[str, object]:
    """Return duplicate findings; empty key/url lists mean the store is clean."""

    total = session.query(func.count(TechnicalDocument.id)).scalar() or 0
    dup_keys = _dupes(session, TechnicalDocument.accession_number, TechnicalDocument.document_name)
    dup_urls = _dupes(session, TechnicalDocument.document_url)
    multi = _dupes(session, TechnicalDocument.accession_number)

    return {
        "total": int(total),
        "duplicate_keys": [
            {"accession_number": a, "document_name": d, "count": int(n)} for a, d, n in dup_keys
        ],
        "duplicate_urls": [{"document_url": u, "count": int(n)} for u, n in dup_urls],
        "multi_exhibit_accessions": len(multi),
    }


def main(argv: list[str] | None = None) -> int:
    p = argparse.ArgumentParser(description="Check technical_documents for duplicates")
    p.parse_args(argv)

    with SessionLocal() as session:
        report = verify_uniqueness(session)

    print(f"Total documents: {report['total']}")
    print(f"Accessions with several exhibits: {report['multi_exhibit_accessions']}")

    clean = True
    for row in report["duplicate_keys"]:
        clean = False
        print(f"DUPLICATE KEY {row['accession_number']} {row['document_name']} x{row['count']}")
    for row in report["duplicate_urls"]:
        clean = False
        print(f"DUPLICATE URL {row['document_url']} x{row['count']}")

    if clean:
        print("All documents are unique.")
        logger.info("Uniqueness check passed | total=%s", report["total"])
        return 0

    logger.error(
        "Uniqueness check failed | duplicate_keys=%s duplicate_urls=%s",
        len(report["duplicate_keys"]),
        len(report["duplicate_urls"]),
    )
    return 1


if __name__ == "__main__":
    raise SystemExit(main())
