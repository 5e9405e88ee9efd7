from __future__ import annotations

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    Integer,
    String,
    UniqueConstraint,
)

from db import Base
from utils.time_utils import utcnow_sa_default


class TechnicalDocument(Base):
    """One discovered technical-report exhibit.

    Natural key is (accession_number, document_name): a filing can carry more
    than one technical report exhibit (96.1, 96.2, ...), each kept as its own
    row. Rows are written once by the crawler; only `processed` and
    `processed_at` change afterwards, set by downstream extraction.
    """

    __tablename__ = "technical_documents"
    __table_args__ = (
        UniqueConstraint(
            "accession_number",
            "document_name",
            name="uq_technical_documents_accession_document",
        ),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)

    # dashed form: 0001234567-24-000001
    accession_number = Column(String, nullable=False, index=True)
    document_name = Column(String, nullable=False)

    cik = Column(String, nullable=False, index=True)
    company_name = Column(String, nullable=True)
    form_type = Column(String, nullable=False)
    filing_date = Column(Date, nullable=True, index=True)

    document_url = Column(String, nullable=False)
    exhibit_label = Column(String, nullable=False)  # e.g. 'technical-report-summary'
    exhibit_number = Column(String, nullable=True)  # e.g. '96.1'
    description = Column(String, nullable=True)
    file_size = Column(Integer, nullable=True)
    commodities = Column(JSON, nullable=False, default=list)

    discovered_at = Column(DateTime(timezone=True), nullable=False, default=utcnow_sa_default)
    crawl_run_id = Column(Integer, nullable=True, index=True)

    processed = Column(Boolean, nullable=False, default=False)
    processed_at = Column(DateTime(timezone=True), nullable=True)

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "accession_number": self.accession_number,
            "document_name": self.document_name,
            "cik": self.cik,
            "company_name": self.company_name,
            "form_type": self.form_type,
            "filing_date": self.filing_date.isoformat() if self.filing_date else None,
            "document_url": self.document_url,
            "exhibit_label": self.exhibit_label,
            "exhibit_number": self.exhibit_number,
            "description": self.description,
            "file_size": self.file_size,
            "commodities": list(self.commodities or []),
            "discovered_at": self.discovered_at.isoformat() if self.discovered_at else None,
            "crawl_run_id": self.crawl_run_id,
            "processed": bool(self.processed),
            "processed_at": self.processed_at.isoformat() if self.processed_at else None,
        }
