"""Spot technical-report exhibits in a filing's file manifest.

This is a keyword heuristic, not a parser. A file qualifies when its name
follows the exhibit 96 numbering convention (S-K 1300 technical report
summaries) or its description carries technical-report wording. Both false
positives and false negatives are expected; downstream processing
re-validates document content.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Iterable

from utils.filing_index import FilingRecord, FilingRef
from utils.sec_edgar_api import accession_nodash, archive_url

LABEL_TECHNICAL_REPORT_SUMMARY = "technical-report-summary"
LABEL_TECHNICAL_REPORT = "technical-report"

CRITICAL_COMMODITIES: tuple[str, ...] = (
    # battery metals
    "lithium", "cobalt", "nickel", "graphite", "manganese",
    # rare earths
    "rare earth", "neodymium", "dysprosium", "praseodymium", "terbium",
    # precious
    "gold", "silver", "platinum", "palladium", "rhodium",
    # base
    "copper", "zinc", "lead", "tin", "aluminum", "iron ore",
    # other critical / strategic
    "uranium", "vanadium", "tungsten", "molybdenum", "titanium", "antimony",
    "potash", "phosphate", "bauxite", "fluorspar", "coal",
)


@dataclass(frozen=True)
class ManifestItem:
    name: str
    description: str | None = None
    size: int | None = None


@dataclass(frozen=True)
class DetectionPatterns:
    """Keyword set for one crawl; the crawler config can swap it wholesale."""

    filename_patterns: tuple[re.Pattern, ...] = (
        re.compile(r"ex(?:hibit)?[-_. ]?96(?:[-_.]?\d{1,2})?(?!\d)", re.IGNORECASE),
    )
    summary_phrases: tuple[str, ...] = (
        "technical report summary",
        "s-k 1300",
        "sk-1300",
        "sk 1300",
        "s-k1300",
        "exhibit 96",
    )
    description_phrases: tuple[str, ...] = (
        "technical report",
        "ni 43-101",
        "jorc",
        "feasibility study",
        "preliminary economic assessment",
        "initial assessment",
        "mineral resource",
        "mineral reserve",
        "resource estimate",
    )
    extensions: tuple[str, ...] = (".htm", ".html", ".pdf", ".txt")


DEFAULT_PATTERNS = DetectionPatterns()


@dataclass(frozen=True)
class CandidateDocument:
    accession_number: str
    cik: str
    company_name: str | None
    form_type: str
    filing_date: date
    document_name: str
    document_url: str
    exhibit_label: str
    exhibit_number: str | None = None
    description: str | None = None
    file_size: int | None = None
    commodities: tuple[str, ...] = field(default_factory=tuple)


def _to_int(value: Any) -> int | None:
    if value is None or value == "":
        return None
    try:
        return int(str(value).strip())
    except ValueError:
        return None


def parse_manifest(payload: Any) -> list[ManifestItem]:
    """Read ``directory.item`` from a filing ``index.json``; tolerate junk rows."""

    if not isinstance(payload, dict):
        return []
    directory = payload.get("directory")
    items = directory.get("item") if isinstance(directory, dict) else None
    if not isinstance(items, list):
        return []

    out: list[ManifestItem] = []
    for it in items:
        if not isinstance(it, dict):
            continue
        name = str(it.get("name") or "").strip()
        if not name:
            continue
        desc = it.get("description")
        out.append(
            ManifestItem(
                name=name,
                description=str(desc).strip() if desc else None,
                size=_to_int(it.get("size")),
            )
        )
    return out


def _is_filing_boilerplate(name: str, accession_number: str | None) -> bool:
    lname = name.lower()
    if lname.endswith(("-index.htm", "-index.html", "-index-headers.html")):
        return True
    if accession_number and lname == f"{accession_nodash(accession_number)}.txt":
        return True
    # full submission text file: 0001234567-24-000001.txt
    return bool(re.fullmatch(r"\d{10}-\d{2}-\d{6}\.txt", lname))


def classify_item(
    item: ManifestItem,
    patterns: DetectionPatterns = DEFAULT_PATTERNS,
    *,
    accession_number: str | None = None,
) -> str | None:
    """Return the exhibit label for a technical-report file, else None."""

    lname = item.name.lower()
    if not lname.endswith(patterns.extensions):
        return None
    if _is_filing_boilerplate(item.name, accession_number):
        return None

    if any(p.search(lname) for p in patterns.filename_patterns):
        return LABEL_TECHNICAL_REPORT_SUMMARY

    desc = (item.description or "").lower()
    if not desc:
        return None
    if any(ph in desc for ph in patterns.summary_phrases):
        return LABEL_TECHNICAL_REPORT_SUMMARY
    if any(ph in desc for ph in patterns.description_phrases):
        return LABEL_TECHNICAL_REPORT
    return None


_EX_NAME_RE = re.compile(r"ex(?:hibit)?[-_. ]?(\d{1,2})(?:[-_.]?(\d{1,2}))?(?!\d)", re.IGNORECASE)
_EX_DESC_RE = re.compile(r"exhibit\s*(?:no\.?\s*)?(\d{1,3}(?:\.\d{1,2})?)", re.IGNORECASE)


def extract_exhibit_number(name: str, description: str | None = None) -> str | None:
    """Exhibit number from the filename (``ex961.htm`` -> ``96.1``) or description."""

    m = _EX_NAME_RE.search(name or "")
    if m:
        major, minor = m.group(1), m.group(2)
        return f"{major}.{minor}" if minor else major

    if description:
        m = _EX_DESC_RE.search(description)
        if m:
            return m.group(1)
    return None


def extract_commodities(text: str | None) -> tuple[str, ...]:
    if not text:
        return ()
    lower = text.lower()
    found = {
        c for c in CRITICAL_COMMODITIES if re.search(rf"\b{re.escape(c)}\b", lower)
    }
    return tuple(sorted(found))


def build_candidate(
    record: FilingRecord,
    filing: FilingRef,
    *,
    document_name: str,
    exhibit_label: str,
    description: str | None = None,
    file_size: int | None = None,
) -> CandidateDocument:
    return CandidateDocument(
        accession_number=filing.accession_number,
        cik=record.cik,
        company_name=record.company_name,
        form_type=filing.form_type,
        filing_date=filing.filing_date,
        document_name=document_name,
        document_url=archive_url(record.cik, filing.accession_number, document_name),
        exhibit_label=exhibit_label,
        exhibit_number=extract_exhibit_number(document_name, description),
        description=description,
        file_size=file_size,
        commodities=extract_commodities(description),
    )


def detect_exhibits(
    record: FilingRecord,
    filing: FilingRef,
    items: Iterable[ManifestItem],
    patterns: DetectionPatterns = DEFAULT_PATTERNS,
) -> list[CandidateDocument]:
    """All technical-report candidates in one filing, in manifest order."""

    out: list[CandidateDocument] = []
    seen: set[str] = set()
    for item in items:
        label = classify_item(item, patterns, accession_number=filing.accession_number)
        if label is None or item.name in seen:
            continue
        seen.add(item.name)
        out.append(
            build_candidate(
                record,
                filing,
                document_name=item.name,
                exhibit_label=label,
                description=item.description,
                file_size=item.size,
            )
        )
    return out


def guess_exhibit_filenames(filing: FilingRef, ticker: str | None = None) -> list[str]:
    """Conventional exhibit 96.1 filenames to try when no manifest is available."""

    names = [
        "ex961.htm",
        "ex96-1.htm",
        "ex-96.1.htm",
        "ex96_1.htm",
        "exhibit961.htm",
        "exhibit96-1.htm",
    ]
    if ticker:
        t = ticker.strip().lower()
        if t:
            names.extend([f"{t}_ex961.htm", f"{t}-ex961.htm", f"{t}ex961.htm"])

    # Keep order, drop duplicates.
    out: list[str] = []
    for n in names:
        if n not in out:
            out.append(n)
    return out
