"""Walk EDGAR filing histories for a set of companies.

For each CIK the walker fetches the company's submissions document (one bulk
JSON per company), keeps filings whose form type is in the allow-list and
whose filing date falls in the half-open window ``[date_from, date_to)``, and
yields ``(FilingRecord, FilingRef)`` pairs lazily, in upstream order
(most recent first).

Upstream payloads are parsed defensively: missing or short columns drop the
affected rows rather than the whole company.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Any, Callable, Iterable, Iterator

from logging_utils import get_logger
from utils.rate_limiter import AcquireCancelled
from utils.sec_edgar_api import SecEdgarClient, accession_dashed, normalize_cik
from utils.time_utils import next_day, parse_ymd_or_none

logger = get_logger(__name__)

# Annual, quarterly and current reports plus foreign-issuer and registration
# equivalents: the forms technical report summaries get attached to.
DEFAULT_FORM_TYPES: tuple[str, ...] = (
    "10-K",
    "10-K/A",
    "10-Q",
    "8-K",
    "8-K/A",
    "20-F",
    "40-F",
    "6-K",
    "S-1",
    "S-1/A",
    "F-1",
    "F-1/A",
)

# Mining issuers that file S-K 1300 technical report summaries.
DEFAULT_MINING_CIKS: tuple[str, ...] = (
    "831259",  # Freeport-McMoRan
    "1164727",  # Newmont
    "1801368",  # MP Materials
    "719413",  # Hecla Mining
    "215466",  # Coeur Mining
    "1064728",  # Peabody Energy
    "1037676",  # Arch Resources
    "1385849",  # Energy Fuels
    "1334933",  # Uranium Energy
    "1375205",  # Ur-Energy
)

# Name/ticker fragments used when discovering companies from the directory.
MINING_NAME_KEYWORDS: tuple[str, ...] = (
    "mining",
    "mines",
    "gold",
    "silver",
    "copper",
    "lithium",
    "uranium",
    "metals",
    "minerals",
    "resources",
    "coal",
    "rare earth",
)


@dataclass(frozen=True)
class FilingRef:
    accession_number: str
    form_type: str
    filing_date: date
    primary_document: str | None = None
    primary_doc_description: str | None = None


@dataclass(frozen=True)
class FilingRecord:
    cik: str
    company_name: str | None
    tickers: tuple[str, ...] = ()
    filings: tuple[FilingRef, ...] = field(default_factory=tuple)

    @property
    def ticker(self) -> str | None:
        return self.tickers[0] if self.tickers else None


def _column(recent: dict, name: str) -> list:
    col = recent.get(name)
    return col if isinstance(col, list) else []


def _cell(col: list, idx: int) -> Any:
    return col[idx] if idx < len(col) else None


def _clean_str(value: Any) -> str | None:
    if value is None:
        return None
    s = str(value).strip()
    return s or None


def parse_submissions(payload: Any, *, cik: str | None = None) -> FilingRecord:
    """Parse a ``submissions/CIK##########.json`` payload into a FilingRecord.

    Only the ``filings.recent`` block is read (the last ~1000 filings, which
    covers any window a scheduled crawl asks for).
    """

    if not isinstance(payload, dict):
        raise ValueError("submissions payload is not an object")

    raw_cik = cik if cik is not None else payload.get("cik")
    if raw_cik is None:
        raise ValueError("submissions payload has no cik")

    tickers = payload.get("tickers")
    tickers_t = tuple(str(t) for t in tickers if t) if isinstance(tickers, list) else ()

    filings_block = payload.get("filings")
    recent = filings_block.get("recent") if isinstance(filings_block, dict) else None
    if not isinstance(recent, dict):
        recent = {}

    accessions = _column(recent, "accessionNumber")
    forms = _column(recent, "form")
    dates = _column(recent, "filingDate")
    primary_docs = _column(recent, "primaryDocument")
    primary_descs = _column(recent, "primaryDocDescription")

    refs: list[FilingRef] = []
    skipped = 0
    for i in range(len(accessions)):
        acc = _clean_str(_cell(accessions, i))
        form = _clean_str(_cell(forms, i))
        filed = parse_ymd_or_none(_cell(dates, i))
        if not acc or not form or filed is None:
            skipped += 1
            continue
        refs.append(
            FilingRef(
                accession_number=accession_dashed(acc),
                form_type=form,
                filing_date=filed,
                primary_document=_clean_str(_cell(primary_docs, i)),
                primary_doc_description=_clean_str(_cell(primary_descs, i)),
            )
        )

    if skipped:
        logger.debug("Dropped incomplete filing rows | cik=%s skipped=%s", raw_cik, skipped)

    return FilingRecord(
        cik=normalize_cik(raw_cik),
        company_name=_clean_str(payload.get("name")),
        tickers=tickers_t,
        filings=tuple(refs),
    )


def filter_filings(
    filings: Iterable[FilingRef],
    *,
    form_types: Iterable[str] | None,
    date_from: date | None,
    date_to: date | None,
) -> list[FilingRef]:
    """Keep allow-listed forms filed within ``[date_from, date_to)``.

    A None bound is open. Upstream order is preserved.
    """

    allowed = {f.strip().upper() for f in form_types} if form_types else None
    out: list[FilingRef] = []
    for f in filings:
        if allowed is not None and f.form_type.upper() not in allowed:
            continue
        if date_from is not None and f.filing_date < date_from:
            continue
        if date_to is not None and f.filing_date >= date_to:
            continue
        out.append(f)
    return out


def fetch_company(client: SecEdgarClient, cik: str) -> FilingRecord:
    return parse_submissions(client.fetch_submissions(cik), cik=cik)


def iter_company_filings(
    client: SecEdgarClient,
    ciks: Iterable[str],
    *,
    form_types: Iterable[str] | None = DEFAULT_FORM_TYPES,
    date_from: date | None = None,
    date_to: date | None = None,
    on_error: Callable[[str, Exception], None] | None = None,
) -> Iterator[tuple[FilingRecord, FilingRef]]:
    """Yield matching ``(company, filing)`` pairs, one company at a time.

    A failure for one company is reported through `on_error` (or logged) and
    the walk moves on to the next company.
    """

    form_types = tuple(form_types) if form_types else None
    for cik in ciks:
        try:
            record = fetch_company(client, cik)
        except AcquireCancelled:
            raise
        except Exception as e:
            if on_error is not None:
                on_error(cik, e)
            else:
                logger.warning("Skipping company | cik=%s err=%s", cik, e)
            continue

        for filing in filter_filings(
            record.filings, form_types=form_types, date_from=date_from, date_to=date_to
        ):
            yield record, filing


def discover_mining_companies(
    client: SecEdgarClient,
    *,
    keywords: Iterable[str] = MINING_NAME_KEYWORDS,
    limit: int | None = None,
) -> list[str]:
    """CIKs from the EDGAR ticker directory whose name or ticker hits a keyword."""

    payload = client.fetch_company_tickers()
    rows = payload.values() if isinstance(payload, dict) else payload
    kws = [k.lower() for k in keywords]

    out: list[str] = []
    seen: set[str] = set()
    for row in rows or []:
        if not isinstance(row, dict):
            continue
        title = str(row.get("title") or "").lower()
        ticker = str(row.get("ticker") or "").lower()
        raw_cik = row.get("cik_str")
        if raw_cik is None:
            continue
        if not any(k in title or k in ticker for k in kws):
            continue
        try:
            cik = normalize_cik(raw_cik)
        except ValueError:
            continue
        if cik in seen:
            continue
        seen.add(cik)
        out.append(cik)
        if limit is not None and len(out) >= limit:
            break

    logger.info("Discovered mining companies | count=%s", len(out))
    return out


def refresh_date_range(
    latest_filing_date: date | None,
    *,
    today: date,
    lookback_days: int = 30,
) -> tuple[date, date]:
    """Window for a scheduled refresh crawl.

    Resumes the day after the newest persisted filing; with an empty store it
    looks back `lookback_days`. The upper bound is exclusive, so it is the day
    after `today`.
    """

    date_to = next_day(today)
    if latest_filing_date is not None:
        date_from = next_day(latest_filing_date)
    else:
        date_from = today - timedelta(days=max(int(lookback_days), 0))
    return date_from, date_to
