from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Any

import requests

from logging_utils import get_logger
from settings import SETTINGS
from utils.rate_limiter import SlidingWindowRateLimiter, get_shared_rate_limiter

logger = get_logger(__name__)


SEC_BASE_URL = "https://data.sec.gov"
SEC_WWW_BASE_URL = "https://www.sec.gov"
SEC_ARCHIVES_URL = f"{SEC_WWW_BASE_URL}/Archives/edgar/data"

# Upstream signals that mean "you are going too fast": trigger a cooldown.
RATE_LIMIT_STATUSES = (429, 503)
# Plain transient server errors: retried with backoff.
TRANSIENT_STATUSES = (500, 502, 504)


class SecEdgarApiError(RuntimeError):
    def __init__(self, message: str, *, status_code: int | None = None, url: str | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.url = url


class SecRateLimitedError(SecEdgarApiError):
    """EDGAR kept answering 429/503 after the cooldown; systemic, not per item."""


@dataclass(frozen=True)
class SecResponse:
    url: str
    status_code: int
    content: bytes
    content_type: str | None

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    def text(self, encoding: str | None = None) -> str:
        return self.content.decode(encoding or "utf-8", errors="replace")

    def json(self) -> Any:
        return requests.models.complexjson.loads(self.text())


def normalize_cik(cik: str | int) -> str:
    """CIK without zero padding, as used in Archives paths ("320193")."""

    s = str(cik).strip()
    if not s.isdigit():
        raise ValueError(f"invalid CIK: {cik!r}")
    return str(int(s))


def cik10(cik: str | int) -> str:
    """Zero-padded 10-digit CIK, as used by data.sec.gov ("0000320193")."""

    return normalize_cik(cik).zfill(10)


def accession_nodash(accession_number: str) -> str:
    return str(accession_number).strip().replace("-", "")


def accession_dashed(accession_number: str) -> str:
    """Canonical ``0001234567-24-000001`` form."""

    raw = accession_nodash(accession_number)
    if len(raw) != 18 or not raw.isdigit():
        return str(accession_number).strip()
    return f"{raw[:10]}-{raw[10:12]}-{raw[12:]}"


def archive_url(cik: str | int, accession_number: str, document_name: str = "") -> str:
    base = f"{SEC_ARCHIVES_URL}/{normalize_cik(cik)}/{accession_nodash(accession_number)}"
    doc = str(document_name).lstrip("/")
    return f"{base}/{doc}" if doc else base


def _safe_preview_bytes(data: bytes | None, *, limit: int = 2000) -> str:
    """Log-safe preview of a response body, truncated to `limit` bytes."""

    if not data:
        return ""
    return data[:limit].decode("utf-8", errors="replace")


def _headers_for_log(headers: dict[str, str]) -> dict[str, str]:
    """Return a redacted copy of headers for logging."""

    redacted: dict[str, str] = {}
    for k, v in (headers or {}).items():
        lk = str(k).lower()
        if (
            lk in {"authorization", "x-api-key", "api-key", "user-agent"}
            or "token" in lk
            or "secret" in lk
        ):
            redacted[str(k)] = "<redacted>"
        else:
            redacted[str(k)] = str(v)
    return redacted


def _sec_user_agent() -> str:
    """Resolve User-Agent for SEC requests.

    SEC requires a descriptive UA that includes contact info; configure it via
    the SEC_USER_AGENT environment variable.
    """

    ua = SETTINGS.get("SEC_USER_AGENT")
    if isinstance(ua, str) and ua.strip():
        return ua.strip()
    return "exhibit_crawler (contact: unset)"


def _parse_retry_after_seconds(value: str | None) -> float | None:
    if not value or not value.strip():
        return None
    # Retry-After may also be an HTTP date; only integer seconds are honoured.
    try:
        return float(int(value.strip()))
    except ValueError:
        return None


def _sleep_backoff(
    attempt_index: int, *, base_seconds: float = 0.5, cap_seconds: float = 8.0
) -> None:
    # 0.5, 1, 2 ... capped
    delay = min(base_seconds * (2**attempt_index), cap_seconds)
    time.sleep(delay)


def _request(
    *,
    url: str,
    session: requests.Session | None = None,
    headers: dict[str, str] | None = None,
    timeout_seconds: float = 30.0,
    rate_limiter: SlidingWindowRateLimiter | None = None,
    max_attempts: int = 3,
    max_rate_limit_retries: int = 1,
    method: str = "GET",
    allow_statuses: tuple[int, ...] = (),
    cancel_event: threading.Event | None = None,
    user_agent: str | None = None,
) -> SecResponse:
    """HTTP request with SEC constraints (UA + throttling + cooldown + retry).

    - 429/503 puts the shared limiter into cooldown and retries once the
      cooldown is over; if it persists, SecRateLimitedError is raised.
    - 500/502/504 and transport errors are retried with exponential backoff.
    - Statuses listed in `allow_statuses` are returned instead of raised.
    """

    if max_attempts <= 0:
        raise ValueError("max_attempts must be >= 1")

    s = session or requests.Session()
    rl = rate_limiter or get_shared_rate_limiter()

    merged_headers = {
        "User-Agent": user_agent or _sec_user_agent(),
        "Accept-Encoding": "gzip, deflate",
    }
    if headers:
        merged_headers.update(headers)

    attempt = 0
    rate_limited = 0
    while True:
        rl.acquire(cancel_event=cancel_event)
        try:
            if method.upper() == "HEAD":
                resp = s.head(
                    url,
                    headers=merged_headers,
                    timeout=timeout_seconds,
                    allow_redirects=True,
                )
            else:
                resp = s.get(url, headers=merged_headers, timeout=timeout_seconds)
        except requests.RequestException as e:
            attempt += 1
            logger.warning(
                "SEC request failed | method=%s url=%s attempt=%s/%s err=%s",
                method,
                url,
                attempt,
                max_attempts,
                e,
            )
            if attempt < max_attempts:
                _sleep_backoff(attempt - 1)
                continue
            raise

        status = int(resp.status_code)
        if 200 <= status < 300 or status in allow_statuses:
            return SecResponse(
                url=url,
                status_code=status,
                content=resp.content or b"",
                content_type=resp.headers.get("Content-Type"),
            )

        retry_after_raw = resp.headers.get("Retry-After")
        retry_after = _parse_retry_after_seconds(retry_after_raw)

        logger.warning(
            "SEC non-2xx response | status=%s method=%s url=%s attempt=%s/%s content_type=%s retry_after=%s headers=%s body_preview=%s",
            status,
            method,
            url,
            attempt + 1,
            max_attempts,
            resp.headers.get("Content-Type"),
            retry_after_raw,
            _headers_for_log(merged_headers),
            _safe_preview_bytes(getattr(resp, "content", b""), limit=300),
        )

        if status in RATE_LIMIT_STATUSES:
            rl.enter_cooldown()
            if retry_after is not None:
                rl.enter_cooldown(retry_after)
            rate_limited += 1
            if rate_limited <= max_rate_limit_retries:
                continue
            raise SecRateLimitedError(
                f"SEC rate limited status={status} url={url}", status_code=status, url=url
            )

        attempt += 1
        if status in TRANSIENT_STATUSES and attempt < max_attempts:
            _sleep_backoff(attempt - 1)
            continue

        raise SecEdgarApiError(
            f"SEC request failed status={status} url={url}", status_code=status, url=url
        )


class SecEdgarClient:
    """EDGAR endpoints used by the crawler, bound to one session and limiter.

    The crawler creates one client per run so it can thread its cancel event
    through every wait; the limiter is the process-wide one unless injected.
    """

    def __init__(
        self,
        *,
        session: requests.Session | None = None,
        rate_limiter: SlidingWindowRateLimiter | None = None,
        user_agent: str | None = None,
        timeout_seconds: float | None = None,
        max_attempts: int | None = None,
        cancel_event: threading.Event | None = None,
    ) -> None:
        self.session = session or requests.Session()
        self.rate_limiter = rate_limiter or get_shared_rate_limiter()
        self.user_agent = user_agent or _sec_user_agent()
        self.timeout_seconds = float(
            timeout_seconds if timeout_seconds is not None else SETTINGS["SEC_TIMEOUT_SECONDS"]
        )
        self.max_attempts = int(
            max_attempts if max_attempts is not None else SETTINGS["SEC_MAX_ATTEMPTS"]
        )
        self.cancel_event = cancel_event

    def _get(self, url: str, *, accept: str = "application/json", **kwargs: Any) -> SecResponse:
        return _request(
            url=url,
            session=self.session,
            headers={"Accept": accept},
            timeout_seconds=self.timeout_seconds,
            rate_limiter=self.rate_limiter,
            max_attempts=self.max_attempts,
            cancel_event=self.cancel_event,
            user_agent=self.user_agent,
            **kwargs,
        )

    def fetch_submissions(self, cik: str | int) -> dict:
        """Company filing history.

        Endpoint:
          https://data.sec.gov/submissions/CIK##########.json
        """

        r = self._get(f"{SEC_BASE_URL}/submissions/CIK{cik10(cik)}.json")
        return r.json()

    def fetch_company_tickers(self) -> dict:
        """Directory of all EDGAR registrants with a ticker."""

        r = self._get(f"{SEC_WWW_BASE_URL}/files/company_tickers.json")
        return r.json()

    def fetch_filing_manifest(self, cik: str | int, accession_number: str) -> dict | None:
        """Directory listing (``index.json``) of one filing.

        Returns None when EDGAR has no listing for the filing (404), so the
        caller can fall back to filename guesses.
        """

        url = f"{archive_url(cik, accession_number)}/index.json"
        r = self._get(url, allow_statuses=(404,))
        if r.status_code == 404:
            return None
        return r.json()

    def fetch_document(self, url: str) -> SecResponse:
        """Body of one filing document (HTML, plain text or PDF)."""

        return self._get(url, accept="text/html,text/plain,application/pdf,*/*")

    def document_exists(self, url: str) -> bool:
        """HEAD check used for conventional filename guesses."""

        r = self._get(url, accept="*/*", method="HEAD", allow_statuses=(403, 404))
        return r.ok
