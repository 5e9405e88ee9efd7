from __future__ import annotations

import json

import pytest
import requests

import utils.sec_edgar_api as api
from utils.rate_limiter import AcquireCancelled


class _FakeResponse:
    def __init__(
        self, *, status_code: int, content: bytes = b"ok", headers: dict | None = None
    ):
        self.status_code = status_code
        self.content = content
        self.headers = headers or {}


class _FakeSession:
    def __init__(self, responses):
        self._responses = list(responses)
        self.calls = []

    def _next(self, method, url, headers, timeout):
        self.calls.append(
            {"method": method, "url": url, "headers": headers or {}, "timeout": timeout}
        )
        if not self._responses:
            raise RuntimeError("No more fake responses")
        r = self._responses.pop(0)
        if isinstance(r, Exception):
            raise r
        return r

    def get(self, url, headers=None, timeout=None):
        return self._next("GET", url, headers, timeout)

    def head(self, url, headers=None, timeout=None, allow_redirects=False):
        return self._next("HEAD", url, headers, timeout)


class _FakeLimiter:
    def __init__(self, *, cancel: bool = False):
        self.acquires = 0
        self.cooldowns: list[float | None] = []
        self._cancel = cancel

    def acquire(self, cancel_event=None):
        if self._cancel:
            raise AcquireCancelled("cancelled")
        self.acquires += 1

    def enter_cooldown(self, seconds=None):
        self.cooldowns.append(seconds)
        return seconds or 600.0


@pytest.fixture(autouse=True)
def _no_sleep_and_ua(monkeypatch):
    monkeypatch.setitem(api.SETTINGS, "SEC_USER_AGENT", "UnitTest UA test@example.com")
    monkeypatch.setattr(api.time, "sleep", lambda _x: None)


def _json(obj) -> _FakeResponse:
    return _FakeResponse(
        status_code=200,
        content=json.dumps(obj).encode("utf-8"),
        headers={"Content-Type": "application/json"},
    )


def test_user_agent_is_always_present():
    s = _FakeSession([_json({})])
    limiter = _FakeLimiter()

    api._request(url="https://example.test/", session=s, rate_limiter=limiter)

    assert s.calls
    assert "User-Agent" in s.calls[0]["headers"]
    assert "UnitTest UA" in s.calls[0]["headers"]["User-Agent"]


def test_every_call_has_a_timeout():
    s = _FakeSession([_json({})])

    api._request(
        url="https://example.test/", session=s, rate_limiter=_FakeLimiter(), timeout_seconds=7
    )

    assert s.calls[0]["timeout"] == 7


def test_rate_limiter_invoked():
    s = _FakeSession([_FakeResponse(status_code=200, content=b"ok")])
    limiter = _FakeLimiter()

    api._request(url="https://example.test/", session=s, rate_limiter=limiter)
    assert limiter.acquires == 1


@pytest.mark.parametrize("status_code", [500, 502, 504])
def test_retry_on_transient_status_codes(status_code):
    # first attempt retryable, second attempt success
    s = _FakeSession(
        [
            _FakeResponse(status_code=status_code, content=b"nope"),
            _FakeResponse(status_code=200, content=b"ok"),
        ]
    )
    limiter = _FakeLimiter()

    r = api._request(
        url="https://example.test/", session=s, rate_limiter=limiter, max_attempts=3
    )
    assert r.status_code == 200
    assert len(s.calls) == 2
    assert limiter.acquires == 2
    assert limiter.cooldowns == []


@pytest.mark.parametrize("status_code", [429, 503])
def test_rate_limit_status_enters_cooldown_then_retries(status_code):
    s = _FakeSession(
        [
            _FakeResponse(status_code=status_code, content=b"slow down"),
            _FakeResponse(status_code=200, content=b"ok"),
        ]
    )
    limiter = _FakeLimiter()

    r = api._request(url="https://example.test/", session=s, rate_limiter=limiter)

    assert r.ok
    assert limiter.cooldowns == [None]
    # The retry goes back through the limiter, which waits out the cooldown.
    assert limiter.acquires == 2


def test_retry_after_header_extends_cooldown():
    s = _FakeSession(
        [
            _FakeResponse(status_code=429, headers={"Retry-After": "900"}),
            _FakeResponse(status_code=200),
        ]
    )
    limiter = _FakeLimiter()

    api._request(url="https://example.test/", session=s, rate_limiter=limiter)

    assert limiter.cooldowns == [None, 900.0]


def test_persistent_rate_limit_raises_rate_limited_error():
    s = _FakeSession([_FakeResponse(status_code=429) for _ in range(5)])
    limiter = _FakeLimiter()

    with pytest.raises(api.SecRateLimitedError) as exc:
        api._request(url="https://example.test/", session=s, rate_limiter=limiter)

    assert exc.value.status_code == 429
    assert len(s.calls) == 2


def test_transport_errors_retry_then_raise():
    s = _FakeSession([requests.ConnectionError("boom") for _ in range(3)])
    limiter = _FakeLimiter()

    with pytest.raises(requests.ConnectionError):
        api._request(
            url="https://example.test/", session=s, rate_limiter=limiter, max_attempts=3
        )

    assert len(s.calls) == 3


def test_timeout_then_success():
    s = _FakeSession([requests.Timeout("slow"), _FakeResponse(status_code=200)])

    r = api._request(url="https://example.test/", session=s, rate_limiter=_FakeLimiter())

    assert r.ok


def test_non_retryable_status_raises():
    s = _FakeSession([_FakeResponse(status_code=403, content=b"no")])
    limiter = _FakeLimiter()

    with pytest.raises(api.SecEdgarApiError) as exc:
        api._request(
            url="https://example.test/", session=s, rate_limiter=limiter, max_attempts=3
        )
    assert exc.value.status_code == 403
    assert len(s.calls) == 1


def test_cancelled_acquire_sends_nothing():
    s = _FakeSession([_FakeResponse(status_code=200)])

    with pytest.raises(AcquireCancelled):
        api._request(url="https://example.test/", session=s, rate_limiter=_FakeLimiter(cancel=True))

    assert s.calls == []


def test_headers_for_log_redacts_user_agent():
    out = api._headers_for_log({"User-Agent": "me@example.com", "Accept": "application/json"})

    assert out["User-Agent"] == "<redacted>"
    assert out["Accept"] == "application/json"


def test_client_fetch_submissions_uses_padded_cik():
    s = _FakeSession([_json({"cik": "1801368", "name": "MP Materials"})])
    client = api.SecEdgarClient(session=s, rate_limiter=_FakeLimiter())

    payload = client.fetch_submissions("1801368")

    assert payload["name"] == "MP Materials"
    assert s.calls[0]["url"] == "https://data.sec.gov/submissions/CIK0001801368.json"


def test_client_manifest_404_returns_none():
    s = _FakeSession([_FakeResponse(status_code=404, content=b"not found")])
    client = api.SecEdgarClient(session=s, rate_limiter=_FakeLimiter())

    assert client.fetch_filing_manifest("1801368", "0001801368-24-000010") is None
    assert s.calls[0]["url"] == (
        "https://www.sec.gov/Archives/edgar/data/1801368/000180136824000010/index.json"
    )


def test_client_document_exists_uses_head():
    s = _FakeSession([_FakeResponse(status_code=200), _FakeResponse(status_code=404)])
    client = api.SecEdgarClient(session=s, rate_limiter=_FakeLimiter())

    assert client.document_exists("https://www.sec.gov/a/ex961.htm") is True
    assert client.document_exists("https://www.sec.gov/a/ex96-1.htm") is False
    assert [c["method"] for c in s.calls] == ["HEAD", "HEAD"]


@pytest.mark.parametrize(
    "raw, expected",
    [("0001801368", "1801368"), (1801368, "1801368"), (" 320193 ", "320193")],
)
def test_normalize_cik(raw, expected):
    assert api.normalize_cik(raw) == expected
    assert api.cik10(raw) == expected.zfill(10)


def test_accession_forms():
    assert api.accession_nodash("0001801368-24-000010") == "000180136824000010"
    assert api.accession_dashed("000180136824000010") == "0001801368-24-000010"
    assert api.accession_dashed("0001801368-24-000010") == "0001801368-24-000010"


def test_normalize_cik_rejects_garbage():
    with pytest.raises(ValueError):
        api.normalize_cik("abc")
