from __future__ import annotations

import pytest

from utils.extraction import (
    FIELD_CAPEX_INITIAL,
    FIELD_IRR_POST_TAX,
    FIELD_NPV_POST_TAX,
    UNIT_PERCENT,
    UNIT_USD_MILLIONS,
    ExtractionResult,
    RegexExtractionStrategy,
    extract_metrics,
    html_to_text,
)

REPORT = """
19.1 Economic Analysis
The project generates an after-tax NPV (at an 8% discount rate) of US$1,234.5 million.
Summary: after-tax NPV of $1,234.5 million and an after-tax IRR of 24.3%.
Initial capital costs are estimated at $1.2 billion, with sustaining capital of $310 million.
"""


def _by_field(results):
    return {r.field: r for r in results}


def test_reads_post_tax_metrics():
    out = _by_field(RegexExtractionStrategy().extract(REPORT))

    npv = out[FIELD_NPV_POST_TAX]
    assert npv.value == pytest.approx(1234.5)
    assert npv.unit == UNIT_USD_MILLIONS
    assert npv.confidence >= 0.8
    assert "NPV" in npv.source_snippet

    irr = out[FIELD_IRR_POST_TAX]
    assert irr.value == pytest.approx(24.3)
    assert irr.unit == UNIT_PERCENT

    capex = out[FIELD_CAPEX_INITIAL]
    assert capex.value == pytest.approx(1200.0)


def test_generic_mentions_get_lower_confidence():
    out = _by_field(RegexExtractionStrategy().extract("The NPV is $450 million and the IRR: 18%."))

    assert out[FIELD_NPV_POST_TAX].value == pytest.approx(450.0)
    assert out[FIELD_NPV_POST_TAX].confidence < 0.8
    assert out[FIELD_IRR_POST_TAX].confidence < 0.8


def test_missing_values_are_reported_not_invented():
    out = RegexExtractionStrategy().extract("Drilling continued on the northern extension.")

    assert {r.field for r in out} == {FIELD_NPV_POST_TAX, FIELD_IRR_POST_TAX, FIELD_CAPEX_INITIAL}
    for r in out:
        assert r.value is None
        assert r.confidence == 0.0
        assert r.found is False


def test_empty_text():
    out = RegexExtractionStrategy().extract("   ")
    assert all(r.value is None for r in out)


def test_implausible_irr_is_discarded():
    out = _by_field(RegexExtractionStrategy().extract("after-tax IRR of 950%"))
    assert out[FIELD_IRR_POST_TAX].value is None


class _FixedStrategy:
    name = "fixed"

    def __init__(self, result: ExtractionResult):
        self.result = result

    def extract(self, text):
        return [self.result]


def test_extract_metrics_keeps_highest_confidence():
    better = ExtractionResult(FIELD_IRR_POST_TAX, 30.0, UNIT_PERCENT, 0.95, "manual")

    best = extract_metrics(
        "The IRR: 18%.", [RegexExtractionStrategy(), _FixedStrategy(better)]
    )

    assert best[FIELD_IRR_POST_TAX] is better
    assert best[FIELD_NPV_POST_TAX].value is None


def test_html_to_text_drops_markup_and_scripts():
    html = """<html><head><script>var npv = "$9 million";</script><style>p{}</style></head>
    <body><p>after-tax NPV of</p>
    <table><tr><td>$1,234.5 million</td></tr></table></body></html>"""

    text = html_to_text(html)

    assert text == "after-tax NPV of $1,234.5 million"
    assert extract_metrics(text)[FIELD_NPV_POST_TAX].value == pytest.approx(1234.5)
