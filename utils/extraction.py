"""Financial-metric extraction from technical report text.

Strategies return one ``ExtractionResult`` per field they know about. A field
that cannot be read from the text comes back with ``value=None`` and
``confidence=0.0``; a strategy never invents a number to fill the gap.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable, Protocol

from bs4 import BeautifulSoup

from logging_utils import get_logger

logger = get_logger(__name__)

FIELD_NPV_POST_TAX = "npv_post_tax"
FIELD_IRR_POST_TAX = "irr_post_tax"
FIELD_CAPEX_INITIAL = "capex_initial"

UNIT_USD_MILLIONS = "usd_millions"
UNIT_PERCENT = "percent"

_SNIPPET_CHARS = 160


@dataclass(frozen=True)
class ExtractionResult:
    field: str
    value: float | None
    unit: str
    confidence: float
    source_snippet: str | None = None

    @property
    def found(self) -> bool:
        return self.value is not None


class ExtractionStrategy(Protocol):
    name: str

    def extract(self, text: str) -> list[ExtractionResult]:
        ...


@dataclass(frozen=True)
class _FieldRule:
    field: str
    unit: str
    # (pattern, confidence), most specific first.
    patterns: tuple[tuple[re.Pattern, float], ...]
    min_value: float
    max_value: float


_MONEY = r"\$?\s*(?:US\$|USD\s*)?([\d,]+(?:\.\d+)?)\s*(million|billion|M|B)\b"
_PCT = r"([\d]+(?:\.\d+)?)\s*%"

_NPV_RULE = _FieldRule(
    field=FIELD_NPV_POST_TAX,
    unit=UNIT_USD_MILLIONS,
    patterns=(
        (re.compile(r"(?:post|after)[\s-]*tax\s+NPV[^\d$]{0,60}" + _MONEY, re.IGNORECASE), 0.9),
        (re.compile(r"NPV[^.\n]{0,60}?(?:post|after)[\s-]*tax[^\d$]{0,40}" + _MONEY, re.IGNORECASE), 0.8),
        (re.compile(r"\bNPV\b[^\d$]{0,40}" + _MONEY, re.IGNORECASE), 0.4),
    ),
    min_value=0.0,
    max_value=1_000_000.0,
)

_IRR_RULE = _FieldRule(
    field=FIELD_IRR_POST_TAX,
    unit=UNIT_PERCENT,
    patterns=(
        (re.compile(r"(?:post|after)[\s-]*tax\s+IRR[^\d]{0,40}" + _PCT, re.IGNORECASE), 0.9),
        (re.compile(r"IRR[^.\n]{0,60}?(?:post|after)[\s-]*tax[^\d]{0,40}" + _PCT, re.IGNORECASE), 0.8),
        (
            re.compile(r"(?:\bIRR\b|internal\s+rate\s+of\s+return)[^\d]{0,40}" + _PCT, re.IGNORECASE),
            0.4,
        ),
    ),
    min_value=0.0,
    max_value=500.0,
)

_CAPEX_RULE = _FieldRule(
    field=FIELD_CAPEX_INITIAL,
    unit=UNIT_USD_MILLIONS,
    patterns=(
        (
            re.compile(r"(?:initial|pre-?production)\s+(?:capital|capex)(?:\s+costs?)?[^\d$]{0,60}" + _MONEY, re.IGNORECASE),
            0.85,
        ),
        (
            re.compile(r"(?:capital|capex)\s+(?:costs?|expenditures?)[^\d$]{0,60}" + _MONEY, re.IGNORECASE),
            0.5,
        ),
    ),
    min_value=0.0,
    max_value=1_000_000.0,
)

DEFAULT_RULES: tuple[_FieldRule, ...] = (_NPV_RULE, _IRR_RULE, _CAPEX_RULE)


def _to_float(raw: str) -> float | None:
    try:
        return float(raw.replace(",", ""))
    except ValueError:
        return None


def _snippet(text: str, m: re.Match) -> str:
    start = max(0, m.start() - 20)
    end = min(len(text), m.end() + 20)
    return " ".join(text[start:end].split())[:_SNIPPET_CHARS]


def _scaled(value: float, scale: str | None) -> float:
    if scale and scale.lower() in {"billion", "b"}:
        return value * 1000.0
    return value


class RegexExtractionStrategy:
    """Keyword-anchored regexes; confidence reflects which pattern matched."""

    name = "regex"

    def __init__(self, rules: Iterable[_FieldRule] = DEFAULT_RULES) -> None:
        self.rules = tuple(rules)

    def _extract_field(self, rule: _FieldRule, text: str) -> ExtractionResult:
        for pattern, confidence in rule.patterns:
            for m in pattern.finditer(text):
                value = _to_float(m.group(1))
                if value is None:
                    continue
                if rule.unit == UNIT_USD_MILLIONS:
                    value = _scaled(value, m.group(2))
                if not (rule.min_value < value <= rule.max_value):
                    logger.debug(
                        "Discarding implausible value | field=%s value=%s", rule.field, value
                    )
                    continue
                return ExtractionResult(
                    field=rule.field,
                    value=value,
                    unit=rule.unit,
                    confidence=confidence,
                    source_snippet=_snippet(text, m),
                )

        return ExtractionResult(field=rule.field, value=None, unit=rule.unit, confidence=0.0)

    def extract(self, text: str) -> list[ExtractionResult]:
        if not text or not text.strip():
            return [
                ExtractionResult(field=r.field, value=None, unit=r.unit, confidence=0.0)
                for r in self.rules
            ]
        return [self._extract_field(rule, text) for rule in self.rules]


def html_to_text(html: str) -> str:
    """Visible text of an HTML exhibit, whitespace collapsed."""

    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(["script", "style"]):
        tag.decompose()
    return " ".join(soup.get_text(" ").split())


def extract_metrics(
    text: str, strategies: Iterable[ExtractionStrategy] | None = None
) -> dict[str, ExtractionResult]:
    """Best result per field across strategies (highest confidence wins)."""

    best: dict[str, ExtractionResult] = {}
    for strategy in strategies or (RegexExtractionStrategy(),):
        for result in strategy.extract(text):
            current = best.get(result.field)
            if current is None or result.confidence > current.confidence:
                best[result.field] = result
    return best
