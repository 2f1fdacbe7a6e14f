"""
Parsers for the blocks the model embeds in its replies.

Two block kinds are recognised, each delimited by a tag pair on its own:

    [SQL_QUERY]
    SELECT name, arr FROM companies WHERE name ILIKE '%TechFlow%';
    [/SQL_QUERY]

    [CHART_REQUEST]
    type: bar
    companies: TechFlow Solutions,Nexus Health
    metrics: ARR
    title: ARR Comparison
    [/CHART_REQUEST]

Only the first block of each kind is used. Blocks are removed from the text
shown to the user. The chart block body is a line-oriented `key: value`
grammar with a fixed key set; unknown keys and lines without a colon are
ignored, and the first occurrence of a key wins.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Optional, Sequence

from backend.schemas import ChartPayload, ChartType, CompanyRecord, MetricSeries

logger = logging.getLogger(__name__)

QUERY_TAG = "SQL_QUERY"
CHART_TAG = "CHART_REQUEST"

_CHART_KEYS = {"type", "companies", "metrics", "title"}
_READ_ONLY_RE = re.compile(r"select\b", re.IGNORECASE)

# (keyword, series name, record attribute, monetary)
METRIC_VOCABULARY: list[tuple[str, str, str, bool]] = [
    ("arr", "ARR", "arr", True),
    ("revenue", "Revenue", "revenue", True),
    ("cash", "Cash Balance", "cash_balance", True),
    ("valuation", "Valuation", "valuation", True),
    ("employees", "Employees", "employees", False),
]

# Multi-currency rows are not converted to one unit
MIXED_CURRENCY = "mixed"


class QueryValidationError(ValueError):
    """Raised for statements that must never reach the record store."""


@dataclass
class ExtractedQuery:
    has_query: bool
    clean_text: str
    statement: Optional[str] = None


@dataclass
class ChartDirective:
    chart_type: ChartType
    companies: list[str]
    metrics: list[str]
    title: Optional[str] = None


@dataclass
class ChartExtraction:
    has_chart: bool
    clean_text: str
    payload: Optional[ChartPayload] = None
    title: Optional[str] = None
    warnings: list[str] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Block scanning
# ---------------------------------------------------------------------------

def find_block(text: str, tag: str) -> Optional[tuple[str, int, int]]:
    """Locate the first `[tag]...[/tag]` block.

    Returns (inner text, start offset, end offset) or None when either
    delimiter is missing.
    """
    opening, closing = f"[{tag}]", f"[/{tag}]"
    start = text.find(opening)
    if start == -1:
        return None
    inner_start = start + len(opening)
    inner_end = text.find(closing, inner_start)
    if inner_end == -1:
        return None
    return text[inner_start:inner_end], start, inner_end + len(closing)


def strip_blocks(text: str, tag: str) -> str:
    """Remove every complete `[tag]...[/tag]` block from text."""
    while True:
        block = find_block(text, tag)
        if block is None:
            return text.strip()
        _, start, end = block
        text = text[:start] + text[end:]


# ---------------------------------------------------------------------------
# Query extraction
# ---------------------------------------------------------------------------

def extract_query(text: str) -> ExtractedQuery:
    """Pull the query statement out of model text.

    Without a block the text comes back untouched. With one, the statement is
    trimmed and stripped of trailing terminators. Only the first block is
    executed; `clean_text` has every block removed.
    """
    block = find_block(text, QUERY_TAG)
    if block is None:
        return ExtractedQuery(has_query=False, clean_text=text)

    inner, _, _ = block
    statement = inner.strip().rstrip(";").rstrip()
    return ExtractedQuery(
        has_query=True,
        clean_text=strip_blocks(text, QUERY_TAG),
        statement=statement,
    )


def validate_statement(statement: str) -> str:
    """Return the trimmed statement if it is a read-only SELECT, else raise."""
    cleaned = statement.strip().rstrip(";").strip()
    if not _READ_ONLY_RE.match(cleaned):
        raise QueryValidationError("Only SELECT queries are allowed")
    return cleaned


# ---------------------------------------------------------------------------
# Chart extraction
# ---------------------------------------------------------------------------

def _split_list(value: str) -> list[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


def parse_chart_directive(body: str) -> Optional[ChartDirective]:
    """Parse the body of a chart block; None if a required key is missing or invalid."""
    values: dict[str, str] = {}
    for line in body.splitlines():
        key, sep, value = line.partition(":")
        key = key.strip().lower()
        if not sep or key not in _CHART_KEYS or key in values:
            continue
        values[key] = value.strip()

    if not values.get("type") or not values.get("companies") or not values.get("metrics"):
        return None

    try:
        chart_type = ChartType(values["type"].lower())
    except ValueError:
        logger.warning("Unsupported chart type in directive: %s", values["type"])
        return None

    companies = _split_list(values["companies"])
    metrics = _split_list(values["metrics"])
    if not companies or not metrics:
        return None

    return ChartDirective(
        chart_type=chart_type,
        companies=companies,
        metrics=metrics,
        title=values.get("title") or None,
    )


def resolve_companies(requested: Sequence[str], rows: Sequence[CompanyRecord]) -> list[CompanyRecord]:
    """Rows whose name contains a requested fragment, or is contained in one.

    Row order is preserved. Rows without a name never match.
    """
    fragments = [r.lower() for r in requested]
    matched = []
    for row in rows:
        if not row.name:
            continue
        name = row.name.lower()
        if any(fragment in name or name in fragment for fragment in fragments):
            matched.append(row)
    return matched


def resolve_metrics(requested: Sequence[str], rows: Sequence[CompanyRecord]) -> list[MetricSeries]:
    series: list[MetricSeries] = []
    seen: set[str] = set()
    for metric in requested:
        normalized = metric.lower()
        for keyword, name, attribute, monetary in METRIC_VOCABULARY:
            if keyword not in normalized:
                continue
            data = [getattr(row, attribute) for row in rows]
            # a column the query never selected is all None
            if name not in seen and any(value is not None for value in data):
                seen.add(name)
                series.append(
                    MetricSeries(
                        name=name,
                        data=data,
                        currency=MIXED_CURRENCY if monetary else None,
                    )
                )
            break
    return series


def extract_chart(text: str, rows: Optional[Sequence[CompanyRecord]] = None) -> ChartExtraction:
    """Turn a chart block plus retrieved rows into a chart payload.

    `clean_text` always has every chart block removed. `has_chart` is False when the
    block is absent or malformed, no rows were supplied, or nothing resolves.
    """
    block = find_block(text, CHART_TAG)
    if block is None:
        return ChartExtraction(has_chart=False, clean_text=text)

    body, _, _ = block
    clean_text = strip_blocks(text, CHART_TAG)

    directive = parse_chart_directive(body)
    if directive is None or not rows:
        return ChartExtraction(has_chart=False, clean_text=clean_text)

    matched = resolve_companies(directive.companies, rows)
    if not matched:
        return ChartExtraction(
            has_chart=False,
            clean_text=clean_text,
            warnings=[f"No retrieved company matched {directive.companies}"],
        )

    metrics = resolve_metrics(directive.metrics, matched)
    if not metrics:
        return ChartExtraction(
            has_chart=False,
            clean_text=clean_text,
            warnings=[f"No supported metric in {directive.metrics}"],
        )

    title = directive.title or f"{' & '.join(directive.metrics)} Comparison"
    payload = ChartPayload(
        companies=[row.name for row in matched],
        metrics=metrics,
        chart_type=directive.chart_type,
    )
    return ChartExtraction(has_chart=True, clean_text=clean_text, payload=payload, title=title)


def render_chart_block(chart_type: str, companies: Sequence[str], metric: str, title: str) -> str:
    """Serialise a chart directive in the block format the extractor reads."""
    return (
        f"[{CHART_TAG}]\n"
        f"type: {chart_type}\n"
        f"companies: {','.join(companies)}\n"
        f"metrics: {metric}\n"
        f"title: {title}\n"
        f"[/{CHART_TAG}]"
    )
