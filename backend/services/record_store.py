"""
Record store gateway.

Translates the restricted SELECT shape the query planner emits into a
SQLAlchemy query against the companies table. Supported shape:

    SELECT <* | col, col, ...> FROM companies
    [WHERE name ILIKE '%frag%' [OR name ILIKE '%frag%' ...]
           [AND vertical_group = 'Enterprise' ...]]
    [ORDER BY col [ASC|DESC]]
    [LIMIT n]

Everything is read-only. `RecordStoreGateway.execute` never raises: store
faults and rejected statements come back as `QueryResult.error`.
"""

import asyncio
import logging
import re
from dataclasses import dataclass, field
from typing import Optional

from sqlalchemy import func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from backend.database import Company
from backend.graph.directives import QueryValidationError, validate_statement
from backend.schemas import CompanyRecord

logger = logging.getLogger(__name__)

COMPANY_COLUMNS: tuple[str, ...] = tuple(c.name for c in Company.__table__.columns)
_TABLE_NAME = Company.__tablename__
_FILTERABLE_COLUMNS = ("status", "vertical_group", "deal_lead", "currency")

_SELECT_RE = re.compile(r"^\s*select\s+(?P<fields>.+?)\s+from\s+(?P<table>[\w.\"]+)", re.IGNORECASE | re.DOTALL)
_NAME_MATCH_RE = re.compile(r"\bname\s+i?like\s+(?P<quote>['\"])(?P<pattern>.*?)(?P=quote)", re.IGNORECASE)
_EQUALS_RE = re.compile(
    r"\b(?P<column>" + "|".join(_FILTERABLE_COLUMNS) + r")\s*=\s*(?P<quote>['\"])(?P<value>.*?)(?P=quote)",
    re.IGNORECASE,
)
_ORDER_RE = re.compile(r"\border\s+by\s+(?P<clause>.+?)(?=\blimit\b|$)", re.IGNORECASE | re.DOTALL)
_LIMIT_RE = re.compile(r"\blimit\s+(?P<limit>\d+)", re.IGNORECASE)


@dataclass
class CompanyQuery:
    fields: Optional[list[str]] = None  # None selects every column
    name_fragments: list[str] = field(default_factory=list)
    equals: dict[str, str] = field(default_factory=dict)
    sort_field: Optional[str] = None
    descending: bool = False
    limit: Optional[int] = None


@dataclass
class QueryResult:
    data: list[CompanyRecord] = field(default_factory=list)
    error: Optional[str] = None
    formatted_response: Optional[str] = None


# ---------------------------------------------------------------------------
# Statement -> CompanyQuery
# ---------------------------------------------------------------------------

def _parse_fields(raw: str) -> Optional[list[str]]:
    raw = raw.strip()
    if raw == "*":
        return None
    fields = []
    for item in raw.split(","):
        column = item.strip().strip('"').lower()
        if column.startswith(f"{_TABLE_NAME}."):
            column = column[len(_TABLE_NAME) + 1:]
        if column not in COMPANY_COLUMNS:
            raise QueryValidationError(f"Unknown column: {item.strip()}")
        if column not in fields:
            fields.append(column)
    return fields


def _parse_order(clause: str) -> tuple[Optional[str], bool]:
    """Pick the single sort honoured.

    First DESC term, else first explicit ASC term, else first unmarked
    non-name term, else name.
    """
    items: list[tuple[str, Optional[str]]] = []
    for part in clause.strip().rstrip(";").split(","):
        tokens = part.split()
        if not tokens:
            continue
        column = tokens[0].strip('"').lower()
        direction = tokens[1].lower() if len(tokens) > 1 else None
        if column in COMPANY_COLUMNS:
            items.append((column, direction))

    for column, direction in items:
        if direction == "desc":
            return column, True
    for column, direction in items:
        if direction == "asc":
            return column, False
    for column, direction in items:
        if column != "name":
            return column, False
    if any(column == "name" for column, _ in items):
        return "name", False
    return None, False


def parse_select_statement(statement: str) -> CompanyQuery:
    """Translate a validated SELECT into a CompanyQuery, raising QueryValidationError."""
    cleaned = validate_statement(statement)
    match = _SELECT_RE.match(cleaned)
    if not match:
        raise QueryValidationError("Malformed SELECT statement")

    table = match.group("table").strip('"').lower()
    if table != _TABLE_NAME:
        raise QueryValidationError(f"Unknown table: {match.group('table')}")

    query = CompanyQuery(fields=_parse_fields(match.group("fields")))
    rest = cleaned[match.end():]

    for m in _NAME_MATCH_RE.finditer(rest):
        fragment = m.group("pattern").strip("%").strip()
        if fragment and fragment not in query.name_fragments:
            query.name_fragments.append(fragment)

    for m in _EQUALS_RE.finditer(rest):
        query.equals.setdefault(m.group("column").lower(), m.group("value"))

    order = _ORDER_RE.search(rest)
    if order:
        query.sort_field, query.descending = _parse_order(order.group("clause"))

    limit = _LIMIT_RE.search(rest)
    if limit:
        query.limit = int(limit.group("limit"))

    return query


def build_select(query: CompanyQuery):
    """CompanyQuery -> SQLAlchemy Select over the requested columns."""
    columns = [getattr(Company, name) for name in (query.fields or COMPANY_COLUMNS)]
    stmt = select(*columns)

    if query.name_fragments:
        stmt = stmt.where(
            or_(*(Company.name.icontains(fragment, autoescape=True) for fragment in query.name_fragments))
        )
    for column, value in query.equals.items():
        stmt = stmt.where(func.lower(getattr(Company, column)) == value.lower())

    if query.sort_field:
        sort_column = getattr(Company, query.sort_field)
        stmt = stmt.order_by(sort_column.desc() if query.descending else sort_column.asc())
    if query.limit is not None:
        stmt = stmt.limit(query.limit)
    return stmt


# ---------------------------------------------------------------------------
# Display helpers
# ---------------------------------------------------------------------------

def format_currency(amount: Optional[int], currency: Optional[str]) -> str:
    if amount is None:
        return "N/A"
    code = currency or "USD"
    prefix = {"USD": "$", "AUD": "A$"}.get(code, f"{code} ")

    if amount >= 1_000_000_000:
        return f"{prefix}{amount / 1_000_000_000:.1f}B"
    if amount >= 1_000_000:
        return f"{prefix}{amount / 1_000_000:.1f}M"
    if amount >= 1_000:
        return f"{prefix}{amount / 1_000:.1f}K"
    return f"{prefix}{amount:,}"


_MONEY_FIELDS = [
    ("arr", "ARR"),
    ("revenue", "Revenue"),
    ("cash_balance", "Cash Balance"),
    ("valuation", "Valuation"),
]
_PLAIN_FIELDS = [
    ("founded_year", "Founded"),
    ("vertical_group", "Vertical"),
    ("deal_lead", "Deal Lead"),
    ("status", "Status"),
]


def format_query_results(rows: list[CompanyRecord]) -> str:
    """Plain-text listing of rows, with currency and source for every figure."""
    if not rows:
        return "No companies found matching your criteria."

    noun = "company" if len(rows) == 1 else "companies"
    lines = [f"Found {len(rows)} {noun}:", ""]
    for index, row in enumerate(rows, start=1):
        lines.append(f"{index}. **{row.name or 'Unknown Company'}**")
        currency = row.currency or "USD"
        for attr, label in _MONEY_FIELDS:
            value = getattr(row, attr)
            if value is not None:
                source = getattr(row, f"{attr}_source") or "N/A"
                lines.append(f"   • {label}: {format_currency(value, currency)} {currency} (Source: {source})")
        if row.employees is not None:
            lines.append(f"   • Employees: {row.employees:,} (Source: {row.employees_source or 'N/A'})")
        for attr, label in _PLAIN_FIELDS:
            value = getattr(row, attr)
            if value is not None:
                source = getattr(row, f"{attr}_source") or "N/A"
                lines.append(f"   • {label}: {value} (Source: {source})")
        lines.append("")
    return "\n".join(lines).rstrip() + "\n"


# ---------------------------------------------------------------------------
# Gateway
# ---------------------------------------------------------------------------

class RecordStoreGateway:
    """Read-only access to the companies table through a session factory."""

    def __init__(self, session_factory: async_sessionmaker, timeout: Optional[float] = None) -> None:
        self._session_factory = session_factory
        self._timeout = timeout

    async def _fetch(self, query: CompanyQuery) -> list[CompanyRecord]:
        async with self._session_factory() as session:
            result = await session.execute(build_select(query))
            return [CompanyRecord(**dict(row)) for row in result.mappings().all()]

    async def run(self, query: CompanyQuery) -> QueryResult:
        try:
            rows = await asyncio.wait_for(self._fetch(query), timeout=self._timeout)
        except asyncio.TimeoutError:
            logger.error("Record store query timed out after %ss", self._timeout)
            return QueryResult(error="Query execution failed: timed out")
        except SQLAlchemyError as exc:
            logger.error("Record store query error: %s", exc)
            return QueryResult(error=f"Database error: {exc}")
        except Exception as exc:
            logger.error("Record store query failed: %s", exc)
            return QueryResult(error=f"Query execution failed: {exc}")

        return QueryResult(data=rows, formatted_response=format_query_results(rows))

    async def execute(self, statement: str) -> QueryResult:
        """Run a SELECT statement; any other statement is rejected unexecuted."""
        try:
            query = parse_select_statement(statement)
        except QueryValidationError as exc:
            logger.warning("Rejected statement %r: %s", statement, exc)
            return QueryResult(error=str(exc))
        return await self.run(query)

    async def list_companies(self) -> QueryResult:
        return await self.run(CompanyQuery(sort_field="name"))
