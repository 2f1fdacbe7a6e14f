import pytest

from backend.graph.directives import (
    MIXED_CURRENCY,
    QueryValidationError,
    extract_chart,
    extract_query,
    parse_chart_directive,
    resolve_companies,
    validate_statement,
)
from backend.schemas import ChartType, CompanyRecord

ROWS = [
    CompanyRecord(name="TechFlow Solutions", arr=45_000_000, employees=210, currency="USD"),
    CompanyRecord(name="Nexus Health", arr=21_000_000, employees=140, currency="USD"),
    CompanyRecord(name="DataCore Systems", arr=28_000_000, employees=160, currency="AUD"),
]


def _chart_text(body: str) -> str:
    return f"Here you go.\n\n[CHART_REQUEST]\n{body}\n[/CHART_REQUEST]"


# Query extraction
def test_text_without_query_block_is_returned_unchanged():
    text = "  Hello there!\nNothing to run here;  \n"
    extracted = extract_query(text)
    assert extracted.has_query is False
    assert extracted.statement is None
    assert extracted.clean_text == text


def test_unterminated_block_counts_as_no_query():
    text = "[SQL_QUERY]\nSELECT * FROM companies"
    extracted = extract_query(text)
    assert extracted.has_query is False
    assert extracted.clean_text == text


def test_query_block_is_extracted_and_removed():
    text = "Sure.\n[SQL_QUERY]\n  SELECT name FROM companies;;  \n[/SQL_QUERY]\nDone."
    extracted = extract_query(text)
    assert extracted.has_query is True
    assert extracted.statement == "SELECT name FROM companies"
    assert "[SQL_QUERY]" not in extracted.clean_text
    assert extracted.clean_text == "Sure.\n\nDone."


def test_only_first_query_block_is_used():
    text = "[SQL_QUERY]SELECT 1 FROM companies[/SQL_QUERY] and [SQL_QUERY]SELECT 2[/SQL_QUERY]"
    extracted = extract_query(text)
    assert extracted.statement == "SELECT 1 FROM companies"
    assert extracted.clean_text == "and"


@pytest.mark.parametrize(
    "statement",
    ["  select name from companies", "SELECT * FROM companies;", "\n\tSeLeCt arr FROM companies"],
)
def test_read_only_statements_are_accepted(statement):
    assert validate_statement(statement).lower().startswith("select")


@pytest.mark.parametrize(
    "statement",
    [
        "DELETE FROM companies",
        "  update companies set arr = 0",
        "DROP TABLE companies; SELECT 1",
        "selection FROM companies",
        "",
    ],
)
def test_non_read_only_statements_are_rejected(statement):
    with pytest.raises(QueryValidationError):
        validate_statement(statement)


# Chart directive grammar
def test_directive_parses_known_keys_and_ignores_noise():
    directive = parse_chart_directive(
        "type: Pie\nnote: ignored\nno colon here\ncompanies: A, B ,\nmetrics: ARR\ntype: bar"
    )
    assert directive.chart_type is ChartType.PIE
    assert directive.companies == ["A", "B"]
    assert directive.metrics == ["ARR"]
    assert directive.title is None


@pytest.mark.parametrize(
    "body",
    [
        "companies: TechFlow\nmetrics: ARR",
        "type: bar\nmetrics: ARR",
        "type: bar\ncompanies: TechFlow",
        "type: radar\ncompanies: TechFlow\nmetrics: ARR",
        "type: bar\ncompanies: ,\nmetrics: ARR",
    ],
)
def test_incomplete_or_invalid_directive_yields_no_chart(body):
    result = extract_chart(_chart_text(body), ROWS)
    assert result.has_chart is False
    assert "[CHART_REQUEST]" not in result.clean_text


def test_no_rows_means_no_chart():
    text = _chart_text("type: bar\ncompanies: TechFlow\nmetrics: ARR")
    assert extract_chart(text, []).has_chart is False
    assert extract_chart(text, None).has_chart is False


def test_text_without_chart_block_is_untouched():
    result = extract_chart("plain answer", ROWS)
    assert result.has_chart is False
    assert result.clean_text == "plain answer"


# Entity and metric resolution
def test_name_resolution_is_bidirectional_containment():
    row = [CompanyRecord(name="Nexus Health")]
    assert resolve_companies(["nexus"], row) == row
    assert resolve_companies(["Nexus Health Group"], row) == row
    assert resolve_companies(["Vortex"], row) == []


def test_rows_without_a_name_never_match():
    assert resolve_companies(["anything"], [CompanyRecord(arr=1)]) == []


def test_metric_keywords_are_case_insensitive_substrings():
    result = extract_chart(_chart_text("type: bar\ncompanies: TechFlow\nmetrics: Annual ARR"), ROWS)
    assert result.has_chart is True
    assert [m.name for m in result.payload.metrics] == ["ARR"]
    assert result.payload.metrics[0].data == [45_000_000]


def test_unknown_metrics_are_dropped_and_unitless_series_have_no_currency():
    result = extract_chart(
        _chart_text("type: line\ncompanies: TechFlow, Nexus\nmetrics: burn multiple, Employees"), ROWS
    )
    assert result.has_chart is True
    assert len(result.payload.metrics) == 1
    series = result.payload.metrics[0]
    assert series.name == "Employees"
    assert series.currency is None
    assert series.data == [210, 140]


def test_only_unknown_metrics_means_no_chart():
    result = extract_chart(_chart_text("type: bar\ncompanies: TechFlow\nmetrics: burn"), ROWS)
    assert result.has_chart is False


def test_no_matching_company_means_no_chart():
    result = extract_chart(_chart_text("type: bar\ncompanies: Vortex\nmetrics: ARR"), ROWS)
    assert result.has_chart is False
    assert result.warnings


def test_pie_comparison_payload():
    result = extract_chart(
        _chart_text("type: pie\ncompanies: TechFlow Solutions,Nexus Health\nmetrics: ARR"), ROWS
    )
    assert result.has_chart is True
    payload = result.payload
    assert payload.chart_type is ChartType.PIE
    assert payload.companies == ["TechFlow Solutions", "Nexus Health"]
    assert len(payload.metrics) == 1
    assert payload.metrics[0].currency == MIXED_CURRENCY
    assert len(payload.metrics[0].data) == 2
    assert result.title == "ARR Comparison"
    assert result.clean_text == "Here you go."


def test_companies_come_back_in_row_order_with_aligned_series():
    result = extract_chart(
        _chart_text("type: bar\ncompanies: DataCore, TechFlow\nmetrics: ARR, Employees, ARR\ntitle: Scale"),
        ROWS,
    )
    payload = result.payload
    assert payload.companies == ["TechFlow Solutions", "DataCore Systems"]
    assert [m.name for m in payload.metrics] == ["ARR", "Employees"]
    for series in payload.metrics:
        assert len(series.data) == len(payload.companies)
    assert result.title == "Scale"


def test_every_chart_block_is_stripped_but_the_first_drives_the_payload():
    text = (
        "TechFlow leads.\n"
        "[CHART_REQUEST]\ntype: pie\ncompanies: TechFlow,Nexus\nmetrics: ARR\n[/CHART_REQUEST]\n"
        "[CHART_REQUEST]\ntype: bar\ncompanies: DataCore\nmetrics: Employees\n[/CHART_REQUEST]"
    )
    result = extract_chart(text, ROWS)
    assert result.has_chart is True
    assert result.payload.chart_type is ChartType.PIE
    assert result.clean_text == "TechFlow leads."


def test_every_chart_block_is_stripped_when_no_chart_resolves():
    text = _chart_text("type: bar\ncompanies: Vortex\nmetrics: ARR") + "\n" + _chart_text("type: bar")
    result = extract_chart(text, ROWS)
    assert result.has_chart is False
    assert "CHART_REQUEST" not in result.clean_text


def test_metric_never_selected_is_not_charted():
    rows = [CompanyRecord(name="TechFlow Solutions", employees=210), CompanyRecord(name="Nexus Health", employees=140)]
    result = extract_chart(_chart_text("type: pie\ncompanies: TechFlow,Nexus\nmetrics: ARR"), rows)
    assert result.has_chart is False
    assert result.warnings


def test_all_none_series_is_dropped_but_others_survive():
    rows = [CompanyRecord(name="TechFlow Solutions", employees=210), CompanyRecord(name="Nexus Health")]
    result = extract_chart(_chart_text("type: bar\ncompanies: TechFlow,Nexus\nmetrics: ARR, Employees"), rows)
    assert result.has_chart is True
    assert [m.name for m in result.payload.metrics] == ["Employees"]
    assert result.payload.metrics[0].data == [210, None]
