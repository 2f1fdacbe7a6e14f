"""
Chart widget construction.

Turns a chart payload as returned by POST /api/chat into a Plotly figure.
Bar and line charts plot every metric series; a pie shows the first one.
"""

from typing import Optional

import plotly.graph_objects as go

_PALETTE = ["#00CC96", "#AB63FA", "#636EFA", "#EF553B", "#FFA15A"]


def _axis_title(metric: dict) -> str:
    if metric.get("currency"):
        return f"{metric['name']} ({metric['currency']} currency)"
    return metric["name"]


def build_chart_figure(chart_data: dict, title: str, chart_type: Optional[str] = "bar") -> go.Figure:
    companies = chart_data["companies"]
    metrics = chart_data["metrics"]
    chart_type = chart_type or chart_data.get("chart_type") or "bar"

    fig = go.Figure()
    if chart_type == "pie":
        metric = metrics[0]
        fig.add_trace(go.Pie(
            labels=companies,
            values=[value or 0 for value in metric["data"]],
            name=metric["name"],
            marker=dict(colors=_PALETTE),
        ))
    else:
        for index, metric in enumerate(metrics):
            color = _PALETTE[index % len(_PALETTE)]
            if chart_type == "line":
                fig.add_trace(go.Scatter(
                    x=companies, y=metric["data"], mode="lines+markers",
                    name=metric["name"], line=dict(color=color),
                ))
            else:
                fig.add_trace(go.Bar(
                    x=companies, y=metric["data"], name=metric["name"],
                    marker_color=color,
                ))

    fig.update_layout(
        title=title,
        yaxis_title=_axis_title(metrics[0]) if chart_type != "pie" else None,
        barmode="group",
        template="plotly_dark",
        height=500,
    )
    return fig


def describe_chart(chart_data: dict) -> str:
    """Plain-text rendering for terminals: one line per company and metric."""
    lines = []
    for metric in chart_data["metrics"]:
        lines.append(f"{metric['name']}:")
        for company, value in zip(chart_data["companies"], metric["data"]):
            shown = f"{value:,}" if isinstance(value, int) else "N/A"
            lines.append(f"  {company:<28} {shown}")
    return "\n".join(lines)
