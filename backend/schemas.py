from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


# =========================
# Enums
# =========================
class ChartType(str, Enum):
    BAR = "bar"
    LINE = "line"
    PIE = "pie"


class MessageKind(str, Enum):
    TEXT = "text"
    CHART = "chart"


# =========================
# COMPANY
# =========================
class CompanyRecord(BaseModel):
    """One row of the companies table.

    Every field is optional because a query may select a subset of columns;
    `model_fields_set` tells which columns were actually selected.
    """

    id: Optional[str] = None
    name: Optional[str] = None
    arr: Optional[int] = None
    revenue: Optional[int] = None
    cash_balance: Optional[int] = None
    valuation: Optional[int] = None
    employees: Optional[int] = None
    founded_year: Optional[int] = None
    status: Optional[str] = None
    vertical_group: Optional[str] = None
    deal_lead: Optional[str] = None
    currency: Optional[str] = None

    arr_source: Optional[str] = None
    revenue_source: Optional[str] = None
    cash_balance_source: Optional[str] = None
    valuation_source: Optional[str] = None
    employees_source: Optional[str] = None
    founded_year_source: Optional[str] = None
    status_source: Optional[str] = None
    vertical_group_source: Optional[str] = None
    deal_lead_source: Optional[str] = None

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True, extra="ignore")


# =========================
# CHART
# =========================
class MetricSeries(BaseModel):
    name: str
    data: List[Optional[int]]
    # None for unit-less series (employees)
    currency: Optional[str] = None


class ChartPayload(BaseModel):
    companies: List[str]
    metrics: List[MetricSeries]
    chart_type: ChartType = ChartType.BAR


# =========================
# CHAT
# =========================
class HistoryMessage(BaseModel):
    role: Optional[str] = None  # 'user' | 'assistant'
    content: Optional[str] = None


class ChatRequest(BaseModel):
    message: Optional[str] = None
    messages: Optional[List[HistoryMessage]] = None


class ChatResponse(BaseModel):
    message: str
    timestamp: datetime = Field(default_factory=lambda: datetime.utcnow())
    type: MessageKind = MessageKind.TEXT
    chart_data: Optional[ChartPayload] = None
    chart_title: Optional[str] = None
    chart_type: Optional[ChartType] = None
