"""Data models for report widgets, grid layouts and persisted snapshots."""
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


class WidgetType(str, Enum):
    """Visualization kinds a report widget can render."""
    KPI = "kpi"
    ENHANCED_KPI = "enhancedKpi"
    METRIC_CARD = "metricCard"
    CHART = "chart"
    TABLE = "table"
    PIVOT = "pivot"
    GAUGE = "gauge"
    FILTER = "filter"
    TEXT = "text"
    FORMULA = "formula"
    CROSS_CHECK = "crossCheck"
    ACCOUNT_HIERARCHY = "accountHierarchy"
    ACCOUNT_LINES = "accountLines"
    METRICS_EXPLORER = "metricsExplorer"
    SMART_NAVIGATION = "smartNavigation"
    STATEMENT_TABLE = "statementTable"
    WATERFALL = "waterfall"
    HEATMAP = "heatmap"
    TREEMAP = "treemap"
    BUDGET_VARIANCE = "budgetVariance"
    FINANCIAL_RATIOS = "financialRatios"
    REVENUE_ANALYSIS = "revenueAnalysis"
    EXPENSE_ANALYSIS = "expenseAnalysis"
    RISK_ASSESSMENT = "riskAssessment"
    ACCOUNTING_OVERVIEW = "accountingOverview"
    PROJECT_CARD = "projectCard"
    INFO = "info"


class SyncStatus(str, Enum):
    """Replication state of the remote copy of a snapshot."""
    IDLE = "idle"
    PENDING = "pending"
    SYNCED = "synced"
    FAILED = "failed"
    DISABLED = "disabled"


DEFAULT_SECTION = "default"


class Widget(BaseModel):
    """A single report visualization unit."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="forbid",
        validate_assignment=True,
    )

    id: str
    type: WidgetType
    title: str
    config: Dict[str, Any] = Field(default_factory=dict)
    section_id: Optional[str] = None
    data_source_id: Optional[str] = None
    auto_refresh: Optional[bool] = None
    refresh_interval: Optional[float] = Field(default=None, gt=0)

    @field_validator('id')
    @classmethod
    def id_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("widget id cannot be blank")
        return v

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the camelCase wire representation."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class WidgetLayout(BaseModel):
    """Grid position and size paired one-to-one with a widget."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    i: str
    x: int = Field(ge=0)
    y: int = Field(ge=0)
    w: int = Field(ge=1)
    h: int = Field(ge=1)
    widget_id: str
    data_source_id: Optional[str] = None
    section_id: Optional[str] = None

    @model_validator(mode='before')
    @classmethod
    def fill_widget_id(cls, data: Any) -> Any:
        # Grid libraries only report ``i``; older snapshots only carried widgetId.
        if isinstance(data, Mapping):
            data = dict(data)
            widget_id = data.get('widget_id', data.get('widgetId'))
            if 'i' not in data and widget_id is not None:
                data['i'] = widget_id
            if widget_id is None and 'i' in data:
                data['widgetId'] = data['i']
        return data

    @model_validator(mode='after')
    def check_ids_match(self) -> "WidgetLayout":
        if self.i != self.widget_id:
            raise ValueError(f"layout i '{self.i}' does not match widgetId '{self.widget_id}'")
        return self

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the camelCase wire representation."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class CrossFilter(BaseModel):
    """A report-wide filter broadcast from one widget's interaction."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )

    source_widget_id: str
    filter_type: str
    value: Any
    label: str = ""

    def matches(self, record: Mapping[str, Any]) -> bool:
        """Check whether a data row passes this filter."""
        if self.filter_type not in record:
            return False
        candidate = record[self.filter_type]
        if isinstance(self.value, (list, tuple, set, frozenset)):
            return candidate in self.value
        return candidate == self.value


class WidgetSnapshot(BaseModel):
    """Persisted widget set for one (client, fiscal year) scope."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    version: int = 1
    client_id: str
    fiscal_year: int
    widgets: List[Widget] = Field(default_factory=list)
    layouts: List[WidgetLayout] = Field(default_factory=list)
    saved_at: datetime = Field(default_factory=datetime.now)

    @property
    def scope_key(self) -> str:
        return scope_key(self.client_id, self.fiscal_year)

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class DashboardSettings(BaseModel):
    """Display settings stored alongside a dashboard configuration."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    theme: Optional[str] = None
    auto_refresh: bool = False
    refresh_interval: float = 30.0
    columns: Dict[str, int] = Field(
        default_factory=lambda: {"lg": 12, "md": 10, "sm": 6, "xs": 4, "xxs": 2}
    )


class DashboardMetadata(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)
    version: str = "1.0.0"
    author: Optional[str] = None


class DashboardConfig(BaseModel):
    """A named, reusable widget set that can be loaded into any report view."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str = Field(default_factory=lambda: uuid4().hex)
    name: str
    description: Optional[str] = None
    widgets: List[Widget] = Field(default_factory=list)
    layouts: List[WidgetLayout] = Field(default_factory=list)
    settings: DashboardSettings = Field(default_factory=DashboardSettings)
    metadata: DashboardMetadata = Field(default_factory=DashboardMetadata)

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


def scope_key(client_id: str, fiscal_year: int) -> str:
    """Storage key for a report view scope."""
    return f"report-widgets:{client_id}:{fiscal_year}"
