"""Sample widgets, layouts and snapshots used across tests."""
from typing import Any, Dict, List

from reportgrid.models import Widget, WidgetLayout, WidgetSnapshot


def make_widget(widget_id: str = "w1", widget_type: str = "kpi", **fields) -> Dict[str, Any]:
    """Camel-case widget payload, as a UI would send it."""
    payload = {"id": widget_id, "type": widget_type, "title": f"Widget {widget_id}", "config": {}}
    payload.update(fields)
    return payload


def make_layout(widget_id: str = "w1", x: int = 0, y: int = 0, w: int = 2, h: int = 2) -> Dict[str, Any]:
    return {"i": widget_id, "x": x, "y": y, "w": w, "h": h}


def sample_widgets() -> List[Widget]:
    return [
        Widget(id="revenue", type="kpi", title="Revenue", section_id="summary"),
        Widget(id="trend", type="chart", title="Revenue Trend", section_id="summary",
               data_source_id="tb-2024"),
        Widget(id="lines", type="accountLines", title="Account Lines"),
    ]


def sample_layouts() -> List[WidgetLayout]:
    return [
        WidgetLayout(i="revenue", x=0, y=0, w=3, h=2, widget_id="revenue", section_id="summary"),
        WidgetLayout(i="trend", x=3, y=0, w=6, h=4, widget_id="trend", section_id="summary",
                     data_source_id="tb-2024"),
        WidgetLayout(i="lines", x=0, y=4, w=8, h=6, widget_id="lines"),
    ]


def sample_snapshot(client_id: str = "acme", fiscal_year: int = 2024) -> WidgetSnapshot:
    return WidgetSnapshot(
        client_id=client_id,
        fiscal_year=fiscal_year,
        widgets=sample_widgets(),
        layouts=sample_layouts()
    )
