"""Grid geometry helpers: default widget sizes, collisions and placement."""
import logging
from typing import Dict, Iterable, List, Tuple, Union

from .models import DEFAULT_SECTION, Widget, WidgetLayout, WidgetType

log = logging.getLogger(__name__)

FALLBACK_SIZE = (4, 3)

_TYPE_SIZES: Dict[WidgetType, Tuple[int, int]] = {
    WidgetType.KPI: (3, 2),
    WidgetType.ENHANCED_KPI: (4, 3),
    WidgetType.METRIC_CARD: (3, 2),
    WidgetType.CHART: (6, 4),
    WidgetType.TABLE: (8, 6),
    WidgetType.PIVOT: (8, 6),
    WidgetType.GAUGE: (4, 4),
    WidgetType.FILTER: (4, 2),
    WidgetType.TEXT: (6, 3),
    WidgetType.FORMULA: (4, 2),
    WidgetType.CROSS_CHECK: (8, 5),
}


def default_size(widget_type: Union[WidgetType, str]) -> Tuple[int, int]:
    """
    Default (w, h) in grid cells for a widget type.

    Args:
        widget_type: WidgetType member or its string value

    Returns:
        Width and height; unknown types get the 4x3 fallback
    """
    try:
        widget_type = WidgetType(widget_type)
    except ValueError:
        return FALLBACK_SIZE
    return _TYPE_SIZES.get(widget_type, FALLBACK_SIZE)


def collides(a: WidgetLayout, b: WidgetLayout) -> bool:
    """True if two grid rectangles overlap."""
    return (
        a.x < b.x + b.w and
        a.x + a.w > b.x and
        a.y < b.y + b.h and
        a.y + a.h > b.y
    )


def _overlaps(layouts: List[WidgetLayout], x: int, y: int, w: int, h: int) -> bool:
    candidate = WidgetLayout.model_construct(i="", x=x, y=y, w=w, h=h)
    return any(collides(candidate, other) for other in layouts)


def find_free_position(
    layouts: Iterable[WidgetLayout],
    w: int,
    h: int,
    columns: int = 12
) -> Tuple[int, int, int]:
    """
    Find the first free slot for a w x h item.

    Rows are scanned top to bottom and columns left to right. The row just
    below the lowest item is always free, so the search terminates there.

    Args:
        layouts: Existing layout entries
        w: Requested width (clamped to ``columns``)
        h: Requested height
        columns: Grid column count

    Returns:
        (x, y, w) with the possibly clamped width
    """
    occupied = list(layouts)
    w = max(1, min(w, columns))
    h = max(1, h)
    bottom = max((item.y + item.h for item in occupied), default=0)

    for y in range(bottom + 1):
        for x in range(columns - w + 1):
            if not _overlaps(occupied, x, y, w, h):
                return x, y, w
    return 0, bottom, w


def group_by_section(widgets: Iterable[Widget]) -> Dict[str, List[Widget]]:
    """Group widgets by section id, preserving first-seen section order."""
    sections: Dict[str, List[Widget]] = {}
    for widget in widgets:
        sections.setdefault(widget.section_id or DEFAULT_SECTION, []).append(widget)
    return sections
