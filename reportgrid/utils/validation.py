"""
Input validation for widget, layout and update payloads.
Converts malformed payloads into descriptive ValidationError instances
before any state is touched.
"""
import logging
import re
from typing import Any, Dict, Mapping, Optional, Tuple, Union

from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_snake

from ..models import Widget, WidgetLayout
from .exceptions import ValidationError, WidgetValidationError

log = logging.getLogger(__name__)

__all__ = [
    'validate_scope', 'coerce_widget', 'coerce_layout', 'normalize_update',
    'shared_fields_changed', 'validate_config_name', 'format_pydantic_errors',
    'MIN_FISCAL_YEAR', 'MAX_FISCAL_YEAR'
]

MIN_FISCAL_YEAR = 1900
MAX_FISCAL_YEAR = 2200
_CLIENT_ID_PATTERN = re.compile(r'^[A-Za-z0-9][A-Za-z0-9_\-]{0,127}$')

_WIDGET_FIELDS = frozenset(Widget.model_fields)
_SHARED_FIELDS = ('section_id', 'data_source_id')


def format_pydantic_errors(error: PydanticValidationError) -> str:
    """Render pydantic errors as 'field: message' pairs."""
    parts = []
    for item in error.errors():
        location = ".".join(str(p) for p in item.get("loc", ())) or "<root>"
        parts.append(f"{location}: {item.get('msg', 'invalid value')}")
    return "; ".join(parts)


def validate_scope(client_id: Any, fiscal_year: Any) -> Tuple[str, int]:
    """
    Validate the (client, fiscal year) pair that scopes a report view.

    Args:
        client_id: Client identifier (used in storage keys and file names)
        fiscal_year: Fiscal year as int or numeric string

    Returns:
        Normalized (client_id, fiscal_year)

    Raises:
        ValidationError: If either value is unusable
    """
    if not isinstance(client_id, str) or not _CLIENT_ID_PATTERN.match(client_id):
        raise ValidationError(
            f"Invalid client id '{client_id}'. Use letters, digits, '-' or '_'",
            details={"client_id": str(client_id)}
        )

    try:
        year = int(fiscal_year)
    except (TypeError, ValueError):
        raise ValidationError(f"Fiscal year must be an integer, got '{fiscal_year}'")

    if isinstance(fiscal_year, float) and not fiscal_year.is_integer():
        raise ValidationError(f"Fiscal year must be an integer, got '{fiscal_year}'")

    if not MIN_FISCAL_YEAR <= year <= MAX_FISCAL_YEAR:
        raise ValidationError(
            f"Fiscal year {year} outside supported range {MIN_FISCAL_YEAR}-{MAX_FISCAL_YEAR}"
        )
    return client_id, year


def coerce_widget(payload: Union[Widget, Mapping[str, Any]]) -> Widget:
    """
    Validate a widget payload.

    Args:
        payload: Widget instance or mapping with camelCase or snake_case keys

    Returns:
        A validated Widget copy

    Raises:
        WidgetValidationError: If the payload is not a structurally valid widget
    """
    if isinstance(payload, Widget):
        return payload.model_copy(deep=True)
    if not isinstance(payload, Mapping):
        raise WidgetValidationError(
            f"Widget must be a mapping, got {type(payload).__name__}"
        )
    try:
        return Widget.model_validate(dict(payload))
    except PydanticValidationError as e:
        message = format_pydantic_errors(e)
        raise WidgetValidationError(
            f"Invalid widget: {message}",
            details={"widget_id": payload.get("id")},
            cause=e
        ) from e


def coerce_layout(
    payload: Union[WidgetLayout, Mapping[str, Any]],
    widget: Widget
) -> WidgetLayout:
    """
    Validate a layout payload and bind it to its widget.

    The shared fields (``i``, ``widget_id``, ``section_id`` and
    ``data_source_id``) always come from the widget.

    Raises:
        WidgetValidationError: If the geometry is invalid or ``i`` names another widget
    """
    if isinstance(payload, WidgetLayout):
        data: Dict[str, Any] = payload.model_dump()
    elif isinstance(payload, Mapping):
        data = dict(payload)
    else:
        raise WidgetValidationError(
            f"Layout must be a mapping, got {type(payload).__name__}"
        )

    for key in ('i', 'widget_id', 'widgetId'):
        bound = data.get(key)
        if bound is not None and bound != widget.id:
            raise WidgetValidationError(
                f"Layout {key} '{bound}' does not match widget '{widget.id}'",
                details={"widget_id": widget.id}
            )

    for key in ('widgetId', 'sectionId', 'dataSourceId'):
        data.pop(key, None)
    data.update(
        i=widget.id,
        widget_id=widget.id,
        section_id=widget.section_id,
        data_source_id=widget.data_source_id,
    )

    try:
        return WidgetLayout.model_validate(data)
    except PydanticValidationError as e:
        raise WidgetValidationError(
            f"Invalid layout for widget '{widget.id}': {format_pydantic_errors(e)}",
            details={"widget_id": widget.id},
            cause=e
        ) from e


def normalize_update(widget_id: str, update: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Normalize a partial widget update to snake_case field names.

    Args:
        widget_id: Id of the widget being updated
        update: Partial update with camelCase or snake_case keys

    Returns:
        Update dict keyed by Widget field names

    Raises:
        WidgetValidationError: On unknown fields or an attempt to change the id
    """
    if not isinstance(update, Mapping):
        raise WidgetValidationError(
            f"Widget update must be a mapping, got {type(update).__name__}"
        )

    normalized: Dict[str, Any] = {}
    unknown = []
    for key, value in update.items():
        field = to_snake(key) if isinstance(key, str) else key
        if field not in _WIDGET_FIELDS:
            unknown.append(str(key))
            continue
        normalized[field] = value

    if unknown:
        raise WidgetValidationError(
            f"Unknown widget field(s): {', '.join(sorted(unknown))}",
            details={"widget_id": widget_id, "fields": unknown}
        )

    if 'id' in normalized and normalized['id'] != widget_id:
        raise WidgetValidationError(
            f"Widget id cannot be changed (from '{widget_id}' to '{normalized['id']}')",
            details={"widget_id": widget_id}
        )
    return normalized


def shared_fields_changed(before: Widget, after: Widget) -> bool:
    """True if a field mirrored on the layout entry changed."""
    return any(getattr(before, f) != getattr(after, f) for f in _SHARED_FIELDS)


def validate_config_name(name: Optional[str]) -> str:
    """Validate a dashboard configuration name."""
    if name is None or not str(name).strip():
        raise ValidationError("Configuration name is required")
    name = str(name).strip()
    if len(name) > 200:
        raise ValidationError("Configuration name must be 200 characters or fewer")
    return name
