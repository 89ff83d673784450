"""
Widget manager for one report view.

Owns the widget list and the paired grid layout list for a
(client, fiscal year) scope, broadcasts the active cross-filter and
schedules persistence after every mutation.
"""
import logging
import threading
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from .cache import DataCache, WidgetCache
from .layout import default_size, find_free_position, group_by_section
from .models import CrossFilter, Widget, WidgetLayout
from .services.interfaces import WidgetPersistenceInterface
from .utils.config import SETTINGS, Settings
from .utils.exceptions import ReportGridError, ValidationError, WidgetValidationError, log_suppressed
from .utils.threading import Scheduler, ThreadingScheduler, TimerHandle
from .utils.validation import (
    coerce_layout,
    coerce_widget,
    format_pydantic_errors,
    normalize_update,
    shared_fields_changed,
    validate_scope,
)

log = logging.getLogger(__name__)

WidgetInput = Union[Widget, Mapping[str, Any]]
LayoutInput = Union[WidgetLayout, Mapping[str, Any]]
CrossFilterListener = Callable[[Optional[CrossFilter]], None]


def _layout_id(entry: LayoutInput) -> Optional[str]:
    if isinstance(entry, WidgetLayout):
        return entry.i
    if isinstance(entry, Mapping):
        return entry.get('i') or entry.get('widget_id') or entry.get('widgetId')
    raise WidgetValidationError(f"Layout must be a mapping, got {type(entry).__name__}")


class WidgetManager:
    """
    State owner for the widgets of one report view.

    Every widget has exactly one layout entry with the same id; all
    mutations keep that pairing and are validated before any state changes.
    Persistence is coalesced: mutations mark the state dirty and a single
    write happens ``persist_delay_seconds`` after the first of them.
    """

    def __init__(
        self,
        client_id: str,
        fiscal_year: int,
        persistence: WidgetPersistenceInterface,
        widget_cache: Optional[WidgetCache] = None,
        scheduler: Optional[Scheduler] = None,
        settings: Optional[Settings] = None
    ):
        """
        Initialize the manager.

        Args:
            client_id: Client identifier
            fiscal_year: Fiscal year
            persistence: Persistence channel bound to the same scope
            widget_cache: Write-through widget cache (default: private cache swept on the scheduler)
            scheduler: Timer source for persistence scheduling
            settings: Settings override (default: SETTINGS)

        Raises:
            ValidationError: If the scope is invalid
        """
        self.client_id, self.fiscal_year = validate_scope(client_id, fiscal_year)
        self.settings = settings or SETTINGS
        self.persistence = persistence
        self._scheduler = scheduler or ThreadingScheduler()
        self._owns_cache = widget_cache is None
        self.widget_cache = widget_cache or WidgetCache(
            DataCache(self.settings.cache_max_size, self.settings.cache_default_ttl_seconds)
        )
        if self._owns_cache:
            self.widget_cache.start_sweeper(self._scheduler, self.settings.cache_sweep_interval_seconds)

        self._widgets: List[Widget] = []
        self._layouts: List[WidgetLayout] = []
        self._cross_filter: Optional[CrossFilter] = None
        self._subscribers: List[CrossFilterListener] = []

        self._lock = threading.RLock()
        self._dirty = False
        self._persist_handle: Optional[TimerHandle] = None
        self._closed = False

    # ------------------------------------------------------------------
    # Read access
    # ------------------------------------------------------------------

    @property
    def widgets(self) -> List[Widget]:
        with self._lock:
            return [w.model_copy(deep=True) for w in self._widgets]

    @property
    def layouts(self) -> List[WidgetLayout]:
        with self._lock:
            return [l.model_copy() for l in self._layouts]

    @property
    def active_cross_filter(self) -> Optional[CrossFilter]:
        return self._cross_filter

    @property
    def dirty(self) -> bool:
        return self._dirty

    @property
    def closed(self) -> bool:
        return self._closed

    def get_widget(self, widget_id: str) -> Optional[Widget]:
        with self._lock:
            index = self._widget_index(widget_id)
            return self._widgets[index].model_copy(deep=True) if index is not None else None

    def get_layout(self, widget_id: str) -> Optional[WidgetLayout]:
        with self._lock:
            index = self._layout_index(widget_id)
            return self._layouts[index].model_copy() if index is not None else None

    def widgets_by_section(self) -> Dict[str, List[Widget]]:
        return group_by_section(self.widgets)

    def __len__(self) -> int:
        return len(self._widgets)

    def _widget_index(self, widget_id: str) -> Optional[int]:
        for index, widget in enumerate(self._widgets):
            if widget.id == widget_id:
                return index
        return None

    def _layout_index(self, widget_id: str) -> Optional[int]:
        for index, layout in enumerate(self._layouts):
            if layout.i == widget_id:
                return index
        return None

    def _ensure_open(self) -> None:
        if self._closed:
            raise ReportGridError(
                f"WidgetManager for {self.client_id}/{self.fiscal_year} is closed"
            )

    def _place(self, widget: Widget, layouts: List[WidgetLayout]) -> WidgetLayout:
        w, h = default_size(widget.type)
        x, y, w = find_free_position(layouts, w, h, self.settings.grid_columns)
        return coerce_layout({"x": x, "y": y, "w": w, "h": h}, widget)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def add_widget(self, widget: WidgetInput, layout: Optional[LayoutInput] = None) -> Widget:
        """
        Add a widget and its layout entry.

        Args:
            widget: Widget or mapping with camelCase or snake_case keys
            layout: Grid position/size; None auto-places with the type's default size

        Returns:
            Copy of the stored widget

        Raises:
            WidgetValidationError: On a malformed widget/layout or a duplicate id
        """
        new_widget = coerce_widget(widget)
        with self._lock:
            self._ensure_open()
            if self._widget_index(new_widget.id) is not None:
                raise WidgetValidationError(
                    f"Widget '{new_widget.id}' already exists",
                    details={"widget_id": new_widget.id}
                )
            if layout is None:
                new_layout = self._place(new_widget, self._layouts)
            else:
                new_layout = coerce_layout(layout, new_widget)

            self._widgets.append(new_widget)
            self._layouts.append(new_layout)
            self.widget_cache.set_widget(new_widget)
            self._mark_dirty()

        log.info(f"Added {new_widget.type.value} widget '{new_widget.id}'")
        return new_widget.model_copy(deep=True)

    def remove_widget(self, widget_id: str) -> bool:
        """
        Remove a widget and its layout entry. Idempotent.

        Returns:
            True if the widget existed
        """
        cleared_filter = False
        with self._lock:
            self._ensure_open()
            index = self._widget_index(widget_id)
            layout_index = self._layout_index(widget_id)
            if index is None and layout_index is None:
                log.debug(f"Widget '{widget_id}' not present; nothing to remove")
                return False

            if index is not None:
                del self._widgets[index]
            if layout_index is not None:
                del self._layouts[layout_index]
            self.widget_cache.invalidate_widget(widget_id)

            if self._cross_filter is not None and self._cross_filter.source_widget_id == widget_id:
                self._cross_filter = None
                cleared_filter = True
            self._mark_dirty()

        log.info(f"Removed widget '{widget_id}'")
        if cleared_filter:
            self._notify_cross_filter(None)
        return True

    def update_widget(self, widget_id: str, update: Mapping[str, Any]) -> Optional[Widget]:
        """
        Merge a partial update into a widget.

        Args:
            widget_id: Widget to update
            update: Fields to change (camelCase or snake_case keys)

        Returns:
            Copy of the updated widget, or None if the id is unknown

        Raises:
            WidgetValidationError: On unknown or malformed fields or an id change
        """
        changes = normalize_update(widget_id, update)
        with self._lock:
            self._ensure_open()
            index = self._widget_index(widget_id)
            if index is None:
                log.warning(f"Ignoring update for unknown widget '{widget_id}'")
                return None

            current = self._widgets[index]
            merged = current.model_dump()
            merged.update(changes)
            updated = coerce_widget(merged)

            self._widgets[index] = updated
            if shared_fields_changed(current, updated):
                layout_index = self._layout_index(widget_id)
                if layout_index is not None:
                    self._layouts[layout_index] = self._layouts[layout_index].model_copy(
                        update={
                            "section_id": updated.section_id,
                            "data_source_id": updated.data_source_id,
                        }
                    )
            self.widget_cache.set_widget(updated)
            self._mark_dirty()

        log.debug(f"Updated widget '{widget_id}': {sorted(changes)}")
        return updated.model_copy(deep=True)

    def update_layout(self, new_layouts: Iterable[LayoutInput]) -> List[WidgetLayout]:
        """
        Replace the layout list, typically after a drag or resize.

        Entries for unknown widgets are dropped; widgets absent from
        ``new_layouts`` keep their current entry.

        Raises:
            WidgetValidationError: If an entry has invalid geometry
        """
        entries = list(new_layouts)
        with self._lock:
            self._ensure_open()
            by_id = {w.id: w for w in self._widgets}
            replaced: Dict[str, WidgetLayout] = {}
            for entry in entries:
                widget_id = _layout_id(entry)
                widget = by_id.get(widget_id)
                if widget is None:
                    log.debug(f"Dropping layout entry for unknown widget '{widget_id}'")
                    continue
                replaced[widget_id] = coerce_layout(entry, widget)

            for layout in self._layouts:
                replaced.setdefault(layout.i, layout)

            self._layouts = list(replaced.values())
            self._mark_dirty()
            return [l.model_copy() for l in self._layouts]

    def set_layout_height(self, widget_id: str, rows: int) -> bool:
        """
        Set the row count of one layout entry.

        Returns:
            False if the widget has no layout entry or the manager is closed
        """
        if rows < 1:
            raise WidgetValidationError(f"Layout height must be at least 1, got {rows}")
        with self._lock:
            if self._closed:
                return False
            index = self._layout_index(widget_id)
            if index is None:
                return False
            if self._layouts[index].h != rows:
                self._layouts[index] = self._layouts[index].model_copy(update={"h": rows})
                self._mark_dirty()
                log.debug(f"Widget '{widget_id}' height set to {rows} rows")
            return True

    def replace_all(
        self,
        widgets: Iterable[WidgetInput],
        layouts: Iterable[LayoutInput] = ()
    ) -> None:
        """
        Replace the whole widget set, e.g. when loading a dashboard configuration.

        Everything is validated before state changes. Widgets without a
        layout entry are auto-placed; layout entries without a widget are dropped.

        Raises:
            WidgetValidationError: On malformed input or duplicate widget ids
        """
        new_widgets = [coerce_widget(w) for w in widgets]
        seen = set()
        for widget in new_widgets:
            if widget.id in seen:
                raise WidgetValidationError(
                    f"Duplicate widget id '{widget.id}'",
                    details={"widget_id": widget.id}
                )
            seen.add(widget.id)

        by_id = {w.id: w for w in new_widgets}
        bound: Dict[str, WidgetLayout] = {}
        for entry in layouts:
            widget_id = _layout_id(entry)
            if widget_id in by_id and widget_id not in bound:
                bound[widget_id] = coerce_layout(entry, by_id[widget_id])

        new_layouts = list(bound.values())
        for widget in new_widgets:
            if widget.id not in bound:
                new_layouts.append(self._place(widget, new_layouts))

        with self._lock:
            self._ensure_open()
            cleared_filter = self._swap_state(new_widgets, new_layouts)
            self._mark_dirty()

        log.info(f"Replaced widget set with {len(new_widgets)} widgets")
        if cleared_filter:
            self._notify_cross_filter(None)

    def _swap_state(self, widgets: List[Widget], layouts: List[WidgetLayout]) -> bool:
        """
        Install a new widget set under the lock.

        Returns:
            True if the active cross-filter lost its source widget and was cleared
        """
        for widget in self._widgets:
            self.widget_cache.invalidate_widget(widget.id)
        self._widgets = widgets
        self._layouts = layouts
        for widget in widgets:
            self.widget_cache.set_widget(widget)
        if self._cross_filter is not None and all(
            w.id != self._cross_filter.source_widget_id for w in widgets
        ):
            self._cross_filter = None
            return True
        return False

    def clear_widgets(self) -> None:
        """Remove every widget and layout and clear persisted state."""
        with self._lock:
            self._ensure_open()
            for widget in self._widgets:
                self.widget_cache.invalidate_widget(widget.id)
            self._widgets = []
            self._layouts = []
            cleared_filter = self._cross_filter is not None
            self._cross_filter = None
            self._cancel_persist()
            self._dirty = False
            try:
                self.persistence.clear()
            except Exception as e:
                log_suppressed(log, e, "clear persisted widgets")

        log.info(f"Cleared widgets for {self.client_id}/{self.fiscal_year}")
        if cleared_filter:
            self._notify_cross_filter(None)

    def load_from_storage(self) -> bool:
        """
        Load the persisted snapshot for this scope.

        Layout entries without a widget are dropped and widgets without a
        layout are auto-placed; a repaired snapshot is written back.

        Returns:
            True if a snapshot existed and was loaded
        """
        try:
            snapshot = self.persistence.load()
        except Exception as e:
            log_suppressed(log, e, f"load widgets for {self.client_id}/{self.fiscal_year}")
            return False
        if snapshot is None:
            log.debug(f"No stored widgets for {self.client_id}/{self.fiscal_year}")
            return False

        widgets: List[Widget] = []
        seen = set()
        for widget in snapshot.widgets:
            if widget.id not in seen:
                seen.add(widget.id)
                widgets.append(widget)

        layouts: List[WidgetLayout] = []
        by_id = {w.id: w for w in widgets}
        for entry in snapshot.layouts:
            if entry.i in by_id and all(l.i != entry.i for l in layouts):
                layouts.append(coerce_layout(entry, by_id[entry.i]))
        for widget in widgets:
            if all(l.i != widget.id for l in layouts):
                layouts.append(self._place(widget, layouts))

        repaired = (
            len(widgets) != len(snapshot.widgets) or
            [l.model_dump() for l in layouts] != [l.model_dump() for l in snapshot.layouts]
        )

        with self._lock:
            self._ensure_open()
            cleared_filter = self._swap_state(widgets, layouts)
            if repaired:
                log.info(f"Repaired stored layout for {self.client_id}/{self.fiscal_year}")
                self._mark_dirty()

        log.info(f"Loaded {len(widgets)} widgets for {self.client_id}/{self.fiscal_year}")
        if cleared_filter:
            self._notify_cross_filter(None)
        return True

    # ------------------------------------------------------------------
    # Cross-filter bus
    # ------------------------------------------------------------------

    def set_active_cross_filter(
        self,
        cross_filter: Optional[Union[CrossFilter, Mapping[str, Any]]]
    ) -> Optional[CrossFilter]:
        """
        Set or clear (with None) the single active cross-filter.

        Raises:
            ValidationError: If a mapping does not describe a cross-filter
        """
        if cross_filter is not None and not isinstance(cross_filter, CrossFilter):
            try:
                cross_filter = CrossFilter.model_validate(dict(cross_filter))
            except (PydanticValidationError, TypeError, ValueError) as e:
                details = format_pydantic_errors(e) if isinstance(e, PydanticValidationError) else str(e)
                raise ValidationError(f"Invalid cross-filter: {details}", cause=e) from e

        with self._lock:
            self._ensure_open()
            self._cross_filter = cross_filter
        self._notify_cross_filter(cross_filter)
        return cross_filter

    def subscribe_cross_filter(self, listener: CrossFilterListener) -> Callable[[], None]:
        """
        Receive every cross-filter change.

        Returns:
            Callable that unsubscribes the listener
        """
        with self._lock:
            self._subscribers.append(listener)

        def unsubscribe():
            with self._lock:
                if listener in self._subscribers:
                    self._subscribers.remove(listener)
        return unsubscribe

    def _notify_cross_filter(self, cross_filter: Optional[CrossFilter]) -> None:
        with self._lock:
            subscribers = list(self._subscribers)
        for listener in subscribers:
            try:
                listener(cross_filter)
            except Exception as e:
                log.warning(f"Cross-filter subscriber error: {e}")

    def apply_cross_filter(
        self,
        records: Iterable[Mapping[str, Any]],
        widget_id: Optional[str] = None
    ) -> List[Mapping[str, Any]]:
        """
        Narrow a widget's rows with the active cross-filter.

        The widget that emitted the filter sees its rows unfiltered.
        """
        active = self._cross_filter
        rows = list(records)
        if active is None or active.source_widget_id == widget_id:
            return rows
        return [row for row in rows if active.matches(row)]

    # ------------------------------------------------------------------
    # Persistence scheduling
    # ------------------------------------------------------------------

    def _mark_dirty(self) -> None:
        self._dirty = True
        if self._persist_handle is None:
            self._persist_handle = self._scheduler.call_later(
                self.settings.persist_delay_seconds,
                self._scheduled_persist
            )

    def _cancel_persist(self) -> None:
        if self._persist_handle is not None:
            self._persist_handle.cancel()
            self._persist_handle = None

    def _scheduled_persist(self) -> None:
        with self._lock:
            self._persist_handle = None
            if self._closed:
                return
            self.flush()

    def flush(self) -> bool:
        """
        Persist pending changes now.

        Returns:
            True if the snapshot was handed to persistence without error
        """
        with self._lock:
            self._cancel_persist()
            if not self._dirty:
                return False
            self._dirty = False
            widgets = [w.model_copy(deep=True) for w in self._widgets]
            layouts = [l.model_copy() for l in self._layouts]
            try:
                self.persistence.save(widgets, layouts)
            except Exception as e:
                log_suppressed(log, e, f"persist widgets for {self.client_id}/{self.fiscal_year}")
                return False
        log.debug(f"Persisted {len(widgets)} widgets for {self.client_id}/{self.fiscal_year}")
        return True

    def close(self) -> None:
        """Flush pending state, cancel timers and detach subscribers."""
        with self._lock:
            if self._closed:
                return
            self.flush()
            self._closed = True
            self._subscribers.clear()
            if self._owns_cache:
                self.widget_cache.stop_sweeper()
        log.debug(f"Closed WidgetManager for {self.client_id}/{self.fiscal_year}")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
