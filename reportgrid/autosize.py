"""
Auto-fit a grid item's row count to its rendered content height.

Growth is applied immediately. A one-row shrink is ignored as reflow jitter,
and a larger shrink only takes effect after a delayed re-measurement
confirms it.
"""
import logging
import math
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Union

from .utils.config import SETTINGS, Settings
from .utils.exceptions import MeasurementError
from .utils.threading import Debouncer, Scheduler, ThreadingScheduler, TimerHandle

log = logging.getLogger(__name__)


def rows_for_height(
    px: Optional[float],
    row_height_px: float,
    min_rows: int,
    max_rows: int
) -> int:
    """
    Convert a content height in pixels to grid rows.

    Args:
        px: Measured content height; None, NaN and non-positive values count as empty
        row_height_px: Height of one grid row
        min_rows: Lower clamp
        max_rows: Upper clamp

    Returns:
        ceil(px / row_height_px) clamped to [min_rows, max_rows]
    """
    if px is None or math.isnan(px) or px <= 0:
        return min_rows
    if math.isinf(px):
        return max_rows
    rows = math.ceil(px / row_height_px)
    return max(min_rows, min(max_rows, rows))


class Decision(str, Enum):
    """Outcome of feeding one measurement to the tracker."""
    GROW = "grow"
    IGNORE = "ignore"
    SCHEDULE_CONFIRM = "schedule_confirm"


@dataclass(frozen=True)
class Stable:
    rows: int


@dataclass(frozen=True)
class PendingShrink:
    rows: int
    candidate: int
    deadline: float


TrackerState = Union[Stable, PendingShrink]


class RowHeightTracker:
    """
    Pure hysteresis state machine for one grid item.

    ``rows`` in both states is the last committed row count. The tracker never
    touches timers itself; callers schedule the confirmation and report back
    through ``timer_fired``.
    """

    def __init__(self, initial_rows: int, shrink_confirm_delay: float = 0.4):
        self.shrink_confirm_delay = shrink_confirm_delay
        self._state: TrackerState = Stable(initial_rows)

    @property
    def state(self) -> TrackerState:
        return self._state

    @property
    def committed(self) -> int:
        return self._state.rows

    @property
    def pending(self) -> bool:
        return isinstance(self._state, PendingShrink)

    def measure(self, rows: int, now: float) -> Decision:
        committed = self.committed
        if rows > committed:
            self._state = Stable(rows)
            return Decision.GROW
        if rows >= committed - 1:
            # Jitter; an outstanding shrink confirmation stays scheduled.
            return Decision.IGNORE
        self._state = PendingShrink(committed, rows, now + self.shrink_confirm_delay)
        return Decision.SCHEDULE_CONFIRM

    def timer_fired(self, rows: int) -> Optional[int]:
        """
        Resolve a pending shrink with a fresh measurement.

        Returns:
            The newly committed row count, or None if nothing changed
        """
        if not isinstance(self._state, PendingShrink):
            return None
        committed = self._state.rows
        if rows <= committed - 2:
            self._state = Stable(rows)
            return rows
        self._state = Stable(committed)
        return None

    def reset(self, rows: int) -> None:
        """Adopt an externally set row count (for example a drag-resize)."""
        self._state = Stable(rows)


class AutoGridItemHeight:
    """
    Controller keeping one widget's layout height matched to its content.

    Resize-observer and window-resize hooks both call ``notify_resize()``;
    bursts are debounced before measuring. Committed heights go to
    ``manager.set_layout_height``.
    """

    def __init__(
        self,
        manager,
        widget_id: str,
        measure: Callable[[], Optional[float]],
        scheduler: Optional[Scheduler] = None,
        settings: Optional[Settings] = None
    ):
        """
        Initialize the controller.

        Args:
            manager: WidgetManager owning the layout entry
            widget_id: Widget whose height is managed
            measure: Returns the content height in pixels
            scheduler: Timer source (default: ThreadingScheduler)
            settings: Grid and timer settings (default: SETTINGS)
        """
        self.settings = settings or SETTINGS
        self.manager = manager
        self.widget_id = widget_id
        self._measure = measure
        self._scheduler = scheduler or ThreadingScheduler()

        layout = manager.get_layout(widget_id)
        initial = layout.h if layout is not None else self.settings.min_rows
        self.tracker = RowHeightTracker(initial, self.settings.shrink_confirm_seconds)

        self._debouncer = Debouncer(
            self._scheduler,
            self.settings.measure_debounce_seconds,
            self.measure_now
        )
        self._initial_handle: Optional[TimerHandle] = None
        self._confirm_handle: Optional[TimerHandle] = None
        self._lock = threading.RLock()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def start(self) -> None:
        """Schedule the first measurement on the next tick."""
        with self._lock:
            if self._closed or self._initial_handle is not None:
                return
            self._initial_handle = self._scheduler.call_later(0, self.measure_now)

    def notify_resize(self) -> None:
        """Request a debounced measurement."""
        if self._closed:
            return
        self._debouncer.trigger()

    def _current_rows(self) -> int:
        try:
            px = self._measure()
        except Exception as e:
            error = MeasurementError(
                f"Measuring widget {self.widget_id} failed: {e}",
                details={"widget_id": self.widget_id},
                cause=e
            )
            log.debug(f"{error.message}; treating content height as 0")
            px = 0
        return rows_for_height(
            px,
            self.settings.row_height_px,
            self.settings.min_rows,
            self.settings.max_rows
        )

    def measure_now(self) -> None:
        """Measure immediately and act on the tracker's decision."""
        with self._lock:
            if self._closed:
                return
            rows = self._current_rows()
            decision = self.tracker.measure(rows, self._scheduler.now())
            log.debug(f"Widget {self.widget_id}: measured {rows} rows -> {decision.value}")

            if decision is Decision.GROW:
                self._cancel_confirm()
                self._commit(rows)
            elif decision is Decision.SCHEDULE_CONFIRM:
                self._cancel_confirm()
                self._confirm_handle = self._scheduler.call_later(
                    self.settings.shrink_confirm_seconds,
                    self._confirm_shrink
                )

    def _confirm_shrink(self) -> None:
        with self._lock:
            self._confirm_handle = None
            if self._closed:
                return
            rows = self.tracker.timer_fired(self._current_rows())
            if rows is not None:
                self._commit(rows)

    def _commit(self, rows: int) -> None:
        if not self.manager.set_layout_height(self.widget_id, rows):
            log.debug(f"Widget {self.widget_id} no longer has a layout entry")

    def _cancel_confirm(self) -> None:
        if self._confirm_handle is not None:
            self._confirm_handle.cancel()
            self._confirm_handle = None

    def close(self) -> None:
        """Release every timer; later notifications are ignored."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._debouncer.cancel()
            self._cancel_confirm()
            if self._initial_handle is not None:
                self._initial_handle.cancel()
                self._initial_handle = None

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
