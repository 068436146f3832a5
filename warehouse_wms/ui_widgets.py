"""Presentation helpers for the client views.

Covers badge and button styling, bar charts and sparklines, stat-card
trends, sortable table columns and the sidebar sync indicator.
"""

from __future__ import annotations

import dataclasses
import enum
import math
import sys
from dataclasses import dataclass
from typing import Optional, Sequence

from .ui_state import ClientSyncStatus

_DEFAULT_CHART_HEIGHT = 200
_SPARKLINE_WIDTH = 100.0
_SPARKLINE_HEIGHT = 30.0


class BadgeVariant(enum.Enum):
    """Colour scheme of a badge; the value is its CSS class."""

    DEFAULT = "badge-default"
    SUCCESS = "badge-success"
    WARNING = "badge-warning"
    DANGER = "badge-danger"
    INFO = "badge-info"

    @property
    def css_class(self) -> str:
        return self.value


class ButtonVariant(enum.Enum):
    """Visual style of a button; the value is its CSS class."""

    PRIMARY = "btn-primary"
    SECONDARY = "btn-secondary"
    DANGER = "btn-danger"
    GHOST = "btn-ghost"

    @property
    def css_class(self) -> str:
        return self.value


class ButtonSize(enum.Enum):
    """Size of a button; the value is its CSS class."""

    SMALL = "btn-sm"
    MEDIUM = "btn-md"
    LARGE = "btn-lg"

    @property
    def css_class(self) -> str:
        return self.value


_STATUS_VARIANTS = {
    **dict.fromkeys(("active", "delivered", "completed", "approved"), BadgeVariant.SUCCESS),
    **dict.fromkeys(("pending", "draft", "processing"), BadgeVariant.DEFAULT),
    **dict.fromkeys(("warning", "low_stock", "partial"), BadgeVariant.WARNING),
    **dict.fromkeys(("error", "failed", "cancelled", "rejected"), BadgeVariant.DANGER),
}


def status_badge_variant(status: str) -> BadgeVariant:
    """Badge variant for a status word; unknown statuses are informational."""
    return _STATUS_VARIANTS.get(status.lower(), BadgeVariant.INFO)


def button_class(
    variant: ButtonVariant = ButtonVariant.PRIMARY,
    size: ButtonSize = ButtonSize.MEDIUM,
) -> str:
    """Full CSS class string of a button."""
    return f"btn {variant.value} {size.value}"


@dataclass(frozen=True)
class DataPoint:
    """One labelled value of a chart."""

    label: str
    value: float


@dataclass(frozen=True)
class Bar:
    """Geometry of one bar in a chart whose view box is 100 units wide."""

    label: str
    x: float
    y: float
    width: float
    height: float
    label_x: float
    label_y: float


def bar_chart(data: Sequence[DataPoint], height: Optional[int] = None) -> list[Bar]:
    """Lay out bars scaled to the largest value, leaving margins for labels."""
    chart_height = float(_DEFAULT_CHART_HEIGHT if height is None else height)
    if not data:
        return []
    max_value = max(0.0, *(point.value for point in data))
    bar_width = 100.0 / (len(data) * 1.5)
    bars = []
    for index, point in enumerate(data):
        bar_height = (point.value / max_value) * (chart_height - 20.0) if max_value > 0.0 else 0.0
        x = index * bar_width * 1.5 + bar_width * 0.25
        bars.append(
            Bar(
                label=point.label,
                x=x,
                y=chart_height - bar_height - 10.0,
                width=bar_width,
                height=bar_height,
                label_x=x + bar_width / 2.0,
                label_y=chart_height - 2.0,
            )
        )
    return bars


def _coordinate(value: float) -> str:
    if math.isnan(value):
        return "NaN"
    return f"{value:.1f}"


def sparkline_points(data: Sequence[float]) -> str:
    """SVG polyline points for a 100x30 sparkline."""
    if not data:
        return ""
    max_val = max(0.0, *data)
    min_val = min(sys.float_info.max, *data)
    value_range = max_val - min_val
    last = len(data) - 1
    points = []
    for index, value in enumerate(data):
        x = index / last * _SPARKLINE_WIDTH if last else math.nan
        if value_range > 0.0:
            y = _SPARKLINE_HEIGHT - ((value - min_val) / value_range * _SPARKLINE_HEIGHT)
        else:
            y = _SPARKLINE_HEIGHT / 2.0
        points.append(f"{_coordinate(x)},{_coordinate(y)}")
    return " ".join(points)


def format_trend(trend: float) -> tuple[str, str, str]:
    """CSS class, arrow and percentage text of a stat-card trend."""
    rising = trend >= 0.0
    return (
        "positive" if rising else "negative",
        "↑" if rising else "↓",
        f"{abs(trend):.1f}%",
    )


@dataclass(frozen=True)
class Column:
    """A data-table column."""

    key: str
    label: str
    sortable: bool = True
    width: Optional[str] = None

    def with_width(self, width: str) -> "Column":
        return dataclasses.replace(self, width=width)

    def not_sortable(self) -> "Column":
        return dataclasses.replace(self, sortable=False)

    @property
    def header_class(self) -> str:
        return f"table-header {'sortable' if self.sortable else ''}"

    @property
    def style(self) -> str:
        return "" if self.width is None else f"width: {self.width}"


class SortDirection(enum.Enum):
    ASC = "asc"
    DESC = "desc"


@dataclass
class SortState:
    """Which column a table is sorted by, and in which direction."""

    column: Optional[str] = None
    direction: SortDirection = SortDirection.ASC

    def toggle(self, column: str) -> SortDirection:
        """Flip the direction on the current column, or sort a new one ascending."""
        if self.column == column:
            self.direction = (
                SortDirection.DESC if self.direction is SortDirection.ASC else SortDirection.ASC
            )
        else:
            self.column = column
            self.direction = SortDirection.ASC
        return self.direction

    def indicator(self, column: str) -> Optional[str]:
        """Arrow shown next to a column header, if the table is sorted by it."""
        if self.column != column:
            return None
        return "↑" if self.direction is SortDirection.ASC else "↓"


def sync_status_text(status: ClientSyncStatus) -> str:
    """Text of the sidebar sync indicator."""
    if status.is_syncing:
        return "Syncing..."
    if status.is_online:
        return f"{status.pending_changes} pending"
    return "Offline"