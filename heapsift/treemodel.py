"""Cost tree presentation: column texts, sort keys, tooltips, top lists and filters."""

from __future__ import annotations

import enum
from collections.abc import Iterable

from .costs import AllocationCost, ResultData, Symbol
from .formatting import (
    FormatType,
    basename,
    format_bytes,
    format_cost_relative,
    symbol_to_string,
)
from .trees import RowData, TreeData

_MAX_BACKTRACE_ENTRIES = 5


class Column(enum.IntEnum):
    """Columns of a cost tree view."""

    LOCATION = 0
    PEAK = 1
    LEAKED = 2
    ALLOCATIONS = 3
    TEMPORARY = 4


_COST_MEMBERS = {
    Column.PEAK: "peak",
    Column.LEAKED: "leaked",
    Column.ALLOCATIONS: "allocations",
    Column.TEMPORARY: "temporary",
}

_HEADERS = {
    Column.ALLOCATIONS: "Allocations",
    Column.TEMPORARY: "Temporary",
    Column.PEAK: "Peak",
    Column.LEAKED: "Leaked",
    Column.LOCATION: "Location",
}

_HEADER_TOOLTIPS = {
    Column.ALLOCATIONS: (
        "<qt>The number of times an allocation function was called from this location.</qt>"
    ),
    Column.TEMPORARY: (
        "<qt>The number of temporary allocations. These allocations are directly "
        "followed by a free without any other allocations in-between.</qt>"
    ),
    Column.PEAK: (
        "<qt>The contributions from a given location to the maximum heap memory "
        "consumption in bytes. This takes deallocations into account.</qt>"
    ),
    Column.LEAKED: (
        "<qt>The bytes allocated at this location that have not been deallocated.</qt>"
    ),
    Column.LOCATION: (
        "<qt>The location from which an allocation function was called. Function "
        "symbol and file information may be unknown when debug information was "
        "missing when heaptrack was run.</qt>"
    ),
}


class TopType(enum.Enum):
    """Which cost a top list ranks its rows by."""

    PEAK = Column.PEAK
    LEAKED = Column.LEAKED
    ALLOCATIONS = Column.ALLOCATIONS
    TEMPORARY = Column.TEMPORARY

    @property
    def column(self) -> Column:
        return self.value


def _escape(text: str) -> str:
    return (
        text.replace("&", "&amp;")
        .replace("<", "&lt;")
        .replace(">", "&gt;")
        .replace('"', "&quot;")
    )


class TreeModel:
    """Presents the rows of a cost tree for display, sorting and tooltips."""

    def __init__(self) -> None:
        self.data = TreeData()
        self._max_cost = AllocationCost()

    @property
    def rows(self) -> list[RowData]:
        return self.data.rows

    @property
    def result_data(self) -> ResultData | None:
        return self.data.result_data

    def _strings(self) -> ResultData:
        if self.data.result_data is None:
            raise ValueError("no data loaded")
        return self.data.result_data

    def reset_data(self, data: TreeData) -> None:
        """Replace the shown tree; the tree must carry its result data."""
        if data.result_data is None:
            raise ValueError("tree data has no result data")
        self.data = data

    def set_summary(self, cost: AllocationCost) -> None:
        """Set the total cost that relative values and thresholds refer to."""
        self._max_cost = cost

    def clear_data(self) -> None:
        self.data = TreeData()
        self._max_cost = AllocationCost()

    def header(self, column: int) -> str:
        return _HEADERS[Column(column)]

    def header_tooltip(self, column: int) -> str:
        return _HEADER_TOOLTIPS[Column(column)]

    def display(self, row: RowData, column: int) -> int | str:
        """Return the value shown for ``row`` in ``column``."""
        column = Column(column)
        if column is Column.LOCATION:
            return symbol_to_string(row.symbol, self._strings(), FormatType.SHORT)
        value = getattr(row.cost, _COST_MEMBERS[column])
        if column in (Column.PEAK, Column.LEAKED):
            return format_bytes(value)
        return value

    def sort_key(self, row: RowData, column: int) -> int | str:
        """Return the key rows are sorted by; costs sort by magnitude."""
        column = Column(column)
        if column is Column.LOCATION:
            return symbol_to_string(row.symbol, self._strings(), FormatType.SHORT)
        return abs(getattr(row.cost, _COST_MEMBERS[column]))

    def max_cost(self, column: int) -> int:
        """Return the magnitude of the summary cost for a cost column."""
        column = Column(column)
        if column is Column.LOCATION:
            raise ValueError("the location column has no cost")
        return abs(getattr(self._max_cost, _COST_MEMBERS[column]))

    def _symbol_block(self, symbol: Symbol) -> str:
        strings = self._strings()
        module = strings.string(symbol.module_id)
        return (
            f"{_escape(strings.string(symbol.function_id))}\n"
            f"  in {_escape(basename(module))} ({_escape(module)})"
        )

    def tooltip(self, row: RowData) -> str:
        """Return the rich-text tooltip describing ``row``."""
        cost = row.cost
        total = self._max_cost
        parts = ["<qt><pre style='font-family:monospace;'>", self._symbol_block(row.symbol), "\n\n"]
        parts.append(
            f"peak contribution: {format_bytes(cost.peak)} "
            f"({format_cost_relative(cost.peak, total.peak)}% of total)\n"
        )
        parts.append(
            f"leaked: {format_bytes(cost.leaked)} "
            f"({format_cost_relative(cost.leaked, total.leaked)}% of total)\n"
        )
        parts.append(
            f"allocations: {cost.allocations} "
            f"({format_cost_relative(cost.allocations, total.allocations)}% of total)\n"
        )
        parts.append(
            f"temporary: {cost.temporary} "
            f"({format_cost_relative(cost.temporary, cost.allocations)}% of allocations, "
            f"{format_cost_relative(cost.temporary, total.temporary)}% of total)\n"
        )
        if row.children:
            child = row
            if len(child.children) == 1:
                parts.append("\nbacktrace:\n")
            remaining = _MAX_BACKTRACE_ENTRIES
            while len(child.children) == 1 and remaining > 0:
                remaining -= 1
                parts.append("\n" + self._symbol_block(child.symbol))
                child = child.children[0]
            count = len(child.children)
            if count > 1:
                parts.append("\n")
                parts.append(
                    "called from one location" if count == 1 else f"called from {count} locations"
                )
        parts.append("</pre></qt>")
        return "".join(parts)


class TopView:
    """The top-level rows of a model that matter most for one cost type."""

    def __init__(self, model: TreeModel, top_type: TopType) -> None:
        self.model = model
        self.top_type = top_type

    @property
    def columns(self) -> tuple[Column, Column]:
        return (Column.LOCATION, self.top_type.column)

    @property
    def cost_threshold(self) -> int:
        """Rows below 1% of the summary cost are hidden."""
        if not self.model.rows:
            return 0
        return int(self.model.max_cost(self.top_type.column) * 0.01)

    def rows(self) -> list[RowData]:
        """Return the visible top-level rows, highest cost first."""
        column = self.top_type.column
        threshold = self.cost_threshold
        visible = []
        for row in self.model.rows:
            cost = self.model.sort_key(row, column)
            # zero values can show up in diffs when nothing changed overall
            if cost and cost >= threshold:
                visible.append(row)
        return sorted(visible, key=lambda row: self.model.sort_key(row, column), reverse=True)


class TreeFilter:
    """Case-insensitive function and module filtering of symbol rows."""

    def __init__(self, result_data: ResultData | None = None) -> None:
        self.result_data = result_data
        self.function_filter = ""
        self.module_filter = ""

    def set_function_filter(self, text: str) -> None:
        self.function_filter = text

    def set_module_filter(self, text: str) -> None:
        self.module_filter = text

    def _strings(self) -> ResultData:
        if self.result_data is None:
            raise ValueError("no result data to filter against")
        return self.result_data

    def _filtered_out(self, string_id: int, text: str) -> bool:
        if not text:
            return False
        return text.casefold() not in self._strings().string(string_id).casefold()

    def accepts(self, row: RowData) -> bool:
        """Return whether ``row`` itself matches both filters."""
        if not self.function_filter and not self.module_filter:
            return True
        symbol = row.symbol
        return not (
            self._filtered_out(symbol.function_id, self.function_filter)
            or self._filtered_out(symbol.module_id, self.module_filter)
        )

    def _visible(self, row: RowData) -> bool:
        if self.accepts(row):
            return True
        return any(self._visible(child) for child in getattr(row, "children", ()))

    def filter(self, rows: Iterable[RowData]) -> list[RowData]:
        """Return the rows that match or have a matching descendant."""
        return [row for row in rows if self._visible(row)]

    def location_sort_key(self, row: RowData) -> tuple[str, str]:
        """Key for sorting by location: function name, then module file name."""
        strings = self._strings()
        symbol = row.symbol
        return (
            strings.string(symbol.function_id),
            basename(strings.string(symbol.module_id)),
        )