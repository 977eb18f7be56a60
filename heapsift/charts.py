"""Size histogram and time-series chart data built from parsed allocations."""

from __future__ import annotations

import dataclasses
from collections.abc import Hashable, Iterable, Sequence
from dataclasses import dataclass, field

from .costs import AllocationCost, ResultData, Symbol

MAX_CHART_DATAPOINTS = 500
"""Upper bound on the number of rows a chart collects between min and max time."""

MAX_NUM_COST = 20
"""Number of cost columns per chart row; column 0 holds the total."""

HISTOGRAM_COLUMNS = 10
"""Number of columns per histogram row; column 0 holds the total."""

_SIZE_BUCKETS = (
    (8, "0B to 8B"),
    (16, "9B to 16B"),
    (32, "17B to 32B"),
    (64, "33B to 64B"),
    (128, "65B to 128B"),
    (256, "129B to 256B"),
    (512, "257B to 512B"),
    (1024, "512B to 1KB"),
    (2**64 - 1, "more than 1KB"),
)


@dataclass(frozen=True)
class CountedAllocation:
    """How often an allocation of ``size`` bytes was made at ``symbol``."""

    size: int
    allocations: int
    symbol: Symbol = field(default_factory=Symbol)


@dataclass(frozen=True)
class HistogramColumn:
    allocations: int = 0
    total_allocated: int = 0
    symbol: Symbol = field(default_factory=Symbol)


def _empty_histogram_columns() -> list[HistogramColumn]:
    return [HistogramColumn() for _ in range(HISTOGRAM_COLUMNS)]


@dataclass
class HistogramRow:
    """One size bucket; column 0 is the total, the others the top symbols."""

    size: int = 0
    size_label: str = ""
    columns: list[HistogramColumn] = field(default_factory=_empty_histogram_columns)


@dataclass
class HistogramData:
    rows: list[HistogramRow] = field(default_factory=list)
    result_data: ResultData | None = None


def _empty_costs() -> list[int]:
    return [0] * MAX_NUM_COST


@dataclass
class ChartRow:
    """Costs at one time stamp; column 0 is the total."""

    time_stamp: int = 0
    cost: list[int] = field(default_factory=_empty_costs)


@dataclass
class ChartData:
    """Chart rows plus the symbol shown for each cost column."""

    rows: list[ChartRow] = field(default_factory=list)
    labels: dict[int, Symbol] = field(default_factory=dict)
    result_data: ResultData | None = None


def build_size_histogram(
    counted_allocations: Iterable[CountedAllocation],
    result_data: ResultData | None = None,
) -> HistogramData:
    """Group allocations into size buckets, listing the top symbols per bucket."""
    infos = sorted(counted_allocations, key=lambda info: (info.size, info.allocations))
    if not infos:
        return HistogramData()

    buckets = iter(_SIZE_BUCKETS)
    size, label = next(buckets)
    row = HistogramRow(size=size, size_label=label)
    rows: list[HistogramRow] = []
    column_data: dict[Symbol, tuple[int, int]] = {}

    def insert_columns() -> None:
        by_symbol = sorted(column_data.items(), key=lambda item: item[0])
        ranked = sorted(by_symbol, key=lambda item: item[1], reverse=True)
        for i, (symbol, (allocations, total)) in enumerate(ranked[: HISTOGRAM_COLUMNS - 1]):
            row.columns[i + 1] = HistogramColumn(allocations, total, symbol)

    for info in infos:
        total = info.size * info.allocations
        if info.size > row.size:
            insert_columns()
            column_data.clear()
            rows.append(dataclasses.replace(row, columns=list(row.columns)))
            row.size, row.size_label = next(buckets)
            row.columns[0] = HistogramColumn(info.allocations, total, Symbol())
        else:
            column = row.columns[0]
            row.columns[0] = HistogramColumn(
                column.allocations + info.allocations,
                column.total_allocated + total,
                column.symbol,
            )
        allocations, allocated = column_data.get(info.symbol, (0, 0))
        column_data[info.symbol] = (allocations + info.allocations, allocated + total)

    insert_columns()
    rows.append(row)
    return HistogramData(rows=rows, result_data=result_data)


@dataclass
class _LabelIds:
    allocation_index: int
    consumed: int = -1
    allocations: int = -1
    temporary: int = -1


@dataclass
class _MergedCost:
    ip: Hashable
    symbol: Symbol
    consumed: int = 0
    allocations: int = 0
    temporary: int = 0


def _truncating_div(numerator: int, denominator: int) -> int:
    quotient = abs(numerator) // denominator
    return -quotient if numerator < 0 else quotient


class ChartBuilder:
    """Collects consumed, allocation and temporary charts while data is replayed.

    ``prepare`` picks the hottest instruction pointers as chart labels; each
    later ``handle_time_stamp`` adds a row to all three charts, throttled so
    that no more than about ``MAX_CHART_DATAPOINTS`` rows are recorded.
    """

    def __init__(self, result_data: ResultData | None = None, diff_mode: bool = False) -> None:
        self.result_data = result_data
        self.diff_mode = diff_mode
        self.consumed = ChartData()
        self.allocations = ChartData()
        self.temporary = ChartData()
        self.build_charts = False
        self.min_time = 0
        self.max_time = 0
        self._label_ids: list[_LabelIds] = []
        self._max_consumed_since_last = 0
        self._last_time_stamp = 0

    def prepare(
        self,
        allocations: Sequence[tuple[Hashable, Symbol, AllocationCost]],
        min_time: int,
        max_time: int,
    ) -> None:
        """Select chart labels from ``(ip, symbol, cost)`` allocation entries."""
        if self.diff_mode:
            return
        self.min_time = min_time
        self.max_time = max_time
        self._last_time_stamp = min_time
        self._label_ids = []
        self._max_consumed_since_last = 0

        charts = (self.consumed, self.allocations, self.temporary) = (
            ChartData(result_data=self.result_data),
            ChartData(result_data=self.result_data),
            ChartData(result_data=self.result_data),
        )
        for chart in charts:
            chart.rows.append(ChartRow(time_stamp=min_time))
            chart.labels[0] = Symbol()
        self.build_charts = True

        merged: dict[Hashable, _MergedCost] = {}
        for ip, symbol, cost in allocations:
            entry = merged.setdefault(ip, _MergedCost(ip, symbol))
            # the consumed chart tracks the top peaks
            entry.consumed += cost.peak
            entry.allocations += cost.allocations
            entry.temporary += cost.temporary
        ordered = sorted(merged.values(), key=lambda entry: entry.ip)

        ip_to_labels: dict[Hashable, _LabelIds] = {}
        for member, chart in (
            ("consumed", self.consumed),
            ("allocations", self.allocations),
            ("temporary", self.temporary),
        ):
            ordered.sort(key=lambda entry: abs(getattr(entry, member)), reverse=True)
            for i, entry in enumerate(ordered[: MAX_NUM_COST - 2]):
                if not getattr(entry, member):
                    break
                ids = ip_to_labels.setdefault(entry.ip, _LabelIds(allocation_index=0))
                setattr(ids, member, i + 1)
                chart.labels[i + 1] = entry.symbol

        for index, (ip, _symbol, _cost) in enumerate(allocations):
            ids = ip_to_labels.get(ip)
            if ids is not None:
                self._label_ids.append(dataclasses.replace(ids, allocation_index=index))

    def handle_allocation(self, leaked: int) -> None:
        """Track the highest consumption seen since the last recorded row."""
        self._max_consumed_since_last = max(self._max_consumed_since_last, leaked)

    def handle_time_stamp(
        self,
        new_stamp: int,
        is_final: bool,
        total_cost: AllocationCost,
        allocations: Sequence[AllocationCost],
    ) -> None:
        """Record a row for ``new_stamp`` unless it is too close to the last one.

        ``allocations`` holds the current cost of each entry given to ``prepare``,
        in the same order.
        """
        if not self.build_charts or self.diff_mode:
            return
        self._max_consumed_since_last = max(self._max_consumed_since_last, total_cost.leaked)
        min_distance = _truncating_div(self.max_time - self.min_time, MAX_CHART_DATAPOINTS)
        if not is_final and (new_stamp - self._last_time_stamp) < min_distance:
            return
        now_consumed = self._max_consumed_since_last
        self._max_consumed_since_last = 0
        self._last_time_stamp = new_stamp

        def create_row(total: int) -> ChartRow:
            row = ChartRow(time_stamp=new_stamp)
            row.cost[0] = total
            return row

        consumed = create_row(now_consumed)
        allocs = create_row(total_cost.allocations)
        temporary = create_row(total_cost.temporary)

        def add(cost: int, label_id: int, row: ChartRow) -> None:
            if cost and label_id != -1:
                row.cost[label_id] += cost

        for ids in self._label_ids:
            alloc = allocations[ids.allocation_index]
            add(alloc.leaked, ids.consumed, consumed)
            add(alloc.allocations, ids.allocations, allocs)
            add(alloc.temporary, ids.temporary, temporary)

        self.consumed.rows.append(consumed)
        self.allocations.rows.append(allocs)
        self.temporary.rows.append(temporary)