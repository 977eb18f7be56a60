import pytest

from heapsift.charts import (
    HISTOGRAM_COLUMNS,
    MAX_NUM_COST,
    ChartBuilder,
    ChartRow,
    CountedAllocation,
    HistogramColumn,
    build_size_histogram,
)
from heapsift.costs import AllocationCost, ResultData, Symbol

SYM_A = Symbol(1, 2)
SYM_B = Symbol(3, 2)
SYM_C = Symbol(4, 2)


def test_empty_histogram_has_no_rows():
    data = build_size_histogram([], ResultData())
    assert data.rows == []
    assert data.result_data is None


def test_histogram_first_bucket_totals_and_columns():
    infos = [
        CountedAllocation(4, 2, SYM_A),
        CountedAllocation(4, 3, SYM_B),
        CountedAllocation(8, 1, SYM_A),
    ]
    result = ResultData()
    data = build_size_histogram(infos, result)
    assert data.result_data is result
    assert len(data.rows) == 1
    row = data.rows[0]
    assert row.size_label == "0B to 8B"
    assert len(row.columns) == HISTOGRAM_COLUMNS
    assert row.columns[0].allocations == sum(i.allocations for i in infos)
    assert row.columns[0].total_allocated == sum(i.size * i.allocations for i in infos)
    # ties on allocations are broken by total allocated bytes
    ranked = [row.columns[1].symbol, row.columns[2].symbol]
    assert set(ranked) == {SYM_A, SYM_B}
    assert row.columns[1].total_allocated >= row.columns[2].total_allocated
    assert row.columns[3] == HistogramColumn()


def test_histogram_moves_to_next_bucket_one_step_at_a_time():
    infos = [CountedAllocation(4, 1, SYM_A), CountedAllocation(100, 2, SYM_B)]
    data = build_size_histogram(infos)
    assert [row.size_label for row in data.rows] == ["0B to 8B", "9B to 16B"]
    second = data.rows[1]
    assert second.columns[0].allocations == 2
    assert second.columns[0].total_allocated == 200
    assert second.columns[1].symbol == SYM_B


def test_histogram_rows_are_independent_copies():
    infos = [CountedAllocation(4, 1, SYM_A), CountedAllocation(12, 5, SYM_B)]
    data = build_size_histogram(infos)
    assert data.rows[0].columns[0].allocations == 1
    assert data.rows[1].columns[0].allocations == 5
    assert data.rows[0].columns is not data.rows[1].columns


def _allocations():
    return [
        ("ip1", SYM_A, AllocationCost(allocations=5, temporary=1, peak=100, leaked=10)),
        ("ip2", SYM_B, AllocationCost(allocations=50, temporary=0, peak=20, leaked=5)),
        ("ip1", SYM_A, AllocationCost(allocations=1, temporary=0, peak=30, leaked=0)),
    ]


def test_prepare_creates_origin_rows_and_labels():
    result = ResultData()
    builder = ChartBuilder(result)
    builder.prepare(_allocations(), 0, 1000)
    for chart in (builder.consumed, builder.allocations, builder.temporary):
        assert chart.rows == [ChartRow(time_stamp=0)]
        assert chart.labels[0] == Symbol()
        assert chart.result_data is result
    assert builder.consumed.labels[1] == SYM_A
    assert builder.consumed.labels[2] == SYM_B
    assert builder.allocations.labels[1] == SYM_B
    assert builder.allocations.labels[2] == SYM_A
    # zero-cost entries get no label
    assert builder.temporary.labels == {0: Symbol(), 1: SYM_A}


def test_time_stamps_are_throttled_but_final_is_kept():
    builder = ChartBuilder()
    builder.prepare(_allocations(), 0, 1000)
    total = AllocationCost(allocations=56, temporary=1, peak=150, leaked=15)
    costs = [cost for _, _, cost in _allocations()]
    builder.handle_time_stamp(1, False, total, costs)
    assert len(builder.allocations.rows) == 1
    builder.handle_time_stamp(1, True, total, costs)
    assert len(builder.allocations.rows) == 2
    assert builder.allocations.rows[-1].time_stamp == 1


def test_time_stamp_row_costs():
    builder = ChartBuilder()
    allocations = _allocations()
    builder.prepare(allocations, 0, 1000)
    costs = [cost for _, _, cost in allocations]
    total = sum(costs, AllocationCost())
    builder.handle_allocation(total.leaked + 7)
    builder.handle_time_stamp(10, False, total, costs)

    consumed = builder.consumed.rows[-1]
    allocs = builder.allocations.rows[-1]
    temporary = builder.temporary.rows[-1]
    assert consumed.cost[0] == total.leaked + 7
    assert allocs.cost[0] == total.allocations
    assert temporary.cost[0] == total.temporary
    assert len(allocs.cost) == MAX_NUM_COST
    assert consumed.cost[1] == costs[0].leaked + costs[2].leaked
    assert consumed.cost[2] == costs[1].leaked
    assert allocs.cost[1] == costs[1].allocations
    assert allocs.cost[2] == costs[0].allocations + costs[2].allocations
    assert temporary.cost[1] == costs[0].temporary
    assert sum(allocs.cost[1:]) == total.allocations

    # the consumed maximum resets after each recorded row
    builder.handle_time_stamp(20, False, AllocationCost(leaked=3), costs)
    assert builder.consumed.rows[-1].cost[0] == 3


def test_diff_mode_builds_nothing():
    builder = ChartBuilder(diff_mode=True)
    builder.prepare(_allocations(), 0, 1000)
    builder.handle_time_stamp(500, True, AllocationCost(allocations=1), [])
    assert builder.build_charts is False
    assert builder.consumed.rows == []


def test_time_stamp_before_prepare_is_ignored():
    builder = ChartBuilder()
    builder.handle_time_stamp(500, True, AllocationCost(allocations=1), [])
    assert builder.allocations.rows == []


@pytest.mark.parametrize("count", [0, 1, MAX_NUM_COST + 5])
def test_label_count_is_bounded(count):
    allocations = [
        (i, Symbol(i + 1, 1), AllocationCost(allocations=i + 1, peak=i + 1))
        for i in range(count)
    ]
    builder = ChartBuilder()
    builder.prepare(allocations, 0, 100)
    assert len(builder.allocations.labels) == min(count, MAX_NUM_COST - 2) + 1
    assert len(builder.allocations.labels) < MAX_NUM_COST