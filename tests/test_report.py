import io

import pytest

from heapsift.costs import AllocationCost
from heapsift.formatting import CostType, format_bytes_decimal
from heapsift.report import (
    Allocation,
    Frame,
    InstructionPointer,
    MergedAllocation,
    Printer,
    TraceData,
    TraceNode,
)
from heapsift.suppressions import Suppression

MAIN, MODULE, ALLOC, FILE, HELPER = 1, 2, 3, 4, 5


@pytest.fixture
def data():
    return TraceData(
        strings=["main", "/usr/lib/libfoo.so", "alloc_here", "src/foo.cpp", "helper"],
        instruction_pointers=[
            InstructionPointer(0x1000, MODULE, Frame(ALLOC, FILE, 10)),
            InstructionPointer(0x2000, MODULE, Frame(HELPER, FILE, 20)),
            InstructionPointer(0x3000, MODULE, Frame(MAIN, FILE, 30)),
            InstructionPointer(0x1004, MODULE, Frame(ALLOC, FILE, 10)),
            InstructionPointer(0x5000, 0, Frame()),
        ],
        traces=[
            TraceNode(1, 2),
            TraceNode(2, 3),
            TraceNode(3, 0),
            TraceNode(4, 3),
            TraceNode(2, 6),
            TraceNode(2, 5),
        ],
        stop_indices={MAIN},
    )


@pytest.fixture
def allocations():
    return [
        Allocation(trace_index=1, allocations=5, temporary=2, peak=100, leaked=10),
        Allocation(trace_index=4, allocations=3, temporary=0, peak=50, leaked=0),
    ]


def test_lookup_zero_index(data):
    assert data.find_ip(0) == InstructionPointer()
    assert data.find_trace(0) == TraceNode()
    assert data.stringify(0) == ""


def test_lookup_out_of_range(data):
    with pytest.raises(IndexError):
        data.find_ip(99)


def test_stop_index(data):
    assert data.is_stop_index(MAIN)
    assert not data.is_stop_index(HELPER)
    assert not data.is_stop_index(0)


def test_merge_ignores_address(data, allocations):
    printer = Printer(data, allocations)
    merged = printer.merge_allocations(allocations)
    assert len(merged) == 1
    entry = merged[0]
    assert len(entry.traces) == 2
    assert entry.cost == allocations[0].cost + allocations[1].cost


def test_merge_keeps_distinct_locations(data):
    allocs = [Allocation(trace_index=1, allocations=1), Allocation(trace_index=2, allocations=2)]
    merged = Printer(data).merge_allocations(allocs)
    assert len(merged) == 2
    assert sum(m.allocations for m in merged) == 3


def test_format_ip(data):
    text = Printer(data).format_ip(1)
    assert text == "alloc_here\n  at src/foo.cpp:10\n  in /usr/lib/libfoo.so\n"


def test_format_ip_unresolved(data):
    text = Printer(data).format_ip(5)
    assert text == "0x5000\n  in ??\n"


def test_format_ip_flamegraph_with_inlined(data):
    ip = InstructionPointer(0x10, MODULE, Frame(ALLOC, FILE, 1), (Frame(HELPER, FILE, 2),))
    assert Printer(data).format_ip(ip, 0, True) == "alloc_here (foo.cpp);helper (foo.cpp);"


def test_format_backtrace_empty(data):
    assert Printer(data).format_backtrace(0) == "  ??"


def test_format_backtrace_order(data):
    text = Printer(data).format_backtrace(1)
    assert text.index("alloc_here") < text.index("helper") < text.index("main")


def test_format_backtrace_skip_first(data):
    text = Printer(data).format_backtrace(1, 2, True)
    assert "alloc_here" not in text
    assert text.startswith("    helper\n")


def test_format_backtrace_recursion(data, capsys):
    text = Printer(data).format_backtrace(5)
    assert text.count("helper") == 3
    assert "Trace recursion detected" in capsys.readouterr().err


def test_flamegraph_line(data, allocations):
    line = Printer(data).flamegraph_line(allocations[0], CostType.ALLOCATIONS)
    assert line == "main (foo.cpp);helper (foo.cpp);alloc_here (foo.cpp); 5"


def test_flamegraph_line_cost_type(data, allocations):
    line = Printer(data).flamegraph_line(allocations[0], CostType.PEAK)
    assert line.endswith(f" {allocations[0].peak}")


def test_flamegraph_without_trace(data):
    assert Printer(data).flamegraph_line(Allocation(allocations=4), CostType.ALLOCATIONS) == "?? 4"


def test_filter_allocations(data, allocations):
    printer = Printer(data, allocations)
    printer.filter_allocations("helper")
    assert printer.allocations == [allocations[0]]


def test_filter_stops_at_main(data, allocations):
    printer = Printer(data, allocations)
    printer.filter_allocations("main")
    assert printer.allocations == []


def test_filter_empty_keeps_all(data, allocations):
    printer = Printer(data, allocations)
    printer.filter_allocations("")
    assert printer.allocations == allocations


def test_print_merged(data, allocations):
    out = io.StringIO()
    Printer(data, allocations).print_allocations(CostType.ALLOCATIONS, out=out)
    text = out.getvalue()
    total = allocations[0].allocations + allocations[1].allocations
    assert text.startswith(f"{total} calls to allocation functions with ")
    assert f"{allocations[0].allocations} calls with " in text
    assert "other places" not in text


def test_print_merged_sub_peak_limit(data, allocations):
    out = io.StringIO()
    printer = Printer(data, allocations, sub_peak_limit=1)
    printer.print_allocations(CostType.ALLOCATIONS, out=out)
    assert f"  and {allocations[1].allocations} from 1 other places\n" in out.getvalue()


def test_print_merged_custom_labels(data, allocations):
    out = io.StringIO()
    Printer(data, allocations).print_allocations(
        CostType.LEAKED, lambda d: "TOP\n", lambda d: "SUB\n", out
    )
    text = out.getvalue()
    assert text.count("TOP\n") == 1
    assert text.count("SUB\n") == 1


def test_print_unmerged_peak_limit(data, allocations):
    out = io.StringIO()
    printer = Printer(data, allocations, merge_backtraces=False, peak_limit=1)
    printer.print_allocations(CostType.PEAK, out=out)
    text = out.getvalue()
    assert text.count("peak memory consumed over") == 1
    assert text.startswith(format_bytes_decimal(allocations[0].peak))


def test_write_histogram(data):
    out = io.StringIO()
    Printer(data).write_histogram({16: 2, 8: 1}, out)
    assert out.getvalue() == "8\t1\n16\t2\n"


def test_print_summary(data):
    out = io.StringIO()
    cost = AllocationCost(allocations=10, temporary=4, peak=2048, leaked=512)
    suppressions = [Suppression("used", matches=2, leaked=64), Suppression("unused")]
    Printer(data).print_summary(cost, 0, 4096, 64, suppressions, True, out)
    text = out.getvalue()
    assert f"total memory leaked: {format_bytes_decimal(512)}\n" in text
    assert "calls to allocation functions: 10 (10/s)\n" in text
    assert "Suppressions used:\n" in text
    assert "used\n" in text
    assert "unused" not in text


def test_print_summary_without_suppressed(data):
    out = io.StringIO()
    Printer(data).print_summary(AllocationCost(), 1000, 0, out=out)
    assert "suppressed leaks" not in out.getvalue()
    assert out.getvalue().startswith("total runtime: ")


def test_merged_allocation_cost():
    merged = MergedAllocation(allocations=1, temporary=2, peak=3, leaked=4)
    assert merged.cost == AllocationCost(1, 2, 3, 4)