"""Text report of the top allocators, backtraces, flame graph stacks and summary."""

from __future__ import annotations

import bisect
import sys
from collections import Counter
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from typing import TextIO, Union

from .costs import AllocationCost
from .formatting import CostType, format_bytes_decimal
from .suppressions import Suppression


@dataclass(frozen=True, order=True)
class Frame:
    """A resolved frame: function and file string indices plus a line."""

    function_index: int = 0
    file_index: int = 0
    line: int = 0


@dataclass(frozen=True)
class InstructionPointer:
    """An instruction pointer address with its module, frame and inlined frames."""

    instruction_pointer: int = 0
    module_index: int = 0
    frame: Frame = field(default_factory=Frame)
    inlined: tuple[Frame, ...] = ()

    def without_address(self) -> tuple:
        """Key identifying this location regardless of its exact address."""
        return (self.module_index, self.frame, tuple(self.inlined))


@dataclass(frozen=True)
class TraceNode:
    """A backtrace node: its instruction pointer and its parent node."""

    ip_index: int = 0
    parent_index: int = 0


@dataclass
class Allocation:
    """Costs accumulated for one backtrace."""

    trace_index: int = 0
    allocations: int = 0
    temporary: int = 0
    peak: int = 0
    leaked: int = 0

    @property
    def cost(self) -> AllocationCost:
        return AllocationCost(self.allocations, self.temporary, self.peak, self.leaked)


@dataclass
class MergedAllocation:
    """Allocations merged by the location that called the allocation function."""

    ip_index: int = 0
    traces: list[Allocation] = field(default_factory=list)
    allocations: int = 0
    temporary: int = 0
    peak: int = 0
    leaked: int = 0

    @property
    def cost(self) -> AllocationCost:
        return AllocationCost(self.allocations, self.temporary, self.peak, self.leaked)


@dataclass
class TraceData:
    """Interned strings, instruction pointers and trace nodes of a data file.

    All indices are one-based; index 0 stands for "none".
    """

    strings: list[str] = field(default_factory=list)
    instruction_pointers: list[InstructionPointer] = field(default_factory=list)
    traces: list[TraceNode] = field(default_factory=list)
    stop_indices: set[int] = field(default_factory=set)

    @staticmethod
    def _lookup(items: list, index: int, kind: str):
        if index < 0 or index > len(items):
            raise IndexError(f"{kind} index out of range: {index}")
        return items[index - 1]

    def find_ip(self, index: int) -> InstructionPointer:
        if not index:
            return InstructionPointer()
        return self._lookup(self.instruction_pointers, index, "instruction pointer")

    def find_trace(self, index: int) -> TraceNode:
        if not index:
            return TraceNode()
        return self._lookup(self.traces, index, "trace")

    def stringify(self, index: int) -> str:
        if not index:
            return ""
        return self._lookup(self.strings, index, "string")

    def is_stop_index(self, index: int) -> bool:
        """Whether backtraces end at this function (e.g. at main)."""
        return bool(index) and index in self.stop_indices


Costed = Union[Allocation, MergedAllocation]
Label = Callable[[Costed], str]


def _percent(part: int, whole: int) -> str:
    if whole:
        return f"{part * 100.0 / whole:.2f}"
    if not part:
        return "nan"
    return "inf" if part > 0 else "-inf"


def _temporary_label(data: Costed, suffix: str) -> str:
    return (
        f"{data.temporary} temporary allocations of {data.allocations} allocations in total "
        f"({_percent(data.temporary, data.allocations)}%) from{suffix}\n"
    )


_DEFAULT_LABELS: dict[CostType, tuple[Label, Label]] = {
    CostType.ALLOCATIONS: (
        lambda d: f"{d.allocations} calls to allocation functions with "
        f"{format_bytes_decimal(d.peak)} peak consumption from\n",
        lambda d: f"{d.allocations} calls with {format_bytes_decimal(d.peak)} "
        f"peak consumption from:\n",
    ),
    CostType.PEAK: (
        lambda d: f"{format_bytes_decimal(d.peak)} peak memory consumed over "
        f"{d.allocations} calls from\n",
        lambda d: f"{format_bytes_decimal(d.peak)} consumed over {d.allocations} calls from:\n",
    ),
    CostType.LEAKED: (
        lambda d: f"{format_bytes_decimal(d.leaked)} leaked over {d.allocations} calls from\n",
        lambda d: f"{format_bytes_decimal(d.leaked)} leaked over {d.allocations} calls from:\n",
    ),
    CostType.TEMPORARY: (
        lambda d: _temporary_label(d, ""),
        lambda d: _temporary_label(d, ":"),
    ),
}


class Printer:
    """Renders allocation data of a parsed trace as a textual report."""

    def __init__(
        self,
        data: TraceData,
        allocations: Iterable[Allocation] = (),
        merge_backtraces: bool = True,
        peak_limit: int = 10,
        sub_peak_limit: int = 5,
    ) -> None:
        self.data = data
        self.allocations = list(allocations)
        self.merge_backtraces = merge_backtraces
        self.peak_limit = peak_limit
        self.sub_peak_limit = sub_peak_limit
        self.size_histogram: Counter[int] = Counter()
        self.merged_allocations: list[MergedAllocation] | None = None

    def merge_allocations(self, allocations: Iterable[Allocation]) -> list[MergedAllocation]:
        """Merge allocations whose traces end at the same location, ignoring addresses."""
        merged: list[MergedAllocation] = []
        keys: list[tuple] = []
        for allocation in allocations:
            trace = self.data.find_trace(allocation.trace_index)
            key = self.data.find_ip(trace.ip_index).without_address()
            pos = bisect.bisect_left(keys, key)
            if pos == len(keys) or keys[pos] != key:
                keys.insert(pos, key)
                merged.insert(pos, MergedAllocation(ip_index=trace.ip_index))
            merged[pos].traces.append(allocation)
        for entry in merged:
            for allocation in entry.traces:
                entry.allocations += allocation.allocations
                entry.leaked += allocation.leaked
                entry.peak += allocation.peak
                entry.temporary += allocation.temporary
        return merged

    def _backtrace_has_function(self, allocation: Allocation, function: str) -> bool:
        data = self.data
        node = data.find_trace(allocation.trace_index)
        seen: set[int] = set()
        while node.ip_index:
            ip = data.find_ip(node.ip_index)
            if data.is_stop_index(ip.frame.function_index):
                break
            frames = (ip.frame, *ip.inlined)
            if any(function in data.stringify(frame.function_index) for frame in frames):
                return True
            if node.parent_index in seen:
                break
            seen.add(node.parent_index)
            node = data.find_trace(node.parent_index)
        return False

    def filter_allocations(self, function: str) -> None:
        """Keep only allocations whose backtrace contains ``function``."""
        if not function:
            return
        self.allocations = [a for a in self.allocations if self._backtrace_has_function(a, function)]
        self.merged_allocations = None

    def format_ip(
        self, ip: int | InstructionPointer, indent: int = 0, flame_graph: bool = False
    ) -> str:
        """Describe an instruction pointer, or one flame graph stack segment."""
        data = self.data
        if not isinstance(ip, InstructionPointer):
            ip = data.find_ip(ip)
        pad = "  " * indent
        inner = "  " * (indent + 1)
        parts = [pad]
        if ip.frame.function_index:
            parts.append(data.stringify(ip.frame.function_index))
        else:
            parts.append(f"0x{ip.instruction_pointer:x}")

        if flame_graph:

            def file_part(file_index: int) -> str:
                file = data.stringify(file_index)
                return f" ({file[file.rfind('/') + 1:]})"

            if ip.frame.file_index:
                parts.append(file_part(ip.frame.file_index))
            parts.append(";")
            for inlined in ip.inlined:
                parts.append(data.stringify(inlined.function_index))
                parts.append(file_part(inlined.file_index))
                parts.append(";")
            return "".join(parts)

        parts.append("\n" + inner)
        if ip.frame.file_index:
            parts.append(f"at {data.stringify(ip.frame.file_index)}:{ip.frame.line}\n{inner}")
        if ip.module_index:
            parts.append(f"in {data.stringify(ip.module_index)}")
        else:
            parts.append("in ??")
        parts.append("\n")
        for inlined in ip.inlined:
            parts.append(f"{pad}{data.stringify(inlined.function_index)}\n")
            parts.append(f"{inner}at {data.stringify(inlined.file_index)}:{inlined.line}\n")
        return "".join(parts)

    def format_backtrace(self, trace_index: int, indent: int = 0, skip_first: bool = False) -> str:
        """Describe the backtrace starting at ``trace_index``, innermost frame first."""
        if not trace_index:
            return "  ??"
        data = self.data
        node = data.find_trace(trace_index)
        parts = []
        guard: set[int] = set()
        while node.ip_index:
            ip = data.find_ip(node.ip_index)
            if not skip_first:
                parts.append(self.format_ip(ip, indent))
            skip_first = False
            if data.is_stop_index(ip.frame.function_index):
                break
            if node.parent_index in guard:
                print(
                    f"Trace recursion detected - corrupt data file? {node.parent_index}",
                    file=sys.stderr,
                )
                break
            guard.add(node.parent_index)
            node = data.find_trace(node.parent_index)
        return "".join(parts)

    def flamegraph_line(self, allocation: Allocation, cost_type: CostType) -> str:
        """Return ``func1;func2 (file);... cost`` for one allocation, outermost first."""
        cost = getattr(allocation, cost_type.value)
        if not allocation.trace_index:
            return f"?? {cost}"
        data = self.data
        chain: list[InstructionPointer] = []
        seen: set[int] = set()
        node = data.find_trace(allocation.trace_index)
        while node.ip_index:
            ip = data.find_ip(node.ip_index)
            chain.append(ip)
            if data.is_stop_index(ip.frame.function_index) or node.parent_index in seen:
                break
            seen.add(node.parent_index)
            node = data.find_trace(node.parent_index)
        stack = "".join(self.format_ip(ip, 0, True) for ip in reversed(chain))
        return f"{stack} {cost}"

    def print_allocations(
        self,
        cost_type: CostType,
        label: Label | None = None,
        sublabel: Label | None = None,
        out: TextIO | None = None,
    ) -> None:
        """Write the top allocators for ``cost_type``, merged or per backtrace."""
        out = out if out is not None else sys.stdout
        default_label, default_sublabel = _DEFAULT_LABELS[cost_type]
        label = label or default_label
        sublabel = sublabel or default_sublabel
        member = cost_type.value

        def magnitude(item: Costed) -> int:
            return abs(getattr(item, member))

        if not self.merge_backtraces:
            self.allocations.sort(key=magnitude, reverse=True)
            for allocation in self.allocations[: self.peak_limit]:
                if not getattr(allocation, member):
                    break
                out.write(label(allocation))
                out.write(self.format_backtrace(allocation.trace_index, 1))
                out.write("\n")
            out.write("\n")
            return

        if self.merged_allocations is None:
            self.merged_allocations = self.merge_allocations(self.allocations)
        self.merged_allocations.sort(key=magnitude, reverse=True)
        for merged in self.merged_allocations[: self.peak_limit]:
            if not getattr(merged, member):
                break
            out.write(label(merged))
            out.write(self.format_ip(merged.ip_index))
            if not merged.ip_index:
                continue
            merged.traces.sort(key=magnitude, reverse=True)
            handled = 0
            for trace in merged.traces[: self.sub_peak_limit]:
                if not getattr(trace, member):
                    break
                out.write(sublabel(trace))
                handled += getattr(trace, member)
                out.write(self.format_backtrace(trace.trace_index, 2, True))
            if len(merged.traces) > self.sub_peak_limit:
                rest = getattr(merged, member) - handled
                amount = str(rest) if cost_type is CostType.ALLOCATIONS else format_bytes_decimal(rest)
                others = len(merged.traces) - self.sub_peak_limit
                out.write(f"  and {amount} from {others} other places\n")
            out.write("\n")

    def write_histogram(
        self, histogram: Mapping[int, int] | None = None, out: TextIO | None = None
    ) -> None:
        """Write ``size<TAB>count`` lines in ascending size order."""
        out = out if out is not None else sys.stdout
        histogram = self.size_histogram if histogram is None else histogram
        for size, count in sorted(histogram.items()):
            out.write(f"{size}\t{count}\n")

    def print_summary(
        self,
        total_cost: AllocationCost,
        total_time: int,
        peak_rss: int,
        leaked_suppressed: int = 0,
        suppressions: Iterable[Suppression] = (),
        show_suppressions: bool = False,
        out: TextIO | None = None,
    ) -> None:
        """Write the closing totals; ``total_time`` is in ms, ``peak_rss`` in bytes."""
        out = out if out is not None else sys.stdout
        per_second = 1000.0 / total_time if total_time else 1.0
        out.write(
            f"total runtime: {total_time / 1000.0:.2f}s.\n"
            f"calls to allocation functions: {total_cost.allocations} "
            f"({int(total_cost.allocations * per_second)}/s)\n"
            f"temporary memory allocations: {total_cost.temporary} "
            f"({int(total_cost.temporary * per_second)}/s)\n"
            f"peak heap memory consumption: {format_bytes_decimal(total_cost.peak)}\n"
            f"peak RSS (including heaptrack overhead): {format_bytes_decimal(peak_rss)}\n"
            f"total memory leaked: {format_bytes_decimal(total_cost.leaked)}\n"
        )
        if not leaked_suppressed:
            return
        out.write(f"suppressed leaks: {format_bytes_decimal(leaked_suppressed)}\n")
        if show_suppressions:
            out.write("Suppressions used:\n")
            out.write(f"{'matches':>16} {'leaked':>16} pattern\n")
            for suppression in suppressions:
                if not suppression.matches:
                    continue
                out.write(
                    f"{suppression.matches:>16} {format_bytes_decimal(suppression.leaked, 16)} "
                    f"{suppression.pattern}\n"
                )