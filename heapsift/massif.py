"""Writer for massif compatible heap snapshot files."""

from __future__ import annotations

import dataclasses
from collections.abc import Iterable
from typing import TextIO

from .report import Allocation, Printer, TraceData


def _copy(allocations: Iterable[Allocation]) -> list[Allocation]:
    return [dataclasses.replace(allocation) for allocation in allocations]


class MassifWriter:
    """Writes snapshots of the heap in the massif file format.

    ``threshold`` is a percentage of the snapshot's heap size below which
    entries are aggregated; every ``detailed_freq``-th snapshot (and the last
    one) carries a detailed heap tree, none if ``detailed_freq`` is 0.
    """

    def __init__(
        self,
        data: TraceData,
        out: TextIO,
        threshold: float = 1.0,
        detailed_freq: int = 2,
    ) -> None:
        self.data = data
        self.out = out
        self.threshold = threshold
        self.detailed_freq = detailed_freq
        self.snapshot_id = 0
        self.last_peak = 0
        self.massif_allocations: list[Allocation] = []
        self._printer = Printer(data)

    def write_header(self, command: str) -> None:
        self.out.write(f"desc: heaptrack\ncmd: {command}\ntime_unit: s\n")

    def handle_allocation(self, total_leaked: int, allocations: Iterable[Allocation]) -> None:
        """Remember the allocations whenever a new peak is reached."""
        if total_leaked > 0 and total_leaked > self.last_peak:
            self.massif_allocations = _copy(allocations)
            self.last_peak = total_leaked

    def write_snapshot(
        self,
        time_stamp: int,
        is_last: bool,
        total_leaked: int,
        allocations: Iterable[Allocation],
    ) -> None:
        """Write one snapshot for ``time_stamp`` (in ms) of the peak since the last one."""
        if not self.last_peak:
            self.last_peak = total_leaked
            self.massif_allocations = _copy(allocations)
        self.out.write(
            "#-----------\n"
            f"snapshot={self.snapshot_id}\n"
            "#-----------\n"
            f"time={0.001 * time_stamp:g}\n"
            f"mem_heap_B={self.last_peak}\n"
            "mem_heap_extra_B=0\n"
            "mem_stacks_B=0\n"
        )
        if self.detailed_freq and (is_last or not self.snapshot_id % self.detailed_freq):
            self.out.write("heap_tree=detailed\n")
            threshold = int(self.last_peak * self.threshold * 0.01)
            self.write_backtrace(self.massif_allocations, self.last_peak, threshold, 0)
        else:
            self.out.write("heap_tree=empty\n")
        self.snapshot_id += 1
        self.last_peak = 0

    def write_backtrace(
        self,
        allocations: Iterable[Allocation],
        heap_size: int,
        threshold: int,
        location: int,
        depth: int = 0,
    ) -> None:
        """Write the heap tree node at ``location`` and, recursively, its callers."""
        data = self.data
        merged_allocations = self._printer.merge_allocations(_copy(allocations))
        merged_allocations.sort(key=lambda merged: merged.leaked, reverse=True)

        ip = data.find_ip(location)
        # anything below main is skipped; an unknown caller ends the tree too
        should_stop = data.is_stop_index(ip.frame.function_index) or (depth > 0 and not location)

        num_allocs = 0
        skipped = 0
        skipped_leaked = 0
        if not should_stop:
            for merged in merged_allocations:
                if merged.leaked < 0:
                    break
                if merged.leaked >= threshold:
                    num_allocs += 1
                    # step one level up, otherwise this would recurse endlessly
                    for alloc in merged.traces:
                        alloc.trace_index = data.find_trace(alloc.trace_index).parent_index
                else:
                    skipped += 1
                    skipped_leaked += merged.leaked

        indent = " " * depth
        line = f"{indent}n{num_allocs + (1 if skipped else 0)}: {heap_size}"
        if not depth:
            line += " (heap allocation functions) malloc/new/new[], --alloc-fns, etc.\n"
        else:
            function = data.stringify(ip.frame.function_index) if ip.frame.function_index else "???"
            if ip.frame.file_index:
                where = f"{data.stringify(ip.frame.file_index)}:{ip.frame.line}"
            elif ip.module_index:
                where = data.stringify(ip.module_index)
            else:
                where = "???"
            line += f" 0x{ip.instruction_pointer:x}: {function} ({where})\n"
        self.out.write(line)

        def write_skipped() -> None:
            nonlocal skipped
            if skipped:
                self.out.write(
                    f"{indent} n0: {skipped_leaked} in {skipped} places, "
                    f"all below massif's threshold ({self.threshold:g})\n"
                )
                skipped = 0

        if should_stop:
            return
        for merged in merged_allocations:
            if merged.leaked > 0 and merged.leaked >= threshold:
                if skipped_leaked > merged.leaked:
                    # inject the aggregate here to keep the output sorted
                    write_skipped()
                self.write_backtrace(merged.traces, merged.leaked, threshold, merged.ip_index, depth + 1)
        write_skipped()