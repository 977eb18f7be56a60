"""Bottom-up, top-down and caller/callee aggregation of allocation stacks."""

from __future__ import annotations

import bisect
import copy
from collections.abc import Iterable, Iterator, Sequence
from dataclasses import dataclass, field

from .costs import AllocationCost, FileLine, ResultData, Symbol


@dataclass(frozen=True)
class Location:
    """A symbol together with the source line it was seen at."""

    symbol: Symbol = field(default_factory=Symbol)
    file_line: FileLine = field(default_factory=FileLine)


@dataclass(eq=False)
class RowData:
    """A node of a cost tree; ``parent`` is None for top-level rows."""

    cost: AllocationCost = field(default_factory=AllocationCost)
    symbol: Symbol = field(default_factory=Symbol)
    parent: RowData | None = field(default=None, repr=False)
    children: list[RowData] = field(default_factory=list)

    def iter_children(self) -> Iterator[RowData]:
        """Yield the direct children of this row in order."""
        yield from self.children


@dataclass
class TreeData:
    """The top-level rows of a cost tree and the data they refer to."""

    rows: list[RowData] = field(default_factory=list)
    result_data: ResultData | None = None


@dataclass
class LocationCost:
    """Self and inclusive cost attributed to a single source line."""

    self_cost: AllocationCost = field(default_factory=AllocationCost)
    inclusive_cost: AllocationCost = field(default_factory=AllocationCost)


@dataclass
class CallerCalleeEntry:
    """Costs of one symbol plus its callers, callees and source lines."""

    inclusive_cost: AllocationCost = field(default_factory=AllocationCost)
    self_cost: AllocationCost = field(default_factory=AllocationCost)
    callees: dict[Symbol, AllocationCost] = field(default_factory=dict)
    callers: dict[Symbol, AllocationCost] = field(default_factory=dict)
    source_map: dict[FileLine, LocationCost] = field(default_factory=dict)


@dataclass
class CallerCalleeResults:
    """Caller/callee entries keyed by symbol."""

    entries: dict[Symbol, CallerCalleeEntry] = field(default_factory=dict)
    result_data: ResultData | None = None


def _add_caller_callee_event(
    location: Location,
    cost: AllocationCost,
    recursion_guard: set[Symbol],
    results: CallerCalleeResults,
) -> None:
    is_leaf = not recursion_guard
    if location.symbol in recursion_guard:
        return
    recursion_guard.add(location.symbol)

    entry = results.entries.setdefault(location.symbol, CallerCalleeEntry())
    location_cost = entry.source_map.setdefault(location.file_line, LocationCost())
    location_cost.inclusive_cost += cost
    if is_leaf:
        location_cost.self_cost += cost


def _add_row(
    rows: list[RowData], parent: RowData | None, symbol: Symbol, cost: AllocationCost
) -> RowData:
    pos = bisect.bisect_left(rows, symbol, key=lambda row: row.symbol)
    if pos < len(rows) and rows[pos].symbol == symbol:
        row = rows[pos]
        row.cost += cost
    else:
        row = RowData(cost=cost, symbol=symbol, parent=parent)
        rows.insert(pos, row)
    return row


def merge_allocations(
    stacks: Iterable[tuple[AllocationCost, Sequence[Location]]],
    result_data: ResultData | None,
) -> tuple[TreeData, CallerCalleeResults]:
    """Merge allocation stacks into a bottom-up tree and per-line costs.

    Each stack is a pair of its cost and its locations, ordered from the
    allocation site outwards to the outermost caller. An empty stack is
    attributed to the unknown location.
    """
    tree = TreeData(result_data=result_data)
    results = CallerCalleeResults()
    for cost, locations in stacks:
        symbol_guard: set[Symbol] = set()
        rows = tree.rows
        parent: RowData | None = None
        for location in locations or (Location(),):
            parent = _add_row(rows, parent, location.symbol, cost)
            _add_caller_callee_event(location, cost, symbol_guard, results)
            rows = parent.children
    return tree, results


def _post_order(rows: Sequence[RowData]) -> Iterator[RowData]:
    """Yield every row after all of its descendants, siblings in order."""
    stack = [(row, False) for row in reversed(rows)]
    while stack:
        row, visited = stack.pop()
        if visited:
            yield row
        else:
            stack.append((row, True))
            stack.extend((child, False) for child in reversed(row.children))


def _leaf_cost(row: RowData) -> AllocationCost | None:
    """Return the part of ``row``'s cost not covered by its children."""
    child_cost = sum((child.cost for child in row.children), AllocationCost())
    if child_cost == row.cost:
        return None
    return row.cost - child_cost


def to_top_down_data(bottom_up: TreeData) -> TreeData:
    """Invert a bottom-up tree into a top-down tree."""
    top_down = TreeData(result_data=bottom_up.result_data)
    for row in _post_order(bottom_up.rows):
        cost = _leaf_cost(row)
        if cost is None:
            continue
        node: RowData | None = row
        siblings = top_down.rows
        parent: RowData | None = None
        while node is not None:
            target = next((r for r in siblings if r.symbol == node.symbol), None)
            if target is None:
                target = RowData(symbol=node.symbol, parent=parent)
                siblings.append(target)
            # only the leaf's own cost is propagated, so nothing is counted twice
            target.cost += cost
            parent = target
            siblings = target.children
            node = node.parent
    return top_down


def to_caller_callee_data(
    bottom_up: TreeData, results: CallerCalleeResults, diff_mode: bool
) -> CallerCalleeResults:
    """Build caller/callee data from a bottom-up tree, starting from ``results``.

    ``results`` itself is left unchanged. In diff mode entries without any
    cost are dropped.
    """
    out = CallerCalleeResults(entries=copy.deepcopy(results.entries))
    for row in _post_order(bottom_up.rows):
        cost = _leaf_cost(row)
        if cost is None:
            continue
        recursion_guard: set[Symbol] = set()
        pair_guard: set[tuple[Symbol, Symbol]] = set()
        last_symbol: Symbol | None = None
        last_entry: CallerCalleeEntry | None = None
        node: RowData | None = row
        while node is not None:
            symbol = node.symbol
            entry = out.entries.setdefault(symbol, CallerCalleeEntry())
            if symbol not in recursion_guard:
                recursion_guard.add(symbol)
                entry.inclusive_cost += cost
            if node.parent is None:
                entry.self_cost += cost
            if last_entry is not None and last_symbol is not None:
                pair = (symbol, last_symbol)
                if pair not in pair_guard:
                    pair_guard.add(pair)
                    last_entry.callees[symbol] = (
                        last_entry.callees.get(symbol, AllocationCost()) + cost
                    )
                    entry.callers[last_symbol] = (
                        entry.callers.get(last_symbol, AllocationCost()) + cost
                    )
            last_symbol = symbol
            last_entry = entry
            node = node.parent

    if diff_mode:
        out.entries = {
            symbol: entry
            for symbol, entry in out.entries.items()
            if not (entry.inclusive_cost.is_zero() and entry.self_cost.is_zero())
        }

    out.result_data = bottom_up.result_data
    return out