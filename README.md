# heapsift

heapsift turns recorded heap allocation data into something you can read.
It merges allocations by the location that called the allocator, builds
bottom-up, top-down and caller/callee trees, derives chart series and an
allocation size histogram, writes massif-compatible snapshots and
flamegraph stack lines, and applies leak suppressions in the `leak:` file
format.

The package has no dependencies outside the Python standard library and
supports Python 3.10 and later.

## Modules

| Module | Purpose |
| --- | --- |
| `heapsift.costs` | `AllocationCost`, `Symbol`, `FileLine` and the `ResultData` string table |
| `heapsift.formatting` | readable times, byte sizes, relative costs, symbol strings and tooltips |
| `heapsift.suppressions` | parsing and matching leak suppressions, plus the built-in list |
| `heapsift.trees` | bottom-up, top-down and caller/callee trees from allocation stacks |
| `heapsift.charts` | chart rows over time (`ChartBuilder`) and the size histogram |
| `heapsift.treemodel` | `TreeModel` over a cost tree, `TopView` lists and `TreeFilter` |
| `heapsift.report` | text reports of the top allocators, backtraces, flamegraph lines and summary |
| `heapsift.massif` | `MassifWriter` for snapshots in the massif data file format |

## Leak suppressions

A suppression file holds one rule per line. Blank lines and lines starting
with `#` are ignored; every rule starts with `leak:` followed by a pattern.
Other lines are reported on stderr and skipped. A pattern may use `*` as a
wildcard, `^` to anchor it at the start and `$` to anchor it at the end.

```python
from heapsift.suppressions import (
    builtin_suppressions,
    matches_suppression,
    parse_suppression,
    parse_suppressions,
)

parse_suppression("leak:g_main_context_new")   # "g_main_context_new"
parse_suppression("# a comment")               # ""

matches_suppression("^QString*", "QString::append")   # True
matches_suppression("^QString*", "foo::QString")      # False

rules = parse_suppressions("my.supp")   # raises SuppressionFileError if unreadable
defaults = builtin_suppressions()       # known leaks in common system libraries
```

An empty path given to `parse_suppressions` means "no suppression file" and
gives an empty list.

## Formatting

```python
from heapsift.formatting import format_bytes, format_cost_relative, format_time

format_time(1500)                      # "01.500s"
format_time(3_725_000)                 # "1h2min05s"
format_bytes(2048)                     # "2.0kB" (base 1000, no space)
format_cost_relative(25, 100, True)    # "25%"
```

`format_bytes_decimal(size, width)` gives the right-aligned sizes used in
the text report. `CostType.parse` turns `allocations`, `temporary`,
`leaked` and `peak` into a `CostType`, which selects the cost a report or
flamegraph line is weighted by; other tokens raise `ValueError`.

## Call trees

`heapsift.trees.merge_allocations` takes `(AllocationCost, locations)`
pairs, each stack ordered from the allocation site outwards, and folds them
into a bottom-up `TreeData` of `RowData` rows together with per-line costs
in `CallerCalleeResults`. `to_top_down_data` inverts that tree, and
`to_caller_callee_data` adds self and inclusive costs and the callers and
callees of every symbol; in diff mode entries without any cost are dropped.

`heapsift.treemodel.TreeModel` presents such a tree by `Column`: display
values, sort keys, header texts and tooltips. `TopView` lists the top-level
rows of one `TopType`, hiding rows below 1% of the summary cost, and
`TreeFilter` keeps rows whose function or module name contains a filter
text, case-insensitively, or that have such a descendant.

## Charts and histogram

`ChartBuilder.prepare` picks the hottest instruction pointers as labels for
the consumed, allocations and temporary charts; `handle_time_stamp` then
adds a row to each, at most about 500 rows over the time range.
`build_size_histogram` groups `CountedAllocation` values into size buckets
from "0B to 8B" up to "more than 1KB", listing the top symbols per bucket.

## Reports

`heapsift.report.Printer` works on a `TraceData` table of strings,
instruction pointers and trace nodes plus a list of `Allocation` values.
It merges allocations by call site (ignoring the exact address), filters
them by a function in their backtrace, prints the top allocators with
their backtraces (`print_allocations`), produces flamegraph lines
(`flamegraph_line`), writes a size histogram (`write_histogram`) and prints
the run summary including matched suppressions (`print_summary`).

`heapsift.massif.MassifWriter` writes the massif header and snapshots,
with a detailed heap tree every `detailed_freq`-th snapshot and entries
below `threshold` percent aggregated.

## What heapsift does not do

heapsift has no command-line program and does not read recorded data files
itself: you build the `TraceData`, allocation stacks and costs and hand
them to the functions above. It has no graphical interface and no table
model for browsing individual backtraces or suppression statistics.