"""Human readable formatting of times, sizes, symbols and cost tooltips."""

from __future__ import annotations

import enum

from .costs import AllocationCost, FileLine, ResultData, Symbol

UNRESOLVED_FUNCTION_NAME = "<unresolved function>"

_COST_LABELS = (
    ("Peak", "peak"),
    ("Leaked", "leaked"),
    ("Allocations", "allocations"),
    ("Temporary Allocations", "temporary"),
)


class CostType(enum.Enum):
    """The cost a flame graph or report is weighted by."""

    ALLOCATIONS = "allocations"
    TEMPORARY = "temporary"
    LEAKED = "leaked"
    PEAK = "peak"

    @classmethod
    def parse(cls, token: str) -> CostType:
        """Parse a command-line token into a cost type."""
        try:
            return cls(token)
        except ValueError:
            raise ValueError(f"invalid cost type: {token!r}") from None


class FormatType(enum.Enum):
    LONG = "long"
    SHORT = "short"


def _html_escape(text: str) -> str:
    return (
        text.replace("&", "&amp;")
        .replace("<", "&lt;")
        .replace(">", "&gt;")
        .replace('"', "&quot;")
    )


def basename(path: str) -> str:
    """Return the part of ``path`` after its last slash."""
    return path[path.rfind("/") + 1 :]


def format_string(text: str) -> str:
    return text or "??"


def format_time(ms: int) -> str:
    """Format a duration in milliseconds, e.g. ``1h2min03s`` or ``05.250s``."""
    negative = ms < 0
    ms = abs(ms)
    total_seconds, ms = divmod(ms, 1000)
    days = total_seconds // 86400
    hours = (total_seconds // 3600) % 24
    minutes = (total_seconds // 60) % 60
    seconds = total_seconds % 60

    ret = "".join(
        f"{value}{unit}" for value, unit in ((days, "d"), (hours, "h"), (minutes, "min")) if value > 0
    )
    show_ms = not ret
    ret += f"{seconds:02d}"
    if show_ms:
        ret += f".{ms:03d}"
    ret += "s"
    return "-" + ret if negative else ret


def format_bytes(size: int) -> str:
    """Format a byte count with decimal (base 1000) units and no spaces."""
    units = ("B", "kB", "MB", "GB", "TB", "PB", "EB", "ZB", "YB")
    value = float(size)
    power = 0
    while abs(value) >= 1000.0 and power < len(units) - 1:
        value /= 1000.0
        power += 1
    if power == 0:
        return f"{size}B"
    return f"{value:.1f}{units[power]}"


def format_bytes_decimal(size: int, width: int = 0) -> str:
    """Format a byte count for the text report, right aligned to ``width``.

    Without enough width only the first letter of the unit is written.
    """
    units = ("B", "KB", "MB", "GB", "TB")
    value = float(size)
    index = 0
    while index < len(units) - 1 and abs(value) > 1000.0:
        value /= 1000.0
        index += 1
    unit = units[index]
    text = str(size) if index == 0 else f"{value:.2f}"
    if width > len(unit):
        return text.rjust(width - len(unit)) + unit
    return text + unit[0]


def format_cost_relative(self_cost: int, total_cost: int, add_percent_sign: bool = False) -> str:
    """Return ``self_cost`` as a percentage of ``total_cost`` with 3 significant digits."""
    if not total_cost:
        return ""
    ret = f"{self_cost * 100.0 / total_cost:.3g}"
    return ret + "%" if add_percent_sign else ret


def symbol_to_string(symbol: Symbol, result_data: ResultData, format_type: FormatType) -> str:
    binary_path = result_data.string(symbol.module_id)
    binary_name = basename(binary_path)
    function = result_data.string(symbol.function_id)
    if format_type is FormatType.LONG:
        return (
            f"symbol: <tt>{_html_escape(function)}</tt><br/>"
            f"binary: <tt>{_html_escape(binary_name)} ({_html_escape(binary_path)})</tt>"
        )
    return f"{function} in {binary_name}"


def location_to_string(location: FileLine, result_data: ResultData, format_type: FormatType) -> str:
    file = result_data.string(location.file_id)
    if format_type is FormatType.SHORT:
        file = basename(file)
    return f"{file}:{location.line}" if file else "??"


def _single_cost_section(label: str, cost: int, total: int) -> str:
    return (
        f"{label}: {cost}<br/>&nbsp;&nbsp;"
        f"{format_cost_relative(cost, total)}% out of {total} total"
    )


def _self_inclusive_sections(
    self_costs: AllocationCost, inclusive_costs: AllocationCost, totals: AllocationCost
) -> str:
    parts = []
    for label, member in _COST_LABELS:
        total = getattr(totals, member)
        if not total:
            continue
        self_cost = getattr(self_costs, member)
        inclusive_cost = getattr(inclusive_costs, member)
        parts.append(
            "<hr/>"
            + _single_cost_section(f"{label} (self)", self_cost, total)
            + "<br/>"
            + _single_cost_section(f"{label} (inclusive)", inclusive_cost, total)
        )
    return "".join(parts)


def format_symbol_tooltip(symbol: Symbol, costs: AllocationCost, result_data: ResultData) -> str:
    totals = result_data.total_costs
    tooltip = symbol_to_string(symbol, result_data, FormatType.LONG)
    for label, member in _COST_LABELS:
        total = getattr(totals, member)
        if total:
            tooltip += "<hr/>" + _single_cost_section(label, getattr(costs, member), total)
    return f"<qt>{tooltip}</qt>"


def format_symbol_tooltip_inclusive(
    symbol: Symbol,
    self_costs: AllocationCost,
    inclusive_costs: AllocationCost,
    result_data: ResultData,
) -> str:
    tooltip = symbol_to_string(symbol, result_data, FormatType.LONG)
    tooltip += _self_inclusive_sections(self_costs, inclusive_costs, result_data.total_costs)
    return f"<qt>{tooltip}</qt>"


def format_location_tooltip(
    location: FileLine,
    self_costs: AllocationCost,
    inclusive_costs: AllocationCost,
    result_data: ResultData,
) -> str:
    tooltip = _html_escape(location_to_string(location, result_data, FormatType.LONG))
    tooltip += _self_inclusive_sections(self_costs, inclusive_costs, result_data.total_costs)
    return f"<qt>{tooltip}</qt>"