"""Core cost values and interned string lookup shared by all views."""

from __future__ import annotations

from dataclasses import dataclass, field, fields


@dataclass(frozen=True)
class AllocationCost:
    """Aggregated allocation cost of a location or a whole trace."""

    allocations: int = 0
    temporary: int = 0
    peak: int = 0
    leaked: int = 0

    def __add__(self, other: AllocationCost) -> AllocationCost:
        if not isinstance(other, AllocationCost):
            return NotImplemented
        return AllocationCost(
            *(getattr(self, f.name) + getattr(other, f.name) for f in fields(self))
        )

    def __sub__(self, other: AllocationCost) -> AllocationCost:
        if not isinstance(other, AllocationCost):
            return NotImplemented
        return AllocationCost(
            *(getattr(self, f.name) - getattr(other, f.name) for f in fields(self))
        )

    def is_zero(self) -> bool:
        """Return True when every cost member is zero."""
        return not any(getattr(self, f.name) for f in fields(self))


@dataclass(frozen=True, order=True)
class Symbol:
    """A function within a module, both given as string indices."""

    function_id: int = 0
    module_id: int = 0


@dataclass(frozen=True, order=True)
class FileLine:
    """A source location: file string index and line number."""

    file_id: int = 0
    line: int = 0


@dataclass(frozen=True)
class ResultData:
    """Total costs of a parsed data file plus its interned strings.

    String indices are one-based; index 0 stands for "no string".
    """

    total_costs: AllocationCost = field(default_factory=AllocationCost)
    strings: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "strings", tuple(self.strings))

    def string(self, index: int) -> str:
        """Return the interned string for ``index``, or "" for index 0."""
        if not index:
            return ""
        if index < 0 or index > len(self.strings):
            raise IndexError(f"string index out of range: {index}")
        return self.strings[index - 1]