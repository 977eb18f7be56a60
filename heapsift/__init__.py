"""Analysis of heap allocation data: call trees, charts, reports, massif output and leak suppressions."""

__version__ = "0.1.0"