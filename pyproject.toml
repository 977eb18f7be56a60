[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "heapsift"
version = "0.1.0"
description = "Analyze heap allocation traces: merge backtraces, build call trees, charts, histograms, massif and flamegraph output, and apply leak suppressions."
requires-python = ">=3.10"
dependencies = []
keywords = [
    "heap",
    "memory",
    "profiler",
    "allocations",
    "leaks",
    "flamegraph",
    "massif",
    "suppressions",
]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development :: Debuggers",
    "Topic :: Software Development :: Quality Assurance",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["heapsift"]

[tool.pytest.ini_options]
addopts = "-ra"
testpaths = ["tests"]
