"""Leak suppression rules in the sanitizer "leak:<pattern>" file format."""

from __future__ import annotations

import sys
from dataclasses import dataclass
from os import PathLike

_WHITESPACE = " \t\n\v\f\r"
_PREFIX = "leak:"


@dataclass
class Suppression:
    """A suppression pattern and the leaks it has matched so far."""

    pattern: str
    matches: int = 0
    leaked: int = 0


class SuppressionFileError(OSError):
    """Raised when a suppression file cannot be opened."""


def parse_suppression(line: str) -> str:
    """Return the pattern of a ``leak:`` line, or "" for comments and blanks.

    Lines of any other form are reported on stderr and ignored.
    """
    line = line.strip(_WHITESPACE)
    if not line or line.startswith("#"):
        return ""
    if line.startswith(_PREFIX):
        return line[len(_PREFIX):]
    print(f"invalid suppression line: {line}", file=sys.stderr)
    return ""


def parse_suppressions(path: str | PathLike[str]) -> list[str]:
    """Read all suppression patterns from ``path``; an empty path yields none."""
    if not str(path):
        return []
    try:
        with open(path, encoding="utf-8", errors="replace") as stream:
            return [pattern for pattern in map(parse_suppression, stream) if pattern]
    except OSError as error:
        raise SuppressionFileError(f"failed to open suppression file: {path}") from error


def _template_match(template: str, text: str) -> bool:
    """Match ``text`` against a template with ``^`` anchor, ``*`` and ``$``."""
    if not text:
        return False
    start = template.startswith("^")
    if start:
        template = template[1:]
    asterisk = False
    ti = 0
    si = 0
    while ti < len(template):
        char = template[ti]
        if char == "*":
            ti += 1
            start = False
            asterisk = True
            continue
        if char == "$":
            return si == len(text) or asterisk
        if si == len(text):
            return False
        ends = [pos for pos in (template.find("*", ti), template.find("$", ti)) if pos != -1]
        end = min(ends) if ends else len(template)
        piece = template[ti:end]
        found = text.find(piece, si)
        if found == -1:
            return False
        if start and found != si:
            return False
        si = found + len(piece)
        ti = end
        start = False
        asterisk = False
    return True


def matches_suppression(suppression: str, haystack: str) -> bool:
    """Return whether ``haystack`` equals or matches the ``suppression`` template."""
    return suppression == haystack or _template_match(suppression, haystack)


def builtin_suppressions() -> list[Suppression]:
    """Return fresh suppressions for leaks known from common system libraries."""
    patterns = (
        # libc
        "__nss_module_allocate",
        "__gconv_read_conf",
        "__new_exitfn",
        "tzset_internal",
        # dynamic linker
        "dl_open_worker",
        # glib event loop
        "g_main_context_new",
        "g_main_context_new",
        "g_thread_self",
    )
    return [Suppression(pattern) for pattern in patterns]