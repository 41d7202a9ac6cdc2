"""Wildcard expansion of shell words that contain ``*`` or ``?``."""

from __future__ import annotations

import os
import sys


def contains_pattern(token: str) -> bool:
    """Return True if the word holds a wildcard before any space."""
    for ch in token:
        if ch == " ":
            return False
        if ch in "*?":
            return True
    return False


def matches(name: str, pattern: str) -> bool:
    """Match ``name`` against a pattern where ``?`` is one character and ``*`` any run."""
    if not name:
        return all(ch == "*" for ch in pattern)
    if not pattern:
        return False
    head = pattern[0]
    if head == "?" or head == name[0]:
        return matches(name[1:], pattern[1:])
    if head == "*":
        rest = pattern[1:]
        return any(matches(name[i:], rest) for i in range(len(name) + 1))
    return False


def list_matching(
    dirname: str,
    pattern: str,
    dirs_only: bool,
    relative: bool,
    include_hidden: bool,
) -> list[str]:
    """List the entries of ``dirname`` whose names match ``pattern``.

    ``dirname`` is used as a prefix verbatim, so it should end with ``/``.
    Directories found with ``dirs_only`` get a trailing ``/``.
    """
    try:
        with os.scandir(dirname) as it:
            entries = sorted((e.name, e.is_dir(follow_symlinks=False)) for e in it)
    except OSError as exc:
        print(f"microsha: {exc.strerror}", file=sys.stderr)
        return []

    result = []
    for name, is_dir in [(".", True), ("..", True), *entries]:
        if not include_hidden and name.startswith("."):
            continue
        if not matches(name, pattern):
            continue
        if dirs_only:
            if not is_dir:
                continue
            name += "/"
        result.append(name if relative else dirname + name)
    return result


def expand(pattern: str) -> list[str]:
    """Expand a path pattern component by component.

    Returns the pattern itself when nothing matches.
    """
    if pattern.startswith("/"):
        results = ["/"]
        relative = False
        rest = pattern[1:]
    else:
        results = ["./"]
        relative = True
        rest = pattern

    *directories, last = rest.split("/")
    for component in directories:
        hidden = component.startswith(".")
        results = [
            found
            for base in results
            for found in list_matching(base, component, True, relative, hidden)
        ]
        relative = False

    if last:
        hidden = last.startswith(".")
        results = [
            found
            for base in results
            for found in list_matching(base, last, False, relative, hidden)
        ]

    return results or [pattern]