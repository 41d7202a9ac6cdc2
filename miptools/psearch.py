"""Multithreaded search for a string in every file below a directory."""

from __future__ import annotations

import os
import queue
import re
import sys
import threading
from dataclasses import dataclass
from typing import BinaryIO, Iterator, Optional, Sequence, Union

_DONE = object()
_THREADS = re.compile(r"-t\s*([+-]?\d+)")


@dataclass
class SearchOptions:
    """What to search for and where."""

    pattern: str = ""
    directory: str = ""
    threads: int = 1
    recursive: bool = True


@dataclass(frozen=True)
class Match:
    """A line of a file that holds the pattern."""

    path: str
    line: int
    text: bytes

    def format(self) -> bytes:
        """Render the match as it is written to the log."""
        header = f"[found] line {self.line} from '".encode() + os.fsencode(self.path)
        return header + b"':\n>>" + self.text + b"<<\n"


def parse_args(argv: Sequence[str]) -> SearchOptions:
    """Read ``-n``, ``-tN``, an absolute directory and the pattern."""
    options = SearchOptions()
    for arg in argv:
        if arg == "-n":
            options.recursive = False
        elif arg.startswith("-t"):
            found = _THREADS.match(arg)
            if found:
                options.threads = int(found.group(1))
        elif arg.startswith("/"):
            options.directory = arg
        else:
            options.pattern = arg
    if not options.directory:
        options.directory = os.getcwd()
    return options


def prefix_function(pattern: Union[str, bytes]) -> list[int]:
    """Knuth-Morris-Pratt prefix function of ``pattern``."""
    result = [0] * len(pattern)
    for i in range(1, len(pattern)):
        j = result[i - 1]
        while j > 0 and pattern[i] != pattern[j]:
            j = result[j - 1]
        if pattern[i] == pattern[j]:
            j += 1
        result[i] = j
    return result


def iter_files(directory: str, recursive: bool = True) -> Iterator[str]:
    """Yield the regular files of ``directory``, descending into subdirectories."""
    try:
        with os.scandir(directory) as it:
            entries = sorted(it, key=lambda entry: entry.name)
    except OSError:
        return
    for entry in entries:
        path = f"{directory}/{entry.name}"
        if entry.is_file(follow_symlinks=False):
            yield path
        elif recursive and entry.is_dir(follow_symlinks=False):
            yield from iter_files(path, recursive)


def search_file(
    path: str,
    pattern: Union[str, bytes],
    prefix: Optional[list[int]] = None,
) -> list[Match]:
    """Return every line of the file holding ``pattern``, at most one match per line."""
    needle = os.fsencode(pattern) if isinstance(pattern, str) else pattern
    if prefix is None:
        prefix = prefix_function(needle)
    with open(path, "rb") as handle:
        data = handle.read()

    n = len(needle)
    size = len(data)
    found = []
    pos = 0
    begin = 0
    line = 1
    i = 0
    while i < size:
        byte = data[i]
        if byte == 0x0A:
            line += 1
            begin = i + 1
            pos = 0
        while pos > 0 and needle[pos] != byte:
            pos = prefix[pos - 1]
        if pos < n and needle[pos] == byte:
            pos += 1
        if pos == n:
            end = data.find(b"\n", i)
            i = size if end == -1 else end
            found.append(Match(path, line, data[begin:i]))
            line += 1
            begin = i + 1
            pos = 0
        i += 1
    return found


def search_tree(options: SearchOptions, out: BinaryIO) -> int:
    """Search every file under the directory with worker threads.

    Writes each match to ``out`` and returns how many were found.
    """
    if options.threads < 0:
        raise ValueError("thread count must not be negative")
    needle = os.fsencode(options.pattern)
    prefix = prefix_function(needle)
    paths: queue.Queue = queue.Queue()
    lock = threading.Lock()
    total = 0

    def produce() -> None:
        for path in iter_files(options.directory, options.recursive):
            paths.put(path)
        paths.put(_DONE)

    def consume() -> None:
        nonlocal total
        while True:
            path = paths.get()
            if path is _DONE:
                paths.put(_DONE)
                return
            try:
                matches = search_file(path, needle, prefix)
            except OSError:
                with lock:
                    out.write(b"can not open " + os.fsencode(path) + b" \n")
                continue
            with lock:
                for match in matches:
                    out.write(match.format())
                total += len(matches)

    producer = threading.Thread(target=produce)
    workers = [threading.Thread(target=consume) for _ in range(options.threads)]
    producer.start()
    for worker in workers:
        worker.start()
    producer.join()
    for worker in workers:
        worker.join()
    return total


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Search and write the results to ``log.txt`` in the working directory."""
    options = parse_args(sys.argv[1:] if argv is None else argv)
    with open("log.txt", "wb") as log:
        search_tree(options, log)
    return 0