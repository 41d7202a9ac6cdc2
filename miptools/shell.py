"""A small interactive shell with pipelines, redirections and ``time``."""

from __future__ import annotations

import contextlib
import os
import re
import resource
import signal
import subprocess
import sys
import time
from dataclasses import dataclass, field, replace
from typing import Optional, TextIO

from .shell_glob import contains_pattern, expand

_REDIRECT = ("<", ">")
_WORD_DELIMS = re.compile(r"[ \n\t]")


class RedirectionError(ValueError):
    """A redirection is malformed or misplaced."""


@dataclass(frozen=True)
class Redirection:
    """A file redirection attached to one pipeline stage."""

    stage: int
    path: str


@dataclass
class ParsedLine:
    """A command line split into pipeline stages."""

    stages: list[list[str]]
    timed: bool = False
    redirections: tuple[Optional[Redirection], Optional[Redirection]] = field(
        default=(None, None)
    )


def _split(text: str, pieces: list[str]) -> tuple[list[str], bool]:
    tokens: list[str] = []
    timed = False
    for token in pieces:
        if not token:
            continue
        if token == "time":
            timed = True
            continue
        if contains_pattern(token):
            tokens.extend(expand(token))
            continue
        tokens.append(token)
    return tokens or [""], timed


def parse_line(line: str) -> ParsedLine:
    """Split a line into stages at ``|`` and into words at whitespace."""
    segments, timed = _split(line, line.split("|"))
    stages = []
    for segment in segments:
        words, stage_timed = _split(segment, _WORD_DELIMS.split(segment))
        timed = timed or stage_timed
        stages.append(words)
    return ParsedLine(stages, timed)


def find_redirections(
    stages: list[list[str]],
) -> tuple[Optional[Redirection], Optional[Redirection]]:
    """Return the (stdin, stdout) redirections of a pipeline.

    Input may only be redirected in the first stage and output in the last.
    """
    for stage in stages[1:-1]:
        if any(word in _REDIRECT for word in stage):
            raise RedirectionError("Bad redirection")

    found: list[Optional[Redirection]] = [None, None]
    if len(stages) == 1:
        args = stages[0]
        for i, word in enumerate(args):
            if word not in _REDIRECT:
                continue
            kind = 1 if word == ">" else 0
            if i + 1 >= len(args) or found[kind] is not None:
                raise RedirectionError("Bad redirection")
            found[kind] = Redirection(0, args[i + 1])
        return found[0], found[1]

    for kind, index in ((0, 0), (1, len(stages) - 1)):
        args = stages[index]
        for i, word in enumerate(args):
            if word not in _REDIRECT:
                continue
            if (1 if word == ">" else 0) != kind or i + 1 >= len(args):
                raise RedirectionError("Bad redirection")
            found[kind] = Redirection(index, args[i + 1])
            break
    return found[0], found[1]


def strip_redirections(args: list[str]) -> list[str]:
    """Drop redirection operators and the file names that follow them."""
    return [
        word
        for i, word in enumerate(args)
        if word not in _REDIRECT and not (i > 0 and args[i - 1] in _REDIRECT)
    ]


def prompt() -> str:
    """Return the prompt: the working directory and ``!`` for root, ``>`` otherwise."""
    mark = "!" if os.environ.get("USER") == "root" else ">"
    return os.getcwd() + mark


class Shell:
    """Reads command lines and runs them."""

    def __init__(self, stdout: Optional[TextIO] = None) -> None:
        self.stdout = stdout if stdout is not None else sys.stdout

    def run_line(self, line: str) -> bool:
        """Run one line; return False when the shell should stop."""
        parsed = parse_line(line)
        try:
            parsed = replace(parsed, redirections=find_redirections(parsed.stages))
        except RedirectionError as exc:
            print(exc, file=self.stdout)
            parsed = ParsedLine([[""]], parsed.timed)

        started = time.process_time()
        keep_going = self.execute(parsed)
        if parsed.timed:
            self._report_time(started)
        return keep_going

    def execute(self, parsed: ParsedLine) -> bool:
        """Dispatch to a builtin or launch the pipeline."""
        command = parsed.stages[0][0]
        if command in ("", "\n"):
            return True
        if command == "cd":
            return self.change_dir(parsed.stages[0])
        if command == "exit":
            return False
        return self.launch(parsed.stages, parsed.redirections)

    def launch(
        self,
        stages: list[list[str]],
        redirections: tuple[Optional[Redirection], Optional[Redirection]],
    ) -> bool:
        """Start every stage connected by pipes and wait for them."""
        stdin_redirect, stdout_redirect = redirections
        commands = [strip_redirections(stage) for stage in stages]
        last = len(commands) - 1
        self.stdout.flush()

        with contextlib.ExitStack() as stack:
            try:
                source = (
                    stack.enter_context(open(stdin_redirect.path, "rb"))
                    if stdin_redirect
                    else None
                )
                target = (
                    stack.enter_context(open(stdout_redirect.path, "wb"))
                    if stdout_redirect
                    else None
                )
            except OSError as exc:
                print(f"microsha: {exc.filename}: {exc.strerror}", file=sys.stderr)
                return True

            processes = []
            stdin = source
            for index, argv in enumerate(commands):
                stdout = target if index == last else subprocess.PIPE
                proc = None
                try:
                    if not argv:
                        raise FileNotFoundError("empty command")
                    proc = subprocess.Popen(argv, stdin=stdin, stdout=stdout)
                    processes.append(proc)
                except OSError as exc:
                    if last > 0:
                        print(f"microsha: {exc}", file=sys.stderr)
                if index > 0 and hasattr(stdin, "close") and stdin is not source:
                    stdin.close()
                if proc is not None and index < last:
                    stdin = proc.stdout
                else:
                    stdin = subprocess.DEVNULL

            for proc in processes:
                proc.wait()
        return True

    def change_dir(self, args: list[str]) -> bool:
        """The ``cd`` builtin."""
        if len(args) < 2 or not args[1]:
            print('expected argument to "cd"', file=sys.stderr)
            return True
        try:
            os.chdir(args[1])
        except OSError as exc:
            print(f"microsha: {exc.strerror}", file=sys.stderr)
        return True

    def loop(self, stream: Optional[TextIO] = None) -> None:
        """Prompt, read and run lines until ``exit`` or end of input."""
        stream = stream if stream is not None else sys.stdin
        while True:
            self.stdout.write(prompt())
            self.stdout.flush()
            line = stream.readline()
            # A line cut short by end of input counts as end of input.
            if not line.endswith("\n"):
                break
            if not self.run_line(line[:-1]):
                break

    def _report_time(self, started: float) -> None:
        usage = resource.getrusage(resource.RUSAGE_CHILDREN)
        self.stdout.write(
            f"all: {time.process_time() - started:f} \n"
            f"sys : {usage.ru_stime:f}\n"
            f"user: {usage.ru_utime:f}\n"
        )


def _ignore_interrupt(signum, frame) -> None:
    pass


def main(argv: Optional[list[str]] = None) -> int:
    """Run the interactive shell on standard input."""
    signal.signal(signal.SIGINT, _ignore_interrupt)
    try:
        Shell().loop()
    finally:
        signal.signal(signal.SIGINT, signal.SIG_DFL)
    return 0