# miptools

A small collection of command-line tools for POSIX systems:

- **microsha**: a minimal interactive shell with pipelines, `<` / `>`
  redirection, `?` / `*` filename patterns, the `cd` and `exit` built-ins
  and a `time` word that reports times after the command.
- **psearch**: a multi-threaded substring search over a directory tree,
  based on the prefix function (Knuth–Morris–Pratt).
- **mipt2-run**: an assembler and virtual machine for a 32-bit teaching
  instruction set with 16 registers.
- **mipt2-bin**: writes a binary file from a hex dump and prints the
  first bytes of it.
- **mipt64-run**: an assembler and virtual machine for a 64-bit teaching
  instruction set with 32 registers.

## Installation

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## microsha

```
microsha
```

The prompt shows the current directory, followed by `!` when `USER` is
`root` and `>` otherwise. Examples of lines it accepts:

```
ls -l | grep py > listing.txt
sort < names.txt | uniq
time ls /usr/*/bin
cd /tmp
exit
```

- Lines are split into commands at `|` and into words at spaces and tabs.
- A word holding `*` (any run of characters) or `?` (one character) is
  expanded against the file system, one path component at a time. Names
  starting with `.` only match when the pattern component starts with `.`.
  A pattern that matches nothing is passed on unchanged.
- Redirection is only allowed on the ends of a pipeline: `<` on the first
  command and `>` on the last. Anything else prints `Bad redirection` and
  the line is not run.
- The word `time` anywhere on the line prints, after the command, the
  shell's processor time spent (`all`) and the system and user time used
  by child processes (`sys`, `user`).
- `Ctrl-C` does not stop the shell; `exit` or end of input does.

## psearch

```
psearch PATTERN [/absolute/dir] [-n] [-tN]
```

- `PATTERN` is the text to search for.
- An argument starting with `/` is the directory to search (default: the
  current directory).
- `-n` searches only the top directory, not its subdirectories.
- `-tN` uses `N` worker threads (default 1).

Matches are written to `log.txt` in the current directory, one block per
matching line:

```
[found] line 12 from '/path/to/file':
>>the matching line<<
```

A file that cannot be opened gives a line `can not open PATH`.

## mipt2-run

```
mipt2-run [debug]
```

Reads the assembly program `input.fasm` from the current directory,
assembles it and runs it. Output from the program's `syscall` instructions
goes to `output.txt`; input is read from standard input. With any extra
argument, the machine state is printed before each instruction and the
tool waits for Enter.

A program ends with `end LABEL`, which names the entry point:

```
main:
    syscall r0, 100     ; read an integer into r0
    addi r0, 1
    syscall r0, 102     ; print r0
    lc r1, 10
    syscall r1, 105     ; print a newline
    syscall r0, 0       ; stop
end main
```

## mipt2-bin

```
mipt2-bin [HEX]
```

Decodes `HEX` (by default a built-in sample image) into bytes, writes them
to `input.bin` and prints the first bytes of the file, up to the first
zero byte.

## mipt64-run

```
mipt64-run [lab|spl|tra|d]
```

Reads `input.fasm` from the current directory, assembles it and runs it,
with input from standard input and output to standard output. The
optional argument shows intermediate results:

- `lab`: the label table,
- `spl`: each source line split into words,
- `tra`: the assembled program, decoded back instruction by instruction,
- `d`: the machine state before each instruction (waits for Enter).

An integer division or remainder by zero stops the program with the
message `zero division`.

## Using the library

The assemblers and machines can also be driven from Python:

```python
import io
from miptools.mipt2_asm import assemble
from miptools.mipt2_vm import Machine

source = """
main:
    lc r0, 42
    syscall r0, 102
    syscall r0, 0
end main
"""
program = assemble(source.splitlines())
out = io.StringIO()
Machine(program, io.StringIO(), out).run()
print(out.getvalue())   # 42
```

`miptools.mipt64_asm` and `miptools.mipt64_vm` work the same way for the
64-bit instruction set; `Machine.step()` runs one instruction and
`Machine.dump()` describes the machine state. `miptools.psearch.search_file`,
`miptools.shell.parse_line` and `miptools.shell_glob.expand` can be used on
their own.

## What it does not do

- microsha has no quoting, escaping, variables, background jobs, `>>`
  appending or command history.
- The virtual machines always read their program from `input.fasm`; there
  is no command that loads and runs the binary that `mipt2-bin` writes.