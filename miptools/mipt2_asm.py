"""Two-pass assembler for the 32-bit MIPT2 virtual machine."""

from __future__ import annotations

import re
import struct
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Iterable, Iterator, Optional

MAX_WORDS = 5
WORD_MASK = 0xFFFFFFFF

_INT = re.compile(r"\s*([+-]?\d+)")
_FLOAT = re.compile(
    r"\s*([+-]?(?:(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?|inf(?:inity)?|nan))",
    re.IGNORECASE,
)
_REGISTER = re.compile(r"r\s*([+-]?\d+)")


class Format(IntEnum):
    """Instruction layouts."""

    RM = 0
    RR = 1
    RI = 2
    J = 3


class Opcode(IntEnum):
    """Operation codes stored in the top byte of an instruction word."""

    HALT = 0
    SYSCALL = 1
    ADD = 2
    ADDI = 3
    SUB = 4
    SUBI = 5
    MUL = 6
    MULI = 7
    DIV = 8
    DIVI = 9
    LC = 12
    SHL = 13
    SHLI = 14
    SHR = 15
    SHRI = 16
    AND = 17
    ANDI = 18
    OR = 19
    ORI = 20
    XOR = 21
    XORI = 22
    NOT = 23
    MOV = 24
    ADDD = 32
    SUBD = 33
    MULD = 34
    DIVD = 35
    ITOD = 36
    DTOI = 37
    PUSH = 38
    POP = 39
    CALL = 40
    CALLI = 41
    RET = 42
    CMP = 43
    CMPI = 44
    CMPD = 45
    JMP = 46
    JNE = 47
    JEQ = 48
    JLE = 49
    JL = 50
    JGE = 51
    JG = 52
    LOAD = 64
    STORE = 65
    LOAD2 = 66
    STORE2 = 67
    LOADR = 68
    LOADR2 = 69
    STORER = 70
    STORER2 = 71


_TABLE = {
    "halt": (Format.RI, 0),
    "syscall": (Format.RI, 1),
    "add": (Format.RR, 2),
    "addi": (Format.RI, 3),
    "sub": (Format.RR, 4),
    "subi": (Format.RI, 5),
    "mul": (Format.RR, 6),
    "muli": (Format.RI, 7),
    "div": (Format.RR, 8),
    "divi": (Format.RI, 9),
    "lc": (Format.RI, 12),
    "shl": (Format.RR, 13),
    "shli": (Format.RI, 14),
    "shr": (Format.RR, 15),
    "shri": (Format.RI, 16),
    "and": (Format.RR, 17),
    "andi": (Format.RI, 18),
    "or": (Format.RR, 19),
    "ori": (Format.RI, 20),
    "xor": (Format.RR, 21),
    "xori": (Format.RI, 22),
    "not": (Format.RI, 23),
    "mov": (Format.RR, 24),
    "addd": (Format.RR, 32),
    "subd": (Format.RR, 33),
    "muld": (Format.RR, 34),
    "divd": (Format.RR, 35),
    "itod": (Format.RR, 36),
    "dtoi": (Format.RR, 37),
    "push": (Format.RI, 38),
    "pop": (Format.RI, 39),
    "call": (Format.RR, 40),
    "calli": (Format.J, 41),
    "ret": (Format.J, 42),
    "cmp": (Format.RR, 43),
    "cmpi": (Format.RI, 44),
    "cmpd": (Format.RR, 45),
    "jmp": (Format.J, 46),
    "jne": (Format.J, 47),
    "jeq": (Format.J, 48),
    "jle": (Format.J, 49),
    "jl": (Format.J, 50),
    "jge": (Format.J, 51),
    "jg": (Format.J, 52),
    "load": (Format.RM, 64),
    "store": (Format.RM, 65),
    "load2": (Format.RM, 66),
    "store2": (Format.RM, 67),
    "loadr": (Format.RR, 68),
    "storer": (Format.RR, 69),
    "loadr2": (Format.RR, 70),
    "storer2": (Format.RR, 71),
}

MNEMONICS: dict[str, tuple[Format, Opcode]] = {
    name: (fmt, Opcode(code)) for name, (fmt, code) in _TABLE.items()
}


@dataclass
class Program:
    """An assembled memory image with its entry point and symbols."""

    memory: list[int] = field(default_factory=list)
    entry: int = 0
    labels: dict[str, int] = field(default_factory=dict)
    doubles: dict[str, float] = field(default_factory=dict)


def split_words(line: str) -> list[str]:
    """Split a source line into at most five words, dropping a ``;`` comment."""
    code = line.rstrip("\n").split(";", 1)[0]
    code = code.replace(",", " ").replace("\t", " ")
    return [word for word in code.split(" ") if word][:MAX_WORDS]


def parse_register(text: str) -> int:
    """Return the number of a register written as ``rN``."""
    found = _REGISTER.match(text)
    if not found:
        raise ValueError(f"not a register: {text!r}")
    return int(found.group(1)) & WORD_MASK


def double_to_bits(value: float) -> int:
    """Return the IEEE 754 bit pattern of ``value`` as an unsigned 64-bit integer."""
    return struct.unpack("<Q", struct.pack("<d", value))[0]


def _scan_int(text: Optional[str]) -> Optional[int]:
    if text is None:
        return None
    found = _INT.match(text)
    return int(found.group(1)) if found else None


def _scan_float(text: Optional[str]) -> float:
    if text is None:
        return 0.0
    found = _FLOAT.match(text)
    return float(found.group(1)) if found else 0.0


def _to_signed32(value: int) -> int:
    value &= WORD_MASK
    return value - (1 << 32) if value & 0x80000000 else value


def _operand(words: list[str], index: int) -> Optional[str]:
    return words[index] if index < len(words) else None


def _register(text: Optional[str]) -> int:
    return 0 if text is None else parse_register(text)


def _number(text: Optional[str]) -> int:
    if text is None:
        return 0
    value = _scan_int(text)
    if value is None:
        raise ValueError(f"not a number: {text!r}")
    return value


def _value(text: Optional[str], labels: dict[str, int]) -> int:
    if text is not None and text in labels:
        return labels[text]
    try:
        return _number(text)
    except ValueError:
        raise ValueError(f"undefined label or bad number: {text!r}") from None


def _encode(words: list[str], labels: dict[str, int]) -> int:
    name = words[0]
    try:
        fmt, code = MNEMONICS[name]
    except KeyError:
        raise ValueError(f"unknown instruction: {name!r}") from None

    word = code << 24
    first, second, third = (_operand(words, i) for i in (1, 2, 3))
    if fmt is Format.RM:
        word += _register(first) << 20
        word += _value(second, labels) & WORD_MASK
    elif fmt is Format.RI:
        word += _register(first) << 20
        immediate = _to_signed32(_value(second, labels))
        word += (immediate & 0xFFFFF) | (int(immediate < 0) << 19)
    elif fmt is Format.RR:
        word += _register(first) << 20
        word += _register(second) << 16
        word += _number(third) & 0xFFFF
    elif name == "ret":
        word += _number(first) & WORD_MASK
    else:
        word += _value(first, labels) & WORD_MASK
    return word & WORD_MASK


def _statements(lines: Iterable[str]) -> Iterator[list[str]]:
    for line in lines:
        words = split_words(line)
        yield words
        if words and words[0] == "end":
            return


def assemble(lines: Iterable[str]) -> Program:
    """Assemble source lines up to the ``end`` directive into a program."""
    statements = list(_statements(lines))
    program = Program()

    pc = 0
    for words in statements:
        if not words:
            continue
        head = words[0]
        if not head.endswith(":"):
            pc += 1
            continue
        name = head[:-1]
        kind = _operand(words, 1)
        if kind == "word":
            value = _scan_int(_operand(words, 2))
            program.labels.setdefault(name, _to_signed32(value or 0))
        elif kind == "double":
            program.doubles.setdefault(name, _scan_float(_operand(words, 2)))
        else:
            program.labels.setdefault(name, pc)
            if len(words) > 1:
                pc += 1

    memory = program.memory
    for words in statements:
        if not words:
            continue
        if words[0] == "end":
            target = _operand(words, 1)
            program.entry = program.labels.get(target, 0) if target else 0
            continue
        start = 0
        if words[0].endswith(":"):
            if len(words) == 1:
                continue
            start = 1
        if words[0] == "word":
            memory.append((_scan_int(_operand(words, 1)) or 0) & WORD_MASK)
            continue
        if words[0] == "double":
            bits = double_to_bits(_scan_float(_operand(words, 1)))
            memory.extend([bits >> 32, bits & WORD_MASK])
            continue
        if words[start] in ("word", "double"):
            continue
        memory.append(_encode(words[start:], program.labels))
    return program