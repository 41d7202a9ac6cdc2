"""Two-pass assembler and instruction decoder for the 64-bit MIPT64 virtual machine."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Iterable, Iterator, Optional

from .mipt2_asm import double_to_bits

MAX_WORDS = 10
MEMORY_WORDS = 524288
WORD_MASK = 0xFFFFFFFF

RZ = 27
FP = 28
SP = 29
LR = 30
PC = 31

_ALIASES = {"rz": RZ, "fp": FP, "sp": SP, "lr": LR, "pc": PC}

_INT = re.compile(r"\s*([+-]?\d+)")
_FLOAT = re.compile(
    r"\s*([+-]?(?:(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?|inf(?:inity)?|nan))",
    re.IGNORECASE,
)
_REGISTER = re.compile(r"r\s*([+-]?\d+)")


class Format(IntEnum):
    """Instruction layouts."""

    RR = 0
    RM = 1
    B = 2


class Opcode(IntEnum):
    """Operation codes stored in the top six bits of an instruction word."""

    HALT = 0
    SVC = 1
    ADD = 2
    SUB = 3
    MUL = 4
    DIV = 5
    MOD = 6
    AND = 7
    OR = 8
    XOR = 9
    NAND = 10
    SHL = 11
    SHR = 12
    ADDD = 13
    SUBD = 14
    MULD = 15
    DIVD = 16
    ITOD = 17
    DTOI = 18
    BL = 19
    CMP = 20
    CMPD = 21
    CNE = 22
    CEQ = 23
    CLE = 24
    CLT = 25
    CGE = 26
    CGT = 27
    LD = 28
    ST = 29


MNEMONICS: dict[str, Opcode] = {op.name.lower(): op for op in Opcode}


@dataclass
class Program:
    """An assembled memory image with its entry point and labels."""

    memory: list[int] = field(default_factory=list)
    entry: int = 0
    labels: dict[str, int] = field(default_factory=dict)


def _format_of(code: int) -> Format:
    if code >= Opcode.LD:
        return Format.RM
    if code == Opcode.BL:
        return Format.B
    return Format.RR


def split_words(line: str) -> list[str]:
    """Split a source line into at most ten words, dropping a ``;`` comment."""
    code = line.rstrip("\n").split(";", 1)[0]
    code = code.replace(",", " ").replace("\t", " ")
    return [word for word in code.split(" ") if word][:MAX_WORDS]


def parse_register(text: str) -> int:
    """Return the number of a register written as ``rN`` or by its alias."""
    if text in _ALIASES:
        return _ALIASES[text]
    found = _REGISTER.match(text)
    if not found:
        raise ValueError(f"not a register: {text!r}")
    return int(found.group(1)) & WORD_MASK


def _operand(words: list[str], index: int) -> Optional[str]:
    return words[index] if index < len(words) else None


def _register(text: Optional[str]) -> int:
    return 0 if text is None else parse_register(text)


def _number(text: Optional[str]) -> int:
    if text is None:
        return 0
    found = _INT.match(text)
    if not found:
        raise ValueError(f"not a number: {text!r}")
    return int(found.group(1))


def _float(text: Optional[str]) -> float:
    if text is None:
        return 0.0
    found = _FLOAT.match(text)
    if not found:
        raise ValueError(f"not a number: {text!r}")
    return float(found.group(1))


def _bytes_words(text: Optional[str]) -> int:
    count = _number(text)
    if count < 0:
        raise ValueError(f"negative byte count: {count}")
    return max(count - 1, 0) // 4 + 1


def _size(words: list[str]) -> int:
    """Number of memory words a statement (without its label) occupies."""
    head = words[0]
    if head in ("double", "dword"):
        return 2
    if head == "bytes":
        return _bytes_words(_operand(words, 1))
    return 1


def _encode(words: list[str], labels: dict[str, int]) -> int:
    name = words[0]
    try:
        code = MNEMONICS[name]
    except KeyError:
        raise ValueError(f"unknown instruction: {name!r}") from None
    fmt = _format_of(code)
    count = len(words)

    def op(index: int) -> Optional[str]:
        return _operand(words, index)

    head = code << 26
    if fmt is Format.B and count == 2:
        return (head + (RZ << 21) + labels.get(op(1), 0)) & WORD_MASK

    word = head + (_register(op(1)) << 21)
    if Opcode.CNE <= code <= Opcode.CGT and count == 3:
        return (word + (RZ << 16) + labels.get(op(2), 0)) & WORD_MASK

    if fmt is Format.RR:
        target = op(3)
        if target is not None and target in labels:
            return (word + (RZ << 16) + labels[target]) & WORD_MASK
        second = _register(op(2))
        word += second << 16
        if second == RZ:
            return (word + (_number(op(3)) & 0xFFFF)) & WORD_MASK
        word += _register(op(3)) << 11
        word += (_number(op(4)) << 8) + _number(op(5))
        return word & WORD_MASK

    if fmt is Format.RM:
        base = _register(op(2))
        word += base << 16
        if base in (PC, RZ, SP):
            return (word + (_number(op(3)) & 0xFFFF)) & WORD_MASK
        index = _register(op(3))
        word += index << 11
        if index == RZ:
            return (word + _number(op(4))) & WORD_MASK
        word += (_number(op(4)) << 8) + _number(op(5))
        return word & WORD_MASK

    return (word + (_number(op(3)) & 0x1FFFFF)) & WORD_MASK


def _statements(lines: Iterable[str]) -> Iterator[list[str]]:
    for line in lines:
        words = split_words(line)
        yield words
        if words and (words[0] == "end" or (len(words) > 1 and words[1] == "end")):
            return


def assemble(lines: Iterable[str]) -> Program:
    """Assemble source lines up to the ``end`` directive into a program.

    Labels account for the number of words each data directive occupies.
    """
    statements = [words for words in _statements(lines) if words]
    program = Program()

    pc = 0
    for words in statements:
        head = words[0]
        if head.endswith(":"):
            program.labels.setdefault(head[:-1], pc)
            if len(words) > 1 and words[1] != "end":
                pc += _size(words[1:])
        elif head != "end":
            pc += _size(words)

    memory = program.memory
    for words in statements:
        if words[0].endswith(":"):
            if len(words) == 1:
                continue
            words = words[1:]
        head = words[0]
        if head == "end":
            target = _operand(words, 1)
            program.entry = program.labels.get(target, 0) if target else 0
        elif head == "word":
            memory.append(_number(_operand(words, 1)) & WORD_MASK)
        elif head == "double":
            bits = double_to_bits(_float(_operand(words, 1)))
            memory.extend([bits >> 32, bits & WORD_MASK])
        elif head == "dword":
            value = _number(_operand(words, 1))
            memory.extend([(value >> 32) & WORD_MASK, value & WORD_MASK])
        elif head == "bytes":
            memory.extend([0] * _bytes_words(_operand(words, 1)))
        else:
            memory.append(_encode(words, program.labels))

    if len(memory) > MEMORY_WORDS:
        raise ValueError("program does not fit in memory")
    return program


def _signed32(value: int) -> int:
    value &= WORD_MASK
    return value - (1 << 32) if value & 0x80000000 else value


def decode(word: int) -> tuple[int, ...]:
    """Split an instruction word into its opcode and operands.

    The length of the tuple tells which operand layout was used.
    """
    word &= WORD_MASK
    code = word >> 26
    first = (word >> 21) & 0x1F
    second = (word >> 16) & 0x1F
    fmt = _format_of(code)

    if fmt is Format.RR:
        if second == RZ:
            imm = word & 0xFFFF
            if word & 0x8000:
                imm -= 0x10000
            return code, first, second, imm
        imm = word & 0xFF
        if word & 0x80:
            imm -= 0x100
        return code, first, second, (word >> 11) & 0x1F, (word >> 8) & 0x3, imm

    if fmt is Format.RM:
        if second in (PC, RZ, SP):
            imm = word & 0xFFFF
            if second != SP and word & 0x8000:
                imm -= 0x10000
            return code, first, second, imm
        index = (word >> 11) & 0x1F
        if index == RZ:
            offset = word & 0x7FF
            if offset & 0x400:
                offset = _signed32(offset | 0xFFFF8000)
            return code, first, second, index, offset
        return code, first, second, index, (word >> 8) & 0x3, word & 0xFF

    if first in (PC, RZ):
        return code, first, word & 0x1FFFFF
    offset = word & 0x7FF
    if offset & 0x400:
        offset -= 0x800
    return code, first, second, (word >> 13) & 0x7, offset


def format_instruction(args: tuple[int, ...]) -> str:
    """Render decoded operands as the mnemonic followed by each number."""
    code = args[0]
    try:
        name = Opcode(code).name.lower()
    except ValueError:
        raise ValueError(f"unknown opcode {code}") from None
    return name + " " + "".join(f"{value} " for value in args[1:])