"""Interpreter for programs assembled for the 64-bit MIPT64 virtual machine."""

from __future__ import annotations

import math
import re
import struct
import sys
from typing import Optional, Sequence, TextIO

from .mipt2_asm import double_to_bits
from .mipt64_asm import (
    LR,
    MEMORY_WORDS,
    PC,
    RZ,
    SP,
    Opcode,
    Program,
    assemble,
    decode,
    format_instruction,
    split_words,
)

REGISTER_COUNT = 32

_MASK32 = 0xFFFFFFFF
_MASK64 = (1 << 64) - 1
_INT64_MIN = 1 << 63

_EQ = 0
_L = 1
_G = 2

_INT_PARTIAL = re.compile(r"[+-]?\d*")
_INT_FULL = re.compile(r"[+-]?\d+")
_FLOAT_PARTIAL = re.compile(r"[+-]?\d*\.?\d*(?:[eE][+-]?\d*)?")
_FLOAT_FULL = re.compile(r"[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?")

_ARITHMETIC = (
    Opcode.MUL,
    Opcode.DIV,
    Opcode.MOD,
    Opcode.AND,
    Opcode.OR,
    Opcode.XOR,
    Opcode.NAND,
    Opcode.SHL,
    Opcode.SHR,
)

_CONDITIONS = {
    Opcode.CNE: lambda flag: flag != _EQ,
    Opcode.CEQ: lambda flag: flag == _EQ,
    Opcode.CLE: lambda flag: flag != _G,
    Opcode.CLT: lambda flag: flag == _L,
    Opcode.CGE: lambda flag: flag != _L,
    Opcode.CGT: lambda flag: flag == _G,
}


class ZeroDivisionHalt(ZeroDivisionError):
    """An integer division or remainder by zero stopped the machine."""


def _signed(value: int, bits: int) -> int:
    value &= (1 << bits) - 1
    return value - (1 << bits) if value >> (bits - 1) else value


def _bits_to_double(bits: int) -> float:
    return struct.unpack("<d", struct.pack("<Q", bits & _MASK64))[0]


def _to_int64(value: float) -> int:
    """Truncate a double to a 64-bit integer; out-of-range values give the minimum."""
    if not math.isfinite(value):
        return _INT64_MIN
    truncated = int(value)
    if not -_INT64_MIN <= truncated < _INT64_MIN:
        return _INT64_MIN
    return truncated & _MASK64


def _shl(value: int, amount: int) -> int:
    return ((value & _MASK64) << (amount & 63)) & _MASK64


def _shr(value: int, amount: int) -> int:
    return (value & _MASK64) >> (amount & 63)


def _scale(exponent_bits: int) -> float:
    try:
        return math.pow(2.0, _bits_to_double(exponent_bits))
    except OverflowError:
        return math.inf


def _ieee_div(left: float, right: float) -> float:
    if right != 0:
        return left / right
    if left == 0 or math.isnan(left):
        return math.nan
    return math.copysign(math.inf, left) * math.copysign(1.0, right)


def _describe(word: int) -> str:
    try:
        return format_instruction(decode(word))
    except ValueError:
        return f"{word:#x} "


class Machine:
    """Registers, memory and flag of a running MIPT64 program."""

    def __init__(
        self,
        program: Program,
        stdin: Optional[TextIO] = None,
        stdout: Optional[TextIO] = None,
    ) -> None:
        if len(program.memory) > MEMORY_WORDS:
            raise ValueError("program does not fit in memory")
        self.memory = [word & _MASK32 for word in program.memory]
        self.memory.extend([0] * (MEMORY_WORDS - len(self.memory)))
        self.registers = [0] * REGISTER_COUNT
        self.registers[SP] = MEMORY_WORDS - 1
        self.registers[PC] = program.entry & _MASK64
        self.flag = _EQ
        self.halted = False
        self.stdin = stdin if stdin is not None else sys.stdin
        self.stdout = stdout if stdout is not None else sys.stdout
        self._pushback = ""

    # -- helpers -----------------------------------------------------------

    def _address(self, address: int) -> int:
        if not 0 <= address < len(self.memory):
            raise IndexError(f"address {address:#x} is outside memory")
        return address

    def _read(self, address: int) -> int:
        return self.memory[self._address(address)]

    def _write(self, address: int, value: int) -> None:
        self.memory[self._address(address)] = value & _MASK32

    def _peek(self, address: int) -> int:
        return self.memory[address] if 0 <= address < len(self.memory) else 0

    def _set(self, register: int, value: int) -> None:
        self.registers[register] = value & _MASK64

    def _double(self, register: int) -> float:
        return _bits_to_double(self.registers[register])

    def _advance(self) -> None:
        self.registers[PC] = (self.registers[PC] + 1) & _MASK64

    def _tight(self, fields: tuple[int, ...]) -> int:
        """``(r[c] << s) + imm``, the operand of add, sub and long branches."""
        return (_shl(self.registers[fields[3]], fields[4]) + fields[5]) & _MASK64

    def _loose(self, fields: tuple[int, ...], count: int) -> int:
        """``r[c] << (s + imm)`` or the immediate of the short form."""
        if count == 4:
            return fields[3] & _MASK64
        return _shl(self.registers[fields[3]], fields[4] + fields[5])

    def _term(self, register: int, fields: tuple[int, ...]) -> float:
        return self._double(register) * _scale(fields[3]) + _bits_to_double(fields[4])

    def _indexed(self, base: int, fields: tuple[int, ...], count: int) -> int:
        r = self.registers
        if count == 5:
            return _signed(r[base] + fields[4], 32)
        return _signed(_shl(r[base] + r[fields[3]], fields[4] + fields[5]), 32)

    def _compare(self, difference: float) -> None:
        if difference < 0:
            self.flag = _L
        if difference == 0:
            self.flag = _EQ
        if difference > 0:
            self.flag = _G

    # -- input and output --------------------------------------------------

    def _next_char(self) -> str:
        if self._pushback:
            ch, self._pushback = self._pushback[0], self._pushback[1:]
            return ch
        return self.stdin.read(1)

    def _scan(self, partial: re.Pattern, full: re.Pattern) -> Optional[str]:
        ch = self._next_char()
        while ch and ch.isspace():
            ch = self._next_char()
        token = ""
        while ch and partial.fullmatch(token + ch):
            token += ch
            ch = self._next_char()
        if ch:
            self._pushback = ch + self._pushback
        found = full.match(token)
        return found.group() if found else None

    def _service(self, register: int, service: int) -> None:
        r = self.registers
        if service == 100:
            token = self._scan(_INT_PARTIAL, _INT_FULL)
            if token is not None:
                value = max(min(int(token), _INT64_MIN - 1), -_INT64_MIN)
                self._set(register, value)
        elif service == 101:
            token = self._scan(_FLOAT_PARTIAL, _FLOAT_FULL)
            if token is not None:
                self._set(register, double_to_bits(float(token)))
        elif service == 102:
            self.stdout.write(str(_signed(r[register], 64)))
        elif service == 103:
            self.stdout.write("%f" % self._double(register))
        elif service == 104:
            ch = self._next_char()
            self._set(register, ord(ch) & 0xFF if ch else -1)
        elif service == 105:
            self.stdout.write(chr(r[register] & 0xFF))

    # -- memory access -----------------------------------------------------

    def _load(self, target: int, base: int, fields: tuple[int, ...], count: int) -> None:
        r = self.registers
        if base in (PC, RZ):
            address = (r[base] + fields[3]) & _MASK64
        elif base == SP:
            address = r[SP]
        else:
            address = self._indexed(base, fields, count)
        self._set(target, (self._read(address + 1) << 32) | self._read(address))
        if base == SP:
            self._set(SP, r[SP] + (fields[3] + 3) // 4)

    def _store(self, source: int, base: int, fields: tuple[int, ...], count: int) -> None:
        r = self.registers
        if base in (PC, RZ):
            self._write((r[base] + fields[3]) & _MASK64, r[source])
            return
        if base == SP:
            self._set(SP, r[SP] - (fields[3] + 3) // 4)
            address = r[SP]
        else:
            address = self._indexed(base, fields, count)
        value = r[source]
        self._write(address, value)
        self._write(address + 1, value >> 32)

    # -- execution ---------------------------------------------------------

    def _arithmetic(self, op: Opcode, left: int, right: int) -> int:
        if op is Opcode.MUL:
            return left * right
        if op in (Opcode.DIV, Opcode.MOD):
            if right == 0:
                self.halted = True
                raise ZeroDivisionHalt("zero division")
            return left // right if op is Opcode.DIV else left % right
        if op is Opcode.AND:
            return left & right
        if op is Opcode.OR:
            return left | right
        if op is Opcode.XOR:
            return left ^ right
        if op is Opcode.NAND:
            return ~(left ^ right)
        if op is Opcode.SHL:
            return _shl(left, right)
        return _shr(left, right)

    def step(self) -> bool:
        """Execute one instruction; return False once the machine has halted.

        Raises ZeroDivisionHalt when an integer division by zero stops it.
        """
        if self.halted:
            return False
        r = self.registers
        args = decode(self._read(r[PC]))
        count = len(args)
        try:
            op = Opcode(args[0])
        except ValueError:
            raise ValueError(f"unknown opcode {args[0]} at {r[PC]:#x}") from None
        fields = args + (0,) * (6 - count)
        a, b = fields[1], fields[2]

        match op:
            case Opcode.HALT:
                self.halted = True
                return False
            case Opcode.SVC:
                if fields[3] == 0:
                    self.halted = True
                    return False
                self._service(a, fields[3])
            case Opcode.ADD:
                self._set(a, fields[3] if count == 4 else r[b] + self._tight(fields))
            case Opcode.SUB:
                operand = fields[3] if count == 4 else self._tight(fields)
                self._set(a, r[b] - operand)
            case _ if op in _ARITHMETIC:
                self._set(a, self._arithmetic(op, r[b], self._loose(fields, count)))
            case Opcode.ADDD | Opcode.SUBD | Opcode.MULD | Opcode.DIVD:
                left, right = self._double(a), self._term(b, fields)
                if op is Opcode.ADDD:
                    result = left + right
                elif op is Opcode.SUBD:
                    result = left - right
                elif op is Opcode.MULD:
                    result = left * right
                else:
                    result = _ieee_div(left, right)
                self._set(a, double_to_bits(result))
            case Opcode.ITOD:
                if count == 4:
                    value = r[b] + fields[3]
                else:
                    value = _shl(r[b] + r[fields[3]], fields[4] + fields[5])
                self._set(a, value & _MASK32)
            case Opcode.DTOI:
                total = self._double(a) + self._term(b, fields)
                self._set(a, _to_int64(_bits_to_double(_to_int64(total))))
            case Opcode.BL:
                r[LR] = r[PC]
                if count == 3:
                    target = r[a] + fields[2]
                else:
                    target = r[a] + _shl(r[b], fields[3]) + fields[4]
                r[PC] = target & _MASK64
                return True
            case Opcode.CMP:
                difference = r[a] - r[b] - self._loose(fields, count)
                self._compare(_signed(difference, 32))
            case Opcode.CMPD:
                difference = self._double(a) - self._double(b)
                if count == 6:
                    difference -= self._double(fields[3]) * _scale(fields[4])
                difference -= _bits_to_double(fields[5])
                self._compare(difference)
            case _ if op in _CONDITIONS:
                if _CONDITIONS[op](self.flag):
                    if count == 6:
                        self._set(a, r[b] + self._loose(fields, count))
                    else:
                        self._set(a, fields[3])
                    if a == PC:
                        return True
            case Opcode.LD:
                self._load(a, b, fields, count)
            case Opcode.ST:
                self._store(a, b, fields, count)

        self._advance()
        return True

    def run(self) -> int:
        """Run until the program halts; return the number of instructions executed."""
        steps = 0
        while self.step():
            steps += 1
        return steps

    def dump(self) -> str:
        """Describe the next instruction, the registers, the flag and the stack top."""
        r = self.registers
        parts = [_describe(self._peek(r[PC])), "\n"]
        for i, value in enumerate(r):
            if 20 < i < 26:
                continue
            if i % 4 == 0:
                parts.append("\n")
            parts.append(f"r[{i}]: {_signed(value, 64)}; ")
        parts.append("\n")
        parts.append(f"flag: {self.flag}\n\n")
        sp = r[SP]
        parts.append(f"stack[ r[29] - 1]: {_signed(self._peek(sp - 1), 32)}\n")
        parts.append(f"stack[ r[29] ]: {_signed(self._peek(sp), 32)}\n")
        for offset in range(1, 5):
            value = _signed(self._peek(sp + offset), 32)
            parts.append(f"stack[ r[29] + {offset}]: {value}\n")
        parts.append("\n")
        return "".join(parts)


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Assemble ``input.fasm`` and run it.

    ``lab`` lists the labels, ``spl`` shows how lines are split, ``tra`` lists
    the assembled instructions and ``d`` shows the machine state before each step.
    """
    args = sys.argv[1:] if argv is None else list(argv)
    mode = args[0] if args else ""
    with open("input.fasm", encoding="utf-8") as source:
        lines = source.readlines()

    if mode == "spl":
        for line in lines:
            words = split_words(line)
            print("".join(f"#{word}# " for word in words))
            if "end" in words[:2]:
                break

    program = assemble(lines)
    if mode == "lab":
        for name, value in program.labels.items():
            print(name, value)
    if mode == "tra":
        for word in program.memory:
            print(_describe(word))

    machine = Machine(program, sys.stdin, sys.stdout)
    try:
        if mode == "d":
            while True:
                sys.stdout.write(machine.dump())
                sys.stdout.flush()
                sys.stdin.readline()
                if not machine.step():
                    break
        else:
            machine.run()
    except ZeroDivisionHalt as exc:
        print(exc)
    sys.stdout.flush()
    return 0