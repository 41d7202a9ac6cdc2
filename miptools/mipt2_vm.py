"""Interpreter for programs assembled for the 32-bit MIPT2 virtual machine."""

from __future__ import annotations

import math
import re
import struct
import sys
from typing import Optional, Sequence, TextIO

from .mipt2_asm import Format, Opcode, Program, assemble, double_to_bits

MEMORY_WORDS = 1024 * 1024
REGISTER_COUNT = 16
SP = 14
PC = 15

_MASK32 = 0xFFFFFFFF
_MASK64 = (1 << 64) - 1

_EQ = 0
_L = 1
_G = 2

_INT_PARTIAL = re.compile(r"[+-]?\d*")
_INT_FULL = re.compile(r"[+-]?\d+")
_FLOAT_PARTIAL = re.compile(r"[+-]?\d*\.?\d*(?:[eE][+-]?\d*)?")
_FLOAT_FULL = re.compile(r"[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?")

_CONDITIONS = {
    Opcode.JNE: lambda flag: flag != _EQ,
    Opcode.JEQ: lambda flag: flag == _EQ,
    Opcode.JLE: lambda flag: flag != _G,
    Opcode.JL: lambda flag: flag == _L,
    Opcode.JGE: lambda flag: flag != _L,
    Opcode.JG: lambda flag: flag == _G,
}


def _signed(value: int, bits: int) -> int:
    value &= (1 << bits) - 1
    return value - (1 << bits) if value >> (bits - 1) else value


def _signed32(value: int) -> int:
    return _signed(value, 32)


def _bits_to_double(bits: int) -> float:
    return struct.unpack("<d", struct.pack("<Q", bits & _MASK64))[0]


def _c_divmod(dividend: int, divisor: int) -> tuple[int, int]:
    """Quotient truncated towards zero and the remainder that goes with it."""
    if divisor == 0:
        raise ZeroDivisionError("integer division by zero")
    quotient = abs(dividend) // abs(divisor)
    if (dividend < 0) != (divisor < 0):
        quotient = -quotient
    return quotient, dividend - quotient * divisor


def _ieee_div(left: float, right: float) -> float:
    if right != 0:
        return left / right
    if left == 0 or math.isnan(left):
        return math.nan
    return math.copysign(math.inf, left) * math.copysign(1.0, right)


def _double_to_int32(value: float) -> int:
    if not math.isfinite(value):
        return 0x80000000
    truncated = int(value)
    if not -(1 << 31) <= truncated < (1 << 31):
        return 0x80000000
    return truncated & _MASK32


def decode_args(fmt: Format, word: int) -> tuple[int, ...]:
    """Split an instruction word into the operands of its format."""
    fmt = Format(fmt)
    if fmt is Format.RM or fmt is Format.RI:
        return (word >> 20) & 0xF, word & 0xFFFFF
    if fmt is Format.RR:
        return (word >> 20) & 0xF, (word >> 16) & 0xF, word & 0xFFFF
    return (word & 0xFFFFF,)


def sign_extend20(value: int) -> int:
    """Widen a 20-bit immediate to a signed 32-bit integer."""
    value &= _MASK32
    if value & 0xFFF80000:
        value |= 0xFFF80000
    return _signed32(value)


class Machine:
    """Registers, memory and flag of a running MIPT2 program."""

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
        self.registers[PC] = program.entry & _MASK32
        self.flag = _EQ
        self.halted = False
        self.stdin = stdin if stdin is not None else sys.stdin
        self.stdout = stdout if stdout is not None else sys.stdout
        self._pushback = ""

    # -- helpers -----------------------------------------------------------

    def _address(self, address: int) -> int:
        address &= _MASK32
        if address >= len(self.memory):
            raise IndexError(f"address {address:#x} is outside memory")
        return address

    def _set(self, register: int, value: int) -> None:
        self.registers[register] = value & _MASK32

    def _set_wide(self, register: int, value: int) -> None:
        value &= _MASK64
        self.registers[register] = value & _MASK32
        self.registers[register + 1] = value >> 32

    def _double(self, register: int) -> float:
        r = self.registers
        return _bits_to_double((r[register + 1] << 32) | r[register])

    def _set_double(self, register: int, value: float) -> None:
        self._set_wide(register, double_to_bits(value))

    def _advance(self) -> None:
        self.registers[PC] = (self.registers[PC] + 1) & _MASK32

    def _peek(self, address: int) -> int:
        address &= _MASK32
        return _signed32(self.memory[address]) if address < len(self.memory) else 0

    # -- input -------------------------------------------------------------

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

    def _syscall(self, register: int, service: int) -> None:
        r = self.registers
        if service == 100:
            token = self._scan(_INT_PARTIAL, _INT_FULL)
            self._set(register, int(token) if token else 0)
        elif service == 101:
            token = self._scan(_FLOAT_PARTIAL, _FLOAT_FULL)
            self._set_double(register, float(token) if token else 0.0)
        elif service == 102:
            self.stdout.write(str(_signed32(r[register])))
        elif service == 103:
            self.stdout.write("%g" % self._double(register))
        elif service == 104:
            ch = self._next_char()
            code = ord(ch) if ch else -1
            if 128 <= code < 256:
                code -= 256
            self._set(register, code)
        elif service == 105:
            self.stdout.write(chr(r[register] & 0xFF))

    # -- execution ---------------------------------------------------------

    def step(self) -> bool:
        """Execute one instruction; return False once the machine has halted."""
        if self.halted:
            return False
        r = self.registers
        word = self.memory[self._address(r[PC])]
        code = word >> 24
        try:
            op = Opcode(code)
        except ValueError:
            raise ValueError(f"unknown opcode {code} at {r[PC]:#x}") from None

        match op:
            case Opcode.HALT:
                self.halted = True
                return False
            case Opcode.SYSCALL:
                register, service = decode_args(Format.RI, word)
                if service == 0:
                    self.halted = True
                    return False
                self._syscall(register, service)
            case Opcode.ADD:
                a, b, imm = decode_args(Format.RR, word)
                self._set(a, r[b] + imm + r[a])
            case Opcode.ADDI:
                a, imm = decode_args(Format.RI, word)
                self._set(a, r[a] + sign_extend20(imm))
            case Opcode.SUB:
                a, b, imm = decode_args(Format.RR, word)
                self._set(a, r[a] - imm - r[b])
            case Opcode.SUBI:
                a, imm = decode_args(Format.RI, word)
                self._set(a, r[a] - sign_extend20(imm))
            case Opcode.MUL:
                a, b, imm = decode_args(Format.RR, word)
                right = _signed32(r[b]) + _signed(imm, 16)
                self._set_wide(a, _signed32(r[a]) * right)
            case Opcode.MULI:
                a, imm = decode_args(Format.RI, word)
                self._set_wide(a, _signed32(r[a]) * sign_extend20(imm))
            case Opcode.DIV | Opcode.DIVI:
                if op is Opcode.DIV:
                    a, b, _ = decode_args(Format.RR, word)
                    divisor = _signed32(r[b])
                else:
                    a, imm = decode_args(Format.RI, word)
                    divisor = sign_extend20(imm)
                dividend = _signed((r[a + 1] << 32) | r[a], 64)
                quotient, remainder = _c_divmod(dividend, divisor)
                self._set(a, quotient)
                self._set(a + 1, remainder)
            case Opcode.LC:
                a, imm = decode_args(Format.RI, word)
                self._set(a, imm)
            case Opcode.SHL | Opcode.SHLI | Opcode.SHR | Opcode.SHRI:
                if op in (Opcode.SHL, Opcode.SHR):
                    a, b, _ = decode_args(Format.RR, word)
                    shift = r[b]
                else:
                    a, shift = decode_args(Format.RI, word)
                if shift >= 32:
                    self._set(a, 0)
                elif op in (Opcode.SHL, Opcode.SHLI):
                    self._set(a, r[a] << shift)
                else:
                    self._set(a, r[a] >> shift)
            case Opcode.AND | Opcode.OR | Opcode.XOR:
                a, b, _ = decode_args(Format.RR, word)
                self._set(a, _bitwise(op, r[a], r[b]))
            case Opcode.ANDI | Opcode.ORI | Opcode.XORI:
                a, imm = decode_args(Format.RI, word)
                self._set(a, _bitwise(op, r[a], imm))
            case Opcode.NOT:
                a, _ = decode_args(Format.RI, word)
                self._set(a, ~r[a])
            case Opcode.MOV:
                a, b, imm = decode_args(Format.RR, word)
                self._set(a, r[b] + imm)
            case Opcode.ADDD | Opcode.SUBD | Opcode.MULD | Opcode.DIVD:
                a, b, _ = decode_args(Format.RR, word)
                left, right = self._double(a), self._double(b)
                if op is Opcode.ADDD:
                    result = left + right
                elif op is Opcode.SUBD:
                    result = left - right
                elif op is Opcode.MULD:
                    result = left * right
                else:
                    result = _ieee_div(left, right)
                self._set_double(a, result)
            case Opcode.ITOD:
                a, b, _ = decode_args(Format.RR, word)
                self._set_double(a, float(_signed32(r[b])))
            case Opcode.DTOI:
                a, b, _ = decode_args(Format.RR, word)
                self._set(a, _double_to_int32(self._double(b)))
            case Opcode.PUSH:
                a, imm = decode_args(Format.RI, word)
                self._set(SP, r[SP] - 1)
                self.memory[self._address(r[SP])] = (r[a] + imm) & _MASK32
            case Opcode.POP:
                a, imm = decode_args(Format.RI, word)
                self._set(a, self.memory[self._address(r[SP])] + imm)
                self._set(SP, r[SP] + 1)
            case Opcode.CALL:
                a, b, _ = decode_args(Format.RR, word)
                target = r[b]
                self._set(SP, r[SP] - 1)
                self.memory[self._address(r[SP])] = (r[PC] + 1) & _MASK32
                self._set(a, r[PC] + 1)
                r[PC] = target
                return True
            case Opcode.CALLI:
                (target,) = decode_args(Format.J, word)
                self._set(SP, r[SP] - 1)
                self.memory[self._address(r[SP])] = (r[PC] + 1) & _MASK32
                r[PC] = target
                return True
            case Opcode.RET:
                (count,) = decode_args(Format.J, word)
                r[PC] = self.memory[self._address(r[SP])]
                self._set(SP, r[SP] + count + 1)
                return True
            case Opcode.CMP:
                a, b, _ = decode_args(Format.RR, word)
                self._compare(_signed32(r[a]), _signed32(r[b]))
            case Opcode.CMPI:
                a, imm = decode_args(Format.RI, word)
                self._compare(_signed32(r[a]), imm)
            case Opcode.CMPD:
                a, b, _ = decode_args(Format.RR, word)
                self._compare(self._double(a), self._double(b))
            case Opcode.JMP:
                (target,) = decode_args(Format.J, word)
                r[PC] = target
                return True
            case Opcode.JNE | Opcode.JEQ | Opcode.JLE | Opcode.JL | Opcode.JGE | Opcode.JG:
                (target,) = decode_args(Format.J, word)
                self._advance()
                if _CONDITIONS[op](self.flag):
                    r[PC] = target
                return True
            case Opcode.LOAD:
                a, address = decode_args(Format.RM, word)
                self._set(a, self.memory[self._address(address)])
            case Opcode.STORE:
                a, address = decode_args(Format.RM, word)
                self.memory[self._address(address)] = r[a]
            case Opcode.LOAD2:
                a, address = decode_args(Format.RM, word)
                self._set(a, self.memory[self._address(address)])
                self._set(a + 1, self.memory[self._address(address + 1)])
            case Opcode.STORE2:
                a, address = decode_args(Format.RM, word)
                self.memory[self._address(address)] = r[a]
                self.memory[self._address(address + 1)] = r[a + 1]
            case Opcode.LOADR:
                a, b, imm = decode_args(Format.RR, word)
                self._set(a, self.memory[self._address(r[b] + imm)])
            case Opcode.LOADR2:
                a, b, imm = decode_args(Format.RR, word)
                self._set(a, self.memory[self._address(r[b] + imm)])
                self._set(a + 1, self.memory[self._address(r[b] + imm + 1)])
            case Opcode.STORER:
                a, b, imm = decode_args(Format.RR, word)
                self.memory[self._address(r[b] + imm)] = r[a]
            case Opcode.STORER2:
                a, b, imm = decode_args(Format.RR, word)
                self.memory[self._address(r[b] + imm)] = r[a]
                self.memory[self._address(r[b] + imm + 1)] = r[a + 1]

        self._advance()
        return True

    def _compare(self, left: float, right: float) -> None:
        if left == right:
            self.flag = _EQ
        if left < right:
            self.flag = _L
        if left > right:
            self.flag = _G

    def run(self) -> int:
        """Run until the program halts; return the number of instructions executed."""
        steps = 0
        while self.step():
            steps += 1
        return steps

    def dump(self) -> str:
        """Describe the next instruction word, the registers, the flag and the stack top."""
        r = self.registers
        parts = [f"{self._peek(r[PC]) & _MASK32:x}"]
        for i, value in enumerate(r):
            if i % 4 == 0:
                parts.append("\n")
            parts.append(f"r[{i}]: {_signed32(value)}; ")
        parts.append("\n")
        parts.append(f"flag: {self.flag}\n\n")
        sp = r[SP]
        parts.append(f"stack[ r[14] - 1]: {self._peek(sp - 1)}\n")
        parts.append(f"stack[ r[14] ]: {self._peek(sp)}\n")
        for offset in range(1, 5):
            parts.append(f"stack[ r[14] + {offset}]: {self._peek(sp + offset)}\n")
        parts.append("\n")
        return "".join(parts)


def _bitwise(op: Opcode, left: int, right: int) -> int:
    if op in (Opcode.AND, Opcode.ANDI):
        return left & right
    if op in (Opcode.OR, Opcode.ORI):
        return left | right
    return left ^ right


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Assemble ``input.fasm``, run it and write its output to ``output.txt``.

    With any argument, the machine state is shown before every instruction
    and a line of input is awaited.
    """
    args = sys.argv[1:] if argv is None else list(argv)
    debug = bool(args)
    with open("input.fasm", encoding="utf-8") as source:
        program = assemble(source)
    with open("output.txt", "w", encoding="utf-8") as out:
        machine = Machine(program, sys.stdin, out)
        if debug:
            while True:
                sys.stdout.write(machine.dump())
                sys.stdout.flush()
                sys.stdin.readline()
                if not machine.step():
                    break
        else:
            machine.run()
    return 0