import struct

import pytest

from miptools.mipt2_asm import (
    MNEMONICS,
    Format,
    Opcode,
    Program,
    assemble,
    double_to_bits,
    parse_register,
    split_words,
)


def _le(hex_word):
    return int.from_bytes(bytes.fromhex(hex_word), "little")


def test_split_words_drops_comment_and_commas():
    assert split_words("loop: add r1, r2, 3 ; comment") == [
        "loop:",
        "add",
        "r1",
        "r2",
        "3",
    ]


def test_split_words_keeps_at_most_five():
    assert split_words("a b c d e f g") == ["a", "b", "c", "d", "e"]


def test_split_words_tabs_and_comment_only():
    assert split_words("\tlc\tr1,\t2") == ["lc", "r1", "2"]
    assert split_words("\t; only comment") == []


def test_parse_register():
    assert parse_register("r7") == 7
    assert parse_register("r12") == 12


def test_parse_register_rejects_other_text():
    with pytest.raises(ValueError):
        parse_register("x1")


def test_double_to_bits_round_trip():
    for value in (1.5, -3.25, 0.0, 1e300):
        bits = double_to_bits(value)
        assert struct.unpack("<d", struct.pack("<Q", bits))[0] == value
        assert 0 <= bits < 1 << 64


def test_double_to_bits_sign():
    assert double_to_bits(-0.0) >> 63 == 1
    assert double_to_bits(0.0) == 0


def test_encodings_match_reference_image():
    program = assemble(["lc r0, 0", "cmpi r0, 10", "jge 40", "lc r1, 0", "end"])
    assert program.memory == [
        _le("0000000c"),
        _le("0a00002c"),
        _le("28000033"),
        _le("0000100c"),
    ]


def test_labels_and_entry():
    program = assemble(
        ["halt r0, 0", "main:", "lc r1, 0", "loop: addi r1, 1", "jmp loop", "end main"]
    )
    assert program.labels == {"main": 1, "loop": 2}
    assert program.entry == 1
    jump = program.memory[3]
    assert jump >> 24 == Opcode.JMP
    assert jump & 0xFFFFF == 2


def test_forward_reference():
    program = assemble(["jmp done", "lc r0, 1", "done: halt r0, 0", "end"])
    assert program.memory[0] & 0xFFFFF == program.labels["done"]
    assert program.labels["done"] == 2


def test_word_label_is_constant():
    program = assemble(["ten: word 10", "lc r2, ten", "end main"])
    assert program.labels["ten"] == 10
    assert len(program.memory) == 1
    assert program.memory[0] & 0xFFFFF == 10
    assert program.entry == 0


def test_double_label_recorded_without_memory():
    program = assemble(["pi: double 3.5", "halt r0, 0", "end"])
    assert program.doubles == {"pi": 3.5}
    assert len(program.memory) == 1


def test_negative_immediate_sets_sign_bit():
    word = assemble(["addi r3, -1", "end"]).memory[0]
    assert word >> 24 == Opcode.ADDI
    assert (word >> 20) & 0xF == 3
    assert word & 0xFFFFF == 0xFFFFF
    assert word & (1 << 19)


def test_rr_format_fields():
    word = assemble(["add r1, r2, -2", "end"]).memory[0]
    assert word >> 24 == Opcode.ADD
    assert (word >> 20) & 0xF == 1
    assert (word >> 16) & 0xF == 2
    assert word & 0xFFFF == (-2) & 0xFFFF


def test_rm_format_address():
    word = assemble(["load r4, 300", "end"]).memory[0]
    assert word >> 24 == Opcode.LOAD
    assert (word >> 20) & 0xF == 4
    assert word & 0xFFFFF == 300


def test_ret_takes_count():
    word = assemble(["ret 2", "end"]).memory[0]
    assert word >> 24 == Opcode.RET
    assert word & 0xFFFFF == 2


def test_unlabeled_double_stores_high_then_low():
    program = assemble(["double 2.5", "end"])
    bits = double_to_bits(2.5)
    assert program.memory == [bits >> 32, bits & 0xFFFFFFFF]


def test_unlabeled_word():
    program = assemble(["word 77", "end"])
    assert program.memory == [77]


def test_lines_after_end_are_ignored():
    program = assemble(["lc r0, 1", "end", "lc r0, 2"])
    assert len(program.memory) == 1


def test_unknown_instruction():
    with pytest.raises(ValueError):
        assemble(["frobnicate r1, 2", "end"])


def test_undefined_label():
    with pytest.raises(ValueError):
        assemble(["jmp nowhere", "end"])


def test_mnemonic_formats_agree_with_encoding():
    for name, (fmt, code) in MNEMONICS.items():
        assert isinstance(fmt, Format)
        program = assemble([f"{name} r1, r2, 0" if fmt is Format.RR else f"{name} r1, 0", "end"]) if fmt is not Format.J else assemble([f"{name} 0", "end"])
        assert program.memory[0] >> 24 == code


def test_program_defaults_empty():
    program = assemble([])
    assert program == Program()