"""Write a hex string as a binary file and show the start of it."""

from __future__ import annotations

import re
import sys
from pathlib import Path
from typing import Optional, Sequence, Union

_HEX = re.compile(r"\s*([0-9a-fA-F]+)")

_MAGIC = b"ThisIsMIPT2Exec\x00"
_HEADER_SIZE = 512
_CODE = bytes.fromhex(
    "0000600c0000000c0a00002c280000330000100c0a00102c260000330000200c0a00202c"
    "240000330000300c0a00302c220000330000400c0a00402c200000330000500c0a00502c"
    "1e0000330000701800007102000072020000831800008402000085020000782b1c00002f"
    "01006003010050031100002e010040030e00002e010030030b00002e0100200308000"
    "02e010010030500002e010000030200002e660060010a00000c690000010000000c0000"
    "00016400000101000003660000010a00100c6900100100001001"
)

DEFAULT_HEX = (
    (_MAGIC + (len(_CODE) // 4).to_bytes(4, "little")).ljust(_HEADER_SIZE, b"\x00")
    + _CODE
).hex()

OUTPUT_NAME = "input.bin"
PREVIEW_SIZE = 7

PathLike = Union[str, Path]


def hex_to_bytes(text: str) -> bytes:
    """Decode pairs of hex digits; a trailing odd digit is ignored."""
    result = bytearray()
    for start in range(0, len(text) - 1, 2):
        pair = text[start : start + 2]
        found = _HEX.match(pair)
        if not found:
            raise ValueError(f"not a hex byte: {pair!r}")
        result.append(int(found.group(1), 16))
    return bytes(result)


def write_binary(path: PathLike, text: str) -> int:
    """Write the bytes that ``text`` spells in hex to ``path``; return their count."""
    data = hex_to_bytes(text)
    Path(path).write_bytes(data)
    return len(data)


def read_prefix(path: PathLike, size: int) -> bytes:
    """Return at most ``size`` bytes from the start of ``path``."""
    with open(path, "rb") as handle:
        return handle.read(size)


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Write ``input.bin`` from hex text (the built-in image by default) and show its start."""
    args = sys.argv[1:] if argv is None else list(argv)
    text = args[0] if args else DEFAULT_HEX
    write_binary(OUTPUT_NAME, text)
    head = read_prefix(OUTPUT_NAME, PREVIEW_SIZE).split(b"\x00", 1)[0]
    sys.stdout.write(head.decode("latin-1"))
    sys.stdout.flush()
    return 0