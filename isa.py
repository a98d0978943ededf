"""ISA: instruction set of the tape machine and decoding helpers."""

from enum import IntEnum
from typing import NamedTuple


class OpCode(IntEnum):
    """Keeps opcodes from all operations."""

    MOVE_RIGHT = 0  # DP += 1
    MOVE_LEFT = 1  # DP -= 1
    INCREMENT = 2  # CELL += 1
    DECREMENT = 3  # CELL -= 1
    WRITE = 4  # out <- CELL
    READ = 5  # CELL <- in
    LOOP_START = 6  # CELL == 0 -> jump past matching LOOP_END
    LOOP_END = 7  # CELL != 0 -> jump back past matching LOOP_START

    COMMENT = 8  # any other character, no-op


SYMBOLS: dict[str, OpCode] = {
    ">": OpCode.MOVE_RIGHT,
    "<": OpCode.MOVE_LEFT,
    "+": OpCode.INCREMENT,
    "-": OpCode.DECREMENT,
    ".": OpCode.WRITE,
    ",": OpCode.READ,
    "[": OpCode.LOOP_START,
    "]": OpCode.LOOP_END,
}


class Instruction(NamedTuple):
    """One decoded source character.

    `char` is always the original character, so comments keep the text
    they were decoded from.
    """

    opcode: OpCode
    char: str


def decode_char(ch: str) -> Instruction:
    """Decode one source character into an Instruction.

    Every character decodes to something; unknown ones become COMMENT.
    """
    return Instruction(SYMBOLS.get(ch, OpCode.COMMENT), ch)


def mnemonic(instr: Instruction) -> str:
    """Get instruction mnemonic."""
    if instr.opcode == OpCode.COMMENT:
        return f"{instr.opcode.name} {instr.char!r}"
    return instr.opcode.name
