"""Module: turn source text into a Program.

This module contains:
- Program, an immutable sequence of decoded instructions
- read_program(path) -> Program
- build_listing(program, open_to_close) -> text listing for debug output
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from pathlib import Path

from isa import Instruction, OpCode, decode_char, mnemonic


class Program:
    """Ordered, read-only sequence of instructions.

    Comments are kept, so an index into a Program is also an index into
    the source text it was built from.
    """

    __slots__ = ("_instructions",)

    _instructions: tuple[Instruction, ...]

    def __init__(self, instructions: tuple[Instruction, ...] | list[Instruction] = ()) -> None:
        """Create a Program from already decoded instructions."""
        self._instructions = tuple(instructions)

    @classmethod
    def from_text(cls, source: str) -> Program:
        """Decode every character of `source`, preserving order."""
        return cls(tuple(decode_char(ch) for ch in source))

    def get(self, index: int) -> Instruction | None:
        """Return the instruction at `index`, or None when out of range."""
        if 0 <= index < len(self._instructions):
            return self._instructions[index]
        return None

    @property
    def source(self) -> str:
        return "".join(instr.char for instr in self._instructions)

    def __len__(self) -> int:
        return len(self._instructions)

    def __iter__(self) -> Iterator[Instruction]:
        return iter(self._instructions)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Program):
            return NotImplemented
        return self._instructions == other._instructions

    def __hash__(self) -> int:
        return hash(self._instructions)

    def __repr__(self) -> str:
        return f"Program({self.source!r})"


def read_program(path: str | Path) -> Program:
    """Load program text from `path` and decode it."""
    text = Path(path).read_text(encoding="utf-8")
    return Program.from_text(text)


def build_listing(program: Program, open_to_close: Mapping[int, int] | None = None) -> str:
    """Produce a human-readable listing, one line per instruction.

    Line format: "<index> - <char> - <mnemonic>". Resolved brackets get
    their jump target appended; brackets without a partner are marked.
    """
    targets: dict[int, int] = {}
    if open_to_close:
        for open_pos, close_pos in open_to_close.items():
            targets[open_pos] = close_pos
            targets[close_pos] = open_pos

    lines: list[str] = []
    for i, instr in enumerate(program):
        line = f"{i} - {instr.char!r} - {mnemonic(instr)}"
        if instr.opcode in (OpCode.LOOP_START, OpCode.LOOP_END):
            if i in targets:
                line += f" -> {targets[i]}"
            elif open_to_close is not None:
                line += " (unmatched)"
        lines.append(line)
    return "\n".join(lines)
