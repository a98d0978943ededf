"""Machine (tape + registers + jump tables) and CLI wrapper.

Provides step-wise execution of a Program, logging initialization and
a `run_source` helper that runs a program over in-memory byte buffers.
"""

from __future__ import annotations

import argparse
import errno
import io
import logging
import sys
from collections import deque
from collections.abc import Sequence
from enum import Enum
from pathlib import Path
from typing import Any, BinaryIO

from config import ConfigError, load_config
from isa import Instruction, OpCode, mnemonic
from program import Program, build_listing, read_program

LOGFILE = "machine.log"
DEFAULT_PROGRAM = "examples/cat.bfk"


def init_logging(logfile: str = LOGFILE, debug: bool = False, console: bool = False) -> None:
    """Configure root logger to write to `logfile`.

    If debug=True set DEBUG level. If console=True also echo logs to stderr
    (stdout carries program output).
    """
    root = logging.getLogger()
    for h in list(root.handlers):
        root.removeHandler(h)
        h.close()
    lvl = logging.DEBUG if debug else logging.CRITICAL
    root.setLevel(lvl)

    if debug:
        file_fmt = "%(levelname)s %(name)s:%(filename)s:%(lineno)d %(message)s"
    else:
        file_fmt = "%(levelname)-5s %(message)s"

    fh = logging.FileHandler(logfile, mode="w", encoding="utf-8")
    fh.setLevel(lvl)
    fh.setFormatter(logging.Formatter(file_fmt))
    root.addHandler(fh)

    if debug and console:
        ch = logging.StreamHandler(sys.stderr)
        ch.setLevel(lvl)
        ch.setFormatter(logging.Formatter("%(levelname)5s %(message)s"))
        root.addHandler(ch)


class MachineError(Exception):
    """Fatal error that stops a run. A faulted machine cannot be resumed."""


class UnmatchedOpenBracket(MachineError):
    """A LOOP_START with a zero cell had no matching LOOP_END."""

    def __init__(self, index: int) -> None:
        super().__init__(f"unmatched '[' at instruction {index}")
        self.index = index


class UnmatchedCloseBracket(MachineError):
    """A LOOP_END with a non-zero cell had no matching LOOP_START."""

    def __init__(self, index: int) -> None:
        super().__init__(f"unmatched ']' at instruction {index}")
        self.index = index


class IoFailure(MachineError):
    """Input source or output sink raised an error."""

    def __init__(self, msg: str, cause: OSError) -> None:
        super().__init__(f"{msg}: {cause}")
        self.cause = cause


class MachineState(Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAULTED = "faulted"


class StepResult(Enum):
    CONTINUE = "continue"
    COMPLETED = "completed"


def build_jump_tables(program: Program) -> tuple[dict[int, int], dict[int, int]]:
    """Match brackets with a stack in one left-to-right pass.

    Returns (open_to_close, close_to_open). Brackets without a partner are
    left out of both tables; nothing is raised here.
    """
    open_to_close: dict[int, int] = {}
    close_to_open: dict[int, int] = {}
    open_stack: list[int] = []

    for i, instr in enumerate(program):
        if instr.opcode == OpCode.LOOP_START:
            open_stack.append(i)
        elif instr.opcode == OpCode.LOOP_END and open_stack:
            open_loc = open_stack.pop()
            open_to_close[open_loc] = i
            close_to_open[i] = open_loc

    return open_to_close, close_to_open


class Machine:
    """Tape machine executing one Program over a byte source and sink."""

    program: Program
    cell_width: int
    mask: int
    lenient_log: bool

    IP: int  # index of the next instruction
    DP: int  # index into tape
    tape: deque[int]

    open_to_close: dict[int, int]
    close_to_open: dict[int, int]

    input: BinaryIO
    output: BinaryIO

    tick: int  # executed instructions
    state: MachineState
    error: MachineError | None

    def __init__(
        self,
        program: Program | str,
        input: BinaryIO,
        output: BinaryIO,
        cell_width: int = 8,
        lenient_log: bool = False,
    ) -> None:
        """Initialize machine state and resolve loop brackets."""
        if isinstance(program, str):
            program = Program.from_text(program)
        if cell_width <= 0 or cell_width % 8 != 0:
            err = f"cell_width must be a positive multiple of 8, got {cell_width}"
            raise ValueError(err)

        self.program = program
        self.cell_width = int(cell_width)
        self.mask = (1 << self.cell_width) - 1
        self.lenient_log = bool(lenient_log)

        self.IP = 0
        self.DP = 0
        self.tape = deque([0])

        self.open_to_close, self.close_to_open = build_jump_tables(program)

        self.input = input
        self.output = output

        self.tick = 0
        self.state = MachineState.RUNNING
        self.error = None

        unresolved = [
            i
            for i, instr in enumerate(program)
            if (instr.opcode == OpCode.LOOP_START and i not in self.open_to_close)
            or (instr.opcode == OpCode.LOOP_END and i not in self.close_to_open)
        ]
        logging.debug(
            "Machine: %d instructions, %d-bit cells, %d loops resolved",
            len(program),
            self.cell_width,
            len(self.open_to_close),
        )
        if unresolved:
            logging.debug("Machine: unresolved brackets at %s (checked when reached)", unresolved)

    @property
    def cell(self) -> int:
        """Value of the cell under the data pointer."""
        return self.tape[self.DP]

    def _log_step(self, instr: Instruction) -> None:
        # skip verbose per-step logs in lenient mode to reduce log size
        if self.lenient_log:
            return
        logging.debug(
            "STEP: %6d IP: %5d DP: %5d CELL: %5d TAPE: %5d\tINSTR: %s",
            self.tick,
            self.IP,
            self.DP,
            self.cell,
            len(self.tape),
            mnemonic(instr),
        )

    def step(self) -> StepResult:
        """Execute one instruction.

        Returns StepResult.COMPLETED once the instruction pointer has run
        past the end of the program. Raises a MachineError subclass on a
        fault; the machine then stays faulted.
        """
        if self.state is MachineState.FAULTED and self.error is not None:
            raise self.error

        instr = self.program.get(self.IP)
        if instr is None:
            if self.state is MachineState.RUNNING:
                logging.debug("IP %d past end of program -> program complete", self.IP)
            self.state = MachineState.COMPLETED
            return StepResult.COMPLETED

        try:
            self.exec(instr)
        except MachineError as e:
            self.state = MachineState.FAULTED
            self.error = e
            logging.debug("Fault at IP %d (%s): %s", self.IP, mnemonic(instr), e)
            raise

        # taken jumps land on the partner bracket, so +1 resumes just past it
        self.IP += 1
        self.tick += 1
        self._log_step(instr)
        return StepResult.CONTINUE

    def exec(self, instr: Instruction) -> None:  # noqa: C901
        """Execute a single instruction without advancing IP."""
        opcode = instr.opcode

        if opcode == OpCode.MOVE_RIGHT:
            self.DP += 1
            if self.DP == len(self.tape):
                self.tape.append(0)
            return
        if opcode == OpCode.MOVE_LEFT:
            if self.DP == 0:
                self.tape.appendleft(0)
            else:
                self.DP -= 1
            return
        if opcode == OpCode.INCREMENT:
            self.tape[self.DP] = (self.tape[self.DP] + 1) & self.mask
            return
        if opcode == OpCode.DECREMENT:
            self.tape[self.DP] = (self.tape[self.DP] - 1) & self.mask
            return
        if opcode == OpCode.WRITE:
            value = self.tape[self.DP]
            byte = value % 256 if self.cell_width > 8 else value
            try:
                written = self.output.write(bytes((byte,)))
            except OSError as e:
                raise IoFailure("write to output failed", e) from e
            # raw sinks report 0 or None when nothing was stored
            if written is None or written < 1:
                cause = OSError(errno.EIO, "output accepted no bytes")
                raise IoFailure("write to output failed", cause) from cause
            return
        if opcode == OpCode.READ:
            try:
                data = self.input.read(1)
            except OSError as e:
                raise IoFailure("read from input failed", e) from e
            # None is a would-block from a non-blocking raw stream
            if data is None:
                cause = BlockingIOError(errno.EAGAIN, "no input available")
                raise IoFailure("read from input failed", cause) from cause
            # only an empty read means end of input
            self.tape[self.DP] = data[0] if data else self.mask
            return
        if opcode == OpCode.LOOP_START:
            if self.tape[self.DP] == 0:
                close_loc = self.open_to_close.get(self.IP)
                if close_loc is None:
                    raise UnmatchedOpenBracket(self.IP)
                self.IP = close_loc
            return
        if opcode == OpCode.LOOP_END:
            if self.tape[self.DP] != 0:
                open_loc = self.close_to_open.get(self.IP)
                if open_loc is None:
                    raise UnmatchedCloseBracket(self.IP)
                self.IP = open_loc
            return
        # COMMENT: nothing to do

    def run(self) -> int:
        """Step until completion and return the number of step() calls.

        The call that reports completion is counted too, so an empty
        program takes one step. The first MachineError propagates.
        """
        steps = 0
        while True:
            steps += 1
            if self.step() is StepResult.COMPLETED:
                break
        logging.debug("Run finished after %d steps (%d instructions)", steps, self.tick)
        return steps

    def listing(self) -> str:
        """Program listing with resolved jump targets."""
        return build_listing(self.program, self.open_to_close)


# ---------- Public API ----------
def run_source(
    source: str | Program,
    input_bytes: bytes = b"",
    config: dict[str, Any] | None = None,
) -> tuple[bytes, int]:
    """Run `source` over `input_bytes` and return (output bytes, steps)."""
    cfg = load_config(config)
    program = source if isinstance(source, Program) else Program.from_text(source)

    out = io.BytesIO()
    machine = Machine(
        program,
        io.BytesIO(input_bytes),
        out,
        cell_width=cfg["cell_width"],
        lenient_log=cfg["lenient_log"],
    )
    if logging.getLogger().getEffectiveLevel() == logging.DEBUG:
        logging.debug("Program listing:\n%s", machine.listing())

    steps = machine.run()
    return out.getvalue(), steps


# ---------- CLI ----------
def main(argv: Sequence[str] | None = None) -> int:
    """Run a program file against stdin/stdout. Returns the exit code."""
    ap = argparse.ArgumentParser(
        description="Tape machine runner. Reads program input from stdin and writes its output to stdout."
    )
    ap.add_argument("program", nargs="?", default=DEFAULT_PROGRAM, help="program source file")
    ap.add_argument("--config", help="path to yaml config", default=None)
    ap.add_argument("--cell-width", type=int, default=None, help="cell width in bits (overrides config)")

    help_debug = "enable debug logging to logfile (detailed per-step state)."
    help_logfile = "path to machine log"
    help_console = "also echo logs to stderr (only when --debug)"
    ap.add_argument("--debug", action="store_true", help=help_debug)
    ap.add_argument("--logfile", default=LOGFILE, help=help_logfile)
    ap.add_argument("--console", action="store_true", help=help_console)
    args = ap.parse_args(argv)

    init_logging(logfile=args.logfile, debug=args.debug, console=args.console)

    try:
        cfg = load_config(args.config)
        if args.cell_width is not None:
            cfg = load_config({**cfg, "cell_width": args.cell_width})
    except ConfigError as e:
        print("Bad config:", e, file=sys.stderr)
        return 2

    program_path = Path(args.program)
    if not program_path.exists():
        print("Program file not found:", args.program, file=sys.stderr)
        return 2
    try:
        program = read_program(program_path)
    except (OSError, UnicodeDecodeError) as e:
        print("Cannot read program:", e, file=sys.stderr)
        return 2

    out = sys.stdout.buffer
    machine = Machine(
        program,
        sys.stdin.buffer,
        out,
        cell_width=cfg["cell_width"],
        lenient_log=cfg["lenient_log"],
    )
    if args.debug:
        logging.debug("Program listing:\n%s", machine.listing())

    try:
        steps = machine.run()
    except MachineError as e:
        out.flush()
        print("Error:", e, file=sys.stderr)
        return 1
    out.flush()

    if args.debug:
        sys.stderr.write("STEPS: " + str(steps))
        sys.stderr.write("\n")
    return 0


if __name__ == "__main__":
    sys.exit(main())
