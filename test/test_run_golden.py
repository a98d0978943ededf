"""Golden-test runner for the source -> machine pipeline.

This test loads golden YAML records, runs the program over the recorded
input and compares produced outputs (stdout bytes, step count, fault,
listing, log lines) against the expectations in the golden files.
"""

from __future__ import annotations

import io
import logging
import os
import tempfile
from pathlib import Path
from typing import Any

import machine
import pytest
from config import load_config
from machine import Machine, MachineError
from program import Program


def _input_bytes(golden: dict[str, Any]) -> bytes:
    if "in_bytes" in golden:
        return bytes(golden["in_bytes"] or [])
    if "in_stdin" in golden:
        return str(golden["in_stdin"]).encode("latin-1")
    return b""


def _close_root_handlers() -> None:
    root = logging.getLogger()
    for h in list(root.handlers):
        h.flush()
        h.close()
        root.removeHandler(h)


@pytest.mark.golden_test("golden/*.yaml")
def test_golden(golden: Any) -> None:  # noqa: C901
    """Run one golden record and compare every expectation it lists."""
    if "__yaml_load_error__" in golden:
        pytest.fail(f"{golden['__name__']}: {golden['__yaml_load_error__']}")

    source = golden.get("source")
    if source is None:
        pytest.skip("No source provided in golden record")

    cfg = load_config(golden.get("config"))
    program = Program.from_text(source)
    out = io.BytesIO()

    with tempfile.TemporaryDirectory() as tmp:
        log_path = os.path.join(tmp, "machine.log")
        machine.init_logging(logfile=log_path, debug=True, console=False)

        m = Machine(
            program,
            io.BytesIO(_input_bytes(golden)),
            out,
            cell_width=cfg["cell_width"],
            lenient_log=cfg["lenient_log"],
        )

        steps: int | None = None
        error: MachineError | None = None
        try:
            steps = m.run()
        except MachineError as e:
            error = e

        _close_root_handlers()
        log_text = Path(log_path).read_text(encoding="utf-8")

    expect = golden.get("expect") or {}
    got = out.getvalue()

    # helper to produce long mismatch messages
    def _mismatch(msg_title: str, got_text: str, expected_text: str) -> str:
        return f"{msg_title}\n--- got ---\n{got_text}\n--- expected ---\n{expected_text}"

    # 1) output
    if "out_bytes" in expect:
        exp_bytes = bytes(expect["out_bytes"] or [])
        assert got == exp_bytes, _mismatch("output bytes mismatch", repr(got), repr(exp_bytes))

    if "out_stdout" in expect:
        got_text = got.decode("latin-1")
        if got_text != expect["out_stdout"]:
            raise AssertionError(_mismatch("stdout mismatch", got_text, expect["out_stdout"]))

    # 2) fault or completion
    if "error" in expect:
        exp_err = expect["error"]
        assert error is not None, f"expected {exp_err['kind']} but run completed in {steps} steps"
        assert type(error).__name__ == exp_err["kind"]
        if "index" in exp_err:
            assert getattr(error, "index", None) == exp_err["index"]
        assert m.state is machine.MachineState.FAULTED
    else:
        assert error is None, f"unexpected fault: {error!r}"
        assert m.state is machine.MachineState.COMPLETED

    if "steps" in expect:
        assert steps == int(expect["steps"]), f"steps mismatch: got {steps} expected {expect['steps']}"

    # 3) listing
    if "out_listing" in expect:
        got_listing = m.listing()
        if got_listing.strip() != expect["out_listing"].strip():
            raise AssertionError(_mismatch("listing mismatch", got_listing, expect["out_listing"]))

    # 4) log
    for needle in expect.get("log_contains", []):
        assert needle in log_text, f"{needle!r} not found in machine.log"
