#!/usr/bin/env python3
"""
Fill out_bytes, steps, error and out_listing for a golden YAML record.
Usage: python generate_golden_fields.py path/to/golden.yaml
"""

from __future__ import annotations

import io
import os
import sys
from typing import Any

import yaml

from config import load_config
from machine import Machine, MachineError
from program import Program


def _input_bytes(doc: dict[str, Any]) -> bytes:
    if "in_bytes" in doc:
        return bytes(doc["in_bytes"] or [])
    if "in_stdin" in doc:
        return str(doc["in_stdin"]).encode("latin-1")
    return b""


def fill_expectations(doc: dict[str, Any]) -> dict[str, Any]:
    """Run the record's source and write what it produced into doc["expect"].

    Existing out_stdout is kept (and refreshed) when present; other
    generated keys are overwritten. Returns the updated doc.
    """
    source = doc.get("source")
    if source is None:
        err = "No 'source' found in golden record"
        raise ValueError(err)

    cfg = load_config(doc.get("config"))
    out = io.BytesIO()
    m = Machine(
        Program.from_text(source),
        io.BytesIO(_input_bytes(doc)),
        out,
        cell_width=cfg["cell_width"],
        lenient_log=True,
    )

    target = doc.setdefault("expect", {})
    target.pop("error", None)
    target.pop("steps", None)
    try:
        target["steps"] = m.run()
    except MachineError as e:
        target["error"] = {"kind": type(e).__name__}
        if hasattr(e, "index"):
            target["error"]["index"] = e.index

    if "out_stdout" in target:
        target["out_stdout"] = out.getvalue().decode("latin-1")
    else:
        target["out_bytes"] = list(out.getvalue())
    target["out_listing"] = m.listing() + "\n"
    return doc


def main(path: str) -> None:
    if not os.path.exists(path):
        print("File not found:", path)
        sys.exit(2)

    with open(path, encoding="utf-8") as f:
        doc = yaml.safe_load(f) or {}

    try:
        fill_expectations(doc)
    except ValueError as e:
        print(e)
        sys.exit(2)

    # write back YAML (use block style where possible)
    with open(path, "w", encoding="utf-8") as f:
        yaml.safe_dump(doc, f, default_flow_style=False, sort_keys=False, allow_unicode=True)

    print(f"Updated {path} with expected output, steps and listing.")


if __name__ == "__main__":
    if len(sys.argv) != 2:
        print("Usage: generate_golden_fields.py path/to/golden.yaml")
        sys.exit(1)
    main(sys.argv[1])
