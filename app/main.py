# -*- coding: utf-8 -*-
"""Headless runner: drives the scene for a fixed number of frames.

Frames are stepped with a synthetic clock (``1 / fps`` per frame) so runs are
reproducible for a given ``--seed``.
"""
from __future__ import annotations

import argparse
import contextlib
import io
import os
import sys
from pathlib import Path
from typing import List, Optional, Sequence

os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")

from PyQt5 import QtCore

from arbor.control.config import DEFAULTS, TOOLTIPS, load_config, merge_config
from arbor.errors import FamilyConfigError
from arbor.topology_registry import load_family_library

from app.host import SceneHost

DEBUG_MARKER = "[Arbor][DEBUG]"


class _DebugFilter(io.TextIOBase):
    """Line-buffered stdout proxy that drops ``[Arbor][DEBUG]`` lines."""

    def __init__(self, stream, marker: str = DEBUG_MARKER) -> None:
        super().__init__()
        self.stream = stream
        self.marker = marker
        self._pending = ""

    def write(self, text: str) -> int:  # type: ignore[override]
        *complete, self._pending = (self._pending + text).split("\n")
        for line in complete:
            self._forward(line + "\n")
        return len(text)

    def flush(self) -> None:  # type: ignore[override]
        if self._pending:
            self._forward(self._pending)
            self._pending = ""
        self.stream.flush()

    def _forward(self, line: str) -> None:
        if self.marker not in line:
            self.stream.write(line)


@contextlib.contextmanager
def _quiet(enabled: bool):
    """Filter engine diagnostics from stdout while the block runs."""

    if not enabled:
        yield None
        return
    original = sys.stdout
    filtered = _DebugFilter(original)
    sys.stdout = filtered
    try:
        yield filtered
    finally:
        filtered.close()
        sys.stdout = original


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--frames", type=int, default=180, help="Number of frames to simulate.")
    parser.add_argument("--fps", type=int, default=60, help="Synthetic frame rate.")
    parser.add_argument(
        "--toggle-every", type=int, default=0, help="Flip scattered/assembled every N frames (0 = once, at start)."
    )
    parser.add_argument("--seed", type=int, default=None, help="Random seed for reproducible scenes.")
    parser.add_argument("--config", type=Path, default=None, help="JSON file merged over the defaults.")
    parser.add_argument("--library", type=Path, default=None, help="Directory of extra JSON family definitions.")
    parser.add_argument("--list", action="store_true", help="List the configured families and exit.")
    parser.add_argument("--quiet", action="store_true", help="Hide the [Arbor][DEBUG] diagnostics.")
    return parser


def _resolve_config(args: argparse.Namespace) -> dict:
    config = load_config(args.config) if args.config else merge_config(DEFAULTS, {})
    if args.library:
        config = merge_config(config, {"families": load_family_library(args.library)})
    return config


def _report(host: SceneHost, frame: int) -> str:
    state = host.engine.state()
    parts = [f"{name}={info['progress']:.3f}" for name, info in state["families"].items()]
    return f"frame {frame:4d} target={state['target']:<9} " + " ".join(parts)


def run(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    with _quiet(args.quiet):
        return _run(args)


def _run(args: argparse.Namespace) -> int:
    if args.frames < 0 or args.fps <= 0:
        print("frames must be >= 0 and fps > 0", file=sys.stderr)
        return 2
    try:
        config = _resolve_config(args)
    except FamilyConfigError as exc:
        print(f"configuration error: {exc}", file=sys.stderr)
        return 2

    if args.list:
        for name, cfg in config.get("families", {}).items():
            tip = TOOLTIPS.get(f"families.{name}", "")
            print(f"{name:<18} {cfg.get('strategy', '?'):<6} {cfg.get('count', 0):>6}  {tip}")
        return 0

    app = QtCore.QCoreApplication.instance() or QtCore.QCoreApplication(sys.argv[:1])
    try:
        host = SceneHost(config, seed=args.seed, fps=args.fps)
    except FamilyConfigError as exc:
        print(f"configuration error: {exc}", file=sys.stderr)
        return 2

    lines: List[str] = []
    host.stateChanged.connect(lambda state: lines.append(f"-> {state['target']}"))
    host.toggle()
    dt = 1.0 / args.fps
    report_every = max(1, args.fps // 4)
    for frame in range(1, args.frames + 1):
        if args.toggle_every and frame % args.toggle_every == 0:
            host.toggle()
        host.step(frame * dt)
        if frame % report_every == 0 or frame == args.frames:
            lines.append(_report(host, frame))
        while lines:
            print(lines.pop(0))
    app.processEvents()
    return 0


def main() -> None:
    raise SystemExit(run())


if __name__ == "__main__":
    main()
