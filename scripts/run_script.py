#!/usr/bin/env python3
"""
Run an LS-Web program from the command line.

PRINT output goes to the `lsweb.output` logger (stderr). Loops and timers get
`--duration` seconds before the run is stopped.

Usage:
  python -m scripts.run_script examples/hello.ls --duration 2
  python -m scripts.run_script game.ls --png out.png --persist
"""
from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import List, Optional

from backend import db
from backend.lsweb.errors import LSWebError
from backend.lsweb.host import Host, ImageSurface, SqliteStorage
from backend.lsweb.interpreter import Interpreter

logger = logging.getLogger("run_script")


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Run an LS-Web program")
    p.add_argument("file", type=Path, help="program source file")
    p.add_argument("--duration", type=float, default=1.5, help="seconds to let loops and timers run")
    p.add_argument("--trace", action="store_true", help="echo each statement before it runs")
    p.add_argument("--png", type=Path, default=None, help="write the final canvas to this PNG file")
    p.add_argument("--persist", action="store_true", help="use the SQLite database for STORE/LOAD")
    p.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    return p.parse_args(argv)


async def run(args: argparse.Namespace) -> int:
    code = args.file.read_text(encoding="utf-8")
    if args.trace:
        code = "TRACE ON\n" + code

    host = Host()
    if args.persist:
        db.init_db()
        host.storage = SqliteStorage()
    it = Interpreter(host)
    surface = ImageSurface() if args.png else None

    status = 0
    try:
        ctx = await it.run(code, surface, duration_s=args.duration)
    except LSWebError as e:
        logger.error("%s: %s (line: %s)", e.code, e.message, e.line_text)
        return 1
    if ctx.failures:
        status = 1
    if surface is not None:
        args.png.write_bytes(surface.to_png())
        logger.info("canvas written to %s", args.png)
    return status


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )
    return asyncio.run(run(args))


if __name__ == "__main__":
    sys.exit(main())
