#!/usr/bin/env python3
"""Render the slider frame set for a region with the hgb renderer.

Produces ``dnd/0.png`` (ruler), ``dnd/1.png`` .. ``dnd/<N+1>.png`` (one per
read index ``0..N``) and ``dnd/<N+2>.png`` (coverage), after writing
``dnd/reads.json`` so the viewer knows how many frames to expect.

Options for this wrapper go before ``--``; everything after it is handed to the
renderer untouched. Without ``--`` every argument is renderer input::

    frame_wrapper.py -a sample.bam -r chr1:100-200
    frame_wrapper.py --read-max 5 --mkdir -- -a sample.bam -r chr1:100-200
"""
from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from frameset.errors import BinaryNotFound, MetadataWriteError, RenderFailure, RenderFailures, RunCancelled
from frameset.frames import parse_template
from frameset.logging_setup import init_logging
from frameset.orchestrator import run_frameset
from frameset.params import (
    DEFAULT_METADATA_NAME,
    DEFAULT_OUTPUT_DIR,
    DEFAULT_READ_MAX,
    DEFAULT_THREADS,
    DEFAULT_TIMEOUT_SECONDS,
    FrameParams,
)

logger = logging.getLogger("frame_wrapper")

EXIT_ERROR = 1
EXIT_RENDER_FAILURE = 3
EXIT_CANCELLED = 130


def split_argv(argv: Sequence[str]) -> Tuple[List[str], List[str]]:
    """Separate wrapper options from the renderer template at ``--``."""
    args = list(argv)
    if "--" not in args:
        return [], args
    pivot = args.index("--")
    return args[:pivot], args[pivot + 1 :]


def parse_args(argv: Sequence[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Render ruler, per-read and coverage frames with the hgb renderer.",
        epilog="Renderer arguments follow '--'; without it all arguments are renderer arguments.",
        allow_abbrev=False,
    )
    parser.add_argument("--read-max", type=int, default=DEFAULT_READ_MAX, help="Highest read index to render")
    parser.add_argument("--threads", type=int, default=DEFAULT_THREADS, help="Thread count passed to the renderer (-t)")
    parser.add_argument("--root", type=Path, default=Path("."), help="Directory the renderer runs in")
    parser.add_argument("--output-dir", default=DEFAULT_OUTPUT_DIR, help="Frame directory, relative to --root")
    parser.add_argument("--metadata-name", default=DEFAULT_METADATA_NAME, help="Metadata file name inside the frame directory")
    parser.add_argument("--binary", type=Path, default=None, help="Renderer executable tried before the build outputs")
    parser.add_argument(
        "--timeout",
        default=str(DEFAULT_TIMEOUT_SECONDS),
        help="Seconds before a single renderer call is abandoned ('none' disables)",
    )
    parser.add_argument("--retries", type=int, default=0, help="Extra attempts per failed frame")
    parser.add_argument("--workers", type=int, default=1, help="Concurrent renderer processes")
    parser.add_argument(
        "--failure-policy",
        choices=["fail_fast", "best_effort"],
        default="fail_fast",
        help="Stop at the first failed frame or render everything and report at the end",
    )
    parser.add_argument(
        "--stale-policy",
        choices=["keep", "purge"],
        default="keep",
        help="Whether frames numbered past the new coverage frame are deleted",
    )
    parser.add_argument("--mkdir", action="store_true", help="Create the frame directory if it is missing")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log every renderer command")
    parser.add_argument("--log-file", type=Path, default=None, help="Also write logs to this file")
    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> int:
    if argv is None:
        argv = sys.argv[1:]
    options, template_args = split_argv(argv)
    args = parse_args(options)
    init_logging(logging.DEBUG if args.verbose else None, log_file=args.log_file)

    try:
        params = FrameParams.from_cli_args(args)
        template = parse_template(template_args)
    except ValueError as exc:
        print(f"Error in options: {exc}", file=sys.stderr)
        return EXIT_ERROR

    try:
        report = run_frameset(params, template)
    except BinaryNotFound as exc:
        print(f"Error locating renderer: {exc}", file=sys.stderr)
        return EXIT_ERROR
    except MetadataWriteError as exc:
        print(f"Error writing metadata: {exc}", file=sys.stderr)
        return EXIT_ERROR
    except RenderFailures as exc:
        for failure in exc.failures:
            print(f"Error rendering frame {failure.frame.index}: {failure}", file=sys.stderr)
        return EXIT_RENDER_FAILURE
    except RenderFailure as exc:
        print(f"Error rendering frame {exc.frame.index}: {exc}", file=sys.stderr)
        return EXIT_RENDER_FAILURE
    except (RunCancelled, KeyboardInterrupt):
        print("Interrupted; frame set is incomplete", file=sys.stderr)
        return EXIT_CANCELLED
    except OSError as exc:
        print(f"Error preparing frame directory: {exc}", file=sys.stderr)
        return EXIT_ERROR

    logger.info("Frame set complete: %s frames, metadata at %s", len(report.frames), report.metadata_path)
    return 0


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    raise SystemExit(main(sys.argv[1:]))
