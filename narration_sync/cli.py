"""Command-line interface for the narration timeline sync engine.

WHY: Editors and scripts need to inspect and repair a project snapshot
without running the HTTP service: estimate a segment's length, see which
segments are out of sync, check the caption shown at a frame, regenerate
stale voice-over, or start the API server.

HOW: argparse with one subcommand per task. Snapshot files are the JSON
documents produced by TimelineEngine.snapshot(). ``regenerate`` runs the
orchestrator via asyncio.run() against the configured voice API and
writes the snapshot back in place. Status messages go to stderr; results
(JSON or a number) go to stdout.

RULES:
- Subcommands: estimate, captions, status, regenerate, serve
- Results to stdout, status to stderr (the CLI can be piped)
- Invalid input or a malformed snapshot exits with code 1 and "Error: ..."
- regenerate exits 1 when any segment failed; the snapshot is still saved
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from narration_sync.api.client import ScopedVoiceGenerator
from narration_sync.config import DEFAULT_WORDS_PER_MINUTE, load_api_key
from narration_sync.core.captions import frame_to_ms
from narration_sync.core.errors import SnapshotError
from narration_sync.core.estimator import count_words, estimate_duration
from narration_sync.core.orchestrator import VoiceGenerator
from narration_sync.engine import TimelineEngine


def _status(msg: str) -> None:
    """Print a status message to stderr.

    WHY: Status output must not pollute stdout so the CLI can be piped.
    """
    print(msg, file=sys.stderr, flush=True)


def _fail(msg: str) -> None:
    print("Error: {}".format(msg), file=sys.stderr)
    sys.exit(1)


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, ensure_ascii=False))


def _load_engine(path: str, generator: Optional[VoiceGenerator] = None) -> TimelineEngine:
    snapshot_path = Path(path)
    if not snapshot_path.is_file():
        _fail("Snapshot not found: {}".format(snapshot_path))
    try:
        with open(snapshot_path, encoding="utf-8") as f:
            document = json.load(f)
    except json.JSONDecodeError as exc:
        _fail("Snapshot is not valid JSON: {}".format(exc))
    try:
        return TimelineEngine.from_snapshot(document, generator=generator)
    except SnapshotError as exc:
        _fail("Invalid snapshot: {}".format(exc))


def _write_snapshot(path: str, engine: TimelineEngine) -> None:
    with open(path, "w", encoding="utf-8") as f:
        json.dump(engine.snapshot(), f, indent=2, ensure_ascii=False)
        f.write("\n")


def _make_generator() -> VoiceGenerator:
    """Voice generator used by ``regenerate``; fails fast without an API key."""
    load_api_key()
    return ScopedVoiceGenerator()


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def _cmd_estimate(args: argparse.Namespace) -> None:
    try:
        duration = estimate_duration(args.text, words_per_minute=args.wpm)
    except ValueError as exc:
        _fail(str(exc))
    _status("{} word(s) at {} wpm".format(count_words(args.text), args.wpm))
    print("{:.2f}".format(duration))


def _cmd_captions(args: argparse.Namespace) -> None:
    engine = _load_engine(args.snapshot)
    if args.time_ms is not None:
        time_ms = args.time_ms
    else:
        if args.frame is None or args.fps is None:
            _fail("Provide --time-ms, or --frame together with --fps")
        try:
            time_ms = frame_to_ms(args.frame, args.fps)
        except ValueError as exc:
            _fail(str(exc))

    caption = engine.resolve(time_ms)
    result: Dict[str, Any] = {"time_ms": time_ms}
    result.update(caption.to_dict())
    result["window"] = [w.to_dict() for w in caption.visible_window()]
    _print_json(result)


def _cmd_status(args: argparse.Namespace) -> None:
    engine = _load_engine(args.snapshot)
    needing = engine.segments_needing_voice
    _print_json({
        "project_id": engine.project_id,
        "sync_status": engine.sync_status.value,
        "segments_needing_voice": [s.id for s in engine.store.segments() if s.id in needing],
        "total_duration_s": engine.store.total_duration_s,
        "drift": engine.detect_drift().to_dict(),
    })


def _cmd_regenerate(args: argparse.Namespace) -> None:
    try:
        generator = _make_generator()
    except ValueError as exc:
        _fail(str(exc))
    engine = _load_engine(args.snapshot, generator=generator)

    segment_ids = args.segment or None
    if segment_ids is None:
        pending = len(engine.segments_needing_voice)
        if not pending:
            _status("All segments are in sync; nothing to regenerate.")
        else:
            _status("Regenerating voice for {} segment(s)...".format(pending))
    else:
        _status("Regenerating voice for {} segment(s)...".format(len(segment_ids)))

    try:
        result = asyncio.run(engine.regenerate_timeline_sync(segment_ids))
    except KeyboardInterrupt:
        _status("\nCancelled by user.")
        sys.exit(130)

    _write_snapshot(args.snapshot, engine)
    _status("Saved snapshot: {}".format(args.snapshot))
    for segment_id, message in result.failed.items():
        _status("  Failed {}: {}".format(segment_id, message))
    _print_json(result.to_dict())
    if not result.ok:
        sys.exit(1)


def _cmd_serve(args: argparse.Namespace) -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )
    from narration_sync.server.app import run_api

    _status("Starting API on http://{}:{}".format(args.host, args.port))
    run_api(host=args.host, port=args.port)


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse parser for the CLI.

    WHY: Separating parser construction from main() makes the CLI
    testable; tests can inspect the parser without running a command.
    """
    parser = argparse.ArgumentParser(
        prog="narration-sync",
        description="Keep narration voice-over, segment timing and captions "
                    "in sync for narrated video timelines.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    estimate = subparsers.add_parser("estimate", help="Estimate a segment's duration in seconds.")
    estimate.add_argument("text", help="Narration text.")
    estimate.add_argument(
        "--wpm",
        type=int,
        default=DEFAULT_WORDS_PER_MINUTE,
        help="Speech rate in words per minute (default: %(default)s).",
    )
    estimate.set_defaults(func=_cmd_estimate)

    captions = subparsers.add_parser("captions", help="Resolve the caption shown at a time or frame.")
    captions.add_argument("snapshot", help="Path to a project snapshot JSON file.")
    captions.add_argument("--time-ms", type=int, default=None, help="Timeline time in ms.")
    captions.add_argument("--frame", type=int, default=None, help="Frame index.")
    captions.add_argument("--fps", type=float, default=None, help="Frames per second.")
    captions.set_defaults(func=_cmd_captions)

    status = subparsers.add_parser("status", help="Show sync status, stale segments and drift.")
    status.add_argument("snapshot", help="Path to a project snapshot JSON file.")
    status.set_defaults(func=_cmd_status)

    regenerate = subparsers.add_parser(
        "regenerate",
        help="Regenerate voice for out-of-sync segments and save the snapshot.",
    )
    regenerate.add_argument("snapshot", help="Path to a project snapshot JSON file.")
    regenerate.add_argument(
        "--segment",
        action="append",
        default=None,
        help="Segment id to regenerate. Can be given multiple times. "
             "Default: every segment needing voice.",
    )
    regenerate.set_defaults(func=_cmd_regenerate)

    serve = subparsers.add_parser("serve", help="Run the HTTP API.")
    serve.add_argument("--host", default="0.0.0.0", help="Bind address (default: %(default)s).")
    serve.add_argument("--port", type=int, default=8000, help="Port (default: %(default)s).")
    serve.set_defaults(func=_cmd_serve)

    return parser


def main(argv: Optional[List[str]] = None) -> None:
    """Entry point for ``narration-sync`` and ``python -m narration_sync``.

    RULES:
    - argv=None means use sys.argv (normal CLI invocation)
    - Explicit argv is for testing
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    args.func(args)


if __name__ == "__main__":
    main()
