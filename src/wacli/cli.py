"""CLI entry point for wacli."""

import argparse
import logging
import sys

import wacli.app.config
import wacli.io.logging_setup
import wacli.io.media
import wacli.pipeline.replay
from wacli.tui.app import create_app

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Terminal messaging client")
    parser.add_argument(
        "--replay",
        type=str,
        default=None,
        help="Drive the client from a recorded event stream (path to .jsonl file)",
    )
    parser.add_argument(
        "--data-dir",
        type=str,
        default=None,
        help="Directory for state.json / overrides.json (default: $XDG_DATA_HOME/wacli). Env: WACLI_DATA_DIR",
    )
    parser.add_argument(
        "--session",
        type=str,
        default="default",
        help="Session name used for the log file name (default: default)",
    )
    parser.add_argument(
        "--persist-interval",
        type=float,
        default=None,
        help="Seconds between state snapshots (default: 15)",
    )
    parser.add_argument(
        "--reconnect-delay",
        type=float,
        default=None,
        help="Seconds to wait before reconnecting after a dropped connection (default: 5)",
    )
    parser.add_argument(
        "--page-size",
        type=int,
        default=None,
        help="Chats per page in the chat list (default: 15)",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    runtime = wacli.io.logging_setup.configure(session_name=args.session)
    logger.info("wacli starting; log level %s, log file %s", runtime.level_name, runtime.file_path)

    if args.replay is None:
        # Live transports plug in through the Transport protocol; only replay ships here.
        print("wacli: no live transport configured; use --replay <recording.jsonl>", file=sys.stderr)
        return 2

    try:
        recording = wacli.pipeline.replay.load_recording(args.replay)
    except (OSError, ValueError) as e:
        print(f"wacli: cannot load recording {args.replay}: {e}", file=sys.stderr)
        return 1
    logger.info("Loaded %d events from %s", len(recording.events), args.replay)

    config = wacli.app.config.create(
        initial_overrides={
            "data_dir": args.data_dir,
            "persist_interval_s": args.persist_interval,
            "reconnect_delay_s": args.reconnect_delay,
            "chats_per_page": args.page_size,
        }
    )
    app = create_app(
        config,
        lambda: wacli.pipeline.replay.ReplayTransport(recording),
        media_opener=wacli.io.media.open_media,
    )
    app.run()
    print(f"Log file: {runtime.file_path}", file=sys.stderr)
    return 0


if __name__ == "__main__":
    sys.exit(main())
