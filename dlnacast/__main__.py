"""
dlnacast - Entry Point

Run with: python -m dlnacast
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from dlnacast import __version__
from dlnacast.caster import Caster, PlayOptions, UiMode, list_renders
from dlnacast.config import get_config
from dlnacast.core import DlnaCastError

LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


def setup_logging(level: str = "INFO", log_file: Path | None = None, *, quiet: bool = False) -> None:
    """
    Configure logging for the application.

    With `quiet` and no log file nothing is written to the terminal.
    """
    handlers: list[logging.Handler] = []
    if log_file is not None:
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))
    elif quiet:
        handlers.append(logging.NullHandler())
    else:
        handlers.append(logging.StreamHandler())

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=handlers,
    )

    # Reduce noise from third-party libraries
    for name in ("asyncio", "httpx", "httpcore", "uvicorn", "uvicorn.error"):
        logging.getLogger(name).setLevel(logging.WARNING)


def positive_int(value: str) -> int:
    number = int(value)
    if number <= 0:
        raise argparse.ArgumentTypeError(f"must be a positive number, got {value}")
    return number


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments."""
    defaults = get_config()

    parser = argparse.ArgumentParser(
        prog="dlnacast",
        description="dlnacast - Stream local media to DLNA/UPnP media renderers",
    )

    parser.add_argument(
        "-t",
        "--timeout",
        type=float,
        default=defaults.discovery.timeout,
        help=f"Device discovery timeout in seconds (default: {defaults.discovery.timeout:g})",
    )

    parser.add_argument(
        "--log-level",
        choices=LOG_LEVELS,
        type=str.upper,
        default="INFO",
        help="Log level (default: INFO)",
    )

    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose (debug) logging",
    )

    parser.add_argument(
        "--log-file",
        type=Path,
        default=None,
        help="Write log output to this file instead of the terminal",
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("list", help="List media renderers on the network")

    play = subparsers.add_parser("play", help="Play a file or directory on a renderer")

    play.add_argument(
        "-H",
        "--host",
        type=str,
        default=None,
        help="Address of this machine to serve media on (default: detected)",
    )

    play.add_argument(
        "-P",
        "--port",
        type=int,
        default=defaults.streaming.port,
        help=f"Streaming server port (default: {defaults.streaming.port})",
    )

    device = play.add_mutually_exclusive_group()
    device.add_argument(
        "-q",
        "--query-device",
        type=str,
        default=None,
        help="Use the first renderer whose name contains this text (case-insensitive)",
    )
    device.add_argument(
        "-d",
        "--device",
        type=str,
        default=None,
        help="Device description URL of the renderer (skips discovery)",
    )

    subtitles = play.add_mutually_exclusive_group()
    subtitles.add_argument(
        "-s",
        "--subtitle",
        type=Path,
        default=None,
        help="Subtitle file (default: same-named .srt/.vtt next to the video)",
    )
    subtitles.add_argument(
        "-n",
        "--no-subtitle",
        action="store_true",
        help="Do not look for subtitle files",
    )

    play.add_argument(
        "--subtitle-offset",
        type=int,
        default=0,
        metavar="MS",
        help="Shift subtitles by this many milliseconds (negative shows them earlier)",
    )

    play.add_argument(
        "--subtitle-sync",
        action="store_true",
        help="Copy the subtitle line currently on screen to the clipboard",
    )

    play.add_argument(
        "--subtitle-sync-interval",
        type=positive_int,
        default=int(defaults.session.subtitle_sync_interval * 1000),
        metavar="MS",
        help=(
            "How often --subtitle-sync updates the clipboard, in milliseconds "
            f"(default: {int(defaults.session.subtitle_sync_interval * 1000)})"
        ),
    )

    mode = play.add_mutually_exclusive_group()
    mode.add_argument(
        "-i",
        "--interactive",
        action="store_true",
        help="Control playback with the keyboard",
    )
    mode.add_argument(
        "--tui",
        action="store_true",
        help="Full-screen interface",
    )

    play.add_argument(
        "--loop",
        "--playlist",
        dest="loop",
        action="store_true",
        help="Start over after the last entry",
    )

    play.add_argument(
        "path",
        type=Path,
        help="Media file, or directory to play as a playlist",
    )

    return parser.parse_args(argv)


def play_options(args: argparse.Namespace) -> PlayOptions:
    if args.tui:
        ui = UiMode.TUI
    elif args.interactive:
        ui = UiMode.INTERACTIVE
    else:
        ui = UiMode.PLAIN

    return PlayOptions(
        path=args.path,
        device_url=args.device,
        device_query=args.query_device,
        timeout=args.timeout,
        host=args.host,
        port=args.port,
        subtitle=args.subtitle,
        infer_subtitle=not args.no_subtitle,
        subtitle_offset_ms=args.subtitle_offset,
        subtitle_sync=args.subtitle_sync,
        subtitle_sync_interval=args.subtitle_sync_interval / 1000,
        loop=args.loop,
        ui=ui,
    )


def owns_terminal(args: argparse.Namespace) -> bool:
    """True when the full-screen UI draws on the terminal and logs must stay off it."""
    return args.command == "play" and args.tui and args.log_file is None


async def run_list(timeout: float) -> int:
    renders = await list_renders(timeout)
    if not renders:
        print("No renderers found")
        return 0
    for render in renders:
        print(render)
    return 0


async def run_play(options: PlayOptions) -> int:
    await Caster(options).run()
    return 0


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the application."""
    args = parse_args(argv)
    level = "DEBUG" if args.verbose else args.log_level
    quiet = owns_terminal(args)
    setup_logging(level, args.log_file, quiet=quiet)

    logger = logging.getLogger(__name__)

    try:
        if args.command == "list":
            return asyncio.run(run_list(args.timeout))
        return asyncio.run(run_play(play_options(args)))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 0
    except DlnaCastError as e:
        logger.error("Error: %s", e)
        if quiet:
            print(f"Error: {e}", file=sys.stderr)
        return 1
    except Exception as e:
        logger.exception("Fatal error: %s", e)
        if quiet:
            print(f"Fatal error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
