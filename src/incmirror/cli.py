from __future__ import annotations

import argparse
import logging
from pathlib import Path
import sys

from rich.console import Console

from incmirror.config import config_file, edit_config, load_config, load_config_or_default, write_default_config
from incmirror.messages import Messages, load_messages
from incmirror.models import ShowSkipped
from incmirror.run_service import EXIT_FATAL_ERROR, EXIT_SUCCESS, CopyRequest, run_copy


EXIT_INVALID_CONFIG = 3


def _positive_int(value: str) -> int:
    try:
        parsed = int(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"expected an integer, got '{value}'") from exc
    if parsed <= 0:
        raise argparse.ArgumentTypeError("must be greater than 0")
    return parsed


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="incmirror",
        description="Incremental directory mirror: copies only new or modified files",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Write diagnostic logs to stderr")
    subparsers = parser.add_subparsers(dest="command", required=True)

    copy_parser = subparsers.add_parser("copy", help="Perform an incremental backup")
    copy_parser.add_argument("source", type=Path, help="Source directory to back up")
    copy_parser.add_argument("destination", type=Path, help="Destination directory")
    copy_parser.add_argument("-q", "--quiet", action="store_true", help="Suppress all output to stdout")
    copy_parser.add_argument("-t", "--timestamp", action="store_true", help="Print timestamps in logs")
    copy_parser.add_argument("--log", type=Path, metavar="FILE", help="File path to write logs")
    copy_parser.add_argument(
        "-x",
        "--exclude",
        action="append",
        default=[],
        metavar="PATTERN",
        help="Exclude files matching the given glob pattern (repeatable)",
    )
    copy_parser.add_argument(
        "--absolute-exclude",
        action="store_true",
        help="Match exclude patterns against absolute source paths",
    )
    copy_parser.add_argument(
        "--ignore-case",
        action="store_true",
        help="Perform case-insensitive matching for exclude patterns",
    )
    copy_parser.add_argument("--dry-run", action="store_true", help="Perform a dry-run without copying files")
    copy_parser.add_argument(
        "--delta",
        action="store_true",
        help="Compare files before starting workers and report progress in bytes",
    )
    copy_parser.add_argument(
        "--show-skipped",
        choices=[policy.value for policy in ShowSkipped],
        default=ShowSkipped.ALL.value,
        help="How unchanged files are reported",
    )
    copy_parser.add_argument("--workers", type=_positive_int, help="Number of parallel copy workers")
    copy_parser.add_argument("--config", type=Path, default=None, help="Configuration file to use")

    config_parser = subparsers.add_parser("config", help="Manage the configuration file")
    config_parser.add_argument("--init", action="store_true", help="Initiate a default config file")
    config_parser.add_argument("--print", action="store_true", help="Print the current configuration file")
    config_parser.add_argument("--edit", action="store_true", help="Edit the configuration file")
    config_parser.add_argument("--editor", help="Editor to use (overrides $EDITOR/$VISUAL)")
    config_parser.add_argument("--config", type=Path, default=None, help="Configuration file to use")

    return parser


def _configure_logging(verbose: bool) -> None:
    package_logger = logging.getLogger("incmirror")
    if verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(asctime)s %(levelname)s %(name)s %(message)s")
    elif not package_logger.handlers:
        package_logger.addHandler(logging.NullHandler())


def _load_messages(language: str) -> Messages:
    messages, warning = load_messages(language)
    if warning:
        print(warning, file=sys.stderr)
    return messages


def cmd_config(
    config_path: Path | None,
    init: bool,
    print_config: bool,
    edit: bool,
    editor: str | None,
) -> int:
    path = config_path or config_file()
    messages = _load_messages(load_config_or_default(path).language)

    if print_config:
        try:
            config = load_config(path)
        except Exception as exc:
            print(f"⚠️ {messages.conf_file_not_found}: {exc}", file=sys.stderr)
            return EXIT_INVALID_CONFIG
        print(f"📄 {messages.cur_conf}:\n{config.to_yaml()}")

    if init:
        written = write_default_config(path)
        print(f"✅ {messages.conf_initialized} {written}")

    if edit:
        try:
            edit_config(path, editor)
        except RuntimeError as exc:
            print(f"{messages.generic_error}: {exc}", file=sys.stderr)
            return EXIT_FATAL_ERROR

    return EXIT_SUCCESS


def cmd_copy(args: argparse.Namespace) -> int:
    config = load_config_or_default(args.config)
    messages = _load_messages(config.language)

    request = CopyRequest(
        source=args.source,
        destination=args.destination,
        excludes=list(args.exclude),
        dry_run=args.dry_run,
        quiet=args.quiet,
        timestamp=args.timestamp,
        ignore_case=args.ignore_case,
        absolute_exclude=args.absolute_exclude,
        delta=args.delta,
        show_skipped=ShowSkipped(args.show_skipped),
        log_file=args.log,
        worker_count=args.workers,
    )
    exit_code, _ = run_copy(request, config, messages, console=Console(), err_console=Console(stderr=True))
    return exit_code


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    _configure_logging(args.verbose)

    if args.command == "copy":
        return cmd_copy(args)
    if args.command == "config":
        return cmd_config(
            config_path=args.config,
            init=args.init,
            print_config=args.print,
            edit=args.edit,
            editor=args.editor,
        )

    parser.print_help()
    return EXIT_FATAL_ERROR


if __name__ == "__main__":
    raise SystemExit(main())
