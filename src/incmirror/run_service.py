from __future__ import annotations

from dataclasses import dataclass, field
import logging
from pathlib import Path

from rich.console import Console

from incmirror.config import AppConfig
from incmirror.exclude_engine import PatternError, build_exclude_matcher
from incmirror.messages import Messages
from incmirror.mirror_engine import ExecutorConfig, FatalRunError, RunContext, mirror_directory
from incmirror.models import MirrorStats, ShowSkipped
from incmirror.output_sinks import LogSink, MessageEvent


EXIT_SUCCESS = 0
EXIT_FATAL_ERROR = 1
EXIT_PARTIAL_FAILURES = 2
EXIT_INVALID_EXCLUDE = 3


@dataclass(slots=True)
class CopyRequest:
    source: Path
    destination: Path
    excludes: list[str] = field(default_factory=list)
    dry_run: bool = False
    quiet: bool = False
    timestamp: bool = False
    ignore_case: bool = False
    absolute_exclude: bool = False
    delta: bool = False
    show_skipped: ShowSkipped = ShowSkipped.ALL
    log_file: Path | None = None
    worker_count: int | None = None


def _say(console: Console, text: str) -> None:
    console.print(text, markup=False, highlight=False, emoji=False, soft_wrap=True)


def _status(text: str, context: RunContext, console: Console) -> None:
    if not context.quiet:
        _say(console, context.stamp(text))
    if context.log_sink is not None:
        context.log_sink.send(MessageEvent(context.stamp(text)))


def summary_line(messages: Messages, stats: MirrorStats) -> str:
    return (
        f"{messages.backup_ended} ({messages.files_total.format(stats.total)}. "
        f"{messages.files_copied.format(stats.copied)}, "
        f"{messages.files_skipped.format(stats.skipped)})"
    )


def _open_log_sink(path: Path | None, messages: Messages, err_console: Console, log: logging.Logger) -> LogSink | None:
    if path is None:
        return None
    try:
        sink = LogSink(path)
    except OSError as exc:
        log.warning("Cannot open log file %s: %s", path, exc)
        _say(err_console, f"{messages.log_file_error}: {exc}")
        return None
    sink.start()
    return sink


def run_copy(
    request: CopyRequest,
    config: AppConfig,
    messages: Messages,
    console: Console | None = None,
    err_console: Console | None = None,
    logger: logging.Logger | None = None,
) -> tuple[int, MirrorStats]:
    log = logger or logging.getLogger("incmirror.run")
    console = console or Console()
    err_console = err_console or Console(stderr=True)

    try:
        matcher = build_exclude_matcher(request.excludes, case_insensitive=request.ignore_case)
    except PatternError as exc:
        log.error("Invalid exclude pattern: %s", exc)
        _say(err_console, f"❌ {messages.error_exclude_parsing}: {exc}")
        return EXIT_INVALID_EXCLUDE, MirrorStats()

    try:
        executor_config = ExecutorConfig(request.worker_count or config.worker_count)
    except ValueError as exc:
        _say(err_console, f"{messages.generic_error}: {exc}")
        return EXIT_FATAL_ERROR, MirrorStats()

    context = RunContext(
        quiet=request.quiet,
        with_timestamp=request.timestamp,
        timestamp_format=config.timestamp_format,
        dry_run=request.dry_run,
        delta=request.delta,
        show_skipped=request.show_skipped,
        absolute_exclude=request.absolute_exclude,
        log_sink=_open_log_sink(request.log_file, messages, err_console, log),
        console=console,
    )

    try:
        _status(messages.backup_init, context, console)
        _status(
            f"{messages.starting_backup} {request.source} {messages.to} {request.destination}",
            context,
            console,
        )
        if request.dry_run:
            _status(messages.dry_run_notice, context, console)

        try:
            stats = mirror_directory(
                request.source,
                request.destination,
                messages,
                matcher=matcher,
                context=context,
                executor_config=executor_config,
            )
        except FatalRunError as exc:
            log.error("Run failed for %s: %s", request.source, exc)
            error_line = f"{messages.generic_error}: {exc}"
            _say(err_console, context.stamp(error_line))
            if context.log_sink is not None:
                context.log_sink.send(MessageEvent(context.stamp(error_line)))
            return EXIT_FATAL_ERROR, MirrorStats()

        _status(summary_line(messages, stats), context, console)
        if request.show_skipped is ShowSkipped.SUMMARY and stats.skipped:
            _status(
                messages.skipped_breakdown.format(stats.unchanged, stats.excluded, stats.failed),
                context,
                console,
            )
        log.info(
            "%s -> %s | copied=%s unchanged=%s excluded=%s failed=%s",
            request.source,
            request.destination,
            stats.copied,
            stats.unchanged,
            stats.excluded,
            stats.failed,
        )
    finally:
        if context.log_sink is not None:
            context.log_sink.close()

    exit_code = EXIT_PARTIAL_FAILURES if stats.failed else EXIT_SUCCESS
    return exit_code, stats
