from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime
import logging
import os
from pathlib import Path
import shutil
import tempfile
import threading

from rich.console import Console

from incmirror.exclude_engine import ExcludeMatcher
from incmirror.messages import Messages
from incmirror.models import CopyOperation, FileEntry, MirrorPlan, MirrorStats, RunState, ShowSkipped
from incmirror.output_sinks import LogSink, MessageEvent, ProgressEvent, TerminalSink
from incmirror.planner import is_newer, plan_operations


log = logging.getLogger("incmirror.engine")

DEFAULT_TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"
PROGRESS_EVERY = 16


class FatalRunError(RuntimeError):
    """The run cannot continue; nothing below the source root was processed further."""


def default_worker_count() -> int:
    return os.cpu_count() or 4


@dataclass(slots=True, frozen=True)
class ExecutorConfig:
    worker_count: int = field(default_factory=default_worker_count)

    def __post_init__(self) -> None:
        if isinstance(self.worker_count, bool) or not isinstance(self.worker_count, int):
            raise ValueError("worker_count must be an integer")
        if self.worker_count <= 0:
            raise ValueError(f"worker_count must be greater than 0, got {self.worker_count}")


@dataclass(slots=True)
class RunContext:
    quiet: bool = False
    with_timestamp: bool = False
    timestamp_format: str = DEFAULT_TIMESTAMP_FORMAT
    dry_run: bool = False
    delta: bool = False
    show_skipped: ShowSkipped = ShowSkipped.ALL
    absolute_exclude: bool = False
    log_sink: LogSink | None = None
    console: Console | None = None

    def stamp(self, line: str) -> str:
        if not self.with_timestamp or not line.strip():
            return line
        return f"[{datetime.now().strftime(self.timestamp_format)}] {line}"


class RunCounters:
    def __init__(self, unchanged: int = 0) -> None:
        self._lock = threading.Lock()
        self.copied = 0
        self.unchanged = unchanged
        self.excluded = 0
        self.failed = 0
        self.bytes_done = 0
        self.completed = 0

    def record(self, outcome: str, size: int = 0) -> tuple[int, int]:
        with self._lock:
            if outcome == "copied":
                self.copied += 1
                self.bytes_done += size
            elif outcome == "unchanged":
                self.unchanged += 1
            elif outcome == "excluded":
                self.excluded += 1
            else:
                self.failed += 1
            self.completed += 1
            return self.completed, self.bytes_done

    def snapshot(self) -> MirrorStats:
        with self._lock:
            return MirrorStats(
                copied=self.copied,
                unchanged=self.unchanged,
                excluded=self.excluded,
                failed=self.failed,
                bytes_copied=self.bytes_done,
            )


def _safe_copy(source_file: Path, destination_file: Path) -> None:
    destination_file.parent.mkdir(parents=True, exist_ok=True)
    with tempfile.NamedTemporaryFile(delete=False, dir=str(destination_file.parent)) as tmp:
        tmp_path = Path(tmp.name)
    try:
        shutil.copy2(source_file, tmp_path)
        tmp_path.replace(destination_file)
    finally:
        if tmp_path.exists():
            tmp_path.unlink(missing_ok=True)


def _validate_paths(source_root: Path, destination_root: Path) -> None:
    source_resolved = source_root.resolve()
    destination_resolved = destination_root.resolve()

    if source_resolved == destination_resolved:
        raise FatalRunError(f"Source and destination are the same directory: {source_root}")

    if destination_resolved.is_relative_to(source_resolved):
        raise FatalRunError(f"Destination is inside source, which would recurse: {destination_root}")

    if not source_root.is_dir():
        raise FatalRunError(f"Source directory does not exist or is not a directory: {source_root}")

    try:
        with os.scandir(source_root):
            pass
    except OSError as exc:
        raise FatalRunError(f"Cannot read source directory {source_root}: {exc}") from exc


class ParallelCopyExecutor:
    """Runs a plan on a thread pool.

    Workers only touch the filesystem and the shared counters. Anything meant
    for the terminal or the audit log is sent to the sink that owns it.
    """

    def __init__(self, config: ExecutorConfig, context: RunContext, messages: Messages) -> None:
        self.config = config
        self.context = context
        self.messages = messages

    def run(self, plan: MirrorPlan, terminal: TerminalSink | None = None) -> MirrorStats:
        counters = RunCounters(unchanged=plan.unchanged)
        if not plan.operations:
            return counters.snapshot()

        total_operations = len(plan.operations)
        with ThreadPoolExecutor(
            max_workers=self.config.worker_count,
            thread_name_prefix="incmirror-copy",
        ) as pool:
            futures = [
                pool.submit(self._run_operation, operation, plan, counters, total_operations, terminal)
                for operation in plan.operations
            ]
            try:
                for future in as_completed(futures):
                    future.result()
            except BaseException:
                for future in futures:
                    future.cancel()
                raise

        return counters.snapshot()

    def _run_operation(
        self,
        operation: CopyOperation,
        plan: MirrorPlan,
        counters: RunCounters,
        total_operations: int,
        terminal: TerminalSink | None,
    ) -> None:
        msg = self.messages
        entry = operation.entry

        if operation.excluded_by is not None:
            completed, bytes_done = counters.record("excluded")
            status = f"{msg.skipped_file} (pattern: {operation.excluded_by})"
            self._report(completed, entry, status, terminal, show=True)
            self._maybe_progress(completed, bytes_done, plan, total_operations, terminal)
            return

        if not plan.delta:
            try:
                changed = is_newer(entry.source, operation.destination)
            except OSError as exc:
                log.debug("Cannot compare %s: %s", entry.source, exc)
                completed, bytes_done = counters.record("failed")
                self._report(completed, entry, f"{msg.failed_file} (error: {exc})", terminal, show=True)
                self._maybe_progress(completed, bytes_done, plan, total_operations, terminal)
                return

            if not changed:
                completed, bytes_done = counters.record("unchanged")
                show = self.context.show_skipped is ShowSkipped.ALL
                self._report(completed, entry, msg.skipped_file, terminal, show=show)
                self._maybe_progress(completed, bytes_done, plan, total_operations, terminal)
                return

        try:
            if not self.context.dry_run:
                _safe_copy(entry.source, operation.destination)
        except OSError as exc:
            log.debug("Copy failed for %s: %s", entry.source, exc)
            completed, bytes_done = counters.record("failed")
            status = f"{msg.failed_file} (error: {exc})"
        else:
            completed, bytes_done = counters.record("copied", entry.size)
            status = msg.copied_file

        self._report(completed, entry, status, terminal, show=True)
        self._maybe_progress(completed, bytes_done, plan, total_operations, terminal)

    def _report(
        self,
        completed: int,
        entry: FileEntry,
        status: str,
        terminal: TerminalSink | None,
        show: bool,
    ) -> None:
        line = f"#{completed} {self.messages.copying_file} {entry.source} - {status}."
        if self.context.log_sink is not None:
            self.context.log_sink.send(MessageEvent(self.context.stamp(line)))
        if terminal is not None and show:
            terminal.send(MessageEvent(line))

    def _maybe_progress(
        self,
        completed: int,
        bytes_done: int,
        plan: MirrorPlan,
        total_operations: int,
        terminal: TerminalSink | None,
    ) -> None:
        if terminal is None:
            return
        if completed % PROGRESS_EVERY and completed != total_operations:
            return
        if plan.delta:
            terminal.send(ProgressEvent(done=bytes_done, total=plan.total_bytes, byte_mode=True))
        else:
            terminal.send(ProgressEvent(done=completed, total=total_operations))


def mirror_directory(
    source_root: Path,
    destination_root: Path,
    messages: Messages,
    matcher: ExcludeMatcher | None = None,
    context: RunContext | None = None,
    executor_config: ExecutorConfig | None = None,
) -> MirrorStats:
    """Mirror new and newer files from ``source_root`` into ``destination_root``.

    Nothing at the destination is ever deleted. Per-file problems are counted
    in the returned stats; only an unusable source root or an unexpected
    failure while executing raises ``FatalRunError``.
    """
    context = context or RunContext()
    executor_config = executor_config or ExecutorConfig()
    source_root = source_root.absolute()
    destination_root = destination_root.absolute()

    state = RunState.PLANNING
    log.debug("Run %s: %s -> %s", state.value, source_root, destination_root)
    try:
        _validate_paths(source_root, destination_root)
        plan = plan_operations(
            source_root,
            destination_root,
            matcher,
            delta=context.delta,
            absolute_exclude=context.absolute_exclude,
        )
    except FatalRunError:
        log.debug("Run %s during planning", RunState.FATAL.value)
        raise
    except OSError as exc:
        log.debug("Run %s during planning", RunState.FATAL.value)
        raise FatalRunError(f"Cannot scan {source_root}: {exc}") from exc

    terminal = None
    if not context.quiet:
        terminal = TerminalSink(context.console, progress_label=messages.copy_progress)
        terminal.start()

    state = RunState.EXECUTING
    log.debug("Run %s: %s operation(s)", state.value, len(plan.operations))
    executor = ParallelCopyExecutor(executor_config, context, messages)
    try:
        stats = executor.run(plan, terminal)
    except Exception as exc:
        state = RunState.FATAL
        log.debug("Run %s during execution: %s", state.value, exc)
        raise FatalRunError(str(exc)) from exc
    finally:
        if state is not RunState.FATAL:
            state = RunState.DRAINING
            log.debug("Run %s", state.value)
        if terminal is not None:
            terminal.close()

    state = RunState.COMPLETED
    log.debug(
        "Run %s: copied=%s unchanged=%s excluded=%s failed=%s",
        state.value,
        stats.copied,
        stats.unchanged,
        stats.excluded,
        stats.failed,
    )
    return stats
