import io
import os
from pathlib import Path

import pytest
from rich.console import Console

from incmirror import mirror_engine
from incmirror.exclude_engine import build_exclude_matcher
from incmirror.messages import load_messages
from incmirror.mirror_engine import ExecutorConfig, FatalRunError, RunContext, mirror_directory
from incmirror.models import ShowSkipped
from incmirror.output_sinks import LogSink


MESSAGES, _ = load_messages("en")


def _write(path: Path, content: str, mtime: float | None = None) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    if mtime is not None:
        os.utime(path, (mtime, mtime))


def _snapshot(root: Path) -> dict[str, bytes]:
    if not root.exists():
        return {}
    return {
        path.relative_to(root).as_posix(): path.read_bytes()
        for path in sorted(root.rglob("*"))
        if path.is_file()
    }


def _quiet(**kwargs) -> RunContext:
    return RunContext(quiet=True, **kwargs)


@pytest.mark.parametrize("delta", [False, True])
def test_newer_file_copied_and_excluded_file_skipped(tmp_path: Path, delta: bool) -> None:
    source = tmp_path / "src"
    destination = tmp_path / "dst"
    _write(source / "keep.txt", "new", mtime=1_700_000_060)
    _write(source / "skip.txt", "skip")
    _write(destination / "keep.txt", "old", mtime=1_700_000_000)

    stats = mirror_directory(
        source,
        destination,
        MESSAGES,
        matcher=build_exclude_matcher(["skip.txt"]),
        context=_quiet(delta=delta),
        executor_config=ExecutorConfig(worker_count=2),
    )

    assert (stats.copied, stats.skipped) == (1, 1)
    assert stats.excluded == 1
    assert (destination / "keep.txt").read_text(encoding="utf-8") == "new"
    assert not (destination / "skip.txt").exists()


def test_pattern_naming_a_directory_keeps_its_files(tmp_path: Path) -> None:
    source = tmp_path / "src"
    destination = tmp_path / "dst"
    _write(source / "cache" / "data.bin", "data")
    _write(source / "cache.txt", "x")

    stats = mirror_directory(
        source,
        destination,
        MESSAGES,
        matcher=build_exclude_matcher(["cache", "#notes.txt"]),
        context=_quiet(),
    )

    assert (stats.copied, stats.excluded) == (2, 0)
    assert (destination / "cache" / "data.bin").read_text(encoding="utf-8") == "data"


def test_empty_source_leaves_destination_untouched(tmp_path: Path) -> None:
    source = tmp_path / "src"
    source.mkdir()
    destination = tmp_path / "dst"

    stats = mirror_directory(source, destination, MESSAGES, context=_quiet())

    assert (stats.copied, stats.skipped) == (0, 0)
    assert not destination.exists()


def test_missing_destination_tree_is_created(tmp_path: Path) -> None:
    source = tmp_path / "src"
    destination = tmp_path / "does" / "not" / "exist"
    _write(source / "a" / "b" / "c.txt", "deep")
    _write(source / "top.txt", "top")

    stats = mirror_directory(source, destination, MESSAGES, context=_quiet())

    assert stats.copied == 2
    assert (destination / "a" / "b" / "c.txt").read_text(encoding="utf-8") == "deep"
    assert (destination / "top.txt").read_text(encoding="utf-8") == "top"


@pytest.mark.parametrize("delta", [False, True])
def test_second_run_copies_nothing(tmp_path: Path, delta: bool) -> None:
    source = tmp_path / "src"
    destination = tmp_path / "dst"
    for index in range(20):
        _write(source / f"dir{index % 3}" / f"file{index}.txt", f"content {index}")

    first = mirror_directory(source, destination, MESSAGES, context=_quiet(delta=delta))
    second = mirror_directory(source, destination, MESSAGES, context=_quiet(delta=delta))

    assert first.copied == 20
    assert second.copied == 0
    assert second.unchanged == 20


@pytest.mark.parametrize("delta", [False, True])
def test_dry_run_reports_counts_without_touching_destination(tmp_path: Path, delta: bool) -> None:
    source = tmp_path / "src"
    destination = tmp_path / "dst"
    _write(source / "new.txt", "new")
    _write(source / "nested" / "also-new.txt", "also new")
    _write(source / "changed.txt", "changed", mtime=1_700_000_060)
    _write(destination / "changed.txt", "stale", mtime=1_700_000_000)
    _write(source / "ignored.tmp", "tmp")
    matcher = build_exclude_matcher(["*.tmp"])
    before = _snapshot(destination)

    dry = mirror_directory(source, destination, MESSAGES, matcher=matcher, context=_quiet(dry_run=True, delta=delta))

    assert _snapshot(destination) == before
    assert not (destination / "nested").exists()

    real = mirror_directory(source, destination, MESSAGES, matcher=matcher, context=_quiet(delta=delta))

    assert (dry.copied, dry.skipped) == (real.copied, real.skipped) == (3, 1)


def test_counts_are_conserved(tmp_path: Path) -> None:
    source = tmp_path / "src"
    destination = tmp_path / "dst"
    for index in range(40):
        _write(source / f"f{index:02}.{'log' if index % 4 == 0 else 'txt'}", str(index), mtime=1_700_000_000)
    for index in range(0, 40, 5):
        name = f"f{index:02}.{'log' if index % 4 == 0 else 'txt'}"
        _write(destination / name, "same age", mtime=1_700_000_000)

    stats = mirror_directory(
        source,
        destination,
        MESSAGES,
        matcher=build_exclude_matcher(["*.log"]),
        context=_quiet(),
        executor_config=ExecutorConfig(worker_count=4),
    )

    assert stats.copied + stats.skipped == 40
    assert stats.excluded == 10
    assert stats.unchanged == 6
    assert stats.copied == 24


def test_copy_failure_is_counted_and_does_not_abort(tmp_path: Path, monkeypatch) -> None:
    source = tmp_path / "src"
    destination = tmp_path / "dst"
    _write(source / "bad.txt", "bad")
    _write(source / "good.txt", "good")

    real_copy2 = mirror_engine.shutil.copy2

    def flaky_copy2(src, dst, *args, **kwargs):
        if Path(src).name == "bad.txt":
            raise PermissionError(13, "Permission denied", str(src))
        return real_copy2(src, dst, *args, **kwargs)

    monkeypatch.setattr(mirror_engine.shutil, "copy2", flaky_copy2)

    stats = mirror_directory(source, destination, MESSAGES, context=_quiet())

    assert stats.copied == 1
    assert stats.failed == 1
    assert stats.skipped == 1
    assert (destination / "good.txt").exists()
    assert not (destination / "bad.txt").exists()
    assert list(destination.glob("tmp*")) == []


def test_source_vanishing_after_planning_counts_as_error(tmp_path: Path, monkeypatch) -> None:
    source = tmp_path / "src"
    destination = tmp_path / "dst"
    _write(source / "gone.txt", "soon gone")
    real_plan = mirror_engine.plan_operations

    def plan_then_delete(*args, **kwargs):
        plan = real_plan(*args, **kwargs)
        (source / "gone.txt").unlink()
        return plan

    monkeypatch.setattr(mirror_engine, "plan_operations", plan_then_delete)

    stats = mirror_directory(source, destination, MESSAGES, context=_quiet())

    assert stats.failed == 1
    assert stats.unchanged == 0
    assert stats.copied == 0


def test_log_sink_receives_every_event(tmp_path: Path) -> None:
    source = tmp_path / "src"
    destination = tmp_path / "dst"
    _write(source / "a.txt", "a")
    _write(source / "b.tmp", "b")
    _write(source / "c.txt", "c", mtime=1_700_000_000)
    _write(destination / "c.txt", "c", mtime=1_700_000_000)
    log_file = tmp_path / "audit.log"
    sink = LogSink(log_file)
    sink.start()

    context = RunContext(
        quiet=True,
        with_timestamp=True,
        timestamp_format="%Y",
        show_skipped=ShowSkipped.NEVER,
        log_sink=sink,
    )
    mirror_directory(
        source,
        destination,
        MESSAGES,
        matcher=build_exclude_matcher(["*.tmp"]),
        context=context,
    )
    sink.close()

    lines = log_file.read_text(encoding="utf-8").splitlines()
    assert len(lines) == 3
    assert all(line.startswith("[") and "] #" in line for line in lines)
    assert any(line.endswith(f"{source / 'a.txt'} - copied.") for line in lines)
    assert any(line.endswith(f"{source / 'b.tmp'} - skipped (pattern: *.tmp).") for line in lines)
    assert any(line.endswith(f"{source / 'c.txt'} - skipped.") for line in lines)
    assert sorted(line.split("] ", 1)[1].split(" ")[0] for line in lines) == ["#1", "#2", "#3"]


def test_terminal_output_respects_show_skipped_policy(tmp_path: Path) -> None:
    source = tmp_path / "src"
    destination = tmp_path / "dst"
    _write(source / "copied.txt", "x")
    _write(source / "same.txt", "s", mtime=1_700_000_000)
    _write(destination / "same.txt", "s", mtime=1_700_000_000)
    buffer = io.StringIO()
    console = Console(file=buffer, width=200, height=20, force_terminal=True, color_system=None)

    mirror_directory(
        source,
        destination,
        MESSAGES,
        context=RunContext(console=console, show_skipped=ShowSkipped.NEVER),
    )

    output = buffer.getvalue()
    assert "copied.txt - copied." in output
    assert "same.txt" not in output
    assert "Progress 2/2 (100%)" in output


def test_show_skipped_all_lists_unchanged_files(tmp_path: Path) -> None:
    source = tmp_path / "src"
    destination = tmp_path / "dst"
    _write(source / "same.txt", "s", mtime=1_700_000_000)
    _write(destination / "same.txt", "s", mtime=1_700_000_000)
    buffer = io.StringIO()
    console = Console(file=buffer, width=200, height=20, force_terminal=True, color_system=None)

    stats = mirror_directory(
        source,
        destination,
        MESSAGES,
        context=RunContext(console=console, show_skipped=ShowSkipped.ALL),
    )

    assert stats.unchanged == 1
    assert "same.txt - skipped." in buffer.getvalue()


def test_progress_is_reported_every_sixteen_operations(tmp_path: Path) -> None:
    source = tmp_path / "src"
    for index in range(40):
        _write(source / f"f{index:02}.txt", str(index))
    buffer = io.StringIO()
    console = Console(file=buffer, width=200, height=20, force_terminal=True, color_system=None)

    mirror_directory(
        source,
        tmp_path / "dst",
        MESSAGES,
        context=RunContext(console=console),
        executor_config=ExecutorConfig(worker_count=4),
    )

    output = buffer.getvalue()
    assert "Progress 16/40 (40%)" in output
    assert "Progress 32/40 (80%)" in output
    assert "Progress 40/40 (100%)" in output
    assert "Progress 17/40" not in output


def test_delta_mode_reports_progress_in_bytes(tmp_path: Path) -> None:
    source = tmp_path / "src"
    _write(source / "a.bin", "x" * 2000)
    buffer = io.StringIO()
    console = Console(file=buffer, width=200, height=20, force_terminal=True, color_system=None)

    mirror_directory(source, tmp_path / "dst", MESSAGES, context=RunContext(console=console, delta=True))

    assert "2.0 kB/2.0 kB (100%)" in buffer.getvalue()


def test_missing_source_is_fatal(tmp_path: Path) -> None:
    with pytest.raises(FatalRunError):
        mirror_directory(tmp_path / "missing", tmp_path / "dst", MESSAGES, context=_quiet())


def test_destination_inside_source_is_fatal(tmp_path: Path) -> None:
    source = tmp_path / "src"
    _write(source / "a.txt", "a")

    with pytest.raises(FatalRunError):
        mirror_directory(source, source / "mirror", MESSAGES, context=_quiet())


@pytest.mark.parametrize("worker_count", [0, -2])
def test_executor_config_requires_positive_workers(worker_count: int) -> None:
    with pytest.raises(ValueError):
        ExecutorConfig(worker_count=worker_count)


def test_run_context_stamp() -> None:
    assert RunContext().stamp("line") == "line"
    stamped = RunContext(with_timestamp=True, timestamp_format="%Y").stamp("line")
    assert stamped.endswith("] line")
    assert len(stamped.split("]")[0]) == len("[2025")
    assert RunContext(with_timestamp=True).stamp("   ") == "   "
