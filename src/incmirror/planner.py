from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Iterator

from incmirror.exclude_engine import ExcludeMatcher
from incmirror.models import CopyOperation, FileEntry, MirrorPlan


log = logging.getLogger("incmirror.planner")


def is_newer(source_file: Path, destination_file: Path) -> bool:
    """Return True when ``source_file`` should replace ``destination_file``.

    A destination whose metadata cannot be read counts as missing. Equal
    modification times are unchanged. Errors reading the source propagate.
    """
    source_mtime = source_file.stat().st_mtime_ns
    try:
        destination_mtime = destination_file.stat().st_mtime_ns
    except OSError:
        return True
    return source_mtime > destination_mtime


def destination_for(destination_root: Path, relative_path: Path) -> Path:
    if relative_path.is_absolute() or ".." in relative_path.parts:
        raise ValueError(f"Relative path escapes the destination root: {relative_path}")
    return destination_root / relative_path


def _iter_entries(source_root: Path) -> Iterator[FileEntry]:
    for root_str, _, files in os.walk(source_root, topdown=True, followlinks=False):
        root = Path(root_str)
        for file_name in files:
            source_file = root / file_name
            try:
                rel_path = source_file.relative_to(source_root)
            except ValueError:
                continue

            try:
                if not source_file.is_file():
                    continue
                stat = source_file.stat()
            except OSError as exc:
                log.debug("Dropping unreadable entry %s: %s", source_file, exc)
                continue

            yield FileEntry(
                source=source_file,
                relative_path=rel_path,
                size=stat.st_size,
                mtime_ns=stat.st_mtime_ns,
            )


def scan_source(source_root: Path) -> list[FileEntry]:
    """Walk ``source_root`` once and return its regular files sorted by path."""
    entries = list(_iter_entries(source_root))
    entries.sort(key=lambda entry: entry.relative_path.as_posix())
    return entries


def plan_operations(
    source_root: Path,
    destination_root: Path,
    matcher: ExcludeMatcher | None = None,
    *,
    delta: bool = False,
    absolute_exclude: bool = False,
) -> MirrorPlan:
    plan = MirrorPlan(operations=[], delta=delta)

    for entry in scan_source(source_root):
        destination_file = destination_for(destination_root, entry.relative_path)

        if matcher:
            pattern = matcher.match_entry(entry.source, entry.relative_path, absolute=absolute_exclude)
            if pattern is not None:
                plan.operations.append(CopyOperation(entry, destination_file, excluded_by=pattern))
                continue

        if delta:
            try:
                changed = is_newer(entry.source, destination_file)
            except OSError:
                # Left for the executor, which reports it as an error.
                changed = True
            if not changed:
                plan.unchanged += 1
                continue
            plan.total_bytes += entry.size

        plan.operations.append(CopyOperation(entry, destination_file))

    log.debug(
        "Planned %s operation(s) from %s (delta=%s, unchanged=%s, bytes=%s)",
        len(plan.operations),
        source_root,
        delta,
        plan.unchanged,
        plan.total_bytes,
    )
    return plan
