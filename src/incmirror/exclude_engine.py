from __future__ import annotations

from pathlib import Path, PurePath
from typing import Iterable

from wcmatch import glob


# Plain shell globs: `*` stays inside one path segment, `**` spans segments,
# and a leading `!` or `#` is an ordinary character.
GLOB_FLAGS = glob.GLOBSTAR | glob.DOTGLOB | glob.BRACE | glob.FORCEUNIX | glob.CASE


class PatternError(ValueError):
    """An exclude pattern could not be compiled."""


def _check_pattern(pattern: str) -> None:
    if not pattern.strip():
        raise PatternError("exclude pattern must not be blank")

    escaped = False
    in_class = False
    for char in pattern:
        if escaped:
            escaped = False
        elif char == "\\":
            escaped = True
        elif char == "[" and not in_class:
            in_class = True
        elif char == "]" and in_class:
            in_class = False
    if in_class:
        raise PatternError(f"unclosed character class in pattern '{pattern}'")


def _compile(pattern: str) -> str:
    try:
        glob.translate(pattern, flags=GLOB_FLAGS)
    except ValueError as exc:
        raise PatternError(f"invalid exclude pattern '{pattern}': {exc}") from exc
    return pattern


def as_match_path(path: PurePath | str) -> str:
    return path.as_posix() if isinstance(path, PurePath) else str(path).replace("\\", "/")


class ExcludeMatcher:
    """Combined glob test plus per-pattern globs for attribution.

    The combined test answers the common "not excluded" case in one call; the
    single patterns are only consulted once a path is known to be excluded.
    """

    def __init__(self, patterns: Iterable[str], case_insensitive: bool = False) -> None:
        self.patterns = list(patterns)
        self.case_insensitive = case_insensitive

        compiled: list[str] = []
        for pattern in self.patterns:
            _check_pattern(pattern)
            compiled.append(_compile(pattern.lower() if case_insensitive else pattern))

        self._combined = compiled
        self._singles = list(zip(self.patterns, compiled))

    def __bool__(self) -> bool:
        return bool(self.patterns)

    def is_match(self, path: PurePath | str) -> str | None:
        candidate = as_match_path(path)
        if self.case_insensitive:
            candidate = candidate.lower()

        if not candidate or not self._combined:
            return None
        if not glob.globmatch(candidate, self._combined, flags=GLOB_FLAGS):
            return None

        for pattern, single in self._singles:
            if glob.globmatch(candidate, single, flags=GLOB_FLAGS):
                return pattern
        return self.patterns[0]

    def match_entry(self, source: Path, relative_path: Path, absolute: bool = False) -> str | None:
        target = source.absolute() if absolute else relative_path
        matched = self.is_match(target)
        if matched is None:
            matched = self.is_match(relative_path.name)
        return matched


def build_exclude_matcher(patterns: Iterable[str], case_insensitive: bool = False) -> ExcludeMatcher:
    return ExcludeMatcher(patterns, case_insensitive=case_insensitive)
