from __future__ import annotations

from dataclasses import dataclass, field
import os
from pathlib import Path
import subprocess
import sys
from typing import Any

import yaml

from incmirror.mirror_engine import DEFAULT_TIMESTAMP_FORMAT, default_worker_count


DEFAULT_CONFIG_TEMPLATE = """\
# incmirror configuration file
# ----------------------------

# Language for messages.
# Supported values:
# - auto   -> uses system locale
# - en     -> English
# - it     -> Italian
language: auto

# Timestamp format for log entries (strftime syntax)
# Common placeholders:
# - %Y -> year (e.g. 2025)
# - %m -> month (01-12)
# - %d -> day (01-31)
# - %H -> hour (00-23)
# - %M -> minute (00-59)
# - %S -> second (00-59)
timestamp_format: '%Y-%m-%d %H:%M:%S'

# Number of parallel copy workers (defaults to the number of CPUs)
# worker_count: 8
"""


@dataclass(slots=True)
class AppConfig:
    language: str = "auto"
    timestamp_format: str = DEFAULT_TIMESTAMP_FORMAT
    worker_count: int = field(default_factory=default_worker_count)

    def to_yaml(self) -> str:
        payload = {
            "language": self.language,
            "timestamp_format": self.timestamp_format,
            "worker_count": self.worker_count,
        }
        return yaml.safe_dump(payload, sort_keys=False, allow_unicode=True)


def config_file() -> Path:
    if sys.platform == "win32":
        appdata = os.environ.get("APPDATA", ".")
        return Path(appdata) / "incmirror" / "incmirror.yaml"
    return Path.home() / ".incmirror" / "incmirror.yaml"


def _as_str(value: Any, field_name: str, default: str) -> str:
    if value is None:
        return default
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"{field_name} must be a non-empty string")
    return value


def _as_positive_int(value: Any, field_name: str, default: int) -> int:
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{field_name} must be an integer")
    if value <= 0:
        raise ValueError(f"{field_name} must be greater than 0")
    return value


def load_config(config_path: Path | None = None) -> AppConfig:
    path = config_path or config_file()
    if not path.exists():
        raise ValueError(f"Config file does not exist: {path}")

    loaded = yaml.safe_load(path.read_text(encoding="utf-8"))
    if loaded is None:
        loaded = {}
    if not isinstance(loaded, dict):
        raise ValueError("Config root must be a mapping")

    return AppConfig(
        language=_as_str(loaded.get("language"), "language", default="auto"),
        timestamp_format=_as_str(
            loaded.get("timestamp_format"), "timestamp_format", default=DEFAULT_TIMESTAMP_FORMAT
        ),
        worker_count=_as_positive_int(
            loaded.get("worker_count"), "worker_count", default=default_worker_count()
        ),
    )


def load_config_or_default(config_path: Path | None = None) -> AppConfig:
    try:
        return load_config(config_path)
    except (OSError, ValueError, yaml.YAMLError):
        return AppConfig()


def write_default_config(config_path: Path | None = None) -> Path:
    path = config_path or config_file()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(DEFAULT_CONFIG_TEMPLATE, encoding="utf-8")
    return path


def edit_config(config_path: Path | None = None, editor: str | None = None) -> int:
    path = config_path or config_file()
    editor_cmd = editor or os.environ.get("EDITOR") or os.environ.get("VISUAL")
    if not editor_cmd:
        editor_cmd = "notepad" if sys.platform == "win32" else "vi"

    try:
        completed = subprocess.run([editor_cmd, str(path)], check=False)
    except OSError as exc:
        raise RuntimeError(f"Failed to open editor '{editor_cmd}': {exc}") from exc
    return completed.returncode
