from __future__ import annotations

from dataclasses import dataclass, fields
import locale


DEFAULT_LANGUAGE = "en"

TRANSLATIONS: dict[str, dict[str, str]] = {
    "en": {
        "cur_conf": "Current configuration",
        "conf_file_not_found": "Configuration file not found",
        "conf_initialized": "Configuration file initialized at",
        "backup_init": "incmirror - incremental directory mirror",
        "backup_ended": "Backup completed",
        "starting_backup": "Starting backup of",
        "to": "to",
        "copying_file": "Copying",
        "language_not_supported": "Language '{}' is not supported, falling back to English.",
        "files_total": "{} files processed",
        "files_copied": "{} copied",
        "files_skipped": "{} skipped",
        "skipped_breakdown": "Skipped: {} unchanged, {} excluded, {} failed",
        "copy_progress": "Progress",
        "copied_file": "copied",
        "skipped_file": "skipped",
        "failed_file": "failed",
        "dry_run_notice": "Dry run: no file will be written.",
        "generic_error": "An error occurred",
        "error_exclude_parsing": "Invalid exclude pattern",
        "log_file_error": "Failed to create log file",
    },
    "it": {
        "cur_conf": "Configurazione attuale",
        "conf_file_not_found": "File di configurazione non trovato",
        "conf_initialized": "File di configurazione inizializzato in",
        "backup_init": "incmirror - mirror incrementale di directory",
        "backup_ended": "Backup completato",
        "starting_backup": "Avvio del backup di",
        "to": "in",
        "copying_file": "Copia di",
        "language_not_supported": "La lingua '{}' non è supportata, uso l'inglese.",
        "files_total": "{} file elaborati",
        "files_copied": "{} copiati",
        "files_skipped": "{} saltati",
        "skipped_breakdown": "Saltati: {} invariati, {} esclusi, {} con errori",
        "copy_progress": "Avanzamento",
        "copied_file": "copiato",
        "skipped_file": "saltato",
        "failed_file": "errore",
        "dry_run_notice": "Simulazione: nessun file verrà scritto.",
        "generic_error": "Si è verificato un errore",
        "error_exclude_parsing": "Pattern di esclusione non valido",
        "log_file_error": "Impossibile creare il file di log",
    },
}


@dataclass(slots=True, frozen=True)
class Messages:
    cur_conf: str
    conf_file_not_found: str
    conf_initialized: str
    backup_init: str
    backup_ended: str
    starting_backup: str
    to: str
    copying_file: str
    language_not_supported: str
    files_total: str
    files_copied: str
    files_skipped: str
    skipped_breakdown: str
    copy_progress: str
    copied_file: str
    skipped_file: str
    failed_file: str
    dry_run_notice: str
    generic_error: str
    error_exclude_parsing: str
    log_file_error: str

    @classmethod
    def from_dict(cls, raw: dict[str, str]) -> "Messages":
        missing = [item.name for item in fields(cls) if item.name not in raw]
        if missing:
            raise ValueError(f"Message bundle is missing keys: {', '.join(missing)}")
        return cls(**{item.name: raw[item.name] for item in fields(cls)})


def system_language() -> str:
    try:
        code = locale.getlocale()[0]
    except ValueError:
        code = None
    if not code:
        return DEFAULT_LANGUAGE
    base = code.replace("-", "_").split("_")[0].split(".")[0].lower()
    if base in {"", "c", "posix"}:
        return DEFAULT_LANGUAGE
    return base


def resolve_language(configured: str) -> str:
    configured = (configured or "auto").strip().lower()
    if configured == "auto":
        return system_language()
    return configured


def load_messages(language: str) -> tuple[Messages, str | None]:
    """Return the bundle for ``language`` plus a warning when falling back."""
    code = resolve_language(language)
    raw = TRANSLATIONS.get(code)
    if raw is not None:
        return Messages.from_dict(raw), None

    fallback = Messages.from_dict(TRANSLATIONS[DEFAULT_LANGUAGE])
    return fallback, fallback.language_not_supported.format(code)
