from __future__ import annotations

from rich.cells import cell_len, set_cell_size
from rich.filesize import decimal


MIN_BAR_WIDTH = 10
MAX_BAR_WIDTH = 50
FILLED_CELL = "█"
EMPTY_CELL = "░"


def truncate_to_width(text: str, max_width: int) -> str:
    """Cut ``text`` to at most ``max_width`` terminal cells."""
    if max_width <= 0:
        return ""
    if cell_len(text) <= max_width:
        return text
    return set_cell_size(text, max_width)


def fit_to_width(text: str, width: int) -> str:
    """Truncate or pad ``text`` to exactly ``width`` cells."""
    if width <= 0:
        return ""
    return set_cell_size(text, width)


def progress_fraction(done: int, total: int) -> float:
    if total <= 0:
        return 0.0
    return min(max(done / total, 0.0), 1.0)


def format_counter(done: int, total: int, byte_mode: bool) -> str:
    if byte_mode:
        return f"{decimal(done)}/{decimal(total)}"
    return f"{done}/{total}"


def render_bar(fraction: float, bar_width: int) -> str:
    filled = round(fraction * bar_width)
    return f"[{FILLED_CELL * filled}{EMPTY_CELL * (bar_width - filled)}]"


def render_progress_line(
    done: int,
    total: int,
    width: int,
    *,
    label: str = "",
    byte_mode: bool = False,
) -> str:
    """Render the bottom-row progress line for a terminal ``width`` cells wide.

    The bar takes whatever room the label, counter and percentage leave,
    bounded by ``MIN_BAR_WIDTH`` and ``MAX_BAR_WIDTH``. The finished line is
    cut by display width so it can never wrap into the row above.
    """
    fraction = progress_fraction(done, total)
    prefix = " ".join(
        part
        for part in (label, format_counter(done, total, byte_mode), f"({fraction * 100:.0f}%)")
        if part
    )

    max_content = max(width - 1, 0)
    available = max_content - cell_len(prefix) - 3
    bar_width = min(max(available, MIN_BAR_WIDTH), MAX_BAR_WIDTH)

    line = f"{prefix} {render_bar(fraction, bar_width)}"
    return truncate_to_width(line, max_content)
