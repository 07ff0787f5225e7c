from __future__ import annotations

from collections import deque
from dataclasses import dataclass
import logging
from pathlib import Path
import queue
import threading

from rich.console import Console
from rich.control import Control
from rich.segment import ControlType

from incmirror.progress import fit_to_width, render_progress_line


log = logging.getLogger("incmirror.output")

DEFAULT_QUEUE_SIZE = 1024
_SEND_POLL_SECONDS = 0.1
_CLOSE = object()


@dataclass(slots=True, frozen=True)
class MessageEvent:
    text: str


@dataclass(slots=True, frozen=True)
class ProgressEvent:
    done: int
    total: int
    byte_mode: bool = False


class _Sink:
    """Single consumer thread of a bounded queue; the only writer of its resource."""

    def __init__(self, name: str, maxsize: int = DEFAULT_QUEUE_SIZE) -> None:
        self.name = name
        self._thread = threading.Thread(target=self._run, name=name, daemon=True)
        self._queue: queue.Queue[object] = queue.Queue(maxsize=maxsize)
        self.failed = False
        self._sink_closed = False

    def start(self) -> None:
        self._thread.start()

    def is_alive(self) -> bool:
        return self._thread.is_alive()

    def send(self, event: object) -> bool:
        # Blocks while the queue is full; gives up once the consumer is gone.
        while self.is_alive() and not self.failed:
            try:
                self._queue.put(event, timeout=_SEND_POLL_SECONDS)
                return True
            except queue.Full:
                continue
        return False

    def close(self) -> None:
        if self._sink_closed:
            return
        self._sink_closed = True
        if self.is_alive():
            self.send(_CLOSE)
            self._thread.join()
        self._finish()

    def _run(self) -> None:
        try:
            while True:
                event = self._queue.get()
                if event is _CLOSE:
                    break
                self._handle_event(event)
        except Exception:
            self.failed = True
            log.exception("%s stopped", self.name)

    def _handle_event(self, event: object) -> None:
        raise NotImplementedError

    def _finish(self) -> None:
        pass


class TerminalSink(_Sink):
    """Owns the terminal: a scroll area above a reserved progress row."""

    def __init__(
        self,
        console: Console | None = None,
        progress_label: str = "",
        maxsize: int = DEFAULT_QUEUE_SIZE,
    ) -> None:
        super().__init__(name="incmirror-terminal", maxsize=maxsize)
        self.console = console or Console()
        self.progress_label = progress_label
        self._lines: deque[str] = deque()
        self._screen_ready = False
        self._plain = not self.console.is_terminal

    def start(self) -> None:
        if not self._plain:
            self.console.control(Control.clear())
            self._screen_ready = True
        super().start()

    def _erase_row(self, row: int) -> None:
        self.console.control(Control.move_to(0, row), Control((ControlType.ERASE_IN_LINE, 2)))

    def _redraw(self, width: int, scroll_rows: int) -> None:
        if width <= 0:
            return
        max_content = width - 1
        for row in range(scroll_rows):
            self._erase_row(row)
            if row < len(self._lines):
                self.console.out(fit_to_width(self._lines[row], max_content), end="", highlight=False)
        self.console.file.flush()

    def _progress_line(self, event: ProgressEvent, width: int) -> str:
        return render_progress_line(
            event.done,
            event.total,
            width,
            label=self.progress_label,
            byte_mode=event.byte_mode,
        )

    def _write_plain(self, event: object, width: int) -> None:
        # No cursor control when piped: one line per event, in arrival order.
        if isinstance(event, MessageEvent):
            self.console.out(event.text, highlight=False)
        elif isinstance(event, ProgressEvent):
            self.console.out(self._progress_line(event, width), highlight=False)
        self.console.file.flush()

    def _handle_event(self, event: object) -> None:
        width, height = self.console.size
        if self._plain:
            self._write_plain(event, width)
            return

        scroll_rows = max(height - 1, 0)

        while len(self._lines) > scroll_rows:
            self._lines.popleft()

        if isinstance(event, MessageEvent):
            if scroll_rows == 0:
                return
            self._lines.append(event.text)
            if len(self._lines) > scroll_rows:
                self._lines.popleft()
            self._redraw(width, scroll_rows)
        elif isinstance(event, ProgressEvent):
            self._erase_row(scroll_rows)
            self.console.out(self._progress_line(event, width), end="", highlight=False)
            self.console.file.flush()

    def _finish(self) -> None:
        if not self._screen_ready:
            return
        _, height = self.console.size
        self.console.control(Control.move_to(0, max(height - 1, 0)))
        self.console.line()


class LogSink(_Sink):
    """Owns the audit log file; appends one line per event."""

    def __init__(self, path: Path, maxsize: int = DEFAULT_QUEUE_SIZE) -> None:
        super().__init__(name="incmirror-log", maxsize=maxsize)
        self.path = path
        self._handler = logging.FileHandler(path, mode="w", encoding="utf-8")
        self._handler.setFormatter(logging.Formatter("%(message)s"))

    def _handle_event(self, event: object) -> None:
        text = event.text if isinstance(event, MessageEvent) else str(event)
        record = logging.makeLogRecord({"msg": text, "levelno": logging.INFO, "levelname": "INFO"})
        self._handler.handle(record)

    def _finish(self) -> None:
        self._handler.flush()
        self._handler.close()
