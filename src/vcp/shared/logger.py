"""Run logger for evaluation and batch CLI entry points.

Library modules log through stdlib ``logging``; a CLI run creates one
``RunLogger`` and calls ``attach_stdlib()`` so the ``vcp`` logger tree lands
in the same console and file sinks as the run's own progress lines.
"""

from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, TextIO

TRACE = 5

_LEVEL_NAMES = {
    TRACE: "TRACE",
    logging.DEBUG: "DEBUG",
    logging.INFO: "INFO",
    logging.WARNING: "WARN",
    logging.ERROR: "ERROR",
}


class RunLogger:
    """Console + file sinks for one CLI run.

    - console: INFO and above
    - log_file: INFO and above, with a heading
    - trace_file: everything, including per-prompt TRACE lines
    """

    def __init__(
        self,
        log_file: str | Path | None = None,
        trace_file: str | Path | None = None,
        console: bool = True,
        title: str = "VCP run",
    ) -> None:
        self.title = title
        self.log_path = Path(log_file) if log_file else None
        self.trace_path = Path(trace_file) if trace_file else None
        self._sinks: list[tuple[TextIO | None, int]] = []
        if console:
            self._sinks.append((None, logging.INFO))
        if self.log_path:
            self._sinks.append((self._open(self.log_path, "log"), logging.INFO))
        if self.trace_path:
            self._sinks.append((self._open(self.trace_path, "trace"), TRACE))
        self._metrics: dict[str, Any] = {}
        self._timings: dict[str, float] = {}
        self._warnings = 0
        self._errors = 0
        self._attached: tuple[logging.Logger, logging.Handler] | None = None
        self._start = time.perf_counter()

    def _open(self, path: Path, kind: str) -> TextIO:
        path.parent.mkdir(parents=True, exist_ok=True)
        handle = open(path, "w", encoding="utf-8", buffering=1)
        handle.write(f"# {self.title} {kind} - {time.strftime('%Y-%m-%d %H:%M:%S')}\n\n")
        return handle

    def _write(self, level: int, text: str) -> None:
        for handle, threshold in self._sinks:
            if level < threshold:
                continue
            if handle is None:
                print(text, flush=True)
            else:
                handle.write(text + "\n")

    def log(self, level: int, msg: str) -> None:
        if level >= logging.ERROR:
            self._errors += 1
        elif level >= logging.WARNING:
            self._warnings += 1
        elapsed = time.perf_counter() - self._start
        name = _LEVEL_NAMES.get(level, logging.getLevelName(level))
        self._write(level, f"[{elapsed:7.2f}s] {name:5} | {msg}")

    def trace(self, msg: str) -> None:
        self.log(TRACE, msg)

    def info(self, msg: str) -> None:
        self.log(logging.INFO, msg)

    def warn(self, msg: str) -> None:
        self.log(logging.WARNING, msg)

    def error(self, msg: str) -> None:
        self.log(logging.ERROR, msg)

    def section(self, title: str) -> None:
        rule = "=" * 72
        for line in ("", rule, f"  {title}", rule):
            self._write(logging.INFO, line)

    def progress(self, current: int, total: int, prompt_id: str = "") -> None:
        width = 20
        done = int(width * current / total) if total else 0
        suffix = f"  {prompt_id}" if prompt_id else ""
        self.info(f"[{current:>4}/{total}] {'#' * done}{'.' * (width - done)}{suffix}")

    def metric(self, name: str, value: Any, unit: str = "") -> None:
        self._metrics[name] = value
        shown = f"{value:.3f}" if isinstance(value, float) else str(value)
        self.info(f"{name} = {shown}{' ' + unit if unit else ''}")

    @property
    def metrics(self) -> dict[str, Any]:
        return dict(self._metrics)

    @contextmanager
    def timer(self, name: str) -> Iterator[None]:
        started = time.perf_counter()
        try:
            yield
        finally:
            self._timings[name] = time.perf_counter() - started
            self.info(f"{name} took {self._timings[name]:.3f}s")

    def summary(self) -> None:
        self.section(f"{self.title} summary")
        self.info(f"Wall time: {time.perf_counter() - self._start:.2f}s")
        self.info(f"Warnings: {self._warnings}  Errors: {self._errors}")
        for name, seconds in sorted(self._timings.items(), key=lambda kv: -kv[1]):
            self.info(f"  {name:<40} {seconds:>8.3f}s")
        for path in (self.log_path, self.trace_path):
            if path:
                self.info(f"Written: {path}")

    def attach_stdlib(self, logger_name: str = "vcp", level: int = logging.INFO) -> None:
        """Forward records from the *logger_name* tree into this run's sinks."""
        self.detach_stdlib()
        target = logging.getLogger(logger_name)
        for stale in [h for h in target.handlers if isinstance(h, _ForwardingHandler)]:
            target.removeHandler(stale)
        handler = _ForwardingHandler(self)
        handler.setLevel(level)
        if target.level == logging.NOTSET or target.level > level:
            target.setLevel(level)
        target.addHandler(handler)
        self._attached = (target, handler)

    def detach_stdlib(self) -> None:
        if self._attached is not None:
            target, handler = self._attached
            target.removeHandler(handler)
            self._attached = None

    def close(self) -> None:
        self.detach_stdlib()
        for handle, _ in self._sinks:
            if handle is not None:
                handle.close()
        self._sinks = [(h, t) for h, t in self._sinks if h is None]

    def __enter__(self) -> "RunLogger":
        return self

    def __exit__(self, *_: object) -> None:
        self.close()


class _ForwardingHandler(logging.Handler):
    def __init__(self, run_logger: RunLogger) -> None:
        super().__init__()
        self._run_logger = run_logger

    def emit(self, record: logging.LogRecord) -> None:
        try:
            self._run_logger.log(record.levelno, f"[{record.name}] {self.format(record)}")
        except Exception:
            self.handleError(record)
