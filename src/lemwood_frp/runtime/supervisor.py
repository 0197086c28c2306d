"""Supervision of one launched proxy process."""

from __future__ import annotations

import logging
import subprocess
from collections import deque
from concurrent.futures import Executor, Future
from contextlib import suppress
from datetime import UTC, datetime
from enum import Enum
from threading import Event, Lock
from typing import Final

from lemwood_frp.domain.run_state import LaunchStrategy, RunState
from lemwood_frp.observability.sink import LogLevel, LogSink
from lemwood_frp.runtime.registry import LifecycleRegistry

logger = logging.getLogger(__name__)

OUTPUT_TAG: Final[str] = "frp"
SUPERVISOR_TAG: Final[str] = "supervisor"
TAIL_LINES: Final[int] = 20

SUCCESS_MARKERS: Final[tuple[str, ...]] = (
    "start frpc success",
    "start frps success",
    "login to server success",
    "start proxy success",
)
ERROR_MARKERS: Final[tuple[str, ...]] = ("[e]", "error", "failed")
WARNING_MARKERS: Final[tuple[str, ...]] = ("[w]", "warning")


class SupervisorState(str, Enum):
    NOT_STARTED = "not_started"
    RUNNING = "running"
    STOPPED = "stopped"
    CRASHED = "crashed"


def classify_line(line: str) -> LogLevel:
    """Map one output line to a log level by substring markers."""

    lowered = line.lower()
    if any(marker in lowered for marker in SUCCESS_MARKERS):
        return LogLevel.SUCCESS
    if any(marker in lowered for marker in ERROR_MARKERS):
        return LogLevel.ERROR
    if any(marker in lowered for marker in WARNING_MARKERS):
        return LogLevel.WARNING
    return LogLevel.INFO


def describe_exit(code: int) -> str:
    """Human-readable exit description; signal numbers are advisory."""

    if code < 0:
        return f"terminated by signal {-code}"
    if code > 128:
        return f"exited with code {code} (terminated by signal {code - 128})"
    return f"exited with code {code}"


def process_pid(process: object) -> int | None:
    """Return the native pid when the handle exposes one, else ``None``."""

    pid = getattr(process, "pid", None)
    if isinstance(pid, int) and pid > 0:
        return pid
    return None


class SupervisedProcess:
    """Owns a ``Popen`` handle: streams its output, waits for exit, stops it.

    ``attach`` registers the handle and schedules two tasks on the shared
    executor: a line reader and an exit waiter. Both report into the
    registry; the waiter records the final ``RunState`` only after the reader
    has drained (bounded by ``drain_timeout``).
    """

    def __init__(
        self,
        config_id: str,
        process: subprocess.Popen[str],
        *,
        strategy: LaunchStrategy,
        registry: LifecycleRegistry,
        executor: Executor,
        sink: LogSink,
        max_output_lines: int = 1000,
        drain_timeout: float = 5.0,
    ) -> None:
        if max_output_lines < 1:
            raise ValueError("max_output_lines must be >= 1")
        self._config_id = config_id
        self._process = process
        self._strategy = strategy
        self._registry = registry
        self._executor = executor
        self._sink = sink
        self._max_lines = max_output_lines
        self._drain_timeout = drain_timeout

        self._state = SupervisorState.NOT_STARTED
        self._run_state = RunState.starting(config_id)
        self._pid = process_pid(process)
        self._start_time: datetime | None = None
        self._tail: deque[str] = deque(maxlen=TAIL_LINES)
        self._lines_processed = 0
        self._confirmed = False
        self._stop_requested = False
        self._finished = False
        self._lock = Lock()
        self._output_done = Event()
        self._done = Event()

    # --- Introspection ---

    @property
    def config_id(self) -> str:
        return self._config_id

    @property
    def pid(self) -> int | None:
        return self._pid

    @property
    def strategy(self) -> LaunchStrategy:
        return self._strategy

    @property
    def state(self) -> SupervisorState:
        return self._state

    @property
    def run_state(self) -> RunState:
        return self._run_state

    @property
    def start_time(self) -> datetime | None:
        return self._start_time

    @property
    def alive(self) -> bool:
        return self._process.poll() is None

    @property
    def confirmed(self) -> bool:
        """True once the process printed a success marker."""

        return self._confirmed

    @property
    def lines_processed(self) -> int:
        return self._lines_processed

    @property
    def tail(self) -> tuple[str, ...]:
        return tuple(self._tail)

    def wait(self, timeout: float | None = None) -> bool:
        """Block until the final state has been recorded."""

        return self._done.wait(timeout)

    # --- Lifecycle ---

    def attach(self) -> RunState:
        if self._state is not SupervisorState.NOT_STARTED:
            raise RuntimeError(f"process for {self._config_id} already attached")
        self._start_time = datetime.now(UTC)
        self._state = SupervisorState.RUNNING
        self._run_state = RunState.starting(self._config_id).running(
            pid=self._pid,
            start_time=self._start_time,
            strategy=self._strategy,
        )
        self._registry.register(self, self._run_state)
        self._sink.emit(
            LogLevel.SUCCESS,
            SUPERVISOR_TAG,
            f"process started via {self._strategy.value} (pid={self._pid if self._pid else 'unknown'})",
            self._config_id,
        )
        for task in (self._read_output, self._wait_for_exit):
            self._executor.submit(task).add_done_callback(self._log_task_failure)
        return self._run_state

    def stop(self, timeout: float) -> int | None:
        """Terminate gracefully, escalating to kill after ``timeout`` seconds."""

        with self._lock:
            self._stop_requested = True
        code = self._process.poll()
        if code is None:
            self._sink.emit(LogLevel.INFO, SUPERVISOR_TAG, "sending terminate signal", self._config_id)
            with suppress(ProcessLookupError):
                self._process.terminate()
            try:
                code = self._process.wait(timeout=timeout)
            except subprocess.TimeoutExpired:
                self._sink.emit(
                    LogLevel.WARNING,
                    SUPERVISOR_TAG,
                    f"process did not exit within {timeout:g}s; killing",
                    self._config_id,
                )
                with suppress(ProcessLookupError):
                    self._process.kill()
                code = self._process.wait()
        self._output_done.wait(self._drain_timeout)
        self._finish(code)
        return code

    # --- Tasks ---

    def _read_output(self) -> None:
        stream = self._process.stdout
        if stream is None:
            self._output_done.set()
            return
        truncated = False
        try:
            for raw in stream:
                line = raw.rstrip("\r\n")
                if not line:
                    continue
                if self._lines_processed >= self._max_lines:
                    if not truncated:
                        truncated = True
                        self._sink.emit(
                            LogLevel.WARNING,
                            SUPERVISOR_TAG,
                            f"output limit of {self._max_lines} lines reached; further output discarded",
                            self._config_id,
                        )
                    continue
                self._lines_processed += 1
                self._tail.append(line)
                level = classify_line(line)
                if level is LogLevel.SUCCESS:
                    self._confirmed = True
                self._sink.emit(level, OUTPUT_TAG, line, self._config_id)
        except (OSError, ValueError) as exc:
            # Pipe closed underneath us during shutdown.
            self._sink.emit(LogLevel.DEBUG, SUPERVISOR_TAG, f"output stream closed: {exc}", self._config_id)
        finally:
            self._output_done.set()

    def _wait_for_exit(self) -> None:
        code = self._process.wait()
        self._output_done.wait(self._drain_timeout)
        self._finish(code)

    def _finish(self, code: int | None) -> None:
        with self._lock:
            if self._finished:
                return
            self._finished = True
            if self._stop_requested or code == 0 or code is None:
                self._state = SupervisorState.STOPPED
                self._run_state = self._run_state.exited(code)
                level, message = LogLevel.INFO, f"process stopped (exit code {code})"
            else:
                self._state = SupervisorState.CRASHED
                detail = f"process {describe_exit(code)}"
                if self._tail:
                    detail = f"{detail}; last output: {self._tail[-1]}"
                self._run_state = self._run_state.crashed(code, detail)
                level, message = LogLevel.ERROR, detail
            final_state = self._run_state
        try:
            self._registry.complete(self._config_id, self, final_state)
            self._sink.emit(level, SUPERVISOR_TAG, message, self._config_id)
        finally:
            self._done.set()

    def _log_task_failure(self, future: Future[None]) -> None:
        if future.cancelled():
            return
        exc = future.exception()
        if exc is not None:
            logger.error(
                "supervision task failed",
                exc_info=(type(exc), exc, exc.__traceback__),
                extra={"data": {"config_id": self._config_id, "pid": self._pid}},
            )


__all__ = [
    "ERROR_MARKERS",
    "SUCCESS_MARKERS",
    "SupervisedProcess",
    "SupervisorState",
    "WARNING_MARKERS",
    "classify_line",
    "describe_exit",
    "process_pid",
]
