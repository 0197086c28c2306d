"""Runtime status records kept per configuration id."""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum


class RunPhase(str, Enum):
    """Externally observable lifecycle phase of one configuration."""

    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    ERROR = "error"


class LaunchStrategy(str, Enum):
    """Ways of invoking the target executable, in fallback priority order."""

    FULL_ENVIRONMENT = "full_environment"
    ROOT_EMULATION = "root_emulation"
    DIRECT = "direct"


@dataclass(frozen=True, slots=True)
class RunState:
    """Snapshot of a configuration's process lifecycle.

    Instances are replaced on every transition; the helpers below return new
    records rather than mutating in place.
    """

    config_id: str
    phase: RunPhase = RunPhase.STOPPED
    pid: int | None = None
    start_time: datetime | None = None
    exit_code: int | None = None
    error_message: str | None = None
    strategy: LaunchStrategy | None = None

    def __post_init__(self) -> None:
        if not self.config_id:
            raise ValueError("config_id must be provided")
        if self.phase is RunPhase.ERROR and not (self.error_message or "").strip():
            raise ValueError("error_message must be provided when phase is ERROR")

    @classmethod
    def stopped(cls, config_id: str) -> RunState:
        return cls(config_id=config_id)

    @classmethod
    def starting(cls, config_id: str) -> RunState:
        return cls(config_id=config_id, phase=RunPhase.STARTING)

    @classmethod
    def failed(cls, config_id: str, message: str, *, exit_code: int | None = None) -> RunState:
        return cls(
            config_id=config_id,
            phase=RunPhase.ERROR,
            exit_code=exit_code,
            error_message=message,
        )

    def running(
        self,
        *,
        pid: int | None,
        start_time: datetime,
        strategy: LaunchStrategy,
    ) -> RunState:
        return RunState(
            config_id=self.config_id,
            phase=RunPhase.RUNNING,
            pid=pid,
            start_time=start_time,
            strategy=strategy,
        )

    def exited(self, exit_code: int | None) -> RunState:
        """Return the STOPPED record that follows this run."""

        return replace(
            self,
            phase=RunPhase.STOPPED,
            exit_code=exit_code,
            error_message=None,
        )

    def crashed(self, exit_code: int, message: str) -> RunState:
        return replace(
            self,
            phase=RunPhase.ERROR,
            exit_code=exit_code,
            error_message=message,
        )

    @property
    def is_active(self) -> bool:
        return self.phase in (RunPhase.STARTING, RunPhase.RUNNING)


__all__ = ["LaunchStrategy", "RunPhase", "RunState"]
