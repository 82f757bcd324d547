"""
Domain records shared by the control channel, verification engine,
registry and failover orchestrator.
"""

import datetime
import uuid
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Optional


class Role(str, Enum):
    PRIMARY = "primary"
    SECONDARY = "secondary"


class RunningState(str, Enum):
    RUNNING = "running"
    STANDBY = "standby"
    STOPPED = "stopped"
    ERROR = "error"
    UNKNOWN = "unknown"


class Action(str, Enum):
    START = "start"
    STOP = "stop"
    RESTART = "restart"
    STATUS = "status"
    LOGS = "logs"
    HEALTH = "health"

    @property
    def is_mutation(self) -> bool:
        return self in (Action.START, Action.STOP, Action.RESTART)

    @property
    def creates_signal(self) -> bool:
        return self in (Action.START, Action.RESTART)


class Transport(str, Enum):
    HTTP = "http"
    SHELL = "shell"


class CommandResult(str, Enum):
    SUCCESS = "success"
    TRANSPORT_ERROR = "transportError"
    REMOTE_EXECUTION_ERROR = "remoteExecutionError"
    VERIFICATION_MISMATCH = "verificationMismatch"


class StageStatus(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    SKIPPED = "skipped"
    WARNING = "warning"
    FAILED = "failed"


class OperationStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    COMPLETED_WITH_WARNING = "completed-with-warning"
    FAILED = "failed"


def utc_now() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


@dataclass
class Node:
    """A registered node able to host the trading process."""
    id: str
    address: str
    provider: str
    role: Role = Role.SECONDARY
    running_state: RunningState = RunningState.UNKNOWN
    consecutive_failures: int = 0
    last_verified_at: Optional[datetime.datetime] = None
    region: Optional[str] = None

    @property
    def is_primary(self) -> bool:
        return self.role == Role.PRIMARY


@dataclass(frozen=True)
class SignalPayload:
    started_at: Optional[datetime.datetime] = None
    source: Optional[str] = None
    mode: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SignalPayload":
        started_at = data.get("started_at") or data.get("startedAt")
        parsed = None
        if isinstance(started_at, str):
            try:
                parsed = datetime.datetime.fromisoformat(started_at.replace("Z", "+00:00"))
            except ValueError:
                parsed = None
        if parsed is not None and parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=datetime.timezone.utc)
        return cls(started_at=parsed, source=data.get("source"), mode=data.get("mode"))


@dataclass(frozen=True)
class SignalArtifact:
    """Remote start-intent marker. Existence alone never proves `running`."""
    exists: bool
    payload: Optional[SignalPayload] = None
    age_seconds: Optional[float] = None

    @classmethod
    def absent(cls) -> "SignalArtifact":
        return cls(exists=False)

    def with_age(self, now: Optional[datetime.datetime] = None) -> "SignalArtifact":
        """Fill in the age from the payload timestamp when the remote did not report it."""
        if self.age_seconds is not None or not self.payload or not self.payload.started_at:
            return self
        now = now or utc_now()
        age = max(0.0, (now - self.payload.started_at).total_seconds())
        return replace(self, age_seconds=age)


@dataclass(frozen=True)
class VerificationResult:
    """Outcome of one verification pass; the only input the registry accepts for state changes."""
    node_id: str
    state: RunningState
    signal: Optional[SignalArtifact] = None
    liveness: Optional[bool] = None
    transport: Optional[Transport] = None
    detail: str = ""
    checked_at: datetime.datetime = field(default_factory=utc_now)


@dataclass(frozen=True)
class ControlCommand:
    """One recorded invocation of the control channel. Never mutated after recording."""
    action: Action
    target_node_id: str
    transport_used: Optional[Transport]
    result: CommandResult
    detail: str = ""
    created_at: datetime.datetime = field(default_factory=utc_now)
    id: str = field(default_factory=lambda: uuid.uuid4().hex)


@dataclass
class FailoverStage:
    name: str
    status: StageStatus = StageStatus.PENDING
    timestamp: Optional[datetime.datetime] = None
    detail: str = ""

    def mark(self, status: StageStatus, detail: str = "") -> None:
        self.status = status
        self.timestamp = utc_now()
        self.detail = detail

    @property
    def is_done(self) -> bool:
        return self.status in (StageStatus.SUCCESS, StageStatus.SKIPPED)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "status": self.status.value,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
            "detail": self.detail,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FailoverStage":
        ts = data.get("timestamp")
        return cls(
            name=data["name"],
            status=StageStatus(data.get("status", StageStatus.PENDING.value)),
            timestamp=datetime.datetime.fromisoformat(ts) if ts else None,
            detail=data.get("detail", ""),
        )


@dataclass
class FailoverOperation:
    """A requested primary-role migration and its stage log."""
    from_node_id: Optional[str]
    to_node_id: str
    start_bot_after_switch: bool
    stages: List[FailoverStage] = field(default_factory=list)
    status: OperationStatus = OperationStatus.RUNNING
    created_at: datetime.datetime = field(default_factory=utc_now)
    id: str = field(default_factory=lambda: uuid.uuid4().hex)

    def stage(self, name: str) -> FailoverStage:
        for stage in self.stages:
            if stage.name == name:
                return stage
        raise KeyError(name)

    def completed_stages(self) -> List[str]:
        return [s.name for s in self.stages if s.is_done or s.status == StageStatus.WARNING]

    def stage_log(self) -> List[str]:
        return [f"{s.name}: {s.status.value}" for s in self.stages]
