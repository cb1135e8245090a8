from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

from .contracts import StepOutcome


@dataclass(frozen=True)
class RotationStepStarted:
    secret_id: str
    request_token: str
    step: str
    started_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_type": "rotation_step_started",
            "secret_id": self.secret_id,
            "request_token": self.request_token,
            "step": self.step,
            "started_at": self.started_at.isoformat()
        }


@dataclass(frozen=True)
class RotationStepCompleted:
    secret_id: str
    request_token: str
    step: str
    outcome: StepOutcome
    completed_at: datetime
    duration_ms: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_type": "rotation_step_completed",
            "secret_id": self.secret_id,
            "request_token": self.request_token,
            "step": self.step,
            "outcome": self.outcome.value,
            "completed_at": self.completed_at.isoformat(),
            "duration_ms": self.duration_ms
        }


@dataclass(frozen=True)
class RotationStepFailed:
    secret_id: str
    request_token: str
    step: str
    error_type: str
    error_message: str
    failed_at: datetime
    retriable: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_type": "rotation_step_failed",
            "secret_id": self.secret_id,
            "request_token": self.request_token,
            "step": self.step,
            "error_type": self.error_type,
            "error_message": self.error_message,
            "failed_at": self.failed_at.isoformat(),
            "retriable": self.retriable
        }


@dataclass(frozen=True)
class SecretVersionStaged:
    secret_id: str
    version_id: str
    based_on_version: str
    staged_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_type": "secret_version_staged",
            "secret_id": self.secret_id,
            "version_id": self.version_id,
            "based_on_version": self.based_on_version,
            "staged_at": self.staged_at.isoformat()
        }


@dataclass(frozen=True)
class SecretRotated:
    secret_id: str
    old_version: Optional[str]
    new_version: str
    rotated_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_type": "secret_rotated",
            "secret_id": self.secret_id,
            "old_version": self.old_version,
            "new_version": self.new_version,
            "rotated_at": self.rotated_at.isoformat()
        }
