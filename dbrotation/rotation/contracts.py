from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional


class RotationStep(Enum):
    CREATE_SECRET = "createSecret"
    SET_SECRET = "setSecret"
    TEST_SECRET = "testSecret"
    FINISH_SECRET = "finishSecret"


class StepOutcome(Enum):
    COMPLETED = "completed"
    SKIPPED = "skipped"
    IGNORED = "ignored"


@dataclass(frozen=True)
class RotationRequest:
    secret_id: str
    request_token: str
    step: str

    @classmethod
    def from_event(cls, event: Dict[str, Any]) -> "RotationRequest":
        missing = [
            key for key in ("SecretId", "ClientRequestToken", "Step")
            if not event.get(key)
        ]
        if missing:
            raise ValueError(f"Missing required event parameter(s): {', '.join(missing)}")

        return cls(
            secret_id=event["SecretId"],
            request_token=event["ClientRequestToken"],
            step=event["Step"],
        )


@dataclass(frozen=True)
class RotationStepResult:
    request: RotationRequest
    outcome: StepOutcome
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "secret_id": self.request.secret_id,
            "request_token": self.request.request_token,
            "step": self.request.step,
            "outcome": self.outcome.value,
            "message": self.message
        }


class RotationError(Exception):
    def __init__(
        self,
        message: str,
        secret_id: Optional[str] = None,
        request_token: Optional[str] = None
    ):
        self.secret_id = secret_id
        self.request_token = request_token
        super().__init__(message)


class PreconditionError(RotationError):
    pass


class StateError(PreconditionError):
    pass


class ConflictError(RotationError):
    pass


class ValidationError(RotationError):
    pass


class TargetUnavailableError(RotationError):
    pass


# Receives the event dataclasses from .events
EventPublisher = Callable[[Any], Awaitable[None]]
