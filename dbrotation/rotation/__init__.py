"""
Rotation state machine for single-user database credentials.

This module provides:
- RotationController dispatching the four rotation steps
- Password generation and the staging rules each step checks
- Error taxonomy surfaced to the scheduler
- Domain events and step telemetry
"""

from .contracts import (
    RotationRequest,
    RotationStep,
    RotationStepResult,
    StepOutcome,
    RotationError,
    PreconditionError,
    StateError,
    ConflictError,
    ValidationError,
    TargetUnavailableError,
)
from .core import (
    generate_database_password,
    derive_pending_payload,
    parse_step,
)
from .shell import RotationController

__all__ = [
    "RotationController",
    "RotationRequest",
    "RotationStep",
    "RotationStepResult",
    "StepOutcome",
    "RotationError",
    "PreconditionError",
    "StateError",
    "ConflictError",
    "ValidationError",
    "TargetUnavailableError",
    "generate_database_password",
    "derive_pending_payload",
    "parse_step",
]
