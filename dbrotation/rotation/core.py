import secrets
import string
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional

from ..config.contracts import DEFAULT_EXCLUDE_CHARACTERS
from ..vault.contracts import DatabaseCredentials, LabelMap, StagingLabel
from ..vault.core import find_label_holder, find_other_holder
from .contracts import ConflictError, PreconditionError, RotationStep, StateError


MIN_PASSWORD_LENGTH = 12


@dataclass(frozen=True)
class FinishPlan:
    current_version: Optional[str]
    already_current: bool
    pending_lingers: bool


def parse_step(step: Optional[str]) -> Optional[RotationStep]:
    try:
        return RotationStep(step)
    except ValueError:
        return None


def _character_classes(exclude_characters: str) -> List[str]:
    excluded = set(exclude_characters)
    return [
        "".join(c for c in alphabet if c not in excluded)
        for alphabet in (
            string.ascii_lowercase,
            string.ascii_uppercase,
            string.digits,
            string.punctuation,
        )
    ]


def generate_database_password(
    length: int = 32,
    exclude_characters: str = DEFAULT_EXCLUDE_CHARACTERS,
    avoid: Optional[str] = None
) -> str:
    if length < MIN_PASSWORD_LENGTH:
        raise ValueError(f"Password length must be at least {MIN_PASSWORD_LENGTH}")

    classes = _character_classes(exclude_characters)
    if not all(classes):
        raise ValueError("Excluded characters leave an empty character class")

    all_chars = "".join(classes)
    rng = secrets.SystemRandom()

    while True:
        password = [secrets.choice(alphabet) for alphabet in classes]
        for _ in range(length - len(classes)):
            password.append(secrets.choice(all_chars))

        rng.shuffle(password)
        candidate = "".join(password)
        if candidate != avoid:
            return candidate


def derive_pending_payload(
    current_payload: Mapping[str, Any],
    new_password: str
) -> Dict[str, Any]:
    pending = dict(current_payload)
    pending["password"] = new_password
    return pending


def identity_matches(pending: DatabaseCredentials, current: DatabaseCredentials) -> bool:
    return pending.username == current.username and pending.host == current.host


def require_current(labels_map: LabelMap, secret_id: str, token: str) -> str:
    current = find_label_holder(labels_map, StagingLabel.CURRENT)
    if current is None:
        raise PreconditionError(
            f"Secret {secret_id} has no CURRENT version to rotate from",
            secret_id, token
        )
    return current


def find_conflicting_pending(labels_map: LabelMap, token: str) -> Optional[str]:
    return find_other_holder(labels_map, StagingLabel.PENDING, token)


def ensure_no_conflicting_pending(labels_map: LabelMap, secret_id: str, token: str) -> None:
    conflicting = find_conflicting_pending(labels_map, token)
    if conflicting is not None:
        raise ConflictError(
            f"Secret {secret_id} already has version {conflicting} staged as PENDING",
            secret_id, token
        )


def require_pending(labels_map: LabelMap, secret_id: str, token: str) -> None:
    labels = labels_map.get(token)
    if labels is None:
        raise PreconditionError(
            f"Secret {secret_id} has no version {token}",
            secret_id, token
        )
    if StagingLabel.PENDING not in labels:
        raise PreconditionError(
            f"Version {token} of secret {secret_id} is not staged as PENDING",
            secret_id, token
        )


def is_current(labels_map: LabelMap, token: str) -> bool:
    return StagingLabel.CURRENT in labels_map.get(token, frozenset())


def login_candidates(labels_map: LabelMap) -> List[str]:
    """Versions whose password may still be live on the target, most likely first."""
    candidates = []
    for label in (StagingLabel.CURRENT, StagingLabel.PREVIOUS):
        holder = find_label_holder(labels_map, label)
        if holder is not None and holder not in candidates:
            candidates.append(holder)
    return candidates


def plan_finish(labels_map: LabelMap, secret_id: str, token: str) -> FinishPlan:
    token_labels = labels_map.get(token, frozenset())
    current = find_label_holder(labels_map, StagingLabel.CURRENT)

    if StagingLabel.CURRENT in token_labels:
        return FinishPlan(
            current_version=token,
            already_current=True,
            pending_lingers=StagingLabel.PENDING in token_labels
        )

    if current is None:
        raise StateError(
            f"Secret {secret_id} has no CURRENT version; refusing to promote {token}",
            secret_id, token
        )

    if StagingLabel.PENDING not in token_labels:
        raise StateError(
            f"Version {token} of secret {secret_id} is not staged as PENDING",
            secret_id, token
        )

    return FinishPlan(current_version=current, already_current=False, pending_lingers=True)
