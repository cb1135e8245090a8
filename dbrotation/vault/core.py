import json
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional, Tuple

import jsonschema

from .contracts import (
    DatabaseCredentials, InvalidPayloadError, LabelMap, StagingError,
    StagingLabel
)


AWS_STAGE_PREFIX = "AWS"
REQUEST_TOKEN_TAG = "request_token"
STAGING_LABEL_TAG = "staging_label"
MOVE_LABEL_TAG = "staging_move_label"
MOVE_FROM_TAG = "staging_move_from"

_LABEL_TAGS = {STAGING_LABEL_TAG, MOVE_LABEL_TAG, MOVE_FROM_TAG}

CREDENTIAL_PAYLOAD_SCHEMA: Dict[str, Any] = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "type": "object",
    "required": ["username", "password"],
    "properties": {
        "host": {"type": "string", "minLength": 1},
        "username": {"type": "string", "minLength": 1},
        "password": {"type": "string", "minLength": 1},
        "port": {
            "anyOf": [
                {"type": "integer", "minimum": 1, "maximum": 65535},
                {"type": "string", "pattern": "^[0-9]{1,5}$"},
            ]
        },
    },
}


def validate_payload(payload: Mapping[str, Any]) -> None:
    try:
        jsonschema.validate(instance=dict(payload), schema=CREDENTIAL_PAYLOAD_SCHEMA)
    except jsonschema.ValidationError as e:
        # e.message can echo the offending value, so only the path is kept
        location = "/".join(str(p) for p in e.absolute_path) or "<root>"
        raise InvalidPayloadError(
            f"Credential payload failed validation at {location}: {e.validator}"
        ) from e


def parse_secret_string(secret_string: str) -> Dict[str, Any]:
    try:
        payload = json.loads(secret_string)
    except (TypeError, ValueError) as e:
        raise InvalidPayloadError("Secret value is not valid JSON") from e

    if not isinstance(payload, dict):
        raise InvalidPayloadError("Secret value must be a JSON object")

    return payload


def serialize_payload(payload: Mapping[str, Any]) -> str:
    return json.dumps(dict(payload), sort_keys=True)


def credentials_from_payload(
    payload: Mapping[str, Any],
    default_port: int = 3306,
    default_host: Optional[str] = None
) -> DatabaseCredentials:
    validate_payload(payload)

    port = payload.get("port", default_port)
    host = payload.get("host") or default_host
    if not host:
        raise InvalidPayloadError(
            "Credential payload has no host and no default host is configured"
        )

    return DatabaseCredentials(
        host=host,
        username=payload["username"],
        password=payload["password"],
        port=int(port),
    )


def find_label_holders(labels_map: LabelMap, label: StagingLabel) -> List[str]:
    return sorted(
        version_id for version_id, labels in labels_map.items()
        if label in labels
    )


def find_label_holder(labels_map: LabelMap, label: StagingLabel) -> Optional[str]:
    holders = find_label_holders(labels_map, label)
    if len(holders) > 1:
        raise StagingError(
            f"Label {label.value} is attached to several versions: {holders}"
        )
    return holders[0] if holders else None


def find_other_holder(
    labels_map: LabelMap,
    label: StagingLabel,
    version_id: str
) -> Optional[str]:
    others = [v for v in find_label_holders(labels_map, label) if v != version_id]
    return others[0] if others else None


def move_staging_label(
    labels_map: LabelMap,
    label: StagingLabel,
    from_version: Optional[str],
    to_version: Optional[str]
) -> LabelMap:
    """
    Return a new label map with ``label`` moved between versions.

    Labels stay exclusive: the label is detached from every other holder and
    ``to_version`` ends up holding only ``label``. Moving CURRENT away from a
    version demotes that version to PREVIOUS.
    """
    if from_version is not None and label not in labels_map.get(from_version, frozenset()):
        raise StagingError(
            f"Version {from_version} does not hold label {label.value}"
        )

    if to_version is not None and to_version not in labels_map:
        raise StagingError(f"Version {to_version} does not exist")

    if (
        to_version is not None
        and label != StagingLabel.CURRENT
        and StagingLabel.CURRENT in labels_map[to_version]
    ):
        raise StagingError(
            f"Version {to_version} is CURRENT and cannot take label {label.value}"
        )

    updated: Dict[str, FrozenSet[StagingLabel]] = {
        version_id: labels - {label}
        for version_id, labels in labels_map.items()
    }

    if to_version is not None:
        updated[to_version] = frozenset({label})

    demoted = from_version if from_version != to_version else None
    if label == StagingLabel.CURRENT and demoted is not None:
        updated = {
            version_id: labels - {StagingLabel.PREVIOUS}
            for version_id, labels in updated.items()
        }
        updated[demoted] = frozenset({StagingLabel.PREVIOUS})

    return updated


def to_aws_stage(label: StagingLabel) -> str:
    return f"{AWS_STAGE_PREFIX}{label.value}"


def from_aws_stages(stages: Iterable[str]) -> FrozenSet[StagingLabel]:
    labels = set()
    for stage in stages:
        if not stage.startswith(AWS_STAGE_PREFIX):
            continue
        try:
            labels.add(StagingLabel(stage[len(AWS_STAGE_PREFIX):]))
        except ValueError:
            continue
    return frozenset(labels)


def build_version_tags(
    version_id: str,
    labels: FrozenSet[StagingLabel],
    base_tags: Optional[Mapping[str, str]] = None
) -> Dict[str, str]:
    tags = {
        key: value for key, value in (base_tags or {}).items()
        if key not in _LABEL_TAGS
    }
    tags[REQUEST_TOKEN_TAG] = version_id

    if labels:
        # A version holds at most one label
        tags[STAGING_LABEL_TAG] = next(iter(labels)).value

    return tags


def labels_from_tags(tags: Optional[Mapping[str, str]]) -> FrozenSet[StagingLabel]:
    value = (tags or {}).get(STAGING_LABEL_TAG)
    if not value:
        return frozenset()
    try:
        return frozenset({StagingLabel(value)})
    except ValueError:
        return frozenset()


def build_move_intent_tags(
    tags: Optional[Mapping[str, str]],
    label: StagingLabel,
    from_version: Optional[str]
) -> Dict[str, str]:
    """Tags marking a version as the destination of a label move in progress."""
    marked = dict(tags or {})
    marked[MOVE_LABEL_TAG] = label.value
    marked[MOVE_FROM_TAG] = from_version or ""
    return marked


def move_intent_from_tags(
    tags: Optional[Mapping[str, str]]
) -> Optional[Tuple[StagingLabel, Optional[str]]]:
    value = (tags or {}).get(MOVE_LABEL_TAG)
    if not value:
        return None
    try:
        label = StagingLabel(value)
    except ValueError:
        return None
    return label, (tags or {}).get(MOVE_FROM_TAG) or None


def resume_label_move(
    labels_map: LabelMap,
    label: StagingLabel,
    from_version: Optional[str],
    to_version: str
) -> LabelMap:
    """
    Final label map of a move that was interrupted part way.

    Some versions may already carry their new labels. The source version is
    put back as holder of ``label`` and the whole move is applied again, which
    gives the same result whichever writes had landed.
    """
    restored = {
        version_id: labels - {label}
        for version_id, labels in labels_map.items()
    }
    if from_version is not None and from_version in restored:
        restored[from_version] = frozenset({label})
    else:
        from_version = None
    return move_staging_label(restored, label, from_version, to_version)


def diff_label_maps(before: LabelMap, after: LabelMap) -> Dict[str, FrozenSet[StagingLabel]]:
    return {
        version_id: labels
        for version_id, labels in after.items()
        if before.get(version_id, frozenset()) != labels
    }
