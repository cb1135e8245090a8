"""
Event-dispatch entry point.

Accepts the scheduler's rotation event ({"SecretId", "ClientRequestToken",
"Step"}), builds fresh collaborators for the invocation and runs one step.
"""

import asyncio
import logging
from typing import Any, Dict, Optional

from .config.contracts import RotationConfig
from .config.shell import (
    build_credential_target, build_secret_store, configure_logging,
    load_rotation_config
)
from .rotation.contracts import RotationRequest
from .rotation.shell import RotationController


logger = logging.getLogger(__name__)


def build_controller(config: Optional[RotationConfig] = None) -> RotationController:
    config = config or load_rotation_config()
    return RotationController(
        store=build_secret_store(config),
        target=build_credential_target(config),
        config=config
    )


def lambda_handler(event: Dict[str, Any], context: Any = None) -> Dict[str, Any]:
    config = load_rotation_config()
    configure_logging(config.log_level)

    logger.info(
        "Rotation event received",
        extra={
            "step": event.get("Step"),
            "secret_id": event.get("SecretId"),
            "aws_request_id": getattr(context, "aws_request_id", None)
        }
    )

    request = RotationRequest.from_event(event)
    result = asyncio.run(build_controller(config).dispatch(request))

    return {
        "statusCode": 200,
        "body": result.message,
        "outcome": result.outcome.value
    }
