"""
HTTP trigger for schedulers that drive rotation steps over HTTP.
"""

from datetime import datetime, timezone

import jsonschema
from fastapi import Depends, FastAPI, HTTPException

from .handler import build_controller
from .rotation.contracts import (
    ConflictError, PreconditionError, RotationError, RotationRequest,
    TargetUnavailableError, ValidationError
)
from .rotation.shell import RotationController

ROTATION_STEP_SCHEMA = {
    "type": "object",
    "required": ["request_token", "step"],
    "properties": {
        "secret_id": {"type": "string"},
        "request_token": {"type": "string", "minLength": 1},
        "step": {"type": "string", "minLength": 1},
    },
    "additionalProperties": False,
}

app = FastAPI(
    title="Database Credential Rotation",
    description="Runs the createSecret/setSecret/testSecret/finishSecret rotation steps",
    version="1.0.0"
)


def get_controller() -> RotationController:
    return build_controller()


def _status_for(error: RotationError) -> int:
    if isinstance(error, (PreconditionError, ConflictError)):
        return 409
    if isinstance(error, ValidationError):
        return 422
    if isinstance(error, TargetUnavailableError):
        return 503
    return 500


@app.post("/rotation/steps")
async def run_rotation_step(
    step_data: dict,
    controller: RotationController = Depends(get_controller)
):
    """Run one rotation step."""
    try:
        jsonschema.validate(instance=step_data, schema=ROTATION_STEP_SCHEMA)
    except jsonschema.ValidationError as e:
        raise HTTPException(status_code=400, detail=f"Invalid rotation request: {e.message}")

    request = RotationRequest(
        secret_id=step_data.get("secret_id", ""),
        request_token=step_data["request_token"],
        step=step_data["step"]
    )

    try:
        result = await controller.dispatch(request)
    except RotationError as e:
        raise HTTPException(
            status_code=_status_for(e),
            detail={"error": type(e).__name__, "message": str(e)}
        )

    return result.to_dict()


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "timestamp": datetime.now(timezone.utc).isoformat()}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
