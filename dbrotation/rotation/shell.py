import asyncio
import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Awaitable, Callable, Dict, Iterator, Mapping, Any, Optional

from ..config.contracts import RotationConfig
from ..target.contracts import (
    CredentialRejectedError, CredentialTarget, TargetConnectionError,
    TargetError
)
from ..vault.contracts import (
    DatabaseCredentials, InvalidPayloadError, SecretNotFoundError,
    SecretStore, StagingError, StagingLabel, VaultError,
    VaultUnavailableError, VersionConflictError
)
from ..vault.core import credentials_from_payload
from .contracts import (
    ConflictError, EventPublisher, PreconditionError, RotationError,
    RotationRequest, RotationStep, RotationStepResult, StateError,
    StepOutcome, TargetUnavailableError, ValidationError
)
from .core import (
    derive_pending_payload, ensure_no_conflicting_pending,
    generate_database_password, identity_matches, is_current,
    login_candidates, parse_step, plan_finish, require_current,
    require_pending
)
from .events import (
    RotationStepCompleted, RotationStepFailed, RotationStepStarted,
    SecretRotated, SecretVersionStaged
)
from .observability import record_outcome, track_step


logger = logging.getLogger(__name__)


class RotationController:
    """
    Drives the four rotation steps for one secret.

    Holds no state between invocations: every step re-reads the staging
    labels from the store, so any step can be retried with the same token,
    possibly on another process.
    """

    def __init__(
        self,
        store: SecretStore,
        target: CredentialTarget,
        config: Optional[RotationConfig] = None,
        event_publisher: Optional[EventPublisher] = None
    ):
        self.store = store
        self.target = target
        self.config = config or RotationConfig()
        self.event_publisher = event_publisher or self._default_event_publisher

    async def dispatch(self, request: RotationRequest) -> RotationStepResult:
        request = self._scope_request(request)
        step = parse_step(request.step)

        if step is None:
            logger.warning(
                f"Ignoring unknown rotation step {request.step!r}",
                extra={"secret_id": request.secret_id, "request_token": request.request_token}
            )
            return RotationStepResult(request, StepOutcome.IGNORED, f"Unknown step {request.step!r}")

        handlers: Dict[RotationStep, Callable[[RotationRequest], Awaitable[RotationStepResult]]] = {
            RotationStep.CREATE_SECRET: self.create_secret,
            RotationStep.SET_SECRET: self.set_secret,
            RotationStep.TEST_SECRET: self.test_secret,
            RotationStep.FINISH_SECRET: self.finish_secret,
        }

        await self.event_publisher(RotationStepStarted(
            secret_id=request.secret_id,
            request_token=request.request_token,
            step=request.step,
            started_at=datetime.now(timezone.utc)
        ))

        with track_step(request) as tracker:
            try:
                with self._translate_errors(request):
                    result = await handlers[step](request)
            except RotationError as e:
                await self.event_publisher(RotationStepFailed(
                    secret_id=request.secret_id,
                    request_token=request.request_token,
                    step=request.step,
                    error_type=type(e).__name__,
                    error_message=str(e),
                    failed_at=datetime.now(timezone.utc),
                    retriable=isinstance(e, TargetUnavailableError)
                ))
                logger.error(
                    f"Rotation step {request.step} failed for secret {request.secret_id}: {e}",
                    extra={
                        "secret_id": request.secret_id,
                        "request_token": request.request_token,
                        "step": request.step,
                        "error_type": type(e).__name__
                    }
                )
                raise

            record_outcome(tracker, result.outcome)

        await self.event_publisher(RotationStepCompleted(
            secret_id=request.secret_id,
            request_token=request.request_token,
            step=request.step,
            outcome=result.outcome,
            completed_at=datetime.now(timezone.utc),
            duration_ms=tracker.elapsed_ms
        ))

        logger.info(
            f"Rotation step {request.step} {result.outcome.value} for secret {request.secret_id}",
            extra={
                "secret_id": request.secret_id,
                "request_token": request.request_token,
                "step": request.step,
                "outcome": result.outcome.value
            }
        )

        return result

    async def create_secret(self, request: RotationRequest) -> RotationStepResult:
        secret_id, token = request.secret_id, request.request_token

        labels_map = await self.store.list_version_labels(secret_id)
        current_version = require_current(labels_map, secret_id, token)

        if await self.store.version_exists(secret_id, token):
            return self._skipped(request, f"Version {token} already exists")

        ensure_no_conflicting_pending(labels_map, secret_id, token)

        current = await self.store.get_current_version(secret_id)
        current_credentials = self._credentials(current.payload)

        new_password = generate_database_password(
            self.config.password_length,
            self.config.exclude_characters,
            avoid=current_credentials.password
        )
        pending_payload = derive_pending_payload(current.payload, new_password)

        try:
            await self.store.put_version(secret_id, token, pending_payload, StagingLabel.PENDING)
        except VersionConflictError:
            labels_now = await self.store.list_version_labels(secret_id)
            if StagingLabel.PENDING in labels_now.get(token, frozenset()):
                return self._skipped(request, f"Version {token} was created concurrently")
            raise

        await self.event_publisher(SecretVersionStaged(
            secret_id=secret_id,
            version_id=token,
            based_on_version=current_version,
            staged_at=datetime.now(timezone.utc)
        ))

        return RotationStepResult(
            request, StepOutcome.COMPLETED, f"Staged version {token} as PENDING"
        )

    async def set_secret(self, request: RotationRequest) -> RotationStepResult:
        secret_id, token = request.secret_id, request.request_token
        timeout = self.config.connect_timeout

        labels_map = await self.store.list_version_labels(secret_id)
        if is_current(labels_map, token):
            return self._skipped(request, f"Version {token} is already CURRENT")
        require_pending(labels_map, secret_id, token)

        pending = self._credentials((await self.store.get_version(secret_id, token)).payload)
        if await self.target.authenticate(pending, timeout):
            return self._skipped(request, "Target already accepts the PENDING password")

        current = await self.store.get_current_version(secret_id)
        if not identity_matches(pending, self._credentials(current.payload)):
            raise PreconditionError(
                f"PENDING version {token} names a different user or host than CURRENT",
                secret_id, token
            )

        for version_id in login_candidates(labels_map):
            if version_id == current.version_id:
                version = current
            else:
                version = await self.store.get_version(secret_id, version_id)
            credentials = self._credentials(version.payload)
            if not identity_matches(pending, credentials):
                continue

            try:
                await self.target.apply_new_password(credentials, pending.password, timeout)
            except CredentialRejectedError:
                logger.info(
                    f"Password of version {version_id} no longer logs in, trying next",
                    extra={"secret_id": secret_id, "request_token": token, "version_id": version_id}
                )
                continue

            if self.config.propagation_wait_seconds > 0:
                await asyncio.sleep(self.config.propagation_wait_seconds)

            return RotationStepResult(
                request, StepOutcome.COMPLETED,
                f"Applied PENDING password using version {version_id}"
            )

        raise PreconditionError(
            f"Neither CURRENT nor PREVIOUS credentials of {secret_id} can log in",
            secret_id, token
        )

    async def test_secret(self, request: RotationRequest) -> RotationStepResult:
        secret_id, token = request.secret_id, request.request_token

        labels_map = await self.store.list_version_labels(secret_id)
        if not is_current(labels_map, token):
            require_pending(labels_map, secret_id, token)

        pending = self._credentials((await self.store.get_version(secret_id, token)).payload)
        await self._require_login(pending, secret_id, token)

        return RotationStepResult(
            request, StepOutcome.COMPLETED, f"Version {token} authenticates against the target"
        )

    async def finish_secret(self, request: RotationRequest) -> RotationStepResult:
        secret_id, token = request.secret_id, request.request_token

        labels_map = await self.store.list_version_labels(secret_id)
        plan = plan_finish(labels_map, secret_id, token)

        if plan.already_current:
            if plan.pending_lingers:
                await self.store.move_label(secret_id, StagingLabel.PENDING, token, None)
            return self._skipped(request, f"Version {token} is already CURRENT")

        pending = self._credentials((await self.store.get_version(secret_id, token)).payload)
        await self._require_login(pending, secret_id, token)

        await self.store.move_label(
            secret_id, StagingLabel.CURRENT, plan.current_version, token
        )

        labels_after = await self.store.list_version_labels(secret_id)
        if StagingLabel.PENDING in labels_after.get(token, frozenset()):
            await self.store.move_label(secret_id, StagingLabel.PENDING, token, None)

        await self.event_publisher(SecretRotated(
            secret_id=secret_id,
            old_version=plan.current_version,
            new_version=token,
            rotated_at=datetime.now(timezone.utc)
        ))

        return RotationStepResult(
            request, StepOutcome.COMPLETED,
            f"Promoted {token} to CURRENT, {plan.current_version} is PREVIOUS"
        )

    async def _require_login(
        self,
        credentials: DatabaseCredentials,
        secret_id: str,
        token: str
    ) -> None:
        if not await self.target.authenticate(credentials, self.config.connect_timeout):
            raise ValidationError(
                f"Target rejected the credential in version {token} of {secret_id}",
                secret_id, token
            )

    def _credentials(self, payload: Mapping[str, Any]) -> DatabaseCredentials:
        return credentials_from_payload(
            payload,
            default_port=self.config.target_port,
            default_host=self.config.target_endpoint
        )

    def _scope_request(self, request: RotationRequest) -> RotationRequest:
        scoped_id = self.config.secret_id
        if not scoped_id:
            return request

        if not request.secret_id:
            return RotationRequest(scoped_id, request.request_token, request.step)

        if request.secret_id != scoped_id:
            raise PreconditionError(
                f"Rotator is scoped to {scoped_id}, refusing request for {request.secret_id}",
                request.secret_id, request.request_token
            )

        return request

    def _skipped(self, request: RotationRequest, message: str) -> RotationStepResult:
        logger.info(
            f"{message}; nothing to do for {request.step}",
            extra={"secret_id": request.secret_id, "request_token": request.request_token}
        )
        return RotationStepResult(request, StepOutcome.SKIPPED, message)

    @contextmanager
    def _translate_errors(self, request: RotationRequest) -> Iterator[None]:
        secret_id, token = request.secret_id, request.request_token
        try:
            yield
        except RotationError:
            raise
        except (VaultUnavailableError, TargetConnectionError) as e:
            raise TargetUnavailableError(str(e), secret_id, token) from e
        except (SecretNotFoundError, InvalidPayloadError) as e:
            raise PreconditionError(str(e), secret_id, token) from e
        except StagingError as e:
            raise StateError(str(e), secret_id, token) from e
        except VersionConflictError as e:
            raise ConflictError(str(e), secret_id, token) from e
        except (VaultError, TargetError) as e:
            raise RotationError(str(e), secret_id, token) from e

    async def _default_event_publisher(self, event) -> None:
        logger.info(f"Rotation event: {type(event).__name__}", extra=event.to_dict())
