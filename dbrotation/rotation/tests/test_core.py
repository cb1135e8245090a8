import string

import pytest

from dbrotation.rotation.contracts import (
    ConflictError, PreconditionError, RotationRequest, RotationStep,
    StateError
)
from dbrotation.rotation.core import (
    derive_pending_payload, ensure_no_conflicting_pending,
    generate_database_password, identity_matches, login_candidates,
    parse_step, plan_finish, require_current, require_pending
)
from dbrotation.vault.contracts import DatabaseCredentials, StagingLabel

CURRENT = StagingLabel.CURRENT
PENDING = StagingLabel.PENDING
PREVIOUS = StagingLabel.PREVIOUS


def covers_every_class(password: str) -> bool:
    return all(
        any(c in alphabet for c in password)
        for alphabet in (
            string.ascii_lowercase, string.ascii_uppercase,
            string.digits, string.punctuation,
        )
    )


class TestPasswordGeneration:
    def test_generated_password_meets_complexity(self):
        for _ in range(50):
            password = generate_database_password(16)

            assert len(password) == 16
            assert covers_every_class(password)

    def test_excluded_characters_never_appear(self):
        excluded = "/@\"'\\!#$%"

        for _ in range(50):
            password = generate_database_password(24, exclude_characters=excluded)
            assert not set(password) & set(excluded)

    def test_restricted_alphabet_still_covers_every_class(self):
        exclude = (
            string.ascii_lowercase[1:] + string.ascii_uppercase[1:]
            + string.digits[1:] + string.punctuation.replace("!", "")
        )

        password = generate_database_password(12, exclude_characters=exclude)

        assert set(password) == {"a", "A", "0", "!"}

    def test_rejects_short_length(self):
        with pytest.raises(ValueError):
            generate_database_password(8)

    def test_rejects_empty_character_class(self):
        with pytest.raises(ValueError):
            generate_database_password(16, exclude_characters=string.digits)


class TestPayloadHelpers:
    def test_pending_payload_keeps_everything_but_password(self):
        current = {"engine": "mysql", "host": "h", "username": "app", "password": "old", "port": 3306}

        pending = derive_pending_payload(current, "n3w-Password!")

        assert pending["password"] == "n3w-Password!"
        assert current["password"] == "old"
        assert {k: v for k, v in pending.items() if k != "password"} == {
            k: v for k, v in current.items() if k != "password"
        }

    def test_identity_matches_user_and_host(self):
        current = DatabaseCredentials(host="h", username="app", password="old")

        assert identity_matches(DatabaseCredentials("h", "app", "new"), current)
        assert not identity_matches(DatabaseCredentials("h", "admin", "new"), current)
        assert not identity_matches(DatabaseCredentials("other", "app", "new"), current)


class TestStagingRules:
    def test_parse_step(self):
        assert parse_step("createSecret") == RotationStep.CREATE_SECRET
        assert parse_step("rollbackSecret") is None
        assert parse_step(None) is None

    def test_require_current(self):
        assert require_current({"v1": frozenset({CURRENT})}, "db-cred", "t2") == "v1"

        with pytest.raises(PreconditionError):
            require_current({"v1": frozenset()}, "db-cred", "t2")

    def test_conflicting_pending(self):
        labels = {"v1": frozenset({CURRENT}), "t1": frozenset({PENDING})}

        with pytest.raises(ConflictError):
            ensure_no_conflicting_pending(labels, "db-cred", "t2")

        ensure_no_conflicting_pending(labels, "db-cred", "t1")

    def test_require_pending(self):
        labels = {"v1": frozenset({CURRENT}), "t2": frozenset({PENDING})}

        require_pending(labels, "db-cred", "t2")
        with pytest.raises(PreconditionError):
            require_pending(labels, "db-cred", "v1")
        with pytest.raises(PreconditionError):
            require_pending(labels, "db-cred", "missing")

    def test_login_candidates_order(self):
        labels = {
            "v0": frozenset({PREVIOUS}),
            "v1": frozenset({CURRENT}),
            "t2": frozenset({PENDING}),
        }

        assert login_candidates(labels) == ["v1", "v0"]

    def test_plan_finish_promotion(self):
        labels = {"v1": frozenset({CURRENT}), "t2": frozenset({PENDING})}

        plan = plan_finish(labels, "db-cred", "t2")

        assert plan.current_version == "v1"
        assert not plan.already_current

    def test_plan_finish_already_current(self):
        plan = plan_finish({"t2": frozenset({CURRENT})}, "db-cred", "t2")

        assert plan.already_current
        assert not plan.pending_lingers

    def test_plan_finish_without_pending(self):
        with pytest.raises(StateError):
            plan_finish({"v1": frozenset({CURRENT})}, "db-cred", "t2")

    def test_plan_finish_without_current(self):
        with pytest.raises(StateError):
            plan_finish({"t2": frozenset({PENDING})}, "db-cred", "t2")


class TestRotationRequest:
    def test_from_event(self):
        request = RotationRequest.from_event({
            "SecretId": "db-cred",
            "ClientRequestToken": "t2",
            "Step": "createSecret",
        })

        assert request == RotationRequest("db-cred", "t2", "createSecret")

    def test_from_event_missing_keys(self):
        with pytest.raises(ValueError) as exc_info:
            RotationRequest.from_event({"SecretId": "db-cred"})

        assert "ClientRequestToken" in str(exc_info.value)
        assert "Step" in str(exc_info.value)
