"""
tests/test_store.py -- Unit tests for auth/store.py.

Coverage:
  - users: create, lookup by email/id, duplicate email raises IntegrityError
  - ledger: issue supersedes older unused records of the same purpose only,
    cooldown raises CooldownActive with a rounded-up wait, find_active_by_hash
    skips used and expired rows, each record can be consumed exactly once
  - roles/permissions: assign, union of permissions, seeder idempotency
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.exc import IntegrityError

from auth.models import Purpose, User, VerificationRecord
from auth.seed import ADMIN_ROLE, PERMISSIONS, USER_ROLE, seed_roles_and_permissions
from auth.store import CooldownActive, UserStore
from core.clock import to_iso

NOW = datetime(2026, 3, 1, 9, 0, 0, tzinfo=timezone.utc)


def _user(store: UserStore, email: str = "alice@example.com") -> int:
    return store.create_user(User(email=email, hashed_password="$2b$04$notarealhash"), NOW)


def _record(user_id: int, purpose: Purpose, code_hash: str, now: datetime = NOW, minutes: int = 5) -> VerificationRecord:
    return VerificationRecord(
        user_id=user_id,
        purpose=purpose,
        code_hash=code_hash,
        expires_at=to_iso(now + timedelta(minutes=minutes)),
    )


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class TestUsers:
    def test_create_and_lookup(self, store: UserStore) -> None:
        user_id = _user(store)
        by_email = store.get_by_email("alice@example.com")
        by_id = store.get_by_id(user_id)
        assert by_email == by_id
        assert by_id.created_at == to_iso(NOW)
        assert by_id.email_verified_at is None
        assert not by_id.is_verified

    def test_missing_user_is_none(self, store: UserStore) -> None:
        assert store.get_by_email("nobody@example.com") is None
        assert store.get_by_id(12345) is None

    def test_duplicate_email_raises_integrity_error(self, store: UserStore) -> None:
        _user(store)
        with pytest.raises(IntegrityError):
            _user(store)

    def test_ping(self, store: UserStore) -> None:
        assert store.ping() is True


# ---------------------------------------------------------------------------
# Verification ledger
# ---------------------------------------------------------------------------


class TestIssueVerification:
    def test_issue_supersedes_previous_unused_record(self, store: UserStore) -> None:
        user_id = _user(store)
        store.issue_verification(_record(user_id, Purpose.LOGIN, "h1"), NOW)
        store.issue_verification(_record(user_id, Purpose.LOGIN, "h2"), NOW + timedelta(seconds=5))

        first, second = store.list_verifications(user_id, Purpose.LOGIN)
        assert first.used_at == to_iso(NOW + timedelta(seconds=5))
        assert second.used_at is None
        assert store.latest_unused(user_id, Purpose.LOGIN).code_hash == "h2"

    def test_issue_leaves_other_purposes_alone(self, store: UserStore) -> None:
        user_id = _user(store)
        store.issue_verification(_record(user_id, Purpose.VERIFY_EMAIL, "verify"), NOW)
        store.issue_verification(_record(user_id, Purpose.RESET_PASSWORD, "reset"), NOW)

        [verify] = store.list_verifications(user_id, Purpose.VERIFY_EMAIL)
        assert verify.used_at is None

    def test_issue_leaves_other_users_alone(self, store: UserStore) -> None:
        alice = _user(store, "alice@example.com")
        bob = _user(store, "bob@example.com")
        store.issue_verification(_record(alice, Purpose.LOGIN, "a"), NOW)
        store.issue_verification(_record(bob, Purpose.LOGIN, "b"), NOW)
        assert store.latest_unused(alice, Purpose.LOGIN).code_hash == "a"

    def test_cooldown_blocks_and_writes_nothing(self, store: UserStore) -> None:
        user_id = _user(store)
        store.issue_verification(_record(user_id, Purpose.LOGIN, "h1"), NOW)

        with pytest.raises(CooldownActive) as exc_info:
            store.issue_verification(
                _record(user_id, Purpose.LOGIN, "h2"),
                NOW + timedelta(seconds=15, milliseconds=500),
                cooldown_seconds=60,
            )
        assert exc_info.value.wait_seconds == 45

        [only] = store.list_verifications(user_id, Purpose.LOGIN)
        assert only.code_hash == "h1"
        assert only.used_at is None

    def test_cooldown_counts_consumed_records(self, store: UserStore) -> None:
        user_id = _user(store)
        record_id = store.issue_verification(_record(user_id, Purpose.RESET_PASSWORD, "h1"), NOW)
        store.mark_used(record_id, NOW)
        with pytest.raises(CooldownActive):
            store.issue_verification(
                _record(user_id, Purpose.RESET_PASSWORD, "h2"), NOW + timedelta(seconds=1), cooldown_seconds=60
            )

    def test_cooldown_is_per_purpose(self, store: UserStore) -> None:
        user_id = _user(store)
        store.issue_verification(_record(user_id, Purpose.VERIFY_EMAIL, "v"), NOW)
        store.issue_verification(_record(user_id, Purpose.RESET_PASSWORD, "r"), NOW, cooldown_seconds=60)

    def test_issue_after_cooldown_succeeds(self, store: UserStore) -> None:
        user_id = _user(store)
        store.issue_verification(_record(user_id, Purpose.LOGIN, "h1"), NOW)
        store.issue_verification(
            _record(user_id, Purpose.LOGIN, "h2"), NOW + timedelta(seconds=60), cooldown_seconds=60
        )
        assert store.latest_unused(user_id, Purpose.LOGIN).code_hash == "h2"


class TestLookupAndConsume:
    def test_find_active_by_hash(self, store: UserStore) -> None:
        user_id = _user(store)
        store.issue_verification(_record(user_id, Purpose.VERIFY_EMAIL, "abc"), NOW)
        found = store.find_active_by_hash("abc", Purpose.VERIFY_EMAIL, NOW)
        assert found is not None
        assert found.user_id == user_id
        assert found.purpose is Purpose.VERIFY_EMAIL

    def test_find_active_by_hash_checks_purpose(self, store: UserStore) -> None:
        user_id = _user(store)
        store.issue_verification(_record(user_id, Purpose.VERIFY_EMAIL, "abc"), NOW)
        assert store.find_active_by_hash("abc", Purpose.RESET_PASSWORD, NOW) is None

    def test_find_active_by_hash_skips_expired(self, store: UserStore) -> None:
        user_id = _user(store)
        store.issue_verification(_record(user_id, Purpose.VERIFY_EMAIL, "abc", minutes=5), NOW)
        assert store.find_active_by_hash("abc", Purpose.VERIFY_EMAIL, NOW + timedelta(minutes=5)) is None

    def test_find_active_by_hash_skips_superseded(self, store: UserStore) -> None:
        user_id = _user(store)
        store.issue_verification(_record(user_id, Purpose.VERIFY_EMAIL, "old"), NOW)
        store.issue_verification(_record(user_id, Purpose.VERIFY_EMAIL, "new"), NOW)
        assert store.find_active_by_hash("old", Purpose.VERIFY_EMAIL, NOW) is None
        assert store.find_active_by_hash("new", Purpose.VERIFY_EMAIL, NOW) is not None

    def test_mark_used_only_once(self, store: UserStore) -> None:
        user_id = _user(store)
        record_id = store.issue_verification(_record(user_id, Purpose.LOGIN, "h"), NOW)
        assert store.mark_used(record_id, NOW) is True
        assert store.mark_used(record_id, NOW) is False
        assert store.latest_unused(user_id, Purpose.LOGIN) is None

    def test_consume_email_verification_sets_verified_once(self, store: UserStore) -> None:
        user_id = _user(store)
        record_id = store.issue_verification(_record(user_id, Purpose.VERIFY_EMAIL, "h"), NOW)

        assert store.consume_email_verification(record_id, user_id, NOW) is True
        assert store.get_by_id(user_id).email_verified_at == to_iso(NOW)

        later = NOW + timedelta(minutes=1)
        assert store.consume_email_verification(record_id, user_id, later) is False
        assert store.get_by_id(user_id).email_verified_at == to_iso(NOW)

    def test_consume_password_reset_updates_hash_once(self, store: UserStore) -> None:
        user_id = _user(store)
        record_id = store.issue_verification(_record(user_id, Purpose.RESET_PASSWORD, "h"), NOW)

        assert store.consume_password_reset(record_id, user_id, "new-hash", NOW) is True
        assert store.get_by_id(user_id).hashed_password == "new-hash"
        assert store.consume_password_reset(record_id, user_id, "other-hash", NOW) is False
        assert store.get_by_id(user_id).hashed_password == "new-hash"


# ---------------------------------------------------------------------------
# Roles and permissions
# ---------------------------------------------------------------------------


class TestRolesAndPermissions:
    def test_seeded_roles(self, store: UserStore) -> None:
        admin = store.get_role(ADMIN_ROLE)
        users = store.get_role(USER_ROLE)
        assert sorted(admin.permissions) == sorted(PERMISSIONS)
        assert users.permissions == ["read_profiles", "update_profiles"]

    def test_unknown_role_is_none(self, store: UserStore) -> None:
        assert store.get_role("Nope") is None

    def test_seed_is_idempotent(self, store: UserStore) -> None:
        assert seed_roles_and_permissions(store) == 0
        assert len(store.get_role(ADMIN_ROLE).permissions) == len(PERMISSIONS)

    def test_assign_role_and_permissions(self, store: UserStore) -> None:
        user_id = _user(store)
        assert store.assign_role(user_id, USER_ROLE) is True
        assert store.assign_role(user_id, USER_ROLE) is False
        assert store.get_user_roles(user_id) == [USER_ROLE]
        assert store.get_user_permissions(user_id) == {"read_profiles", "update_profiles"}

    def test_assign_missing_role_returns_false(self, store: UserStore) -> None:
        user_id = _user(store)
        assert store.assign_role(user_id, "Ghost") is False
        assert store.get_user_roles(user_id) == []

    def test_permissions_are_union_across_roles(self, store: UserStore) -> None:
        user_id = _user(store)
        role_id = store.ensure_role("Auditor")
        store.grant_permission(role_id, store.ensure_permission("read_users"))
        store.assign_role(user_id, USER_ROLE)
        store.assign_role(user_id, "Auditor")
        assert store.get_user_permissions(user_id) == {"read_profiles", "update_profiles", "read_users"}

    def test_ensure_is_idempotent(self, store: UserStore) -> None:
        assert store.ensure_role("Auditor") == store.ensure_role("Auditor")
        perm_id = store.ensure_permission("read_users")
        assert perm_id == store.ensure_permission("read_users")
        role_id = store.ensure_role("Auditor")
        assert store.grant_permission(role_id, perm_id) is True
        assert store.grant_permission(role_id, perm_id) is False
