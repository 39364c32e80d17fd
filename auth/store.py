"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper. UserStore is the repository; the _row_to_*
functions are the mappers. The orchestrator never touches SQL directly.

Three groups of tables:
  users                  -- credentials and email verification state
  user_verifications     -- the verification ledger (append-style, never deleted)
  roles / permissions / role_permissions / user_roles -- authorization

Ledger invariant:
  At most one unused, unexpired record per (user_id, purpose) is active.
  issue_verification() marks every earlier unused record of the purpose as
  used and inserts the new one inside a single transaction. Consumption uses
  a conditional UPDATE (... WHERE used_at IS NULL) so two concurrent requests
  can never both consume the same record.

Cooldown:
  issue_verification() also enforces the per-purpose email cooldown inside the
  same transaction. The user row is locked first (SELECT ... FOR UPDATE);
  PostgreSQL honours the lock, SQLite ignores the clause but serializes writers,
  so a racing second writer fails instead of inserting a duplicate.

Security:
  All queries use bound parameters. No f-strings in SQL.
"""

from __future__ import annotations

import math
from datetime import datetime

from sqlalchemy import (
    Column,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    create_engine,
    event,
    select,
    text,
)
from sqlalchemy.engine import Engine

from auth.models import Purpose, Role, User, VerificationRecord
from core.clock import from_iso, to_iso

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("hashed_password", Text, nullable=False),
    Column("email_verified_at", String(32)),
    Column("created_at", String(32), nullable=False),
)

_verifications = Table(
    "user_verifications",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False),
    Column("purpose", String(20), nullable=False),
    Column("code_hash", Text, nullable=False),
    Column("created_at", String(32), nullable=False),
    Column("expires_at", String(32), nullable=False),
    Column("used_at", String(32)),
    Index("ix_user_verifications_user_purpose", "user_id", "purpose", "created_at"),
    Index("ix_user_verifications_code_hash", "code_hash"),
)

_roles = Table(
    "roles",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(50), nullable=False, unique=True),
)

_permissions = Table(
    "permissions",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(100), nullable=False, unique=True),
)

_role_permissions = Table(
    "role_permissions",
    _metadata,
    Column("role_id", Integer, ForeignKey("roles.id"), nullable=False),
    Column("permission_id", Integer, ForeignKey("permissions.id"), nullable=False),
    UniqueConstraint("role_id", "permission_id"),
)

_user_roles = Table(
    "user_roles",
    _metadata,
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False),
    Column("role_id", Integer, ForeignKey("roles.id"), nullable=False),
    UniqueConstraint("user_id", "role_id"),
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers do not block behind writers.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


class CooldownActive(Exception):
    """Raised by issue_verification() while the purpose's cooldown window is open."""

    def __init__(self, wait_seconds: int) -> None:
        super().__init__(f"cooldown active for {wait_seconds}s")
        self.wait_seconds = wait_seconds


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for users, verification records, roles and permissions.

    Usage:
        store = UserStore("sqlite:///./monoauth.db")
        user_id = store.create_user(User(email="a@example.com", hashed_password=hash_password("secret")))
        store.issue_verification(record, now=utcnow())
        store.close()
    """

    def __init__(self, db_url: str) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        with self.engine.connect() as conn:
            return conn.execute(text("SELECT 1")).scalar() == 1

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def create_user(self, user: User, now: datetime) -> int:
        """Insert a new user and return its assigned ID.

        Raises sqlalchemy.exc.IntegrityError if the email already exists.
        The orchestrator pre-checks, but two concurrent registrations can both
        pass the pre-check; the UNIQUE constraint decides the winner.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.insert().values(
                    email=user.email,
                    hashed_password=user.hashed_password,
                    email_verified_at=user.email_verified_at,
                    created_at=to_iso(now),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_by_email(self, email: str) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == email)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_id(self, user_id: int) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    # ------------------------------------------------------------------
    # Verification ledger
    # ------------------------------------------------------------------

    def issue_verification(self, record: VerificationRecord, now: datetime, cooldown_seconds: int = 0) -> int:
        """Supersede earlier unused records of the purpose and insert `record`.

        When cooldown_seconds > 0 and the most recent record of the same
        (user, purpose) was created less than cooldown_seconds ago, nothing is
        written and CooldownActive is raised with the remaining wait (rounded
        up to whole seconds).

        Returns the new record's ID.
        """
        now_iso = to_iso(now)
        with self.engine.begin() as conn:
            conn.execute(select(_users.c.id).where(_users.c.id == record.user_id).with_for_update())

            if cooldown_seconds > 0:
                latest = conn.execute(
                    select(_verifications.c.created_at)
                    .where(
                        (_verifications.c.user_id == record.user_id)
                        & (_verifications.c.purpose == record.purpose.value)
                    )
                    .order_by(_verifications.c.created_at.desc())
                    .limit(1)
                ).scalar()
                if latest is not None:
                    elapsed = (now - from_iso(latest)).total_seconds()
                    if elapsed < cooldown_seconds:
                        raise CooldownActive(math.ceil(cooldown_seconds - elapsed))

            conn.execute(
                _verifications.update()
                .where(
                    (_verifications.c.user_id == record.user_id)
                    & (_verifications.c.purpose == record.purpose.value)
                    & (_verifications.c.used_at.is_(None))
                )
                .values(used_at=now_iso)
            )
            result = conn.execute(
                _verifications.insert().values(
                    user_id=record.user_id,
                    purpose=record.purpose.value,
                    code_hash=record.code_hash,
                    created_at=now_iso,
                    expires_at=record.expires_at,
                )
            )
            return result.inserted_primary_key[0]

    def find_active_by_hash(self, code_hash: str, purpose: Purpose, now: datetime) -> VerificationRecord | None:
        """Return the newest unused, unexpired record of `purpose` with this hash."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _verifications.select()
                .where(
                    (_verifications.c.code_hash == code_hash)
                    & (_verifications.c.purpose == purpose.value)
                    & (_verifications.c.used_at.is_(None))
                    & (_verifications.c.expires_at > to_iso(now))
                )
                .order_by(_verifications.c.created_at.desc())
                .limit(1)
            ).fetchone()
        return _row_to_verification(row) if row is not None else None

    def latest_unused(self, user_id: int, purpose: Purpose) -> VerificationRecord | None:
        """Return the newest unused record of `purpose` for the user, expired or not.

        The OTP flow distinguishes "expired" (410) from "absent" (400), so
        expiry is left to the caller.
        """
        with self.engine.connect() as conn:
            row = conn.execute(
                _verifications.select()
                .where(
                    (_verifications.c.user_id == user_id)
                    & (_verifications.c.purpose == purpose.value)
                    & (_verifications.c.used_at.is_(None))
                )
                .order_by(_verifications.c.created_at.desc(), _verifications.c.id.desc())
                .limit(1)
            ).fetchone()
        return _row_to_verification(row) if row is not None else None

    def list_verifications(self, user_id: int, purpose: Purpose | None = None) -> list[VerificationRecord]:
        """Return the user's ledger entries, oldest first."""
        query = _verifications.select().where(_verifications.c.user_id == user_id)
        if purpose is not None:
            query = query.where(_verifications.c.purpose == purpose.value)
        with self.engine.connect() as conn:
            rows = conn.execute(query.order_by(_verifications.c.id)).fetchall()
        return [_row_to_verification(r) for r in rows]

    def mark_used(self, record_id: int, now: datetime) -> bool:
        """Consume a record. Returns False if it was already used."""
        with self.engine.begin() as conn:
            return _consume(conn, record_id, now)

    def consume_email_verification(self, record_id: int, user_id: int, now: datetime) -> bool:
        """Consume a VERIFY_EMAIL record and stamp email_verified_at atomically.

        Returns False (and changes nothing) if the record was consumed by a
        concurrent request first.
        """
        with self.engine.begin() as conn:
            if not _consume(conn, record_id, now):
                return False
            conn.execute(_users.update().where(_users.c.id == user_id).values(email_verified_at=to_iso(now)))
        return True

    def consume_password_reset(self, record_id: int, user_id: int, hashed_password: str, now: datetime) -> bool:
        """Consume a RESET_PASSWORD record and store the new hash atomically."""
        with self.engine.begin() as conn:
            if not _consume(conn, record_id, now):
                return False
            conn.execute(_users.update().where(_users.c.id == user_id).values(hashed_password=hashed_password))
        return True

    # ------------------------------------------------------------------
    # Roles and permissions
    # ------------------------------------------------------------------

    def ensure_role(self, name: str) -> int:
        """Return the role's ID, creating it if missing. Idempotent."""
        with self.engine.begin() as conn:
            role_id = conn.execute(select(_roles.c.id).where(_roles.c.name == name)).scalar()
            if role_id is None:
                role_id = conn.execute(_roles.insert().values(name=name)).inserted_primary_key[0]
        return role_id

    def ensure_permission(self, name: str) -> int:
        """Return the permission's ID, creating it if missing. Idempotent."""
        with self.engine.begin() as conn:
            perm_id = conn.execute(select(_permissions.c.id).where(_permissions.c.name == name)).scalar()
            if perm_id is None:
                perm_id = conn.execute(_permissions.insert().values(name=name)).inserted_primary_key[0]
        return perm_id

    def grant_permission(self, role_id: int, permission_id: int) -> bool:
        """Attach a permission to a role. Returns False if already attached."""
        with self.engine.begin() as conn:
            exists = conn.execute(
                select(_role_permissions.c.role_id).where(
                    (_role_permissions.c.role_id == role_id) & (_role_permissions.c.permission_id == permission_id)
                )
            ).first()
            if exists is not None:
                return False
            conn.execute(_role_permissions.insert().values(role_id=role_id, permission_id=permission_id))
        return True

    def get_role(self, name: str) -> Role | None:
        """Return the role with its permission names, or None if unknown."""
        with self.engine.connect() as conn:
            role_id = conn.execute(select(_roles.c.id).where(_roles.c.name == name)).scalar()
            if role_id is None:
                return None
            perms = conn.execute(
                select(_permissions.c.name)
                .join(_role_permissions, _role_permissions.c.permission_id == _permissions.c.id)
                .where(_role_permissions.c.role_id == role_id)
                .order_by(_permissions.c.name)
            ).scalars()
            return Role(id=role_id, name=name, permissions=list(perms))

    def assign_role(self, user_id: int, role_name: str) -> bool:
        """Give a user a role by name.

        Returns False if the role does not exist or the user already holds it.
        """
        with self.engine.begin() as conn:
            role_id = conn.execute(select(_roles.c.id).where(_roles.c.name == role_name)).scalar()
            if role_id is None:
                return False
            exists = conn.execute(
                select(_user_roles.c.user_id).where(
                    (_user_roles.c.user_id == user_id) & (_user_roles.c.role_id == role_id)
                )
            ).first()
            if exists is not None:
                return False
            conn.execute(_user_roles.insert().values(user_id=user_id, role_id=role_id))
        return True

    def get_user_roles(self, user_id: int) -> list[str]:
        with self.engine.connect() as conn:
            names = conn.execute(
                select(_roles.c.name)
                .join(_user_roles, _user_roles.c.role_id == _roles.c.id)
                .where(_user_roles.c.user_id == user_id)
                .order_by(_roles.c.name)
            ).scalars()
            return list(names)

    def get_user_permissions(self, user_id: int) -> set[str]:
        """Return the union of permission names across every role the user holds."""
        with self.engine.connect() as conn:
            names = conn.execute(
                select(_permissions.c.name)
                .join(_role_permissions, _role_permissions.c.permission_id == _permissions.c.id)
                .join(_user_roles, _user_roles.c.role_id == _role_permissions.c.role_id)
                .where(_user_roles.c.user_id == user_id)
            ).scalars()
            return set(names)

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _consume(conn, record_id: int, now: datetime) -> bool:
    result = conn.execute(
        _verifications.update()
        .where((_verifications.c.id == record_id) & (_verifications.c.used_at.is_(None)))
        .values(used_at=to_iso(now))
    )
    return result.rowcount > 0


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        hashed_password=row.hashed_password,
        email_verified_at=row.email_verified_at,
        created_at=row.created_at,
    )


def _row_to_verification(row) -> VerificationRecord:
    return VerificationRecord(
        id=row.id,
        user_id=row.user_id,
        purpose=Purpose(row.purpose),
        code_hash=row.code_hash,
        created_at=row.created_at,
        expires_at=row.expires_at,
        used_at=row.used_at,
    )
