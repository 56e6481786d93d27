"""
auth/store.py -- SQLAlchemy Core persistence layer for identities.

Pattern: Repository + Data Mapper. UserStore is the repository; _row_to_user
is the mapper. Route code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.
  Plaintext passwords enter create_credential() and leave as a bcrypt hash;
  they are never persisted or logged.

Uniqueness:
  username (case-insensitively, via a unique index on lower(username)) and
  email carry UNIQUE constraints. create_credential() checks
  first so the common case gets a clean DuplicateIdentity, and still converts
  IntegrityError for the race where two registrations pass the check together.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy import (
    Boolean,
    Column,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    event,
    func,
    or_,
    select,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from auth.errors import DuplicateIdentity, Forbidden, NotFound
from auth.models import Role, User
from auth.passwords import hash_password
from auth.passwords import verify_password as _check_password

logger = logging.getLogger("secureblog.store")

_DEFAULT_DB_URL = "sqlite:///secureblog_auth.db"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("username", String(30), nullable=False, unique=True),
    Column("email", String(255), nullable=False, unique=True),  # stored lower-cased
    Column("hashed_password", Text, nullable=False),
    Column("role", String(16), nullable=False, server_default=Role.reader.value),
    Column("is_verified", Boolean, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
    Column("last_login", String(32)),
)

# "Alice" and "alice" are the same account name.
Index("ix_users_username_lower", func.lower(_users.c.username), unique=True)


def _username_matches(username: str):
    return func.lower(_users.c.username) == username.strip().lower()


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers are not blocked during writes."""
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now() -> datetime:
    return datetime.now(timezone.utc)


def normalize_email(email: str) -> str:
    return email.strip().lower()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User identities.

    Usage:
        store = UserStore()
        user = store.create_credential("alice", "alice@x.com", "Passw0rd!", Role.reader)
        store.mark_verified(user.id)
        store.close()
    """

    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite") and ":memory:" not in db_url and "mode=memory" not in db_url:
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------

    def create_credential(
        self,
        username: str,
        email: str,
        plaintext_password: str,
        role: Role = Role.reader,
        *,
        is_verified: bool = False,
    ) -> User:
        """Hash the password and insert a new identity. Returns the stored User.

        Raises DuplicateIdentity if the username or email is already taken.
        The duplicate check runs before bcrypt so rejected registrations stay
        cheap and leave no side effects.
        """
        email = normalize_email(email)
        username = username.strip()
        if self._exists(username, email):
            raise DuplicateIdentity()

        hashed = hash_password(plaintext_password)
        try:
            with self.engine.begin() as conn:
                result = conn.execute(
                    _users.insert().values(
                        username=username,
                        email=email,
                        hashed_password=hashed,
                        role=role.value,
                        is_verified=is_verified,
                        created_at=_now().isoformat(),
                    )
                )
                user_id = result.inserted_primary_key[0]
        except IntegrityError as exc:
            # Lost the race against a concurrent registration.
            raise DuplicateIdentity() from exc

        logger.info("Credential created: user_id=%s role=%s", user_id, role.value)
        created = self.get_by_id(user_id)
        assert created is not None
        return created

    @staticmethod
    def verify_password(plaintext: str, stored_hash: str) -> bool:
        """Constant-time password check (delegates to bcrypt.checkpw)."""
        return _check_password(plaintext, stored_hash)

    def mark_verified(self, user_id: int) -> bool:
        """Set is_verified. Idempotent. Returns False only if the user does not exist."""
        with self.engine.begin() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(is_verified=True))
        return result.rowcount > 0

    def change_role(self, actor_id: int, target_id: int, new_role: Role) -> User:
        """Change target's role on behalf of actor. Admin only.

        The actor's role is read from the store inside the same transaction,
        not taken from their session token: tokens are not revoked when an
        admin is demoted, so the token alone cannot authorize this.

        Raises Forbidden if the actor is not an admin or targets themselves,
        NotFound if the target does not exist.
        """
        with self.engine.begin() as conn:
            actor = conn.execute(select(_users.c.role).where(_users.c.id == actor_id)).fetchone()
            if actor is None or Role(actor.role) is not Role.admin:
                raise Forbidden("Admin access required.")
            if actor_id == target_id:
                raise Forbidden("You cannot change your own role.")
            result = conn.execute(_users.update().where(_users.c.id == target_id).values(role=new_role.value))
            if result.rowcount == 0:
                raise NotFound()

        logger.info("Role changed: actor=%s target=%s role=%s", actor_id, target_id, new_role.value)
        updated = self.get_by_id(target_id)
        assert updated is not None
        return updated

    def set_role(self, user_id: int, role: Role) -> bool:
        """Out-of-band role assignment with no actor check.

        Only for operator tooling (main.py bootstrap-admin). Request
        handlers must go through change_role().
        """
        with self.engine.begin() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(role=role.value))
        return result.rowcount > 0

    def delete_user(self, actor_id: int, target_id: int) -> User:
        """Delete target on behalf of an admin actor. Returns the deleted record.

        Same guards as change_role(): the actor must be an admin according to
        the store, and may not delete their own account.
        """
        with self.engine.begin() as conn:
            actor = conn.execute(select(_users.c.role).where(_users.c.id == actor_id)).fetchone()
            if actor is None or Role(actor.role) is not Role.admin:
                raise Forbidden("Admin access required.")
            if actor_id == target_id:
                raise Forbidden("You cannot delete your own account.")
            row = conn.execute(_users.select().where(_users.c.id == target_id)).fetchone()
            if row is None:
                raise NotFound()
            conn.execute(_users.delete().where(_users.c.id == target_id))

        logger.info("User deleted: actor=%s target=%s", actor_id, target_id)
        return _row_to_user(row)

    def update_last_login(self, user_id: int) -> None:
        """Stamp the current UTC time as last_login (password login and OTP verification)."""
        with self.engine.begin() as conn:
            conn.execute(_users.update().where(_users.c.id == user_id).values(last_login=_now().isoformat()))

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_by_id(self, user_id: int) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_email(self, email: str) -> User | None:
        """Look up a user by email. Case-insensitive via normalization."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == normalize_email(email))).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_username(self, username: str) -> User | None:
        """Look up a user by username, ignoring case. The stored spelling is returned."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_username_matches(username))).fetchone()
        return _row_to_user(row) if row is not None else None

    def list_users(self) -> list[User]:
        """Return all users, newest first. Admin-only operation."""
        with self.engine.connect() as conn:
            rows = conn.execute(_users.select().order_by(_users.c.id.desc())).fetchall()
        return [_row_to_user(r) for r in rows]

    def stats(self) -> dict:
        """Identity counts for the admin dashboard."""
        week_ago = (_now() - timedelta(days=7)).isoformat()
        with self.engine.connect() as conn:
            total = conn.execute(select(func.count()).select_from(_users)).scalar() or 0
            verified = conn.execute(select(func.count()).where(_users.c.is_verified.is_(True))).scalar() or 0
            new_this_week = conn.execute(select(func.count()).where(_users.c.created_at >= week_ago)).scalar() or 0
            role_rows = conn.execute(select(_users.c.role, func.count()).group_by(_users.c.role)).fetchall()
        by_role = {role.value: 0 for role in Role}
        for role, count in role_rows:
            by_role[role] = count
        return {
            "total_users": total,
            "verified_users": verified,
            "unverified_users": total - verified,
            "new_users_this_week": new_this_week,
            "users_by_role": by_role,
        }

    def ping(self) -> bool:
        """Cheap connectivity check for the health endpoint."""
        with self.engine.connect() as conn:
            conn.execute(select(1))
        return True

    def _exists(self, username: str, email: str) -> bool:
        with self.engine.connect() as conn:
            row = conn.execute(
                select(_users.c.id).where(or_(_username_matches(username), _users.c.email == email))
            ).first()
        return row is not None

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        username=row.username,
        email=row.email,
        hashed_password=row.hashed_password,
        role=Role(row.role),
        is_verified=bool(row.is_verified),
        created_at=row.created_at,
        last_login=row.last_login,
    )
