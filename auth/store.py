"""
auth/store.py -- SQLAlchemy Core persistence layer for user accounts.

Pattern: Repository + Data Mapper (same as ads/store.py).
UserStore is the repository; _row_to_user is the mapper.
Route and dependency code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

Concurrency:
  The only shared mutable state in the auth core is the per-user lockout
  triple (login_attempts, lock_until, last_login). record_failed_login() and
  record_successful_login() each issue ONE UPDATE statement whose new values
  are computed from the row's current values inside the database, so
  concurrent login attempts for the same user serialize on the row and no
  increment is lost. Never replace them with get_by_id() + update_user().

Layer rule: no imports from api/, ads/, core/, or client/. Policy values
(threshold, lock expiry) are passed in by auth/tokens.py.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, case, create_engine, event, func, select
from sqlalchemy.engine import Engine

from auth.models import Role, User

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(50), nullable=False),
    Column("phone", String(15), nullable=False, unique=True),
    Column("username", String(30), nullable=False, unique=True),
    Column("email", String(100)),
    Column("hashed_password", Text, nullable=False),
    Column("role", String(10), nullable=False, server_default="user"),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("is_banned", Integer, nullable=False, server_default="0"),
    Column("login_attempts", Integer, nullable=False, server_default="0"),
    Column("lock_until", String(32)),  # ISO 8601, NULL when unlocked
    Column("last_login", String(32)),
    Column("created_at", String(32), nullable=False),
    # AUTOINCREMENT: a deleted user's id is never handed to a new account.
    sqlite_autoincrement=True,
)

# Columns an admin or the profile flow may change through update_user().
# Lockout columns are deliberately absent: they only move through the
# atomic record_* methods and reset_lockout().
_UPDATABLE = {"name", "phone", "email", "hashed_password", "role", "is_active", "is_banned"}


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _iso(moment: datetime | None) -> str:
    return (moment or datetime.now(timezone.utc)).isoformat()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User entities.

    Usage:
        store = UserStore("sqlite:///amlak.db")
        uid = store.create_user(User(username="admin", name="Admin", phone="09120000000",
                                     role=Role.admin, hashed_password=hash_password("secret")))
        user = store.get_by_username("admin")
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

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def has_admin(self) -> bool:
        """Return True if at least one admin account exists."""
        with self.engine.connect() as conn:
            count = conn.execute(
                select(func.count()).select_from(_users).where(_users.c.role == Role.admin.value)
            ).scalar()
        return (count or 0) > 0

    def get_by_username(self, username: str) -> User | None:
        """Look up a user by exact username (case-sensitive). Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.username == username)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_phone(self, phone: str) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.phone == phone)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_id(self, user_id: int) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def list_users(self) -> list[User]:
        """Return all users, newest first. Admin-only operation."""
        with self.engine.connect() as conn:
            rows = conn.execute(_users.select().order_by(_users.c.created_at.desc(), _users.c.id.desc())).fetchall()
        return [_row_to_user(r) for r in rows]

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> int:
        """Insert a new user and return its assigned database ID.

        Raises sqlalchemy.exc.IntegrityError if the username or phone already
        exists. The registration route pre-checks both for a field-specific
        message, and catches IntegrityError for the concurrent-insert race.
        """
        with self.engine.begin() as conn:
            result = conn.execute(
                _users.insert().values(
                    name=user.name,
                    phone=user.phone,
                    username=user.username,
                    email=user.email,
                    hashed_password=user.hashed_password,
                    role=Role(user.role).value,
                    is_active=1 if user.is_active else 0,
                    is_banned=1 if user.is_banned else 0,
                    created_at=_now_iso(),
                )
            )
            return result.inserted_primary_key[0]

    def update_user(self, user_id: int, **fields) -> bool:
        """Partially update a user. Unspecified columns are left untouched.

        Accepted fields: name, phone, email, hashed_password, role, is_active,
        is_banned. Unknown fields raise ValueError -- fail fast rather than
        silently dropping an intended change.

        Returns True if a row was updated, False if user_id was not found.
        """
        unknown = set(fields) - _UPDATABLE
        if unknown:
            raise ValueError(f"Unknown user fields: {sorted(unknown)!r}")
        if not fields:
            return self.get_by_id(user_id) is not None
        if "role" in fields:
            fields["role"] = Role(fields["role"]).value
        for flag in ("is_active", "is_banned"):
            if flag in fields:
                fields[flag] = 1 if fields[flag] else 0
        with self.engine.begin() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(**fields))
        return result.rowcount > 0

    def delete_user(self, user_id: int) -> bool:
        """Permanently delete a user record. Returns True if deleted, False if not found.

        Callers must check that the user owns no ads first -- the ads table
        lives in its own store, so the constraint cannot be expressed here.
        """
        with self.engine.begin() as conn:
            result = conn.execute(_users.delete().where(_users.c.id == user_id))
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Lockout state
    # ------------------------------------------------------------------

    def record_failed_login(self, user_id: int, threshold: int, lock_until: datetime) -> User | None:
        """Atomically count one failed password check and lock if the threshold is reached.

        The increment and the lock decision are a single UPDATE: the CASE
        reads the pre-update login_attempts of the row being written, so two
        concurrent failures can never both read N and both write N+1.
        Below the threshold lock_until is cleared, matching a fresh window.

        Returns the updated user, or None if user_id does not exist.
        """
        attempts = _users.c.login_attempts + 1
        with self.engine.begin() as conn:
            conn.execute(
                _users.update()
                .where(_users.c.id == user_id)
                .values(
                    login_attempts=attempts,
                    lock_until=case((attempts >= threshold, _iso(lock_until)), else_=None),
                )
            )
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def record_successful_login(self, user_id: int, now: datetime | None = None) -> None:
        """Reset attempts, clear the lock, and stamp last_login in one statement."""
        with self.engine.begin() as conn:
            conn.execute(
                _users.update()
                .where(_users.c.id == user_id)
                .values(login_attempts=0, lock_until=None, last_login=_iso(now))
            )

    def reset_lockout(self, user_id: int) -> bool:
        """Admin unlock: clear attempts and lock without touching last_login."""
        with self.engine.begin() as conn:
            result = conn.execute(
                _users.update().where(_users.c.id == user_id).values(login_attempts=0, lock_until=None)
            )
        return result.rowcount > 0

    def ping(self) -> bool:
        """Cheap connectivity probe for the health endpoint."""
        with self.engine.connect() as conn:
            conn.execute(select(1))
        return True

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        name=row.name,
        phone=row.phone,
        username=row.username,
        email=row.email,
        hashed_password=row.hashed_password,
        role=Role(row.role),
        is_active=bool(row.is_active),
        is_banned=bool(row.is_banned),
        login_attempts=row.login_attempts or 0,
        lock_until=row.lock_until,
        last_login=row.last_login,
        created_at=row.created_at,
    )
