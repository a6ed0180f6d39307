"""
auth/store.py -- SQLAlchemy Core persistence for the User Directory.

Pattern: Repository + Data Mapper.
UserStore is the repository; _row_to_user is the mapper.
Route and authority code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.
  The password column holds a serialized CredentialRecord, never plaintext.

DB path: auth/datacatalog_auth.db unless DATABASE_URL is set. The session
table (auth/sessions.py) lives in the same database.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event, func, select, text
from sqlalchemy.engine import Engine

from auth.models import Role, User

DEFAULT_DB_URL = f"sqlite:///{Path(__file__).parent / 'datacatalog_auth.db'}"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("username", String(255), nullable=False, unique=True),
    Column("password", Text, nullable=False),  # "<key_hex>:<salt_hex>"
    Column("email", String(255), nullable=False),
    Column("display_name", String(255)),
    Column("organization", String(255)),
    Column("role", String(30), nullable=False, server_default=Role.USER.value),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("created_at", String(32), nullable=False),
    Column("last_login", String(32)),
)


# ---------------------------------------------------------------------------
# Engine helpers
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def make_engine(db_url: str) -> Engine:
    """Create an engine with the SQLite settings both auth stores rely on.

    check_same_thread=False because FastAPI runs sync handlers in a threadpool.
    """
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_wal_mode)
    return engine


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User entities -- the User Directory.

    Usage:
        store = UserStore()
        store.create_user(User(username="ada", password=hash_password("secret"), email="ada@example.org"))
        user = store.get_by_username("ada")
        store.close()
    """

    def __init__(self, db_url: str = DEFAULT_DB_URL) -> None:
        self.engine: Engine = make_engine(db_url)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def has_users(self) -> bool:
        """Return True if at least one user record exists.

        Used at startup and by POST /setup to detect first-run state.
        """
        with self.engine.connect() as conn:
            result = conn.execute(select(func.count()).select_from(_users)).scalar()
        return (result or 0) > 0

    def create_user(self, user: User) -> int:
        """Insert a new user and return its assigned database ID.

        Raises sqlalchemy.exc.IntegrityError if the username already exists.
        The authority catches that as the concurrent-duplicate case of
        UsernameTaken.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.insert().values(
                    username=user.username,
                    password=user.password,
                    email=user.email,
                    display_name=user.display_name,
                    organization=user.organization,
                    role=Role.parse(user.role).value,
                    is_active=1 if user.is_active else 0,
                    created_at=now_iso(),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_by_username(self, username: str) -> User | None:
        """Look up a user by exact username (case-sensitive). Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.username == username)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_id(self, user_id: int) -> User | None:
        """Look up a user by primary key. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def list_users(self) -> list[User]:
        """Return all users ordered by username. Admin-only operation."""
        with self.engine.connect() as conn:
            rows = conn.execute(_users.select().order_by(_users.c.username)).fetchall()
        return [_row_to_user(r) for r in rows]

    def update_user(self, user_id: int, *, keep_an_admin: bool = False, **fields) -> bool:
        """Update mutable fields on an existing user.

        Accepted fields: role, is_active, password, email, display_name,
        organization. is_active is converted to int and role to its string
        value for storage.

        keep_an_admin=True makes the write conditional on some other active
        admin existing [M4]. The check is part of the UPDATE statement, so two
        concurrent demotions of the last two admins cannot both succeed.

        Returns True if a row was updated, False if user_id was not found or
        the admin condition failed.
        """
        if "is_active" in fields:
            fields["is_active"] = 1 if fields["is_active"] else 0
        if "role" in fields:
            fields["role"] = Role.parse(fields["role"]).value
        stmt = _users.update().where(_users.c.id == user_id)
        if keep_an_admin:
            admins = _users.alias("admins")
            other_admins = (
                select(func.count())
                .select_from(admins)
                .where((admins.c.role == Role.ADMIN.value) & (admins.c.is_active == 1) & (admins.c.id != user_id))
                .scalar_subquery()
            )
            stmt = stmt.where(other_admins > 0)
        with self.engine.connect() as conn:
            result = conn.execute(stmt.values(**fields))
            conn.commit()
        return result.rowcount > 0

    def count_active_admins(self) -> int:
        """Return the number of active admin users.

        Used by the authority to refuse removing the last admin [M4].
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                select(func.count())
                .select_from(_users)
                .where((_users.c.role == Role.ADMIN.value) & (_users.c.is_active == 1))
            ).scalar()
        return result or 0

    def update_last_login(self, user_id: int) -> None:
        """Stamp the current UTC timestamp as last_login for the given user."""
        with self.engine.connect() as conn:
            conn.execute(_users.update().where(_users.c.id == user_id).values(last_login=now_iso()))
            conn.commit()

    def ping(self) -> bool:
        """Return True if the database answers a trivial query. Used by /health."""
        with self.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        username=row.username,
        password=row.password,
        email=row.email,
        display_name=row.display_name,
        organization=row.organization,
        role=Role.parse(row.role),
        is_active=bool(row.is_active),
        created_at=row.created_at,
        last_login=row.last_login,
    )
