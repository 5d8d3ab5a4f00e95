"""
auth/store.py -- SQLAlchemy Core persistence layer for user accounts.

Pattern: Repository + Data Mapper. UserStore is the repository; _row_to_user
is the mapper. Route and token code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

DB URL: taken from ServiceSettings.database_url_for() -- DATABASE_URL, then
the PG* parts, then a local SQLite file. Pool sizing and the startup
connection retry count come from the same settings object.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError

from auth.models import User

if TYPE_CHECKING:
    from core.config import ServiceSettings

logger = logging.getLogger("campus.auth")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("name", String(255), nullable=False),
    Column("password", Text, nullable=False),  # bcrypt hash
    Column("created_at", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety on SQLite."""
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User entities.

    Usage:
        store = UserStore.from_settings(get_settings())
        store.create_user(User(email="a@example.com", name="A", hashed_password=hash_password("secret")))
        user = store.get_by_email("a@example.com")
        store.close()
    """

    def __init__(
        self,
        db_url: str = "sqlite:///:memory:",
        engine_options: dict | None = None,
        connect_retries: int = 0,
        retry_delay: float = 1.0,
    ) -> None:
        connect_args: dict = {}
        options = dict(engine_options or {})
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        else:
            connect_args.update(options.pop("connect_args", {}))
        self.engine: Engine = create_engine(db_url, connect_args=connect_args, **options)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        self._create_schema(connect_retries, retry_delay)

    @classmethod
    def from_settings(cls, settings: ServiceSettings) -> UserStore:
        """Build a store from resolved settings, applying pool sizing for server databases.

        The PG_* timeouts are milliseconds; SQLAlchemy expects seconds.
        SQLite uses its own single-file pool, so no sizing is applied there.
        """
        db_url = settings.database_url_for()
        options: dict = {}
        if not db_url.startswith("sqlite"):
            options = {
                "pool_size": settings.pg_max_connections,
                "pool_recycle": max(1, settings.pg_idle_timeout // 1000),
                "pool_pre_ping": True,
                "connect_args": {"connect_timeout": max(1, settings.pg_connection_timeout // 1000)},
            }
        return cls(db_url, engine_options=options, connect_retries=settings.pg_connection_retries)

    def _create_schema(self, retries: int, delay: float) -> None:
        """Create tables, retrying transient connection failures with linear backoff.

        Hosted databases can take a few seconds to accept connections after a
        cold start. The last OperationalError propagates once retries run out.
        """
        attempt = 0
        while True:
            try:
                _metadata.create_all(self.engine)
                return
            except OperationalError:
                if attempt >= retries:
                    raise
                attempt += 1
                logger.warning("Database connection failed (attempt %d of %d), retrying", attempt, retries)
                time.sleep(delay * attempt)

    # ------------------------------------------------------------------
    # User queries
    # ------------------------------------------------------------------

    def ping(self) -> bool:
        """Return True if the database answers a trivial query. Used by /health."""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except OperationalError:
            logger.exception("Database health check failed")
            return False
        return True

    def create_user(self, user: User) -> int:
        """Insert a new user and return its assigned database ID.

        Raises sqlalchemy.exc.IntegrityError if the email already exists.
        The register route catches it so two concurrent sign-ups with the
        same email cannot both succeed.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.insert().values(
                    email=user.email,
                    name=user.name,
                    password=user.hashed_password,
                    created_at=_now_iso(),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_by_email(self, email: str) -> User | None:
        """Look up a user by exact email. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == email)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_id(self, user_id: int) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        name=row.name,
        hashed_password=row.password,
        created_at=row.created_at,
    )
