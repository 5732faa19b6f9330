import logging
import time
import uuid
from datetime import datetime, timezone

from sqlalchemy import DateTime, event, text
from sqlmodel import Field, Session, SQLModel, create_engine

from config import DATABASE_POOL_TIMEOUT_SECONDS

logger = logging.getLogger("maapaap_api.db")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class User(SQLModel, table=True):
    __tablename__ = "users"

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    name: str | None = None
    email: str | None = Field(default=None, unique=True, index=True)
    phone: str | None = Field(default=None, unique=True, index=True)
    email_verified: bool = False
    phone_verified: bool = False
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))
    updated_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))


class OTPEntry(SQLModel, table=True):
    __tablename__ = "otps"

    id: int | None = Field(default=None, primary_key=True)
    identifier: str = Field(index=True)
    code_hash: str
    purpose: str = "login"
    used: bool = False
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))
    expires_at: datetime = Field(index=True, sa_type=DateTime(timezone=True))


class SessionEntry(SQLModel, table=True):
    __tablename__ = "sessions"

    id: int | None = Field(default=None, primary_key=True)
    user_id: str = Field(foreign_key="users.id", index=True)
    token_hash: str = Field(index=True)
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))
    expires_at: datetime = Field(index=True, sa_type=DateTime(timezone=True))


def _start_query_timer(conn, cursor, statement, parameters, context, executemany):
    conn.info.setdefault("query_start_time", []).append(time.perf_counter())


def _log_query(conn, cursor, statement, parameters, context, executemany):
    started = conn.info["query_start_time"].pop()
    duration_ms = (time.perf_counter() - started) * 1000
    logger.debug(
        "Executed query duration=%.1fms rows=%s: %s",
        duration_ms,
        cursor.rowcount,
        " ".join(statement.split()),
    )


class Database:
    """Owns the SQLAlchemy engine for the lifetime of the process.

    Created once at startup and handed to every store; ``dispose`` releases
    the connection pool at shutdown.
    """

    def __init__(self, url: str, pool_timeout: int = DATABASE_POOL_TIMEOUT_SECONDS):
        connect_args = {}
        engine_kwargs = {}
        if url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        else:
            engine_kwargs["pool_timeout"] = pool_timeout
            engine_kwargs["pool_pre_ping"] = True
            if url.startswith("postgresql"):
                connect_args["connect_timeout"] = pool_timeout

        self.url = url
        self.engine = create_engine(
            url, echo=False, connect_args=connect_args, **engine_kwargs
        )
        event.listen(self.engine, "before_cursor_execute", _start_query_timer)
        event.listen(self.engine, "after_cursor_execute", _log_query)

    def init_db(self):
        SQLModel.metadata.create_all(self.engine)

    def session(self) -> Session:
        return Session(self.engine)

    def ping(self):
        with self.engine.connect() as conn:
            conn.execute(text("SELECT 1"))

    def dispose(self):
        self.engine.dispose()
