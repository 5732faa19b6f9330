import logging
from datetime import datetime, timedelta
from typing import Callable

from sqlalchemy import delete
from sqlmodel import select

from auth import hash_token
from config import SESSION_LIFETIME_DAYS
from database import Database, SessionEntry, utcnow

logger = logging.getLogger("maapaap_api.session")


class SessionStore:
    """Server-side record of live bearer tokens, keyed by token digest."""

    def __init__(
        self,
        database: Database,
        clock: Callable[[], datetime] = utcnow,
        lifetime_days: int = SESSION_LIFETIME_DAYS,
    ):
        self.database = database
        self.clock = clock
        self.lifetime_days = lifetime_days

    def create(self, user_id: str, token: str) -> None:
        now = self.clock()
        with self.database.session() as session:
            session.add(
                SessionEntry(
                    user_id=user_id,
                    token_hash=hash_token(token),
                    created_at=now,
                    expires_at=now + timedelta(days=self.lifetime_days),
                )
            )
            session.commit()
        logger.info(f"Session created for user_id={user_id}")

    def is_live(self, user_id: str, token: str) -> bool:
        with self.database.session() as session:
            entry = session.exec(
                select(SessionEntry).where(
                    SessionEntry.user_id == user_id,
                    SessionEntry.token_hash == hash_token(token),
                    SessionEntry.expires_at > self.clock(),
                )
            ).first()
        return entry is not None

    def revoke(self, user_id: str, token: str) -> None:
        with self.database.session() as session:
            result = session.exec(
                delete(SessionEntry).where(
                    SessionEntry.user_id == user_id,
                    SessionEntry.token_hash == hash_token(token),
                )
            )
            session.commit()
        logger.info(f"Session revoked for user_id={user_id}, removed {result.rowcount or 0} entries")

    def sweep_expired(self) -> int:
        with self.database.session() as session:
            result = session.exec(
                delete(SessionEntry).where(SessionEntry.expires_at < self.clock())
            )
            session.commit()
            return result.rowcount or 0
