import string
import secrets
from datetime import datetime, timedelta
from typing import Callable
from argon2 import PasswordHasher
from fastapi.concurrency import run_in_threadpool
from sqlalchemy import delete, update
from sqlmodel import col, select
import logging

from argon2.exceptions import (
    VerifyMismatchError,
    VerificationError,
    InvalidHash,
)

from config import OTP_CHARACTER_LENGTH, OTP_LIFETIME_MINUTES, OTP_MAX_OUTSTANDING
from database import Database, OTPEntry, utcnow
from errors import CacheUnavailableError

logger = logging.getLogger("maapaap_api.otp")

ph = PasswordHasher()


def generate_otp(length: int = OTP_CHARACTER_LENGTH) -> str:
    return "".join(secrets.choice(string.digits) for _ in range(length))


def otp_matches(code_hash: str, submitted_otp: str) -> bool:
    try:
        return ph.verify(code_hash, submitted_otp)
    except VerifyMismatchError:
        return False
    except InvalidHash:
        # Stored hash is corrupted (should never happen unless storage corrupted)
        logger.error("OTP verification skipped a record with an invalid hash")
        return False
    except VerificationError:
        logger.exception("General Argon2 verification error")
        return False


class OTPStore:
    """One-time passcodes persisted in the database and shadowed in a cache.

    The database is authoritative. The cache only holds ``{"id", "hash"}`` of
    the latest code per (identifier, purpose) so the common verification path
    skips the lookup query; any cache miss, mismatch or outage falls back to
    the database.

    Argon2 hashing and database calls are blocking, so the async methods run
    them in the threadpool.
    """

    def __init__(
        self,
        database: Database,
        cache,
        delivery,
        clock: Callable[[], datetime] = utcnow,
        lifetime_minutes: int = OTP_LIFETIME_MINUTES,
        code_length: int = OTP_CHARACTER_LENGTH,
        max_outstanding: int = OTP_MAX_OUTSTANDING,
    ):
        self.database = database
        self.cache = cache
        self.delivery = delivery
        self.clock = clock
        self.lifetime_minutes = lifetime_minutes
        self.code_length = code_length
        self.max_outstanding = max_outstanding

    async def issue(self, identifier: str, purpose: str = "login", channel: str = "email") -> str:
        otp = generate_otp(self.code_length)
        hashed = await run_in_threadpool(ph.hash, otp)
        entry_id = await run_in_threadpool(self._insert, identifier, purpose, hashed)

        try:
            await self.cache.set(
                identifier,
                purpose,
                {"id": entry_id, "hash": hashed},
                self.lifetime_minutes * 60,
            )
        except CacheUnavailableError as e:
            logger.warning(f"OTP cache write skipped for identifier={identifier}: {e}")

        await run_in_threadpool(self.delivery.deliver, identifier, channel, otp)
        return otp

    async def verify(self, identifier: str, submitted_otp: str, purpose: str = "login") -> bool:
        """
            Consume the most recent unused, unexpired OTP matching the code.
            Only the newest ``max_outstanding`` codes are considered.
            Returns False for a wrong, expired or already used code without
            touching any other outstanding code.
        """
        shadow = await self._read_shadow(identifier, purpose)
        shadow_id = shadow.get("id") if shadow else None
        shadow_hash = shadow.get("hash", "") if shadow else ""

        if shadow_id is not None and await run_in_threadpool(otp_matches, shadow_hash, submitted_otp):
            if await run_in_threadpool(self._consume, shadow_id):
                await self._evict(identifier, purpose)
                logger.info(f"OTP verified from cache for identifier={identifier}")
                return True

        candidates = await run_in_threadpool(self._candidates, identifier, purpose)

        for entry in candidates:
            # Already compared against the cached copy of this hash
            if entry.id == shadow_id and entry.code_hash == shadow_hash:
                continue
            if not await run_in_threadpool(otp_matches, entry.code_hash, submitted_otp):
                continue
            if not await run_in_threadpool(self._consume, entry.id):
                logger.warning(f"OTP for identifier={identifier} was consumed by a concurrent request")
                return False
            if entry.id == shadow_id:
                await self._evict(identifier, purpose)
            logger.info(f"OTP verified from database for identifier={identifier}")
            return True

        logger.warning(f"OTP verification failed for identifier={identifier}")
        return False

    def purge_expired(self) -> int:
        with self.database.session() as session:
            result = session.exec(delete(OTPEntry).where(OTPEntry.expires_at < self.clock()))
            session.commit()
            return result.rowcount or 0

    def _insert(self, identifier: str, purpose: str, code_hash: str) -> int:
        now = self.clock()
        with self.database.session() as session:
            entry = OTPEntry(
                identifier=identifier,
                code_hash=code_hash,
                purpose=purpose,
                created_at=now,
                expires_at=now + timedelta(minutes=self.lifetime_minutes),
            )
            session.add(entry)
            session.commit()
            session.refresh(entry)
            return entry.id

    def _candidates(self, identifier: str, purpose: str) -> list[OTPEntry]:
        with self.database.session() as session:
            return session.exec(
                select(OTPEntry)
                .where(
                    OTPEntry.identifier == identifier,
                    OTPEntry.purpose == purpose,
                    col(OTPEntry.used).is_(False),
                    OTPEntry.expires_at > self.clock(),
                )
                .order_by(col(OTPEntry.created_at).desc(), col(OTPEntry.id).desc())
                .limit(self.max_outstanding)
            ).all()

    def _consume(self, entry_id: int) -> bool:
        # Only one concurrent caller can flip used from false to true
        stmt = (
            update(OTPEntry)
            .where(
                OTPEntry.id == entry_id,
                col(OTPEntry.used).is_(False),
                OTPEntry.expires_at > self.clock(),
            )
            .values(used=True)
        )
        with self.database.session() as session:
            result = session.exec(stmt)
            session.commit()
            return result.rowcount == 1

    async def _read_shadow(self, identifier: str, purpose: str) -> dict | None:
        try:
            return await self.cache.get(identifier, purpose)
        except CacheUnavailableError as e:
            logger.warning(f"OTP cache unavailable, using database for identifier={identifier}: {e}")
            return None

    async def _evict(self, identifier: str, purpose: str) -> None:
        try:
            await self.cache.delete(identifier, purpose)
        except CacheUnavailableError as e:
            logger.warning(f"OTP cache eviction skipped for identifier={identifier}: {e}")
