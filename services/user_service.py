import logging
from datetime import datetime
from typing import Callable, Literal

from sqlalchemy.exc import IntegrityError
from sqlmodel import select

from database import Database, User, utcnow

logger = logging.getLogger("maapaap_api.user")

IdentifierKind = Literal["email", "phone"]


class UserResolver:
    def __init__(self, database: Database, clock: Callable[[], datetime] = utcnow):
        self.database = database
        self.clock = clock

    def get(self, user_id: str) -> User | None:
        with self.database.session() as session:
            return session.get(User, user_id)

    def find(self, identifier: str, kind: IdentifierKind) -> User | None:
        column = User.email if kind == "email" else User.phone
        with self.database.session() as session:
            return session.exec(select(User).where(column == identifier)).first()

    def resolve_or_create(self, identifier: str, kind: IdentifierKind) -> User:
        """
            Return the user owning the identifier, creating it on first login.
            The identifier counts as verified because an OTP was just consumed.
        """
        if kind not in ("email", "phone"):
            raise ValueError(f"Unsupported identifier kind: {kind}")

        user = self.find(identifier, kind)
        if user:
            return user

        now = self.clock()
        new_user = User(created_at=now, updated_at=now)
        if kind == "email":
            new_user.email = identifier
            new_user.email_verified = True
        else:
            new_user.phone = identifier
            new_user.phone_verified = True

        with self.database.session() as session:
            try:
                session.add(new_user)
                session.commit()
                session.refresh(new_user)
                logger.info(f"Created user id={new_user.id} for {kind}={identifier}")
                return new_user
            except IntegrityError:
                # Another request inserted the same identifier first
                session.rollback()

        user = self.find(identifier, kind)
        if user is None:
            raise RuntimeError(f"User for {kind}={identifier} vanished after a unique conflict")
        return user
