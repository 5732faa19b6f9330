from datetime import timedelta

from auth import create_access_token
from config import DATABASE_URL
from database import Database
from services.session_service import SessionStore
from services.user_service import UserResolver


def generate_token(identifier: str, expiration_minutes: int = 525600) -> str:
    """Generate a token with a live session for use in development."""
    kind = "email" if "@" in identifier else "phone"

    database = Database(DATABASE_URL)
    try:
        database.init_db()
        user = UserResolver(database).resolve_or_create(identifier, kind)
        token = create_access_token(
            user.id, user.email, user.phone, timedelta(minutes=expiration_minutes)
        )
        # Keep the session alive as long as the token itself
        sessions = SessionStore(database, lifetime_days=max(1, expiration_minutes // 1440))
        sessions.create(user.id, token)
    finally:
        database.dispose()
    return token


if __name__ == "__main__":
    identifier = input("Enter an email or phone number to sign in as: ").strip()
    token = generate_token(identifier)

    print(
        f"\nGenerated a bearer token for {identifier}. "
        "To use the token in development, send it in the Authorization header:\n\n"
    )
    print(f"Authorization: Bearer {token}")
