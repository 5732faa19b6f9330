from sqlmodel import select

from auth import create_access_token, hash_token
from database import SessionEntry


def test_created_session_is_live(sessions, users):
    user = users.resolve_or_create("user@x.com", "email")
    token = create_access_token(user.id, user.email, user.phone)

    sessions.create(user.id, token)

    assert sessions.is_live(user.id, token) is True


def test_only_token_digest_is_stored(sessions, users, database):
    user = users.resolve_or_create("user@x.com", "email")
    token = create_access_token(user.id, user.email, user.phone)

    sessions.create(user.id, token)

    with database.session() as session:
        [entry] = session.exec(select(SessionEntry)).all()
    assert entry.token_hash == hash_token(token)
    assert entry.token_hash != token


def test_session_is_bound_to_its_user(sessions, users):
    owner = users.resolve_or_create("owner@x.com", "email")
    other = users.resolve_or_create("other@x.com", "email")
    token = create_access_token(owner.id, owner.email, owner.phone)
    sessions.create(owner.id, token)

    assert sessions.is_live(other.id, token) is False


def test_unknown_token_is_not_live(sessions, users):
    user = users.resolve_or_create("user@x.com", "email")

    assert sessions.is_live(user.id, "never-issued") is False


def test_revoke_ends_only_that_session(sessions, users):
    user = users.resolve_or_create("user@x.com", "email")
    phone_token = create_access_token(user.id, user.email, user.phone)
    laptop_token = create_access_token(user.id, user.email, user.phone)
    sessions.create(user.id, phone_token)
    sessions.create(user.id, laptop_token)

    sessions.revoke(user.id, phone_token)

    assert sessions.is_live(user.id, phone_token) is False
    assert sessions.is_live(user.id, laptop_token) is True


def test_revoke_is_idempotent(sessions, users):
    user = users.resolve_or_create("user@x.com", "email")
    token = create_access_token(user.id, user.email, user.phone)
    sessions.create(user.id, token)

    sessions.revoke(user.id, token)
    sessions.revoke(user.id, token)
    sessions.revoke(user.id, "never-issued")

    assert sessions.is_live(user.id, token) is False


def test_session_expires_after_lifetime(sessions, users, clock):
    user = users.resolve_or_create("user@x.com", "email")
    token = create_access_token(user.id, user.email, user.phone)
    sessions.create(user.id, token)

    clock.advance(days=6, hours=23)
    assert sessions.is_live(user.id, token) is True

    clock.advance(hours=2)
    assert sessions.is_live(user.id, token) is False


def test_sweep_removes_expired_sessions(sessions, users, clock, database):
    user = users.resolve_or_create("user@x.com", "email")
    old_token = create_access_token(user.id, user.email, user.phone)
    sessions.create(user.id, old_token)
    clock.advance(days=8)
    new_token = create_access_token(user.id, user.email, user.phone)
    sessions.create(user.id, new_token)

    assert sessions.sweep_expired() == 1
    assert sessions.sweep_expired() == 0

    with database.session() as session:
        remaining = session.exec(select(SessionEntry)).all()
    assert [entry.token_hash for entry in remaining] == [hash_token(new_token)]
