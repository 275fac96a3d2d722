from datetime import timedelta

import pytest

from auth import SessionStoreIdentityProvider, authenticate, get_profile, update_profile
from database import utcnow
from errors import NotFoundError, ValidationError


@pytest.fixture
def provider(db):
    db["user"].insert_one({"_id": "user-alice", "email": "alice@example.com", "display_name": "Alice"})
    db["session"].insert_one({"token": "live", "user_id": "user-alice", "expires_at": utcnow() + timedelta(hours=1)})
    db["session"].insert_one({"token": "stale", "user_id": "user-alice", "expires_at": utcnow() - timedelta(seconds=1)})
    db["session"].insert_one({"token": "fresh-signup", "user_id": "user-carol", "email": "carol@example.com"})
    return SessionStoreIdentityProvider(db)


def test_live_session_resolves_to_context(provider):
    auth = authenticate(provider, "live")

    assert auth.user_id == "user-alice"
    assert auth.session_token == "live"


@pytest.mark.parametrize("token", ["stale", "unknown", ""])
def test_unusable_tokens(provider, token):
    assert authenticate(provider, token) is None


def test_session_without_profile_still_resolves(provider):
    user = provider.resolve("fresh-signup")

    assert user.id == "user-carol"
    assert user.email == "carol@example.com"


def test_update_profile(db, provider):
    user = update_profile(db, "user-alice", "  Alice Cooper ")

    assert user.display_name == "Alice Cooper"
    assert get_profile(db, "user-alice").display_name == "Alice Cooper"


def test_update_profile_errors(db, provider):
    with pytest.raises(ValidationError):
        update_profile(db, "user-alice", "   ")
    with pytest.raises(NotFoundError):
        update_profile(db, "user-nobody", "Nobody")
