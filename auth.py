"""
Identity is owned by the hosted auth provider. This module only reads what the
provider writes: sessions (`session` collection) and display profiles (`user`
collection, keyed by the provider's user id).
"""
import logging
from dataclasses import dataclass
from typing import Optional, Protocol

from pymongo.database import Database

from database import storage_guard, utcnow
from errors import NotFoundError, ValidationError
from schemas import User

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuthContext:
    user_id: str
    session_token: str


class IdentityProvider(Protocol):
    def resolve(self, token: str) -> Optional[User]:
        ...


class SessionStoreIdentityProvider:
    """Resolve bearer tokens against the provider's session records."""

    def __init__(self, database: Database):
        self.database = database

    def resolve(self, token: str) -> Optional[User]:
        if not token:
            return None
        with storage_guard("look up session"):
            session = self.database["session"].find_one({"token": token})
        if not session:
            return None
        expires_at = session.get("expires_at")
        if expires_at is not None and expires_at <= utcnow():
            logger.info("Rejected expired session for user %s", session.get("user_id"))
            return None
        try:
            return get_profile(self.database, session["user_id"])
        except NotFoundError:
            return User(id=session["user_id"], email=session.get("email", ""))


def authenticate(provider: IdentityProvider, token: str) -> Optional[AuthContext]:
    user = provider.resolve(token)
    if user is None:
        return None
    return AuthContext(user_id=user.id, session_token=token)


def get_profile(database: Database, user_id: str) -> User:
    with storage_guard("load profile"):
        doc = database["user"].find_one({"_id": user_id})
    if not doc:
        raise NotFoundError("User not found")
    return User.from_document(doc)


def update_profile(database: Database, user_id: str, display_name: str) -> User:
    display_name = (display_name or "").strip()
    if not display_name:
        raise ValidationError("Display name is required")
    with storage_guard("update profile"):
        result = database["user"].update_one(
            {"_id": user_id},
            {"$set": {"display_name": display_name, "updated_at": utcnow()}},
        )
    if result.matched_count == 0:
        raise NotFoundError("User not found")
    return get_profile(database, user_id)
