"""
MongoDB access helpers.

`db` is the module level database handle built from DATABASE_URL, or None when
no database is configured. Route handlers receive it through `get_db` so tests
can substitute their own handle.

Timestamps are stored as naive UTC datetimes truncated to milliseconds, which is
what BSON dates hold and what pymongo hands back by default.
"""
import logging
import time
import uuid
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Iterator, Optional, Union

import pymongo
from bson import ObjectId
from pydantic import BaseModel
from pymongo.database import Database
from pymongo.errors import PyMongoError

from config import Settings, get_settings
from errors import ConfigurationError, NotFoundError, RetryableError, StorageError

logger = logging.getLogger(__name__)

LOCK_POLL_INTERVAL = 0.05


def _connect(settings):
    if not settings.database_url:
        return None
    client = pymongo.MongoClient(
        settings.database_url,
        serverSelectionTimeoutMS=int(settings.storage_timeout * 1000),
    )
    return client[settings.database_name]


db = _connect(get_settings())


def get_db() -> Database:
    if db is None:
        raise ConfigurationError("Database not configured")
    return db


def utcnow():
    return to_storage_time(datetime.now(timezone.utc))


def to_storage_time(value: datetime) -> datetime:
    """Naive UTC, millisecond precision. Naive input is taken to be UTC already."""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value.replace(microsecond=value.microsecond // 1000 * 1000)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to a naive datetime read back from the store."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def object_id(value: str, what: str) -> ObjectId:
    # An id that cannot be an ObjectId cannot name an existing document.
    if not isinstance(value, str) or not ObjectId.is_valid(value):
        raise NotFoundError(f"{what} not found")
    return ObjectId(value)


@contextmanager
def storage_guard(action: str, settings: Optional[Settings] = None) -> Iterator[None]:
    """Bound the enclosed storage calls and translate driver failures.

    Timeouts become RetryableError, every other driver failure StorageError.
    """
    settings = settings or get_settings()
    try:
        with pymongo.timeout(settings.storage_timeout):
            yield
    except PyMongoError as exc:
        if exc.timeout:
            logger.error("Storage timeout while trying to %s: %s", action, exc)
            raise RetryableError(f"Timed out while trying to {action}") from exc
        logger.error("Storage failure while trying to %s: %s", action, exc)
        raise StorageError(f"Could not {action}") from exc


def create_document(
    database: Database,
    collection_name: str,
    data: Union[BaseModel, dict],
    settings: Optional[Settings] = None,
) -> str:
    """Insert a document with created_at/updated_at set and return its id."""
    if isinstance(data, BaseModel):
        data_dict = data.model_dump()
    else:
        data_dict = data.copy()
    now = utcnow()
    data_dict.setdefault("created_at", now)
    data_dict["updated_at"] = now

    with storage_guard(f"create {collection_name}", settings):
        result = database[collection_name].insert_one(data_dict)
    return str(result.inserted_id)


@contextmanager
def slot_lock(database: Database, slot_id: ObjectId, settings: Optional[Settings] = None) -> Iterator[str]:
    """Hold a lease on one parking slot document.

    The lease is a compare-and-set of `lock_owner` on the slot; a lease whose
    `lock_expires_at` has passed may be taken over. Raises NotFoundError when
    the slot does not exist and RetryableError when the lease stays contended
    for longer than `slot_lock_wait`.
    """
    settings = settings or get_settings()
    slots = database["parkingslot"]
    token = uuid.uuid4().hex
    deadline = time.monotonic() + settings.slot_lock_wait

    while True:
        now = utcnow()
        with storage_guard("lock parking slot", settings):
            acquired = slots.find_one_and_update(
                {
                    "_id": slot_id,
                    "$or": [{"lock_owner": None}, {"lock_expires_at": {"$lt": now}}],
                },
                {
                    "$set": {
                        "lock_owner": token,
                        "lock_expires_at": now + timedelta(seconds=settings.slot_lock_ttl),
                    }
                },
            )
            if acquired is None and slots.find_one({"_id": slot_id}, {"_id": 1}) is None:
                raise NotFoundError("Parking slot not found")
        if acquired is not None:
            break
        if time.monotonic() >= deadline:
            logger.warning("Slot %s is busy, giving up after %.2fs", slot_id, settings.slot_lock_wait)
            raise RetryableError("Parking slot is busy, please retry")
        time.sleep(LOCK_POLL_INTERVAL)

    try:
        yield token
    finally:
        try:
            with storage_guard("unlock parking slot", settings):
                slots.update_one(
                    {"_id": slot_id, "lock_owner": token},
                    {"$set": {"lock_owner": None, "lock_expires_at": None}},
                )
        except StorageError:
            logger.warning("Lease on slot %s not released, it expires in %ss", slot_id, settings.slot_lock_ttl)
