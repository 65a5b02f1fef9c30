"""
Database helpers and the user record store.

`db` is a pymongo Database when DATABASE_URL and DATABASE_NAME are set,
otherwise None. Progress documents live in the "user_progress" collection,
keyed by the identity provider's user id.

Every store write is a single-document update, optionally conditioned on the
record version. That conditional update is what keeps a scheduled sweep and a
lazy per-request reset from both resetting the same user.
"""

import logging
import threading
from datetime import datetime, timezone
from typing import Dict, List, Optional

from pymongo import MongoClient, ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError

from config import DATABASE_NAME, DATABASE_URL
from schemas import ProgressRecord

logger = logging.getLogger(__name__)

PROGRESS_COLLECTION = "user_progress"

client = None
db = None
if DATABASE_URL and DATABASE_NAME:
    client = MongoClient(DATABASE_URL, tz_aware=True, serverSelectionTimeoutMS=5000)
    db = client[DATABASE_NAME]


class StoreError(Exception):
    """The record store could not be reached or answered with an error. Not retried here."""


class StoreReadError(StoreError):
    pass


class StoreWriteError(StoreError):
    pass


class ConcurrentUpdateError(StoreWriteError):
    """A conditional write lost to a concurrent writer."""


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _to_record(doc: dict) -> ProgressRecord:
    return ProgressRecord(**{k: v for k, v in doc.items() if k in ProgressRecord.model_fields})


# ----------------------
# User record store
# ----------------------

class UserRecordStore:
    """Persistence for ProgressRecord, one document per user.

    Implementations must make each call atomic for a single user. `update`
    applies `fields`, bumps `version` and returns False when
    `expected_version` is given and no longer matches.
    """

    def get(self, user_id: str) -> Optional[ProgressRecord]:
        raise NotImplementedError

    def create(self, record: ProgressRecord) -> ProgressRecord:
        raise NotImplementedError

    def update(self, user_id: str, fields: dict, expected_version: Optional[int] = None) -> bool:
        raise NotImplementedError

    def delete(self, user_id: str) -> bool:
        raise NotImplementedError

    def find_due_for_reset(self, cutoff: datetime) -> List[ProgressRecord]:
        """Records never reset, or last reset at or before ``cutoff``."""
        raise NotImplementedError


class MongoUserRecordStore(UserRecordStore):

    def __init__(self, database=None):
        database = db if database is None else database
        if database is None:
            raise StoreError("Database not configured")
        self.collection = database[PROGRESS_COLLECTION]
        self._indexed = False

    def _ensure_indexes(self):
        # deferred so an unreachable server does not block startup
        if self._indexed:
            return
        try:
            self.collection.create_index("user_id", unique=True)
            self.collection.create_index("last_reset_date")
        except PyMongoError as e:
            raise StoreWriteError(str(e)) from e
        self._indexed = True

    def get(self, user_id):
        try:
            doc = self.collection.find_one({"user_id": user_id})
        except PyMongoError as e:
            raise StoreReadError(str(e)) from e
        return _to_record(doc) if doc else None

    def create(self, record):
        self._ensure_indexes()
        doc = record.model_dump()
        doc["created_at"] = doc["updated_at"] = _now()
        try:
            self.collection.insert_one(doc)
        except DuplicateKeyError:
            # another request created it first
            existing = self.get(record.user_id)
            if existing is None:
                raise StoreWriteError(f"Could not create progress for {record.user_id}")
            return existing
        except PyMongoError as e:
            raise StoreWriteError(str(e)) from e
        return record

    def update(self, user_id, fields, expected_version=None):
        query = {"user_id": user_id}
        if expected_version is not None:
            query["version"] = expected_version
        fields = {k: v for k, v in fields.items() if k not in ("user_id", "version")}
        fields["updated_at"] = _now()
        try:
            doc = self.collection.find_one_and_update(
                query,
                {"$set": fields, "$inc": {"version": 1}},
                return_document=ReturnDocument.AFTER,
            )
        except PyMongoError as e:
            raise StoreWriteError(str(e)) from e
        return doc is not None

    def delete(self, user_id):
        try:
            result = self.collection.delete_one({"user_id": user_id})
        except PyMongoError as e:
            raise StoreWriteError(str(e)) from e
        return result.deleted_count > 0

    def find_due_for_reset(self, cutoff):
        try:
            docs = list(self.collection.find({
                "$or": [
                    {"last_reset_date": None},
                    {"last_reset_date": {"$lte": cutoff}},
                ]
            }))
        except PyMongoError as e:
            raise StoreReadError(str(e)) from e
        return [_to_record(d) for d in docs]


class InMemoryUserRecordStore(UserRecordStore):
    """Process-local store used when no database is configured, and in tests."""

    def __init__(self):
        self._records: Dict[str, ProgressRecord] = {}
        self._lock = threading.Lock()

    def get(self, user_id):
        with self._lock:
            return self._records.get(user_id)

    def create(self, record):
        with self._lock:
            return self._records.setdefault(record.user_id, record)

    def update(self, user_id, fields, expected_version=None):
        with self._lock:
            current = self._records.get(user_id)
            if current is None:
                return False
            if expected_version is not None and current.version != expected_version:
                return False
            fields = {k: v for k, v in fields.items() if k not in ("user_id", "version")}
            fields["version"] = current.version + 1
            self._records[user_id] = current.model_copy(update=fields)
            return True

    def delete(self, user_id):
        with self._lock:
            return self._records.pop(user_id, None) is not None

    def find_due_for_reset(self, cutoff):
        with self._lock:
            records = list(self._records.values())
        return [r for r in records if r.last_reset_date is None or r.last_reset_date <= cutoff]


def default_store() -> UserRecordStore:
    if db is not None:
        return MongoUserRecordStore(db)
    logger.warning("DATABASE_URL/DATABASE_NAME not set, using in-memory progress store")
    return InMemoryUserRecordStore()
