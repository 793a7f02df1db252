"""
Collection access for books, users and transactions.

Every write the rental engine relies on is a single-document conditional
update, so the guards hold across any number of processes sharing the
database.
"""

import logging
from functools import wraps
from typing import Any, Dict, Iterable, List, Optional

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import ReturnDocument
from pymongo.database import Database
from pymongo.errors import PyMongoError

from database import BOOK, TRANSACTION, USER, create_document, get_documents, utcnow
from errors import StoreUnavailable
from schemas import ISSUED

logger = logging.getLogger(__name__)


def to_object_id(value: Any) -> Optional[ObjectId]:
    """Parse an identifier; malformed ids resolve to None."""
    if isinstance(value, ObjectId):
        return value
    if not isinstance(value, str):
        return None
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        return None


def store_call(func):
    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except PyMongoError as e:
            logger.error(f"{func.__qualname__} failed: {e}")
            raise StoreUnavailable() from e

    return wrapper


class CatalogStore:
    def __init__(self, db: Database):
        self.collection = db[BOOK]

    @store_call
    def find_book_by_id(self, book_id) -> Optional[Dict[str, Any]]:
        oid = to_object_id(book_id)
        if oid is None:
            return None
        return self.collection.find_one({"_id": oid})

    @store_call
    def find_books(self, filter_dict: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        return get_documents(self.collection.database, BOOK, filter_dict)

    @store_call
    def update_book_availability(self, book_id, expected_current: bool, new_value: bool) -> bool:
        """Test-and-set on ``available``; False when the condition did not hold.

        A book without the field counts as available, as in ``RentalEngine.is_available``.
        """
        oid = to_object_id(book_id)
        if oid is None:
            return False
        current = {"$ne": False} if expected_current else False
        updated = self.collection.find_one_and_update(
            {"_id": oid, "available": current},
            {"$set": {"available": new_value, "updatedAt": utcnow()}},
        )
        return updated is not None

    @store_call
    def insert_books(self, books: Iterable[Any]) -> List[str]:
        return [str(create_document(self.collection, b)["_id"]) for b in books]


class UserStore:
    def __init__(self, db: Database):
        self.collection = db[USER]

    @store_call
    def find_user_by_id(self, user_id) -> Optional[Dict[str, Any]]:
        oid = to_object_id(user_id)
        if oid is None:
            return None
        return self.collection.find_one({"_id": oid}, {"password": 0})

    @store_call
    def list_users(self) -> List[Dict[str, Any]]:
        return get_documents(self.collection.database, USER, projection={"password": 0})

    @store_call
    def insert_users(self, users: Iterable[Any]) -> List[str]:
        return [str(create_document(self.collection, u)["_id"]) for u in users]


class LedgerStore:
    def __init__(self, db: Database):
        self.collection = db[TRANSACTION]

    @store_call
    def create_transaction(self, fields: Any, transaction_id: Optional[ObjectId] = None) -> Dict[str, Any]:
        return create_document(self.collection, fields, doc_id=transaction_id)

    @store_call
    def delete_open_transaction(self, transaction_id) -> bool:
        """Remove a transaction that is still issued; used to undo a failed issue."""
        oid = to_object_id(transaction_id)
        if oid is None:
            return False
        return self.collection.delete_one({"_id": oid, "status": ISSUED}).deleted_count == 1

    @store_call
    def find_transaction_by_id(self, transaction_id) -> Optional[Dict[str, Any]]:
        oid = to_object_id(transaction_id)
        if oid is None:
            return None
        return self.collection.find_one({"_id": oid})

    @store_call
    def update_transaction_if_status(
        self,
        transaction_id,
        expected_status: str,
        fields: Dict[str, Any],
        unset: Iterable[str] = (),
    ) -> Optional[Dict[str, Any]]:
        """Apply ``fields`` only while status is ``expected_status``; return the new document or None."""
        oid = to_object_id(transaction_id)
        if oid is None:
            return None
        update: Dict[str, Any] = {"$set": {**fields, "updatedAt": utcnow()}}
        unset = list(unset)
        if unset:
            update["$unset"] = {k: "" for k in unset}
        return self.collection.find_one_and_update(
            {"_id": oid, "status": expected_status},
            update,
            return_document=ReturnDocument.AFTER,
        )

    @store_call
    def count_open_for_book(self, book_id) -> int:
        oid = to_object_id(book_id)
        if oid is None:
            return 0
        return self.collection.count_documents({"book": oid, "status": ISSUED})
