"""
MongoDB access for the shop API.

One collection per document type, named after the lowercase model name
(Product -> "product", Cart -> "cart", Order -> "order", ...).

Multi-document writes go through ``transaction()``. On a replica set the unit
of work is a real MongoDB transaction; with ``MONGO_TRANSACTIONS=false``
(standalone servers) every write registers a compensating action that is
replayed in reverse order when the unit fails.
"""
import os
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from bson import ObjectId
from bson.errors import InvalidId
from pydantic import BaseModel
from pymongo import ASCENDING, MongoClient

from logconfig import get_logger

logger = get_logger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME", "shop")
MONGO_TRANSACTIONS = os.getenv("MONGO_TRANSACTIONS", "true").lower() not in ("0", "false", "no")

client: Optional[MongoClient] = None
db = None
use_transactions = MONGO_TRANSACTIONS


def connect(url: Optional[str] = None, name: Optional[str] = None, mongo_client=None, transactions: Optional[bool] = None):
    """Point the module at a database. Returns the database handle."""
    global client, db, use_transactions
    client = mongo_client if mongo_client is not None else MongoClient(url or DATABASE_URL)
    db = client[name or DATABASE_NAME]
    if transactions is not None:
        use_transactions = transactions
    logger.info("database connected", database=db.name, transactions=use_transactions)
    return db


def disconnect() -> None:
    global client, db
    if client is not None:
        client.close()
    client = None
    db = None


if DATABASE_URL:
    connect()


def now() -> datetime:
    return datetime.now(timezone.utc)


def to_object_id(value: Any) -> Optional[ObjectId]:
    """Parse an id coming from a request; None when it is not a valid ObjectId."""
    if isinstance(value, ObjectId):
        return value
    if not isinstance(value, str):
        return None
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        return None


def _jsonable(value: Any) -> Any:
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_jsonable(v) for v in value]
    return value


def serialize_doc(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not doc:
        return doc
    doc = dict(doc)
    if "_id" in doc:
        doc["id"] = str(doc.pop("_id"))
    return _jsonable(doc)


def create_document(collection_name: str, data, session=None) -> str:
    """Insert a document (dict or pydantic model) stamped with created/updated times."""
    if isinstance(data, BaseModel):
        data_dict = data.model_dump(by_alias=True)
    else:
        data_dict = dict(data)
    stamp = now()
    data_dict.setdefault("created_at", stamp)
    data_dict.setdefault("updated_at", stamp)
    result = db[collection_name].insert_one(data_dict, session=session)
    return str(result.inserted_id)


def get_documents(collection_name: str, filter_dict: Optional[dict] = None, limit: Optional[int] = None,
                  sort: Optional[list] = None, skip: int = 0) -> List[dict]:
    cursor = db[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if skip:
        cursor = cursor.skip(skip)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


class UnitOfWork:
    """A group of writes that is committed or rolled back as a whole.

    Writes pass ``session=uow.session``. Every write also registers its undo
    with ``compensate``; the undo steps only run when there is no native
    transaction to abort.
    """

    def __init__(self, mongo_client, native: bool = True):
        self._client = mongo_client
        self._native = native
        self._compensations: List[Callable[[], Any]] = []
        self.session = None

    def __enter__(self) -> "UnitOfWork":
        if self._native:
            self.session = self._client.start_session()
            self.session.start_transaction()
        return self

    def compensate(self, action: Callable[..., Any], *args, **kwargs) -> None:
        self._compensations.append(lambda: action(*args, **kwargs))

    def _roll_back(self) -> None:
        if self.session is not None:
            self.session.abort_transaction()
            return
        while self._compensations:
            undo = self._compensations.pop()
            try:
                undo()
            except Exception:
                # keep undoing the remaining steps; the original error still propagates
                logger.exception("compensating action failed")

    def __exit__(self, exc_type, exc, tb) -> bool:
        try:
            if exc_type is None:
                if self.session is not None:
                    self.session.commit_transaction()
            else:
                self._roll_back()
        finally:
            if self.session is not None:
                self.session.end_session()
        return False


def transaction() -> UnitOfWork:
    if db is None:
        raise RuntimeError("Database not available")
    return UnitOfWork(client, native=use_transactions)


def ensure_indexes() -> None:
    db["cart"].create_index([("userId", ASCENDING)], unique=True)
    db["order"].create_index([("userId", ASCENDING), ("orderDate", ASCENDING)])
    db["user"].create_index([("info_auth.email", ASCENDING)], unique=True)
    db["product"].create_index([("slug", ASCENDING)], unique=True)
    db["blog"].create_index([("slug", ASCENDING)], unique=True)
    db["review"].create_index([("user_id", ASCENDING), ("product_id", ASCENDING)], unique=True)
