"""
MongoDB access for the Best Wishes API.

Documents reference each other by string id (``user_id``, ``product_id``...),
and every collection is named after the lowercase model in ``schemas.py``.
"""
import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Iterator, List, Optional, Union

from bson import ObjectId
from bson.errors import InvalidId
from pydantic import BaseModel
from pymongo import ASCENDING, MongoClient
from pymongo.client_session import ClientSession

from config import settings

logger = logging.getLogger(__name__)

client = MongoClient(settings.DATABASE_URL, serverSelectionTimeoutMS=5000)
db = client[settings.DATABASE_NAME]


def ensure_indexes() -> None:
    db["user"].create_index("email", unique=True)
    db["product"].create_index("sku", unique=True)
    db["category"].create_index("key", unique=True)
    db["feedback"].create_index(
        [("user_id", ASCENDING), ("product_id", ASCENDING), ("order_id", ASCENDING)], unique=True
    )
    db["notification"].create_index([("user_id", ASCENDING), ("created_at", ASCENDING)])
    db["customization"].create_index(
        [("product_id", ASCENDING), ("user_id", ASCENDING), ("status", ASCENDING)],
        unique=True, partialFilterExpression={"status": "draft"},
    )
    logger.info("Indexes ensured on %s", settings.DATABASE_NAME)


def to_object_id(value: Any) -> Optional[ObjectId]:
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        return None


def serialize_doc(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if doc is None:
        return None
    out = dict(doc)
    if "_id" in out:
        out["id"] = str(out.pop("_id"))
    return out


def create_document(collection_name: str, data: Union[BaseModel, Dict[str, Any]],
                    session: Optional[ClientSession] = None) -> str:
    payload = data.model_dump() if isinstance(data, BaseModel) else dict(data)
    now = datetime.utcnow()
    payload.setdefault("created_at", now)
    payload["updated_at"] = now
    result = db[collection_name].insert_one(payload, session=session)
    return str(result.inserted_id)


def get_documents(collection_name: str, filter_dict: Optional[Dict[str, Any]] = None,
                  limit: Optional[int] = None, sort: Optional[List[tuple]] = None) -> List[Dict[str, Any]]:
    cursor = db[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if limit:
        cursor = cursor.limit(limit)
    return [serialize_doc(d) for d in cursor]


def find_by_id(collection_name: str, doc_id: Any, session: Optional[ClientSession] = None) -> Optional[Dict[str, Any]]:
    oid = to_object_id(doc_id)
    if oid is None:
        return None
    return db[collection_name].find_one({"_id": oid}, session=session)


def populate(docs: List[Dict[str, Any]], field: str, collection_name: str, target: str,
             projection: Optional[Dict[str, int]] = None) -> List[Dict[str, Any]]:
    """Resolve ``doc[field]`` (a string id) into ``doc[target]`` for each doc."""
    ids = {to_object_id(d.get(field)) for d in docs if d.get(field)}
    ids.discard(None)
    found = {}
    if ids:
        for ref in db[collection_name].find({"_id": {"$in": list(ids)}}, projection):
            found[str(ref["_id"])] = serialize_doc(ref)
    for d in docs:
        d[target] = found.get(str(d.get(field))) if d.get(field) else None
    return docs


@contextmanager
def transaction() -> Iterator[Optional[ClientSession]]:
    """Yield a session bound to a multi-document transaction.

    With USE_TRANSACTIONS off (standalone servers, tests) this yields None and
    writes go straight through.
    """
    if not settings.USE_TRANSACTIONS:
        yield None
        return
    with client.start_session() as session:
        with session.start_transaction():
            yield session
