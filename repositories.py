"""Access to the product and order collections."""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from bson import ObjectId
from pymongo import ASCENDING, DESCENDING

from database import create_document, get_documents
from schemas import Order, Product

ADMIN_PRODUCT_LIMIT = 10
PENDING_ORDER_LIMIT = 20


def object_id(value: str) -> Optional[ObjectId]:
    if not ObjectId.is_valid(value):
        return None
    return ObjectId(value)


def serialize_doc(doc: Dict[str, Any]):
    if not doc:
        return doc
    doc = dict(doc)
    doc["id"] = str(doc.pop("_id"))
    for k, v in list(doc.items()):
        if isinstance(v, datetime):
            doc[k] = v.isoformat()
    return doc


class ProductRepository:
    collection = "product"

    def __init__(self, database):
        self.db = database

    def list(self, order_by: str = "created_at", limit: Optional[int] = None) -> List[dict]:
        if order_by == "name":
            sort = [("name", ASCENDING)]
        else:
            sort = [("created_at", DESCENDING)]
        docs = get_documents(self.collection, {}, limit=limit, sort=sort, database=self.db)
        return [serialize_doc(d) for d in docs]

    def get(self, product_id: str) -> Optional[dict]:
        oid = object_id(product_id)
        if oid is None:
            return None
        return serialize_doc(self.db[self.collection].find_one({"_id": oid}))

    def create(self, product: Product) -> dict:
        new_id = create_document(self.collection, product, database=self.db)
        return self.get(new_id)

    def set_images(self, product_id: str, images: List[str], expected: List[str]) -> bool:
        """Replace the image list only if it still equals `expected`.

        Returns False when the product is gone or another write changed its
        images in the meantime.
        """
        if expected:
            current = expected
        else:
            # products created before images existed have no field at all
            current = {"$in": [[], None]}
        result = self.db[self.collection].update_one(
            {"_id": ObjectId(product_id), "images": current},
            {"$set": {"images": images, "updated_at": datetime.now(timezone.utc)}},
        )
        return result.matched_count > 0

    def delete(self, product_id: str) -> bool:
        oid = object_id(product_id)
        if oid is None:
            return False
        return self.db[self.collection].delete_one({"_id": oid}).deleted_count > 0


class OrderRepository:
    collection = "order"

    def __init__(self, database):
        self.db = database

    def create(self, order: Order) -> str:
        return create_document(self.collection, order, database=self.db)

    def list_pending(self, limit: int = PENDING_ORDER_LIMIT) -> List[dict]:
        docs = get_documents(
            self.collection,
            {"is_completed": False},
            limit=limit,
            sort=[("created_at", DESCENDING)],
            database=self.db,
        )
        return [serialize_doc(d) for d in docs]

    def mark_completed(self, order_id: str) -> bool:
        oid = object_id(order_id)
        if oid is None:
            return False
        result = self.db[self.collection].update_one(
            {"_id": oid},
            {"$set": {"is_completed": True, "updated_at": datetime.now(timezone.utc)}},
        )
        return result.matched_count > 0
