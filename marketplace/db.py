import logging
from datetime import datetime
from typing import Dict, List, Optional

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import DESCENDING, ReturnDocument

logger = logging.getLogger(__name__)


def normalize_object_id_value(value) -> Optional[ObjectId]:
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        return None


class UserRepository:
    def __init__(self, collection):
        self.collection = collection

    def ensure_indexes(self) -> None:
        try:
            self.collection.create_index("email", unique=True)
        except Exception as exc:
            logger.warning("Unable to ensure unique index for user emails: %s", exc)

    def find_by_email(self, email: str) -> Optional[Dict]:
        return self.collection.find_one({"email": email})

    def insert(self, document: Dict) -> Dict:
        now = datetime.utcnow()
        document = {**document, "created_at": now, "updated_at": now}
        result = self.collection.insert_one(document)
        return self.collection.find_one({"_id": result.inserted_id})

    def list_all(self) -> List[Dict]:
        return list(self.collection.find().sort("created_at", DESCENDING))

    def set_active(self, user_id, active: bool) -> Optional[Dict]:
        object_id = normalize_object_id_value(user_id)
        if object_id is None:
            return None
        return self.collection.find_one_and_update(
            {"_id": object_id},
            {"$set": {"active": bool(active), "updated_at": datetime.utcnow()}},
            return_document=ReturnDocument.AFTER,
        )

    def set_role(self, user_id, role: str) -> Optional[Dict]:
        object_id = normalize_object_id_value(user_id)
        if object_id is None:
            return None
        return self.collection.find_one_and_update(
            {"_id": object_id},
            {"$set": {"role": role, "active": True, "updated_at": datetime.utcnow()}},
            return_document=ReturnDocument.AFTER,
        )

    def delete(self, user_id) -> bool:
        object_id = normalize_object_id_value(user_id)
        if object_id is None:
            return False
        return self.collection.delete_one({"_id": object_id}).deleted_count > 0

    def count(self) -> int:
        return self.collection.count_documents({})

    def count_active(self) -> int:
        return self.collection.count_documents({"active": True})


class ProductRepository:
    def __init__(self, collection):
        self.collection = collection

    def ensure_indexes(self) -> None:
        try:
            self.collection.create_index([("created_at", DESCENDING)])
            self.collection.create_index("user_id")
        except Exception as exc:
            logger.warning("Unable to ensure indexes for products: %s", exc)

    def insert(self, document: Dict) -> Dict:
        now = datetime.utcnow()
        document = {**document, "created_at": now, "updated_at": now}
        result = self.collection.insert_one(document)
        return self.collection.find_one({"_id": result.inserted_id})

    def find(self, product_id) -> Optional[Dict]:
        object_id = normalize_object_id_value(product_id)
        if object_id is None:
            return None
        return self.collection.find_one({"_id": object_id})

    def list_all(self) -> List[Dict]:
        return list(self.collection.find().sort("created_at", DESCENDING))

    def list_by_user(self, user_id: str) -> List[Dict]:
        return list(
            self.collection.find({"user_id": user_id}).sort("created_at", DESCENDING)
        )

    def update(self, product_id, updates: Dict) -> Optional[Dict]:
        object_id = normalize_object_id_value(product_id)
        if object_id is None:
            return None
        return self.collection.find_one_and_update(
            {"_id": object_id},
            {"$set": {**updates, "updated_at": datetime.utcnow()}},
            return_document=ReturnDocument.AFTER,
        )

    def delete(self, product_id) -> bool:
        object_id = normalize_object_id_value(product_id)
        if object_id is None:
            return False
        return self.collection.delete_one({"_id": object_id}).deleted_count > 0

    def replace_images(self, product_id, images: List) -> None:
        self.collection.update_one(
            {"_id": product_id}, {"$set": {"images": images}}
        )
