"""Shared fixtures: an app wired to in-memory repositories and storage."""

from __future__ import annotations

from datetime import datetime, timedelta
from itertools import count
from typing import Dict, List, Optional

import pytest
from bson import ObjectId
from flask_jwt_extended import create_access_token
from pymongo.errors import DuplicateKeyError

from marketplace import create_app
from marketplace.db import normalize_object_id_value
from marketplace.storage import StorageError, validate_image_files

_clock = count()


def _timestamp() -> datetime:
    # Strictly increasing so newest-first ordering is deterministic.
    return datetime(2024, 1, 1) + timedelta(seconds=next(_clock))


class InMemoryUserRepository:
    def __init__(self) -> None:
        self.documents: Dict[ObjectId, Dict] = {}

    def ensure_indexes(self) -> None:
        return None

    def find_by_email(self, email: str) -> Optional[Dict]:
        for document in self.documents.values():
            if document["email"] == email:
                return dict(document)
        return None

    def insert(self, document: Dict) -> Dict:
        if self.find_by_email(document["email"]):
            raise DuplicateKeyError("duplicate email")
        now = _timestamp()
        stored = {**document, "_id": ObjectId(), "created_at": now, "updated_at": now}
        self.documents[stored["_id"]] = stored
        return dict(stored)

    def list_all(self) -> List[Dict]:
        return sorted(
            (dict(doc) for doc in self.documents.values()),
            key=lambda doc: doc["created_at"],
            reverse=True,
        )

    def _update(self, user_id, fields: Dict) -> Optional[Dict]:
        document = self.documents.get(normalize_object_id_value(user_id))
        if not document:
            return None
        document.update(fields, updated_at=_timestamp())
        return dict(document)

    def set_active(self, user_id, active: bool) -> Optional[Dict]:
        return self._update(user_id, {"active": bool(active)})

    def set_role(self, user_id, role: str) -> Optional[Dict]:
        return self._update(user_id, {"role": role, "active": True})

    def delete(self, user_id) -> bool:
        return self.documents.pop(normalize_object_id_value(user_id), None) is not None

    def count(self) -> int:
        return len(self.documents)

    def count_active(self) -> int:
        return sum(1 for doc in self.documents.values() if doc.get("active"))


class InMemoryProductRepository:
    def __init__(self) -> None:
        self.documents: Dict[ObjectId, Dict] = {}

    def ensure_indexes(self) -> None:
        return None

    def insert(self, document: Dict) -> Dict:
        now = _timestamp()
        stored = {**document, "_id": ObjectId(), "created_at": now, "updated_at": now}
        self.documents[stored["_id"]] = stored
        return dict(stored)

    def find(self, product_id) -> Optional[Dict]:
        document = self.documents.get(normalize_object_id_value(product_id))
        return dict(document) if document else None

    def list_all(self) -> List[Dict]:
        return sorted(
            (dict(doc) for doc in self.documents.values()),
            key=lambda doc: doc["created_at"],
            reverse=True,
        )

    def list_by_user(self, user_id: str) -> List[Dict]:
        return [doc for doc in self.list_all() if doc.get("user_id") == user_id]

    def update(self, product_id, updates: Dict) -> Optional[Dict]:
        document = self.documents.get(normalize_object_id_value(product_id))
        if not document:
            return None
        document.update(updates, updated_at=_timestamp())
        return dict(document)

    def delete(self, product_id) -> bool:
        return self.documents.pop(normalize_object_id_value(product_id), None) is not None

    def replace_images(self, product_id, images: List) -> None:
        self.documents[product_id]["images"] = images


class RecordingStorage:
    """Stands in for the object store; returns predictable stored names."""

    def __init__(self) -> None:
        self.saved: List[str] = []
        self.discarded: List[str] = []
        self.fail_on: Optional[str] = None

    def save_many(self, image_files):
        accepted, image_error = validate_image_files(image_files)
        if image_error:
            return [], image_error
        names = []
        for image_file in accepted:
            if image_file.filename == self.fail_on:
                raise StorageError("simulated upload failure")
            names.append(f"stored-{image_file.filename}")
        self.saved.extend(names)
        return names, None

    def delete(self, identifier: str) -> None:
        return None

    def discard(self, references) -> None:
        self.discarded.extend(references or [])


@pytest.fixture()
def users() -> InMemoryUserRepository:
    return InMemoryUserRepository()


@pytest.fixture()
def products() -> InMemoryProductRepository:
    return InMemoryProductRepository()


@pytest.fixture()
def storage() -> RecordingStorage:
    return RecordingStorage()


@pytest.fixture()
def app(tmp_path, users, products, storage):
    app = create_app(
        {
            "TESTING": True,
            "JWT_SECRET_KEY": "test-secret",
            "UPLOAD_FOLDER": str(tmp_path / "uploads"),
            "CLOUDINARY_CLOUD_NAME": "",
        },
        users=users,
        products=products,
        storage=storage,
    )
    return app


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def make_token(app):
    def _make_token(user_id, role: str = "USER") -> str:
        with app.app_context():
            return create_access_token(
                identity=str(user_id), additional_claims={"role": role}
            )

    return _make_token


@pytest.fixture()
def auth_header(make_token):
    def _auth_header(user_id, role: str = "USER") -> Dict[str, str]:
        return {"Authorization": f"Bearer {make_token(user_id, role)}"}

    return _auth_header
