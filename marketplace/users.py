import re
from datetime import datetime
from typing import Dict, Optional, Tuple

from flask import request
from pymongo.errors import DuplicateKeyError

from .db import normalize_object_id_value
from .identity import ROLE_USER, hash_password, normalize_role
from .responses import fail, ok

email_regex = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
password_regex = re.compile(r"^(?=.*[A-Z])(?=.*[a-z])(?=.*\d)(?=.*[\W_]).{8,}$")


def normalize_email(value: Optional[str]) -> str:
    return str(value or "").strip().lower()


def is_valid_email(value: Optional[str]) -> bool:
    normalized = normalize_email(value)
    return bool(normalized and email_regex.match(normalized))


def validate_registration(payload: Dict) -> Tuple[Optional[Dict], Optional[str]]:
    name = str(payload.get("name", "") or "").strip()
    email = normalize_email(payload.get("email"))
    password = str(payload.get("password", "") or "")

    if not name:
        return None, "Name is required."
    if not is_valid_email(email):
        return None, "A valid email address is required."
    if not password_regex.match(password):
        return (
            None,
            "Password must be 8+ chars, include uppercase, lowercase, digit & special char",
        )
    return {"name": name, "email": email, "password": password}, None


def create_user(users, payload: Dict) -> Tuple[Optional[Dict], Optional[Tuple]]:
    fields, validation_error = validate_registration(payload)
    if validation_error:
        return None, fail(validation_error, 400)

    if users.find_by_email(fields["email"]):
        return None, fail("Email already registered", 400)

    try:
        user_document = users.insert(
            {
                "name": fields["name"],
                "email": fields["email"],
                "password": hash_password(fields["password"]),
                "role": ROLE_USER,
                "active": False,
            }
        )
    except DuplicateKeyError:
        return None, fail("Email already registered", 400)
    return user_document, None


def _isoformat(value) -> Optional[str]:
    return value.isoformat() if isinstance(value, datetime) else None


def serialize_user(user_document) -> Dict:
    if not user_document:
        return {}
    return {
        "id": str(user_document.get("_id")),
        "name": user_document.get("name", "") or "",
        "email": user_document.get("email", "") or "",
        "role": normalize_role(user_document.get("role")),
        "active": bool(user_document.get("active")),
        "createdAt": _isoformat(user_document.get("created_at")),
        "updatedAt": _isoformat(user_document.get("updated_at")),
    }


def register_user_routes(app, users):
    @app.route("/users", methods=["GET"])
    def list_users():
        return ok([serialize_user(user) for user in users.list_all()])

    @app.route("/users", methods=["POST"])
    @app.route("/users/register", methods=["POST"])
    def register_user():
        payload = request.get_json(silent=True) or {}
        user_document, create_error = create_user(users, payload)
        if create_error:
            return create_error

        app.logger.info("Registered user %s", user_document["_id"])
        return ok(
            {
                "message": "User registered successfully",
                "userId": str(user_document["_id"]),
            },
            201,
        )

    @app.route("/users/<user_id>", methods=["PATCH"])
    def update_user_active(user_id: str):
        if normalize_object_id_value(user_id) is None:
            return fail("Invalid user ID", 400)

        payload = request.get_json(silent=True) or {}
        active = payload.get("active")
        if isinstance(active, str) and active.lower() in ("true", "false"):
            active = active.lower() == "true"
        if not isinstance(active, bool):
            return fail("active must be a boolean.", 400)

        updated_user = users.set_active(user_id, active)
        if not updated_user:
            return fail("User not found", 404)
        return ok({"id": str(updated_user["_id"]), "active": bool(updated_user.get("active"))})

    @app.route("/users/<user_id>", methods=["DELETE"])
    def delete_user(user_id: str):
        if normalize_object_id_value(user_id) is None:
            return fail("Invalid user ID", 400)
        if not users.delete(user_id):
            return fail("User not found", 404)

        app.logger.info("Deleted user %s", user_id)
        return ok({"message": "User deleted"})
