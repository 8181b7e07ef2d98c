from typing import Optional

from flask import request

from .db import normalize_object_id_value
from .identity import Identity, check_password, issue_token, with_identity
from .responses import fail, ok
from .users import create_user, normalize_email, serialize_user


def register_auth_routes(app, users):
    @app.route("/auth/register", methods=["POST"])
    def register():
        payload = request.get_json(silent=True) or {}
        user_document, create_error = create_user(users, payload)
        if create_error:
            return create_error

        app.logger.info("Registered new account %s", user_document["_id"])
        return ok(
            {"user": serialize_user(user_document), "token": issue_token(user_document)},
            201,
        )

    @app.route("/auth/login", methods=["POST"])
    def login():
        payload = request.get_json(silent=True) or {}
        email = normalize_email(payload.get("email"))
        password = str(payload.get("password", "") or "")

        if not email or not password:
            return fail("Email and password are required.", 400)

        user = users.find_by_email(email)
        if not user or not check_password(password, user.get("password")):
            return fail("Invalid credentials", 401)

        user = users.set_active(user["_id"], True)
        app.logger.info(
            "User %s signed in from %s",
            user["_id"],
            request.headers.get("X-Forwarded-For", request.remote_addr),
        )
        return ok({"user": serialize_user(user), "token": issue_token(user)})

    @app.route("/auth/logout", methods=["POST"])
    @with_identity()
    def logout(identity: Optional[Identity]):
        payload = request.get_json(silent=True) or {}
        user_id = identity.id if identity else payload.get("userId")
        if not user_id:
            return fail("Missing userId", 400)
        if normalize_object_id_value(user_id) is None:
            return fail("Invalid user ID", 400)

        user = users.set_active(user_id, False)
        if not user:
            return fail("User not found", 404)
        return ok({"user": serialize_user(user)})
