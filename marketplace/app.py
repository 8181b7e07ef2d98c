import logging
import os
from typing import Dict, Optional

from dotenv import load_dotenv
from flask import Flask, send_from_directory
from flask_cors import CORS
from flask_pymongo import PyMongo
from pymongo.errors import PyMongoError
from werkzeug.exceptions import HTTPException
from werkzeug.middleware.proxy_fix import ProxyFix

from .admin import register_admin_routes
from .auth import register_auth_routes
from .commands import register_commands
from .db import ProductRepository, UserRepository
from .identity import init_identity
from .products import register_product_routes
from .responses import fail, ok
from .stats import register_stats_routes
from .storage import StorageError, build_image_storage
from .users import register_user_routes

load_dotenv()

ENDPOINTS = [
    {"method": "POST", "path": "/auth/register", "auth": "none", "description": "Register user"},
    {"method": "POST", "path": "/auth/login", "auth": "none", "description": "Login -> returns JWT token"},
    {"method": "POST", "path": "/auth/logout", "auth": "optional", "description": "Logout (token or body: { userId })"},
    {"method": "GET", "path": "/users", "auth": "none", "description": "List all users"},
    {"method": "POST", "path": "/users", "auth": "none", "description": "Create user"},
    {"method": "PATCH", "path": "/users/:id", "auth": "none", "description": "Update user's active flag"},
    {"method": "DELETE", "path": "/users/:id", "auth": "none", "description": "Delete user"},
    {"method": "POST", "path": "/products", "auth": "optional", "description": "Create product (multipart/form-data, key files)"},
    {"method": "GET", "path": "/products", "auth": "none", "description": "List all products"},
    {"method": "GET", "path": "/products/me", "auth": "Bearer <user-token>", "description": "Get logged user's products"},
    {"method": "GET", "path": "/products/:id", "auth": "none", "description": "Get product"},
    {"method": "PUT", "path": "/products/:id", "auth": "conditional", "description": "Update product (owner check)"},
    {"method": "DELETE", "path": "/products/:id", "auth": "conditional", "description": "Delete product (owner check)"},
    {"method": "POST", "path": "/admin/products", "auth": "Bearer <admin-token>", "description": "Admin create product (multipart)"},
    {"method": "GET", "path": "/admin/products", "auth": "Bearer <admin-token>", "description": "List all products (admin)"},
    {"method": "GET", "path": "/admin/products/:id", "auth": "Bearer <admin-token>", "description": "Get product (admin)"},
    {"method": "PUT", "path": "/admin/products/:id", "auth": "Bearer <admin-token>", "description": "Update product (admin)"},
    {"method": "DELETE", "path": "/admin/products/:id", "auth": "Bearer <admin-token>", "description": "Delete product (admin)"},
    {"method": "GET", "path": "/stats/users", "auth": "none", "description": "User statistics"},
]


def load_config(app: Flask) -> None:
    app.config["JWT_SECRET_KEY"] = os.getenv("JWT_SECRET_KEY", "change-me-in-production")
    app.config["JWT_EXPIRES_MIN"] = int(os.getenv("JWT_EXPIRES_MIN", "60"))
    app.config["MONGO_URI"] = os.getenv(
        "MONGO_URI", "mongodb://localhost:27017/useandsell"
    )
    max_upload_mb = int(os.getenv("MAX_UPLOAD_SIZE_MB", "16"))
    app.config["MAX_CONTENT_LENGTH"] = max_upload_mb * 1024 * 1024
    app.config["UPLOAD_FOLDER"] = os.getenv("UPLOAD_FOLDER") or os.path.join(
        os.getcwd(), "uploads"
    )
    app.config["CORS_ALLOWED_ORIGINS"] = os.getenv(
        "CORS_ALLOWED_ORIGINS", "http://localhost:3000"
    )
    app.config["CLOUDINARY_CLOUD_NAME"] = os.getenv("CLOUDINARY_CLOUD_NAME", "")
    app.config["CLOUDINARY_API_KEY"] = os.getenv("CLOUDINARY_API_KEY", "")
    app.config["CLOUDINARY_API_SECRET"] = os.getenv("CLOUDINARY_API_SECRET", "")
    app.config["CLOUDINARY_UPLOAD_PRESET"] = os.getenv(
        "CLOUDINARY_UPLOAD_PRESET", "unsigned_uploads"
    )
    app.config["ADMIN_EMAIL"] = os.getenv("ADMIN_EMAIL", "admin@example.com")
    app.config["ADMIN_PASSWORD"] = os.getenv("ADMIN_PASSWORD", "password123")
    app.config["LOG_LEVEL"] = os.getenv("LOG_LEVEL", "INFO")


def configure_logging(app: Flask) -> None:
    level = getattr(logging, str(app.config["LOG_LEVEL"]).upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )
    app.logger.setLevel(level)


def register_error_handlers(app: Flask) -> None:
    @app.errorhandler(HTTPException)
    def handle_http_error(exc: HTTPException):
        return fail(exc.description or exc.name, exc.code or 500)

    @app.errorhandler(StorageError)
    def handle_storage_error(exc: StorageError):
        app.logger.error("Image storage failed: %s", exc)
        return fail("Failed to upload images", 500)

    @app.errorhandler(PyMongoError)
    def handle_database_error(exc: PyMongoError):
        app.logger.exception("Database operation failed: %s", exc)
        return fail("Database error", 500)

    @app.errorhandler(Exception)
    def handle_unexpected_error(exc: Exception):
        app.logger.exception("Unhandled error: %s", exc)
        return fail("Internal server error", 500)


def create_app(
    test_config: Optional[Dict] = None,
    *,
    users: Optional[UserRepository] = None,
    products: Optional[ProductRepository] = None,
    storage=None,
) -> Flask:
    """Create and configure the Flask application.

    Collaborators (user and product repositories, image storage) are built
    from configuration unless passed in.
    """
    app = Flask(__name__)

    # Honor proxy headers so image URLs keep the public scheme and host.
    trusted_proxy_hops_raw = os.getenv("TRUSTED_PROXY_HOPS", "1")
    try:
        trusted_proxy_hops = max(0, int(trusted_proxy_hops_raw))
    except (TypeError, ValueError):
        trusted_proxy_hops = 1
    if trusted_proxy_hops:
        app.wsgi_app = ProxyFix(
            app.wsgi_app,
            x_for=trusted_proxy_hops,
            x_proto=trusted_proxy_hops,
            x_host=trusted_proxy_hops,
            x_port=trusted_proxy_hops,
        )

    load_config(app)
    if test_config:
        app.config.update(test_config)
    configure_logging(app)

    product_upload_directory = os.path.join(app.config["UPLOAD_FOLDER"], "products")
    if not os.path.isdir(product_upload_directory):
        os.makedirs(product_upload_directory, exist_ok=True)
        app.logger.info("Created uploads folder %s", product_upload_directory)
    app.config["PRODUCT_UPLOAD_FOLDER"] = product_upload_directory

    allowed_origins = [
        origin.strip()
        for origin in app.config["CORS_ALLOWED_ORIGINS"].split(",")
        if origin.strip()
    ]
    CORS(app, supports_credentials=True, origins=allowed_origins or "*")

    init_identity(app)

    if users is None or products is None:
        mongo = PyMongo(app)
        if users is None:
            users = UserRepository(mongo.db.users)
            users.ensure_indexes()
        if products is None:
            products = ProductRepository(mongo.db.products)
            products.ensure_indexes()
    if storage is None:
        storage = build_image_storage(app.config)

    register_error_handlers(app)
    register_auth_routes(app, users)
    register_user_routes(app, users)
    register_product_routes(app, products, storage)
    register_admin_routes(app, products, storage)
    register_stats_routes(app, users)
    register_commands(app, users, products)

    @app.route("/")
    def index():
        return ok(
            {
                "message": "Welcome to Use & Sell backend API",
                "endpoints": ENDPOINTS,
            }
        )

    @app.route("/health")
    def health():
        return {"status": "ok"}, 200

    @app.route("/uploads/<path:filename>")
    def serve_uploaded_file(filename: str):
        return send_from_directory(app.config["UPLOAD_FOLDER"], filename)

    return app
