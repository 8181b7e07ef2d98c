import math
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from flask import current_app, request

from .db import normalize_object_id_value
from .identity import Identity, with_identity
from .images import (
    Absent,
    Many,
    Single,
    display_images,
    field_value,
    merge_image_references,
    parse_kept_images,
    remove_local_images,
)
from .responses import fail, ok

DEFAULT_STATUS = "available"
# BSON int64 bound; larger integral prices are stored as doubles.
MAX_INT_PRICE = 2 ** 63

TEXT_FIELDS = (
    ("title", "title"),
    ("category", "category"),
    ("description", "description"),
    ("location", "location"),
    ("contactName", "contact_name"),
    ("contactPhone", "contact_phone"),
)
NULLABLE_FIELDS = (
    ("mobileBrand", "mobile_brand"),
    ("ptaStatus", "pta_status"),
    ("condition", "condition"),
)


def first_value(value):
    if isinstance(value, Absent):
        return None
    if isinstance(value, Single):
        return value.value
    if isinstance(value, Many):
        return value.values[0] if value.values else None
    if isinstance(value, (list, tuple)):
        return value[0] if value else None
    return value


def normalize_nullable(value):
    value = first_value(value)
    if value is None or value == "" or value == "null":
        return None
    return value


def normalize_status(value, default: str = DEFAULT_STATUS) -> str:
    status = first_value(value)
    if status is None or status == "":
        return default
    return str(status)


def coerce_price(value):
    value = first_value(value)
    if value is None or (isinstance(value, str) and not value.strip()):
        return 0
    try:
        number = float(value)
    except (TypeError, ValueError, OverflowError):
        raise ValueError("Price must be a valid number.")
    if not math.isfinite(number):
        raise ValueError("Price must be a valid number.")
    if number.is_integer() and abs(number) < MAX_INT_PRICE:
        return int(number)
    return number


def parse_accept_terms(value) -> bool:
    value = first_value(value)
    return value is True or value == "true"


def read_text(source, field: str) -> Tuple[bool, str]:
    value = field_value(source, field)
    if isinstance(value, Absent):
        return False, ""
    return True, str(first_value(value) or "").strip()


def build_product_document(
    source, user_id: Optional[str] = None, default_status: str = DEFAULT_STATUS
) -> Tuple[Optional[Dict], Optional[str]]:
    document: Dict[str, object] = {}
    missing: List[str] = []
    for field, key in TEXT_FIELDS:
        _, text = read_text(source, field)
        if not text:
            missing.append(field)
        document[key] = text
    if missing:
        return None, f"Missing required fields: {', '.join(missing)}"

    for field, key in NULLABLE_FIELDS:
        document[key] = normalize_nullable(field_value(source, field))

    try:
        document["price"] = coerce_price(field_value(source, "price"))
    except ValueError as exc:
        return None, str(exc)

    document["status"] = normalize_status(field_value(source, "status"), default_status)
    document["accept_terms"] = parse_accept_terms(field_value(source, "acceptTerms"))
    document["user_id"] = user_id
    document["images"] = []
    return document, None


def build_product_updates(source) -> Tuple[Optional[Dict], Optional[str]]:
    updates: Dict[str, object] = {}
    for field, key in TEXT_FIELDS:
        present, text = read_text(source, field)
        if not present:
            continue
        if not text:
            return None, f"{field} cannot be empty."
        updates[key] = text

    for field, key in NULLABLE_FIELDS:
        updates[key] = normalize_nullable(field_value(source, field))

    try:
        updates["price"] = coerce_price(field_value(source, "price"))
    except ValueError as exc:
        return None, str(exc)

    updates["status"] = normalize_status(field_value(source, "status"))
    updates["accept_terms"] = parse_accept_terms(field_value(source, "acceptTerms"))
    return updates, None


def _isoformat(value) -> Optional[str]:
    return value.isoformat() if isinstance(value, datetime) else None


def serialize_product(product_document, base_url: str) -> Dict:
    user_id = product_document.get("user_id")
    return {
        "id": str(product_document.get("_id")),
        "title": product_document.get("title", ""),
        "category": product_document.get("category", ""),
        "mobileBrand": product_document.get("mobile_brand"),
        "ptaStatus": product_document.get("pta_status"),
        "condition": product_document.get("condition"),
        "description": product_document.get("description", ""),
        "price": product_document.get("price", 0),
        "location": product_document.get("location", ""),
        "contactName": product_document.get("contact_name", ""),
        "contactPhone": product_document.get("contact_phone", ""),
        "status": product_document.get("status") or DEFAULT_STATUS,
        "images": display_images(product_document.get("images"), base_url),
        "acceptTerms": bool(product_document.get("accept_terms")),
        "userId": str(user_id) if user_id else None,
        "createdAt": _isoformat(product_document.get("created_at")),
        "updatedAt": _isoformat(product_document.get("updated_at")),
    }


def request_base_url() -> str:
    return request.host_url.rstrip("/")


def request_payload():
    if request.form:
        return request.form
    payload = request.get_json(silent=True)
    return payload if isinstance(payload, dict) else {}


def request_files() -> list:
    if not request.files:
        return []
    return request.files.getlist("files")


def external_image_urls(source) -> list:
    return [url for url in field_value(source, "imageUrls").as_list() if url]


def store_images(storage, source, kept=None):
    """Save uploaded files and return ``(images, uploaded, error)``.

    ``uploaded`` lists only the references created by this call so the caller
    can discard them when the database write does not go through.
    """
    uploaded, image_error = storage.save_many(request_files())
    if image_error:
        return None, [], image_error
    return merge_image_references(kept, external_image_urls(source), uploaded), uploaded, None


def fetch_product(products, product_id: str):
    if normalize_object_id_value(product_id) is None:
        return None, fail("Invalid product ID", 400)
    product_document = products.find(product_id)
    if not product_document:
        return None, fail("Product not found", 404)
    return product_document, None


def check_product_access(product_document, identity: Optional[Identity]):
    owner_id = product_document.get("user_id")
    if not owner_id:
        return None
    if identity is None:
        return fail("Authentication required", 401)
    if str(owner_id) != identity.id:
        return fail("Not allowed", 403)
    return None


def create_product_from_request(products, storage, user_id=None, default_status=DEFAULT_STATUS):
    source = request_payload()
    product_document, field_error = build_product_document(
        source, user_id=user_id, default_status=default_status
    )
    if field_error:
        return fail(field_error, 400)

    images, uploaded, image_error = store_images(storage, source)
    if image_error:
        return fail(image_error, 400)
    product_document["images"] = images

    try:
        created = products.insert(product_document)
    except Exception:
        storage.discard(uploaded)
        raise
    current_app.logger.info(
        "Created product %s (owner=%s, images=%d)",
        created.get("_id"),
        user_id,
        len(images),
    )
    return ok(serialize_product(created, request_base_url()), 201)


def update_product_from_request(products, storage, product_document):
    source = request_payload()
    updates, field_error = build_product_updates(source)
    if field_error:
        return fail(field_error, 400)

    kept = parse_kept_images(field_value(source, "existingImages"))
    images, uploaded, image_error = store_images(storage, source, kept=kept)
    if image_error:
        return fail(image_error, 400)
    updates["images"] = images

    try:
        updated = products.update(product_document["_id"], updates)
    except Exception:
        storage.discard(uploaded)
        raise
    if not updated:
        storage.discard(uploaded)
        return fail("Product not found", 404)
    return ok(serialize_product(updated, request_base_url()))


def delete_product_record(products, product_document):
    if not products.delete(product_document["_id"]):
        return fail("Failed to delete product", 500)

    remove_local_images(
        product_document.get("images"), current_app.config["PRODUCT_UPLOAD_FOLDER"]
    )
    return ok(
        {
            "id": str(product_document["_id"]),
            "message": "Product deleted successfully",
        }
    )


def register_product_routes(app, products, storage):
    @app.route("/products/cloudinary/config", methods=["GET"])
    def cloudinary_config():
        cloud_name = app.config.get("CLOUDINARY_CLOUD_NAME")
        if not cloud_name:
            return fail("Cloudinary is not configured", 503)
        return ok(
            {
                "cloudName": cloud_name,
                "uploadPreset": app.config["CLOUDINARY_UPLOAD_PRESET"],
            }
        )

    @app.route("/products", methods=["POST"])
    @with_identity()
    def create_product(identity: Optional[Identity]):
        user_id = identity.id if identity else None
        return create_product_from_request(products, storage, user_id=user_id)

    @app.route("/products", methods=["GET"])
    def list_products():
        base_url = request_base_url()
        return ok([serialize_product(document, base_url) for document in products.list_all()])

    @app.route("/products/me", methods=["GET"])
    @with_identity(required=True)
    def list_my_products(identity: Identity):
        base_url = request_base_url()
        return ok(
            [
                serialize_product(document, base_url)
                for document in products.list_by_user(identity.id)
            ]
        )

    @app.route("/products/<product_id>", methods=["GET"])
    def get_product(product_id: str):
        product_document, load_error = fetch_product(products, product_id)
        if load_error:
            return load_error
        return ok(serialize_product(product_document, request_base_url()))

    @app.route("/products/<product_id>", methods=["PUT", "PATCH"])
    @with_identity()
    def update_product(product_id: str, identity: Optional[Identity]):
        product_document, load_error = fetch_product(products, product_id)
        if load_error:
            return load_error

        access_error = check_product_access(product_document, identity)
        if access_error:
            return access_error

        return update_product_from_request(products, storage, product_document)

    @app.route("/products/<product_id>", methods=["DELETE"])
    @with_identity()
    def delete_product(product_id: str, identity: Optional[Identity]):
        product_document, load_error = fetch_product(products, product_id)
        if load_error:
            return load_error

        access_error = check_product_access(product_document, identity)
        if access_error:
            return access_error

        return delete_product_record(products, product_document)
