from .identity import ROLE_ADMIN, with_identity
from .products import (
    create_product_from_request,
    delete_product_record,
    fetch_product,
    request_base_url,
    serialize_product,
    update_product_from_request,
)
from .responses import ok


def register_admin_routes(app, products, storage):
    admin_only = with_identity(required=True, roles=(ROLE_ADMIN,))

    @app.route("/admin/products", methods=["POST"])
    @admin_only
    def admin_create_product(identity):
        return create_product_from_request(products, storage, default_status="pending")

    @app.route("/admin/products", methods=["GET"])
    @admin_only
    def admin_list_products(identity):
        base_url = request_base_url()
        return ok([serialize_product(document, base_url) for document in products.list_all()])

    @app.route("/admin/products/<product_id>", methods=["GET"])
    @admin_only
    def admin_get_product(product_id: str, identity):
        product_document, load_error = fetch_product(products, product_id)
        if load_error:
            return load_error
        return ok(serialize_product(product_document, request_base_url()))

    @app.route("/admin/products/<product_id>", methods=["PUT", "PATCH"])
    @admin_only
    def admin_update_product(product_id: str, identity):
        product_document, load_error = fetch_product(products, product_id)
        if load_error:
            return load_error
        return update_product_from_request(products, storage, product_document)

    @app.route("/admin/products/<product_id>", methods=["DELETE"])
    @admin_only
    def admin_delete_product(product_id: str, identity):
        product_document, load_error = fetch_product(products, product_id)
        if load_error:
            return load_error

        app.logger.info(
            "Admin %s deleting product %s", identity.id, product_document["_id"]
        )
        return delete_product_record(products, product_document)
