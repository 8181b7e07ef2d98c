"""Tests for product field coercion and document building."""

from __future__ import annotations

from datetime import datetime

import pytest
from bson import ObjectId
from werkzeug.datastructures import MultiDict

from marketplace.images import ABSENT, Many, Single
from marketplace.products import (
    build_product_document,
    build_product_updates,
    coerce_price,
    normalize_nullable,
    normalize_status,
    parse_accept_terms,
    serialize_product,
)

VALID_FORM = {
    "title": "iPhone 12",
    "category": "mobiles",
    "description": "Lightly used",
    "location": "Lahore",
    "contactName": "Ali",
    "contactPhone": "0300-0000000",
}


@pytest.mark.parametrize("value", [None, "", "null", ABSENT, Single("null")])
def test_normalize_nullable_maps_empty_values_to_none(value) -> None:
    assert normalize_nullable(value) is None


def test_normalize_nullable_keeps_real_values() -> None:
    assert normalize_nullable(Single("Apple")) == "Apple"


@pytest.mark.parametrize(
    "value, expected",
    [
        (ABSENT, "available"),
        (None, "available"),
        ("sold", "sold"),
        (["pending", "active"], "pending"),
        (Many(("pending", "active")), "pending"),
        ([], "available"),
    ],
)
def test_normalize_status(value, expected) -> None:
    assert normalize_status(value) == expected


def test_normalize_status_uses_given_default() -> None:
    assert normalize_status(ABSENT, "pending") == "pending"


@pytest.mark.parametrize(
    "value, expected",
    [(None, 0), ("", 0), ("1500", 1500), ("99.5", 99.5), (250, 250), (Single("10"), 10)],
)
def test_coerce_price(value, expected) -> None:
    assert coerce_price(value) == expected


@pytest.mark.parametrize("value", ["abc", "nan", "inf", {"a": 1}, 10**400, "1e400"])
def test_coerce_price_rejects_non_numbers(value) -> None:
    with pytest.raises(ValueError):
        coerce_price(value)


def test_coerce_price_keeps_prices_beyond_int64_as_floats() -> None:
    price = coerce_price("1e20")

    assert price == 1e20
    assert isinstance(price, float)
    assert isinstance(coerce_price("9000000000000000000"), int)


@pytest.mark.parametrize(
    "value, expected",
    [(True, True), ("true", True), ("false", False), (False, False), (None, False), ("1", False)],
)
def test_parse_accept_terms(value, expected) -> None:
    assert parse_accept_terms(value) is expected


def test_build_product_document_from_form() -> None:
    form = MultiDict(
        {**VALID_FORM, "price": "1500", "ptaStatus": "null", "acceptTerms": "true"}
    )

    document, error = build_product_document(form, user_id=None)

    assert error is None
    assert document["title"] == "iPhone 12"
    assert document["contact_phone"] == "0300-0000000"
    assert document["price"] == 1500
    assert document["pta_status"] is None
    assert document["mobile_brand"] is None
    assert document["status"] == "available"
    assert document["accept_terms"] is True
    assert document["user_id"] is None
    assert document["images"] == []


def test_build_product_document_reports_missing_fields() -> None:
    document, error = build_product_document({"title": "x"})

    assert document is None
    assert "category" in error
    assert "contactPhone" in error


def test_build_product_document_rejects_bad_price() -> None:
    document, error = build_product_document({**VALID_FORM, "price": "cheap"})

    assert document is None
    assert error == "Price must be a valid number."


def test_build_product_updates_only_touches_sent_text_fields() -> None:
    updates, error = build_product_updates({"title": "New title", "status": ["pending", "active"]})

    assert error is None
    assert updates["title"] == "New title"
    assert "category" not in updates
    assert updates["status"] == "pending"
    assert updates["price"] == 0
    assert updates["mobile_brand"] is None
    assert updates["accept_terms"] is False


def test_build_product_updates_rejects_blank_required_text() -> None:
    updates, error = build_product_updates({"title": "   "})

    assert updates is None
    assert error == "title cannot be empty."


def test_serialize_product_rewrites_images_and_ids() -> None:
    owner = ObjectId()
    document = {
        "_id": ObjectId(),
        "title": "Bike",
        "images": ["a.jpg", "https://cdn.test/b.png"],
        "user_id": str(owner),
        "accept_terms": True,
        "created_at": datetime(2024, 5, 1, 12, 0),
    }

    payload = serialize_product(document, "http://shop.test")

    assert payload["images"] == [
        "http://shop.test/uploads/products/a.jpg",
        "https://cdn.test/b.png",
    ]
    assert payload["userId"] == str(owner)
    assert payload["status"] == "available"
    assert payload["createdAt"] == "2024-05-01T12:00:00"
    assert payload["updatedAt"] is None
