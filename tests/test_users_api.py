"""Tests for user management and statistics endpoints."""

from __future__ import annotations

from bson import ObjectId


def _create(client, email: str):
    return client.post(
        "/users",
        json={"name": email.split("@")[0], "email": email, "password": "Str0ng!pass"},
    )


def test_create_and_list_users(client) -> None:
    first = _create(client, "one@example.com")
    second = client.post(
        "/users/register",
        json={"name": "two", "email": "two@example.com", "password": "Str0ng!pass"},
    )

    assert first.status_code == 201
    assert first.get_json()["data"]["message"] == "User registered successfully"
    assert second.status_code == 201

    listed = client.get("/users").get_json()["data"]
    assert [user["email"] for user in listed] == ["two@example.com", "one@example.com"]
    assert all(user["active"] is False for user in listed)
    assert all("password" not in user for user in listed)


def test_update_active_flag(client) -> None:
    user_id = _create(client, "one@example.com").get_json()["data"]["userId"]

    response = client.patch(f"/users/{user_id}", json={"active": True})

    assert response.get_json() == {"success": True, "data": {"id": user_id, "active": True}}


def test_update_active_flag_validation(client) -> None:
    user_id = _create(client, "one@example.com").get_json()["data"]["userId"]

    assert client.patch(f"/users/{user_id}", json={}).status_code == 400
    assert client.patch("/users/bogus", json={"active": True}).status_code == 400
    assert client.patch(f"/users/{ObjectId()}", json={"active": True}).status_code == 404


def test_delete_user(client, users) -> None:
    user_id = _create(client, "one@example.com").get_json()["data"]["userId"]

    response = client.delete(f"/users/{user_id}")

    assert response.status_code == 200
    assert users.count() == 0
    assert client.delete(f"/users/{user_id}").status_code == 404


def test_user_stats(client) -> None:
    one = _create(client, "one@example.com").get_json()["data"]["userId"]
    _create(client, "two@example.com")
    client.patch(f"/users/{one}", json={"active": True})

    response = client.get("/stats/users")

    assert response.get_json() == {
        "success": True,
        "data": {"totalUsers": 2, "activeUsers": 1},
    }
