from flask import jsonify


def ok(data=None, status: int = 200):
    body = {"success": True}
    if data is not None:
        body["data"] = data
    return jsonify(body), status


def fail(error: str, status: int):
    return jsonify({"success": False, "error": error}), status
