"""Small example endpoints, including one behind HTTP basic auth."""

from __future__ import annotations

import base64
import hmac
from collections.abc import Mapping
from functools import wraps

from flask import Flask, Response, jsonify, request

AUTH_REALM = 'Basic realm="Authorization Required"'


def get_name_payload(name: str, version: str | None = None) -> dict:
    """Body of the /getname endpoint."""
    if version:
        return {"version": version, "name": name}
    return {"name": name}


def product_list() -> dict:
    """Body of the /json endpoint."""
    return {"code": 200, "msg": "成功", "list": ["p_01", "p_02", "p_03"]}


def secure_info() -> dict:
    """Body of the /sec/info endpoint."""
    return {"msg": "you should learn rust"}


def _basic_auth(accounts: Mapping[str, str]):
    expected = [
        "Basic " + base64.b64encode(f"{user}:{secret}".encode()).decode()
        for user, secret in accounts.items()
    ]

    def decorator(view):
        @wraps(view)
        def wrapper(*args, **kwargs):
            header = request.headers.get("Authorization", "")
            if not any(hmac.compare_digest(header, value) for value in expected):
                return Response(status=401, headers={"WWW-Authenticate": AUTH_REALM})
            return view(*args, **kwargs)

        return wrapper

    return decorator


def register_example_routes(
    app: Flask, name: str = "scq", accounts: Mapping[str, str] | None = None
) -> Flask:
    """Add /getname, /json and the basic-auth protected /sec/info to ``app``."""

    @app.get("/getname")
    def get_name():
        return jsonify(get_name_payload(name, request.args.get("version")))

    @app.get("/json")
    def json_list():
        return jsonify(product_list())

    @app.get("/sec/info")
    @_basic_auth(accounts or {})
    def sec_info():
        return jsonify(secure_info())

    return app