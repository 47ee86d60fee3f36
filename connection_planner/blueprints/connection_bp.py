"""
External connection registry blueprint.

Endpoints:
    GET    /api/v1/external-connections              — paged list (?search=&page=&size=)
    GET    /api/v1/external-connections/default      — the default connection or null
    GET    /api/v1/external-connections/<id>         — one connection
    POST   /api/v1/external-connections              — create
    PUT    /api/v1/external-connections/<id>         — overwrite (secret is write-once)
    DELETE /api/v1/external-connections/<id>         — delete
    POST   /api/v1/external-connections/<id>/copy    — duplicate without secret

Secrets are never returned; responses carry value_field as a mask token
once a secret is stored.
"""

import logging

from flask import Blueprint, jsonify, request

from connection_planner.blueprints import json_body, page_args, register_error_handlers
from connection_planner.services import connection_service

logger = logging.getLogger(__name__)

connection_bp = Blueprint("connection", __name__, url_prefix="/api/v1/external-connections")
register_error_handlers(connection_bp)


@connection_bp.route("", methods=["GET"])
def list_connections():
    page, size = page_args("CONNECTION_PAGE_SIZE")
    search = request.args.get("search")
    return jsonify(connection_service.list_connections(search, page, size))


@connection_bp.route("/default", methods=["GET"])
def get_default_connection():
    return jsonify(connection_service.get_default_connection())


@connection_bp.route("/<int:connection_id>", methods=["GET"])
def get_connection(connection_id):
    return jsonify(connection_service.get_connection(connection_id))


@connection_bp.route("", methods=["POST"])
def create_connection():
    """Body: {name, base_url, authentication_method, key_field,
    value_field?, authentication_place?, is_default?}"""
    return jsonify(connection_service.create_connection(json_body())), 201


@connection_bp.route("/<int:connection_id>", methods=["PUT"])
def update_connection(connection_id):
    """Body: same as POST, plus optional ``version`` for stale-write detection."""
    return jsonify(connection_service.update_connection(connection_id, json_body()))


@connection_bp.route("/<int:connection_id>", methods=["DELETE"])
def delete_connection(connection_id):
    connection_service.delete_connection(connection_id)
    return "", 204


@connection_bp.route("/<int:connection_id>/copy", methods=["POST"])
def copy_connection(connection_id):
    return jsonify(connection_service.copy_connection(connection_id)), 201
