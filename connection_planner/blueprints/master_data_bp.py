"""
Lookup catalog blueprint.

Endpoints (kind = source-names | run-names | report-types | report-names | funds):
    GET    /api/v1/master-data/<kind>
    POST   /api/v1/master-data/<kind>
    GET    /api/v1/master-data/<kind>/<id>
    DELETE /api/v1/master-data/<kind>/<id>
    GET    /api/v1/master-data/report-names/by-type/<type_id>
    GET    /api/v1/master-data/funds/<fund_id>/aliases
    POST   /api/v1/master-data/funds/<fund_id>/aliases
    DELETE /api/v1/master-data/funds/<fund_id>/aliases/<alias_id>
"""

from flask import Blueprint, jsonify

from connection_planner.blueprints import json_body, register_error_handlers
from connection_planner.services import master_data_service

master_data_bp = Blueprint("master_data", __name__, url_prefix="/api/v1/master-data")
register_error_handlers(master_data_bp)


@master_data_bp.route("/<kind>", methods=["GET"])
def list_entries(kind):
    return jsonify(master_data_service.list_entries(kind))


@master_data_bp.route("/<kind>", methods=["POST"])
def create_entry(kind):
    return jsonify(master_data_service.create_entry(kind, json_body())), 201


@master_data_bp.route("/<kind>/<int:entry_id>", methods=["GET"])
def get_entry(kind, entry_id):
    return jsonify(master_data_service.get_entry(kind, entry_id))


@master_data_bp.route("/<kind>/<int:entry_id>", methods=["DELETE"])
def delete_entry(kind, entry_id):
    master_data_service.delete_entry(kind, entry_id)
    return "", 204


@master_data_bp.route("/report-names/by-type/<int:type_id>", methods=["GET"])
def list_report_names_by_type(type_id):
    return jsonify(master_data_service.list_report_names_by_type(type_id))


# ── Fund aliases ─────────────────────────────────────────────────────────────


@master_data_bp.route("/funds/<int:fund_id>/aliases", methods=["GET"])
def list_fund_aliases(fund_id):
    return jsonify(master_data_service.list_fund_aliases(fund_id))


@master_data_bp.route("/funds/<int:fund_id>/aliases", methods=["POST"])
def add_fund_alias(fund_id):
    """Body: {alias_name}"""
    return jsonify(master_data_service.add_fund_alias(fund_id, json_body())), 201


@master_data_bp.route("/funds/<int:fund_id>/aliases/<int:alias_id>", methods=["DELETE"])
def delete_fund_alias(fund_id, alias_id):
    master_data_service.delete_fund_alias(fund_id, alias_id)
    return "", 204
