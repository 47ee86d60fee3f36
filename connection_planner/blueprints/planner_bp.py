"""
Planner aggregate blueprint.

Endpoints:
    GET    /api/v1/planners                               — paged list (?status=&page=&size=)
    GET    /api/v1/planners/search                        — ?q=&status=&page=&size=
    POST   /api/v1/planners                               — create with nested children
    GET    /api/v1/planners/<id>                          — full aggregate
    PUT    /api/v1/planners/<id>                          — scalar fields only
    DELETE /api/v1/planners/<id>

    POST   /api/v1/planners/<id>/funds                    — attach fund
    DELETE /api/v1/planners/<id>/funds/<link_id>
    POST   /api/v1/planners/<id>/sources                  — add source
    DELETE /api/v1/planners/<id>/sources/<source_id>
    POST   /api/v1/planner-sources/<source_id>/runs       — add run
    DELETE /api/v1/planner-sources/<source_id>/runs/<run_id>
    POST   /api/v1/planner-sources/<source_id>/reports    — add report
    DELETE /api/v1/planner-sources/<source_id>/reports/<report_id>
"""

from flask import Blueprint, jsonify, request

from connection_planner.blueprints import json_body, page_args, register_error_handlers
from connection_planner.services import planner_service

planner_bp = Blueprint("planner", __name__, url_prefix="/api/v1")
register_error_handlers(planner_bp)


# ═════════════════════════════════════════════════════════════════════════
# Planner
# ═════════════════════════════════════════════════════════════════════════


@planner_bp.route("/planners", methods=["GET"])
def list_planners():
    page, size = page_args()
    status = request.args.get("status")
    return jsonify(planner_service.list_planners(status, page, size))


@planner_bp.route("/planners/search", methods=["GET"])
def search_planners():
    page, size = page_args()
    return jsonify(planner_service.search_planners(
        request.args.get("q", ""), request.args.get("status"), page, size,
    ))


@planner_bp.route("/planners", methods=["POST"])
def create_planner():
    return jsonify(planner_service.create_planner(json_body())), 201


@planner_bp.route("/planners/<int:planner_id>", methods=["GET"])
def get_planner(planner_id):
    return jsonify(planner_service.get_planner(planner_id))


@planner_bp.route("/planners/<int:planner_id>", methods=["PUT"])
def update_planner(planner_id):
    return jsonify(planner_service.update_planner(planner_id, json_body()))


@planner_bp.route("/planners/<int:planner_id>", methods=["DELETE"])
def delete_planner(planner_id):
    planner_service.delete_planner(planner_id)
    return "", 204


# ═════════════════════════════════════════════════════════════════════════
# Children
# ═════════════════════════════════════════════════════════════════════════


@planner_bp.route("/planners/<int:planner_id>/funds", methods=["POST"])
def add_fund(planner_id):
    """Body: {fund_id, fund_alias_id?}"""
    return jsonify(planner_service.add_fund(planner_id, json_body())), 201


@planner_bp.route("/planners/<int:planner_id>/funds/<int:link_id>", methods=["DELETE"])
def remove_fund(planner_id, link_id):
    planner_service.remove_fund(planner_id, link_id)
    return "", 204


@planner_bp.route("/planners/<int:planner_id>/sources", methods=["POST"])
def add_source(planner_id):
    """Body: {source_name_id?, display_order?, runs?, reports?}"""
    return jsonify(planner_service.add_source(planner_id, json_body())), 201


@planner_bp.route("/planners/<int:planner_id>/sources/<int:source_id>", methods=["DELETE"])
def remove_source(planner_id, source_id):
    planner_service.remove_source(planner_id, source_id)
    return "", 204


@planner_bp.route("/planner-sources/<int:source_id>/runs", methods=["POST"])
def add_run(source_id):
    """Body: {run_name_id?, display_order?}"""
    return jsonify(planner_service.add_run(source_id, json_body())), 201


@planner_bp.route("/planner-sources/<int:source_id>/runs/<int:run_id>", methods=["DELETE"])
def remove_run(source_id, run_id):
    planner_service.remove_run(source_id, run_id)
    return "", 204


@planner_bp.route("/planner-sources/<int:source_id>/reports", methods=["POST"])
def add_report(source_id):
    """Body: {report_type_id?, report_name_id?, display_order?}"""
    return jsonify(planner_service.add_report(source_id, json_body())), 201


@planner_bp.route("/planner-sources/<int:source_id>/reports/<int:report_id>", methods=["DELETE"])
def remove_report(source_id, report_id):
    planner_service.remove_report(source_id, report_id)
    return "", 204
