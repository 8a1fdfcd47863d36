# Overview: Flask API routes for cash sessions (register shifts).

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_admin, require_auth
from ..errors import StorefrontError
from ..extensions import db
from ..services import register_service
from ..validation import first_present, parse_id, parse_money


registers_bp = Blueprint("registers", __name__, url_prefix="/registers")


@registers_bp.post("/sessions")
@require_auth
@require_admin
def open_session_route():
    """
    Open a cash session for a branch.

    Request body:
    {
        "branchId": 1,          (optional, defaults to ONLINE_BRANCH_ID)
        "openingAmount": 0
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        branch_id = first_present(data, "branchId", "branch_id")
        branch_id = parse_id("branchId", branch_id) if branch_id is not None else current_app.config["ONLINE_BRANCH_ID"]
        opening_amount = parse_money("openingAmount", first_present(data, "openingAmount", "opening_amount") or 0)

        session = register_service.open_cash_session(branch_id, opening_amount, user_id=g.current_user.id)
        return jsonify({"session": session.to_dict()}), 201

    except StorefrontError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to open cash session")
        return jsonify({"error": "Internal server error"}), 500


@registers_bp.post("/sessions/<int:session_id>/close")
@require_auth
@require_admin
def close_session_route(session_id: int):
    try:
        data = request.get_json(silent=True) or {}
        closing_amount = parse_money("closingAmount", first_present(data, "closingAmount", "closing_amount") or 0)

        session = register_service.close_cash_session(session_id, closing_amount, user_id=g.current_user.id)
        return jsonify({"session": session.to_dict()}), 200

    except StorefrontError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to close cash session")
        return jsonify({"error": "Internal server error"}), 500
