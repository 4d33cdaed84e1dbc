"""
SLOTENGINE — Slot API

Flask blueprint: /api/slot/*
    POST /spin       run one spin on the session machine
    POST /evaluate   score an arbitrary grid
    GET  /stats      session + catalog statistics
    GET  /layout     active layout

The SlotMachine instance lives in `current_app.extensions["slot_machine"]`;
see web_app.create_app().
"""

import logging

from flask import Blueprint, current_app, jsonify, request
from pydantic import ValidationError

from api.schemas import EvaluateRequest, SpinRequest
from config.settings import EngineConfig
from sim_engine.slots.errors import CatalogClosedError, SpinInProgressError

logger = logging.getLogger("slotengine.api")

slot_bp = Blueprint("slot", __name__, url_prefix="/api/slot")


def _machine():
    return current_app.extensions["slot_machine"]


def _validation_error(e: ValidationError):
    return jsonify({
        "error": "Invalid request",
        "details": [
            {"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]}
            for err in e.errors()
        ],
    }), 400


@slot_bp.route("/spin", methods=["POST"])
def api_spin():
    """Run one spin.

    POST body (JSON):
        bet: non-negative stake (default 1.0, capped by SLOT_MAX_SPIN_BET)
    """
    try:
        body = SpinRequest.model_validate(request.get_json(silent=True) or {})
    except ValidationError as e:
        return _validation_error(e)

    limit = EngineConfig.max_spin_bet()
    if body.bet > limit:
        return jsonify({"error": f"Bet exceeds maximum of {limit}"}), 400

    try:
        outcome = _machine().play(body.bet)
    except SpinInProgressError as e:
        return jsonify({"error": str(e)}), 409
    except CatalogClosedError as e:
        logger.warning(f"Spin rejected: {e}")
        return jsonify({"error": str(e)}), 503
    return jsonify(outcome.to_dict())


@slot_bp.route("/evaluate", methods=["POST"])
def api_evaluate():
    try:
        body = EvaluateRequest.model_validate(request.get_json(silent=True) or {})
    except ValidationError as e:
        return _validation_error(e)
    result = _machine().evaluator.evaluate(body.grid, body.bet)
    return jsonify(result.to_dict())


@slot_bp.route("/stats")
def api_stats():
    return jsonify(_machine().stats())


@slot_bp.route("/layout")
def api_layout():
    return jsonify(_machine().layout.model_dump(mode="json"))
