"""
SLOTENGINE — Slot Outcome Engine HTTP service
"""
import logging
import os

from flask import Flask, jsonify, request
from werkzeug.middleware.proxy_fix import ProxyFix

from config.settings import configure_logging
from api.slot_routes import slot_bp
from sim_engine.slots.machine import SlotMachine

logger = logging.getLogger("slotengine")


def create_app(machine: SlotMachine = None) -> Flask:
    """Build the Flask app around one SlotMachine.

    Without an injected machine, one is started from the environment
    (SLOT_MASTER_SEED, SLOT_*_RTP, ...). Catalog construction happens here,
    before the first request is served.
    """
    app = Flask(__name__)
    app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1)
    app.config["MAX_CONTENT_LENGTH"] = 1 * 1024 * 1024

    app.extensions["slot_machine"] = machine or SlotMachine.start()
    app.register_blueprint(slot_bp)

    @app.route("/health")
    def health():
        slot_machine = app.extensions["slot_machine"]
        return jsonify({
            "status": "ok",
            "catalog_size": len(slot_machine.catalog),
            "busy": slot_machine.busy,
        })

    @app.errorhandler(404)
    def error_404(e):
        return jsonify({"error": f"Not found: {request.path}"}), 404

    @app.errorhandler(500)
    def error_500(e):
        logger.error(f"500 error: {e}", exc_info=True)
        return jsonify({"error": "Internal server error"}), 500

    return app


if __name__ == "__main__":
    configure_logging()
    port = int(os.getenv("PORT", 5000))
    app = create_app()
    logger.info(f"SLOTENGINE — http://localhost:{port}")
    try:
        app.run(debug=os.getenv("FLASK_DEBUG", "false").lower() == "true", host="0.0.0.0", port=port)
    finally:
        app.extensions["slot_machine"].shutdown()
