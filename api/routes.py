"""
Flask API routes for ecosim.

Shared endpoints live here; every live service mounts its own endpoints
onto the same blueprint through register_routes().

Endpoints:
  GET  /api/services   - metadata for every registered service
  GET  /api/health     - liveness check with the registered service ids
"""

from flask import Blueprint, jsonify


def create_api_blueprint(registry):
    """
    Build the /api blueprint for a populated EcosimRegistry.

    Parameters
    ----------
    registry : EcosimRegistry

    Returns
    -------
    flask.Blueprint
    """
    api = Blueprint("api", __name__, url_prefix="/api")

    @api.route("/services", methods=["GET"])
    def list_services():
        """Return metadata for all registered services."""
        return jsonify(registry.list_all())

    @api.route("/health", methods=["GET"])
    def health():
        return jsonify({
            "status": "ok",
            "services": [s.id for s in registry],
        })

    for service in registry:
        service.register_routes(api)

    return api
