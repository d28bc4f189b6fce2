"""
ecosim - Ecotype Simulation
Flask application factory.

Serves the REST API for simulation, parameter search and observed binning
via registered EcosimService instances.

Usage:
    python app.py              # Development server on http://localhost:5000
    flask run                  # Same, via Flask CLI
"""

__version__ = "0.1.0"

from flask import Flask

from ecosim.services import EcosimRegistry
from ecosim.services.binning import BinningService
from ecosim.services.search import SearchService
from ecosim.services.simulation import SimulationService


def create_registry(threads=None):
    """Build the service registry; threads is the default worker count."""
    registry = EcosimRegistry(threads)
    registry.register(SimulationService())
    registry.register(SearchService())
    registry.register(BinningService())
    return registry


def create_app(threads=None):
    """Application factory for the ecosim Flask app."""
    app = Flask(__name__)

    # Build service registry
    registry = create_registry(threads)

    # Create and register API blueprint (shared + service-owned routes)
    from api.routes import create_api_blueprint
    api = create_api_blueprint(registry)
    app.register_blueprint(api)

    @app.route("/")
    def root():
        return {
            "name": "ecosim",
            "version": __version__,
            "services": registry.list_all(),
        }

    return app


if __name__ == "__main__":
    app = create_app()
    app.run(debug=True, host="127.0.0.1", port=5000)
