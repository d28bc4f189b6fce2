"""
Observed Binning Service for ecosim.

Turns aligned sequences into the observed curve the searches fit: the
number of complete-linkage bins at each identity criterion.

Endpoints:
    POST /api/binning/observed - bin counts from aligned sequences

Request JSON:
{
    "sequences": ["ACGT...", "ACGA...", ...],   // aligned, equal length
    "criteria": [1.0, 0.99, 0.98, ...]          // optional
}

IMPORTANT: No unicode characters allowed (Windows charmap constraint).
"""

from flask import jsonify, request

from ecosim.services import EcosimService
from ecosim.services.binning.clustering import complete_linkage_bins, divergence_matrix

DEFAULT_CRITERIA = [
    1.0, 0.995, 0.99, 0.985, 0.98, 0.975, 0.97, 0.96, 0.95, 0.94, 0.93,
    0.92, 0.91, 0.90, 0.89, 0.88, 0.87, 0.86, 0.85, 0.84, 0.83, 0.82,
    0.81, 0.80,
]


class BinningService(EcosimService):

    id = "binning"
    name = "Observed Binning"
    description = "Complete-linkage bin counts of aligned sequences per identity level"
    route = "/api/binning"
    uses_engine = False

    def validate(self, config):
        if not config:
            raise ValueError("Request body must be JSON")
        sequences = config.get("sequences")
        if not isinstance(sequences, list) or not sequences:
            raise ValueError("sequences must be a non-empty list")
        if not all(isinstance(s, str) for s in sequences):
            raise ValueError("sequences must be strings")
        criteria = config.get("criteria", DEFAULT_CRITERIA)
        if not isinstance(criteria, list) or not criteria:
            raise ValueError("criteria must be a non-empty list")
        criteria = [float(c) for c in criteria]
        for c in criteria:
            if not 0.0 <= c <= 1.0:
                raise ValueError("criteria must lie in [0, 1], got {}".format(c))
        return {"sequences": sequences, "criteria": criteria}

    def compute(self, config):
        matrix = divergence_matrix(config["sequences"])
        bins = complete_linkage_bins(matrix, config["criteria"])
        return {
            "nu": len(config["sequences"]),
            "length": len(config["sequences"][0]),
            "criteria": config["criteria"],
            "observed": bins,
        }

    def register_routes(self, bp):
        service = self

        @bp.route("/binning/observed", methods=["POST"])
        def binning_observed():
            try:
                config = service.validate(request.get_json(silent=True))
                return jsonify(service.compute(config))
            except (TypeError, ValueError) as e:
                return jsonify({"error": str(e)}), 400
