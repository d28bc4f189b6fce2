"""
Simulation Service for ecosim.

Evaluates one parameter set against an observed binning curve: runs nrep
coalescent replicates and reports the success fraction at each of the six
tolerance levels.

Endpoints:
    POST /api/simulation/evaluate - success fractions for one parameter set

Request JSON:
{
    "criteria": [1.0, 0.99, ...],   // identity criteria
    "observed": [50, 31, ...],      // observed bins per criterion
    "nu": 50,                       // sequences sampled
    "nrep": 1000,                   // optional
    "seed": 0,                      // optional
    "length": 1000,                 // optional
    "whichavg": 1,                  // optional, tolerance index 1..6
    "threads": 4,                   // optional
    "params": {"omega": 0.01, "sigma": 1.0, "npop": 3, "xn": null}
}

IMPORTANT: No unicode characters allowed (Windows charmap constraint).
"""

from flask import jsonify, request

from ecosim.constants import TOLERANCE_FACTORS
from ecosim.engine import ParameterSet
from ecosim.services import EcosimService


class SimulationService(EcosimService):

    id = "simulation"
    name = "Simulation"
    description = "Success fractions of one parameter set against observed bins"
    route = "/api/simulation"

    def validate(self, config):
        validated = self.engine_fields(config)
        params = config.get("params")
        if not isinstance(params, dict):
            raise ValueError("params is required")
        validated["params"] = ParameterSet.from_dict(params)
        return validated

    def compute(self, config):
        engine_config = config["config"]
        params = config["params"]
        with self.open_engine(config) as engine:
            fractions = [float(f) for f in engine.evaluate(params)]
        return {
            "params": params.to_dict(),
            "fractions": fractions,
            "tolerance_factors": list(TOLERANCE_FACTORS),
            "likelihood": fractions[engine_config.likelihood_index],
            "nrep": engine_config.nrep,
        }

    def register_routes(self, bp):
        service = self

        @bp.route("/simulation/evaluate", methods=["POST"])
        def simulation_evaluate():
            try:
                config = service.validate(request.get_json(silent=True))
            except (TypeError, ValueError) as e:
                return jsonify({"error": str(e)}), 400
            return jsonify(service.compute(config))
