"""
Parameter Search Service for ecosim.

Wraps SearchController (ecosim/services/search/controller.py) and owns the
search endpoints under /api/search/*. Every request builds its own
EcosimEngine and closes it before responding.

Endpoints:
    POST /api/search/hillclimb              - point estimate by Nelder-Mead
    POST /api/search/bruteforce             - grid sweep over all parameters
    POST /api/search/confidence/<parameter> - interval for omega|sigma|npop|drift
    POST /api/search/estimate               - starting point from the curve alone

Every request carries the observed data (criteria, observed, nu, and the
optional nrep, seed, length, whichavg, probthreshold, threads). Endpoint
specific fields:

    hillclimb   start {omega, sigma, npop, xn} (optional; estimate if absent)
    bruteforce  omega, sigma, npop as [lo, hi]; xn as [lo, hi] or null;
                increments as four grid sizes
    confidence  optimum {omega, sigma, npop, xn}; likelihood (optional);
                step (optional factor or npop stride)

IMPORTANT: No unicode characters allowed (Windows charmap constraint).
"""

from flask import jsonify, request

from ecosim.constants import DEFAULT_MAXF
from ecosim.engine import ParameterSet
from ecosim.services import EcosimService
from ecosim.services.search.controller import TARGETS, SearchController
from ecosim.services.search.estimate import estimate_parameters


def _range(config, key, required=True):
    value = config.get(key)
    if value is None:
        if required:
            raise ValueError("{} is required".format(key))
        return None
    if not isinstance(value, (list, tuple)):
        value = [value]
    if len(value) not in (1, 2):
        raise ValueError("{} must be [lo] or [lo, hi]".format(key))
    lo = float(value[0])
    hi = float(value[-1])
    if not lo > 0.0 or not hi > 0.0:
        raise ValueError("{} bounds must be positive".format(key))
    return (lo, hi)


def _params(config, key, required=True):
    value = config.get(key)
    if value is None:
        if required:
            raise ValueError("{} is required".format(key))
        return None
    if not isinstance(value, dict):
        raise ValueError("{} must be an object with omega, sigma, npop".format(key))
    return ParameterSet.from_dict(value)


class SearchService(EcosimService):
    """
    Hillclimb, brute force, confidence intervals and the curve estimate.

    compute() runs the hillclimb; the other searches have their own
    validate_*/compute_* pairs.
    """

    id = "search"
    name = "Parameter Search"
    description = "Hillclimb, brute-force grid and likelihood-ratio intervals"
    route = "/api/search"

    def _common(self, config):
        validated = self.engine_fields(config)
        maxf = int(config.get("maxf", DEFAULT_MAXF))
        if maxf < 1:
            raise ValueError("maxf must be positive, got {}".format(maxf))
        validated["maxf"] = maxf
        return validated

    def _controller(self, engine, config):
        return SearchController(engine, maxf=config["maxf"])

    def validate(self, config):
        """Validate a hillclimb request."""
        validated = self._common(config)
        validated["start"] = _params(config, "start", required=False)
        return validated

    def compute(self, config):
        """Hillclimb from the given start, or from the curve estimate."""
        with self.open_engine(config) as engine:
            result = self._controller(engine, config).hillclimb(config["start"])
        return result.to_dict()

    def validate_bruteforce(self, config):
        validated = self._common(config)
        validated["omega"] = _range(config, "omega")
        validated["sigma"] = _range(config, "sigma")
        npop = _range(config, "npop")
        validated["npop"] = (int(npop[0]), int(npop[1]))
        validated["xn"] = _range(config, "xn", required=False)
        increments = config.get("increments", [0, 0, 0, 0])
        if not isinstance(increments, (list, tuple)) or len(increments) != 4:
            raise ValueError("increments must list four grid sizes")
        increments = [int(i) for i in increments]
        if min(increments) < 0:
            raise ValueError("increments must not be negative")
        validated["increments"] = increments
        return validated

    def compute_bruteforce(self, config):
        with self.open_engine(config) as engine:
            result = self._controller(engine, config).bruteforce(
                config["omega"], config["sigma"], config["npop"],
                config["xn"], config["increments"],
            )
        return result.to_dict()

    def validate_confidence(self, parameter, config):
        if parameter not in TARGETS:
            raise ValueError(
                "unknown interval parameter '{}' (expected one of {})".format(
                    parameter, ", ".join(sorted(TARGETS)))
            )
        validated = self._common(config)
        validated["parameter"] = parameter
        validated["optimum"] = _params(config, "optimum")
        likelihood = config.get("likelihood")
        validated["likelihood"] = None if likelihood is None else float(likelihood)
        step = config.get("step")
        validated["step"] = None if step is None else float(step)
        return validated

    def compute_confidence(self, config):
        with self.open_engine(config) as engine:
            interval = self._controller(engine, config).confidence_interval(
                config["parameter"], config["optimum"],
                likelihood=config["likelihood"], step=config["step"],
            )
        response = interval.to_dict()
        response["lines"] = interval.to_lines()
        return response

    def compute_estimate(self, config):
        engine_config = config["config"]
        estimate = estimate_parameters(
            engine_config.criteria, engine_config.observed,
            engine_config.length, engine_config.nu,
        )
        return estimate.to_dict()

    def register_routes(self, bp):
        """Mount all search endpoints."""
        service = self

        @bp.route("/search/hillclimb", methods=["POST"])
        def search_hillclimb():
            try:
                config = service.validate(request.get_json(silent=True))
                return jsonify(service.compute(config))
            except (TypeError, ValueError) as e:
                return jsonify({"error": str(e)}), 400

        @bp.route("/search/bruteforce", methods=["POST"])
        def search_bruteforce():
            try:
                config = service.validate_bruteforce(request.get_json(silent=True))
            except (TypeError, ValueError) as e:
                return jsonify({"error": str(e)}), 400
            return jsonify(service.compute_bruteforce(config))

        @bp.route("/search/confidence/<parameter>", methods=["POST"])
        def search_confidence(parameter):
            try:
                config = service.validate_confidence(
                    parameter, request.get_json(silent=True))
                return jsonify(service.compute_confidence(config))
            except (TypeError, ValueError) as e:
                return jsonify({"error": str(e)}), 400

        @bp.route("/search/estimate", methods=["POST"])
        def search_estimate():
            try:
                config = service._common(request.get_json(silent=True))
                return jsonify(service.compute_estimate(config))
            except (TypeError, ValueError) as e:
                return jsonify({"error": str(e)}), 400
