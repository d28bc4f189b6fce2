"""
Tests for Flask API endpoints.

Integration tests that validate the REST API returns correct status codes
and JSON structure for every registered service. Simulations run with a handful
of replicates so each request finishes quickly.
"""

import json

import pytest

from app import create_registry
from ecosim.services import EcosimRegistry, EcosimService, read_threads
from ecosim.services.simulation import SimulationService


def post(client, url, payload):
    return client.post(url, data=json.dumps(payload), content_type="application/json")


class TestRoot:

    def test_index(self, client):
        resp = client.get("/")
        assert resp.status_code == 200
        data = resp.get_json()
        assert data["name"] == "ecosim"
        assert len(data["services"]) == 3


class TestServicesEndpoint:
    """Test GET /api/services and /api/health."""

    def test_list_services(self, client):
        resp = client.get("/api/services")
        assert resp.status_code == 200
        ids = [s["id"] for s in resp.get_json()]
        assert ids == ["simulation", "search", "binning"]

    def test_metadata_fields(self, client):
        for service in client.get("/api/services").get_json():
            assert {"id", "name", "description", "route", "uses_engine"} <= set(service)
            assert service["route"] == "/api/" + service["id"]
            assert ("threads" in service) == service["uses_engine"]

    def test_health(self, client):
        resp = client.get("/api/health")
        assert resp.status_code == 200
        data = resp.get_json()
        assert data["status"] == "ok"
        assert set(data["services"]) == {"simulation", "search", "binning"}


class TestRegistry:

    def test_duplicate_rejected(self):
        registry = EcosimRegistry()
        registry.register(SimulationService())
        with pytest.raises(ValueError, match="already registered"):
            registry.register(SimulationService())

    def test_registration_order(self):
        assert [s.id for s in create_registry()] == ["simulation", "search", "binning"]
        assert len(create_registry()) == 3

    def test_threads_pass_through(self):
        registry = create_registry(threads=3)
        by_id = {s["id"]: s for s in registry.list_all()}
        assert by_id["simulation"]["threads"] == 3
        assert by_id["search"]["threads"] == 3
        assert "threads" not in by_id["binning"]
        assert not by_id["binning"]["uses_engine"]

    def test_request_threads_override_default(self, small_payload):
        service = SimulationService()
        EcosimRegistry(threads=3).register(service)
        small_payload["params"] = {"omega": 0.01, "sigma": 1.0, "npop": 3}
        assert service.validate(small_payload)["threads"] == 2
        del small_payload["threads"]
        assert service.validate(small_payload)["threads"] == 3

    def test_invalid_registry_threads(self):
        with pytest.raises(ValueError):
            EcosimRegistry(threads=0)

    def test_register_routes_required(self):
        class Incomplete(EcosimService):
            id = "incomplete"

            def validate(self, config):
                return config

            def compute(self, config):
                return {}

        with pytest.raises(TypeError):
            Incomplete()

    @pytest.mark.parametrize("value", [0, -2, "many"])
    def test_read_threads_invalid(self, value):
        with pytest.raises(ValueError):
            read_threads({"threads": value})

    def test_read_threads_default(self):
        assert read_threads({}) is None
        assert read_threads({}, 4) == 4


# ---------------------------------------------------------------------------
# Simulation
# ---------------------------------------------------------------------------

class TestSimulationEndpoint:
    """Test POST /api/simulation/evaluate."""

    def test_evaluate(self, client, small_payload):
        small_payload["params"] = {"omega": 0.01, "sigma": 1.0, "npop": 3}
        resp = post(client, "/api/simulation/evaluate", small_payload)
        assert resp.status_code == 200
        data = resp.get_json()
        assert len(data["fractions"]) == 6
        assert data["tolerance_factors"][0] == 5.0
        assert data["likelihood"] == data["fractions"][0]
        assert data["nrep"] == 10
        assert all(0.0 <= f <= 1.0 for f in data["fractions"])

    def test_same_seed_same_fractions(self, client, small_payload):
        small_payload["params"] = {"omega": 0.01, "sigma": 1.0, "npop": 3}
        first = post(client, "/api/simulation/evaluate", small_payload).get_json()
        second = post(client, "/api/simulation/evaluate", small_payload).get_json()
        assert first["fractions"] == second["fractions"]

    def test_missing_params(self, client, small_payload):
        resp = post(client, "/api/simulation/evaluate", small_payload)
        assert resp.status_code == 400
        assert "params" in resp.get_json()["error"]

    def test_mismatched_curve(self, client, small_payload):
        small_payload["observed"] = [3]
        small_payload["params"] = {"omega": 0.01, "sigma": 1.0, "npop": 3}
        resp = post(client, "/api/simulation/evaluate", small_payload)
        assert resp.status_code == 400

    def test_not_json(self, client):
        resp = client.post("/api/simulation/evaluate", data="omega=1")
        assert resp.status_code == 400


# ---------------------------------------------------------------------------
# Search
# ---------------------------------------------------------------------------

class TestSearchEndpoints:
    """Test POST /api/search/*."""

    def test_estimate(self, client, small_payload):
        resp = post(client, "/api/search/estimate", small_payload)
        assert resp.status_code == 200
        data = resp.get_json()
        assert data["params"]["omega"] > 0.0
        assert 1 <= data["params"]["npop"] <= 12

    def test_hillclimb(self, client, small_payload):
        small_payload["maxf"] = 6
        small_payload["start"] = {"omega": 0.01, "sigma": 1.0, "npop": 3}
        resp = post(client, "/api/search/hillclimb", small_payload)
        assert resp.status_code == 200
        data = resp.get_json()
        assert 0.0 <= data["likelihood"] <= 1.0
        assert data["evaluations"] >= 1
        assert data["params"]["xn"] is None

    def test_bruteforce(self, client, small_payload):
        small_payload.update({
            "omega": [0.01, 0.1],
            "sigma": [1.0, 10.0],
            "npop": [2, 6],
            "xn": None,
            "increments": [1, 1, 2, 0],
        })
        resp = post(client, "/api/search/bruteforce", small_payload)
        assert resp.status_code == 200
        data = resp.get_json()
        assert data["complete"]
        assert data["evaluated"] == 2
        for row in data["rows"]:
            assert len(row["fractions"]) == 6
            assert row["fractions"][0] > 0.0

    def test_bruteforce_bad_increments(self, client, small_payload):
        small_payload.update({"omega": [0.01], "sigma": [1.0], "npop": [2],
                              "increments": [1, 1]})
        resp = post(client, "/api/search/bruteforce", small_payload)
        assert resp.status_code == 400
        assert "increments" in resp.get_json()["error"]

    def test_confidence_npop(self, client, small_payload):
        small_payload.update({
            "maxf": 3,
            "optimum": {"omega": 0.01, "sigma": 1.0, "npop": 5},
            "step": 4,
        })
        resp = post(client, "/api/search/confidence/npop", small_payload)
        assert resp.status_code == 200
        data = resp.get_json()
        assert data["parameter"] == "npop"
        assert 5 <= data["upper"]["value"] <= 12
        assert 1 <= data["lower"]["value"] <= 5
        assert data["lines"][0].startswith("upper npop ")

    def test_confidence_unknown_parameter(self, client, small_payload):
        small_payload["optimum"] = {"omega": 0.01, "sigma": 1.0, "npop": 5}
        resp = post(client, "/api/search/confidence/length", small_payload)
        assert resp.status_code == 400
        assert "unknown interval parameter" in resp.get_json()["error"]

    def test_confidence_drift_without_xn(self, client, small_payload):
        small_payload["optimum"] = {"omega": 0.01, "sigma": 1.0, "npop": 5}
        resp = post(client, "/api/search/confidence/drift", small_payload)
        assert resp.status_code == 400

    def test_confidence_needs_optimum(self, client, small_payload):
        resp = post(client, "/api/search/confidence/omega", small_payload)
        assert resp.status_code == 400
        assert "optimum" in resp.get_json()["error"]


# ---------------------------------------------------------------------------
# Binning
# ---------------------------------------------------------------------------

class TestBinningEndpoint:
    """Test POST /api/binning/observed."""

    SEQUENCES = ["AAAAAAAAAA", "AAAAAAAAAC", "AAAAAAAACC", "GGGGGAAAAA"]

    def test_observed(self, client):
        resp = post(client, "/api/binning/observed",
                    {"sequences": self.SEQUENCES, "criteria": [1.0, 0.9, 0.8, 0.3]})
        assert resp.status_code == 200
        data = resp.get_json()
        assert data["nu"] == 4
        assert data["length"] == 10
        assert data["observed"] == [4, 3, 2, 1]

    def test_default_criteria(self, client):
        resp = post(client, "/api/binning/observed", {"sequences": self.SEQUENCES})
        assert resp.status_code == 200
        data = resp.get_json()
        assert data["criteria"][0] == 1.0
        assert len(data["observed"]) == len(data["criteria"])

    def test_unequal_lengths(self, client):
        resp = post(client, "/api/binning/observed", {"sequences": ["ACGT", "AC"]})
        assert resp.status_code == 400

    def test_criterion_out_of_range(self, client):
        resp = post(client, "/api/binning/observed",
                    {"sequences": self.SEQUENCES, "criteria": [1.5]})
        assert resp.status_code == 400
