"""
Pytest fixtures for the ecosim test suite.
"""

import pytest
from app import create_app

from ecosim.engine import EcosimConfig, ParameterSet
from ecosim.records import SearchInput


# A small observed curve: 12 sequences of 1000 nt, binned at 8 criteria.
SMALL_CRITERIA = [1.0, 0.99, 0.98, 0.97, 0.96, 0.95, 0.90, 0.85]
SMALL_OBSERVED = [12, 8, 6, 5, 4, 4, 3, 2]


@pytest.fixture
def app():
    """Create application for testing."""
    app = create_app()
    app.config["TESTING"] = True
    return app


@pytest.fixture
def client(app):
    """Flask test client."""
    return app.test_client()


@pytest.fixture
def small_config():
    """Observed curve small enough to simulate in milliseconds."""
    return EcosimConfig(
        criteria=SMALL_CRITERIA,
        observed=SMALL_OBSERVED,
        nu=12,
        nrep=20,
        seed=7,
        length=1000,
        whichavg=1,
    )


@pytest.fixture
def small_params():
    return ParameterSet(omega=0.01, sigma=1.0, npop=3)


@pytest.fixture
def small_payload():
    """JSON request body carrying the small observed curve."""
    return {
        "criteria": list(SMALL_CRITERIA),
        "observed": list(SMALL_OBSERVED),
        "nu": 12,
        "nrep": 10,
        "seed": 7,
        "length": 1000,
        "threads": 2,
    }


@pytest.fixture
def search_input():
    return SearchInput(
        criteria=SMALL_CRITERIA,
        observed=SMALL_OBSERVED,
        omega=(0.01, 0.1),
        sigma=(1.0, 10.0),
        npop=(2, 6),
        xn=None,
        increments=(2, 2, 2, 0),
        nu=12,
        nrep=10,
        seed=7,
        length=1000,
        whichavg=1,
        probthreshold=0.0,
    )
