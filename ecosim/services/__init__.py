"""
ecosim Service Layer: EcosimService ABC and EcosimRegistry.

Three services sit over the numerical core: single-point simulation,
parameter search and observed binning. Each one validates its own request
payloads, runs its computation and mounts its own endpoints. The
simulation-backed services also open one EcosimEngine per request.

The registry carries the process-wide worker count. A service registered
with it inherits that count as the default for any request that does not
name its own "threads", and reports it in its metadata.

Classes:
    EcosimService  - Abstract base class for all services
    EcosimRegistry - Ordered set of services plus shared engine defaults

Functions:
    read_threads   - Worker count from a request payload

IMPORTANT: No unicode characters allowed (Windows charmap constraint).
"""

from abc import ABC, abstractmethod

from ecosim.engine import EcosimConfig, EcosimEngine


def read_threads(config, default=None):
    """Positive 'threads' field of a request payload, else default."""
    threads = config.get("threads")
    if threads is None:
        return default
    try:
        threads = int(threads)
    except (TypeError, ValueError):
        raise ValueError("threads must be an integer, got {!r}".format(threads))
    if threads < 1:
        raise ValueError("threads must be positive, got {}".format(threads))
    return threads


class EcosimService(ABC):
    """
    Abstract base class for an ecosim service.

    Class Attributes
    ----------------
    id : str
        Unique service identifier, also the last segment of route.
    name : str
        Human-readable display name.
    description : str
        One-line summary.
    route : str
        API prefix owned by the service (e.g. "/api/search").
    uses_engine : bool
        Whether requests run simulations (and so accept the observed curve
        and a worker count).
    """

    id = ""
    name = ""
    description = ""
    route = ""
    uses_engine = True

    def __init__(self):
        # Default worker count; set by EcosimRegistry.register()
        self.threads = None

    @abstractmethod
    def validate(self, config):
        """
        Validate a raw request payload.

        Returns
        -------
        dict
            Normalized configuration for compute().

        Raises
        ------
        ValueError
            If the payload is invalid.
        """

    @abstractmethod
    def compute(self, config):
        """Run the service on a validated config; return a JSON-ready dict."""

    @abstractmethod
    def register_routes(self, blueprint):
        """Mount the service's endpoints onto the /api blueprint."""

    def engine_fields(self, config):
        """
        Engine settings shared by every simulation-backed request.

        Returns
        -------
        dict
            "config" (EcosimConfig) and "threads" (int or None), the latter
            falling back to the registry's worker count.
        """
        if not config:
            raise ValueError("Request body must be JSON")
        return {
            "config": EcosimConfig.from_dict(config),
            "threads": read_threads(config, self.threads),
        }

    def open_engine(self, validated):
        return EcosimEngine(validated["config"], threads=validated["threads"])

    def metadata(self):
        info = {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "route": self.route,
            "uses_engine": self.uses_engine,
        }
        if self.uses_engine:
            info["threads"] = self.threads
        return info


class EcosimRegistry:
    """
    Services in registration order, with the shared worker count.

    Parameters
    ----------
    threads : int, optional
        Default worker pool size handed to every registered service
        (None: one worker per CPU).
    """

    def __init__(self, threads=None):
        if threads is not None and int(threads) < 1:
            raise ValueError("threads must be positive, got {}".format(threads))
        self.threads = None if threads is None else int(threads)
        self._services = {}

    def register(self, service):
        """
        Add a service and hand it the registry's worker count.

        Raises
        ------
        ValueError
            If a service with the same id is already registered.
        """
        if service.id in self._services:
            raise ValueError(
                "Service '{}' is already registered".format(service.id)
            )
        service.threads = self.threads
        self._services[service.id] = service

    def __iter__(self):
        return iter(self._services.values())

    def __len__(self):
        return len(self._services)

    def list_all(self):
        """Metadata for every service, in registration order."""
        return [s.metadata() for s in self]
