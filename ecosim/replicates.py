"""
ReplicateEvaluator: Monte-Carlo success fractions for one parameter set.

Replicates are split into one contiguous chunk per worker of a fixed
thread pool. Each chunk runs on the worker's own ZigguratState and keeps
its population state local, so the only shared step is the final count,
done after every chunk has joined. A failure in any chunk discards the
whole batch.

The replicate loop is pure Python, so under the GIL the workers mostly take
turns rather than run in parallel. What the pool fixes is the partition:
replicate i always lands in the same chunk on the same stream, so a given
(seed, threads, nrep) reproduces its fractions exactly. Changing threads
changes the partition and therefore the draws.

IMPORTANT: No unicode characters allowed (Windows charmap constraint).
"""

import logging
import os
from concurrent.futures import ThreadPoolExecutor, wait

import numpy as np

from ecosim.constants import NUM_TOLERANCE_LEVELS
from ecosim.simulation import CoalescentSimulator, in_domain
from ecosim.ziggurat import spawn_streams

log = logging.getLogger(__name__)


def default_threads():
    return os.cpu_count() or 1


def split_replicates(nrep, workers):
    """Sizes of contiguous chunks covering nrep replicates, one per worker."""
    base, extra = divmod(nrep, workers)
    return [base + 1 if i < extra else base for i in range(workers)]


def _run_chunk(params, config, rng, count):
    simulator = CoalescentSimulator(params, config, rng)
    success = np.zeros((count, NUM_TOLERANCE_LEVELS), dtype=bool)
    for i in range(count):
        success[i] = simulator.replicate()
    return success


class ReplicateEvaluator:
    """
    Replicate runner over a fixed pool of worker streams.

    threads sets how replicates are partitioned across streams, and with it
    the exact draws; it does not buy CPU throughput for this pure-Python loop.

    Parameters
    ----------
    config : EcosimConfig
        Observed data, nu, nrep and sequence length.
    threads : int, optional
        Worker count (default: os.cpu_count()).
    seed : int, optional
        Master seed for the worker streams (default: config.seed).
    """

    def __init__(self, config, threads=None, seed=None):
        self.config = config
        self.threads = int(threads) if threads else default_threads()
        if self.threads < 1:
            raise ValueError("threads must be positive, got {}".format(threads))
        self._executor = ThreadPoolExecutor(
            max_workers=self.threads, thread_name_prefix="ecosim-replicate"
        )
        self.evaluations = 0
        self.reseed(config.seed if seed is None else seed)

    def reseed(self, seed):
        """Rebuild every worker stream from seed."""
        self.seed = int(seed)
        self._streams = spawn_streams(self.seed, self.threads)

    def evaluate(self, params, nrep=None):
        """
        Run nrep replicates and reduce them to success fractions.

        Parameters
        ----------
        params : ParameterSet
        nrep : int, optional
            Replicate count (default: config.nrep).

        Returns
        -------
        numpy.ndarray
            Six fractions in [0, 1], loosest tolerance first. All zeros for
            parameter sets outside the simulation domain.
        """
        nrep = self.config.nrep if nrep is None else int(nrep)
        self.evaluations += 1
        if nrep < 1 or not in_domain(params, self.config.nu):
            log.debug("Skipping out-of-domain point %s", params)
            return np.zeros(NUM_TOLERANCE_LEVELS, dtype=float)

        futures = []
        for rng, count in zip(self._streams, split_replicates(nrep, self.threads)):
            if count:
                futures.append(
                    self._executor.submit(_run_chunk, params, self.config, rng, count)
                )
        wait(futures)
        # result() re-raises the first worker failure; nothing is counted then
        chunks = [f.result() for f in futures]
        counts = np.concatenate(chunks).sum(axis=0)
        fractions = counts / float(nrep)
        log.debug("Evaluated %s over %d replicates: %s", params, nrep, fractions)
        return fractions

    def close(self):
        self._executor.shutdown(wait=True)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False
