"""
Command-line drivers for ecosim searches.

Each subcommand reads one search input record and writes one output file:

    ecosim bruteforce IN OUT   grid rows omega,sigma,npop,xn,f1..f6
    ecosim hillclimb  IN OUT   omega,sigma,npop,xn,likelihood
    ecosim omega-ci   IN OUT   upper/lower interval lines for omega
    ecosim sigma-ci   IN OUT   ... for sigma
    ecosim npop-ci    IN OUT   ... for npop
    ecosim drift-ci   IN OUT   ... for drift (xn)
    ecosim simulate   IN OUT   one row of fractions at the low end of each range
    ecosim estimate   IN OUT   curve estimate as a hillclimb line

Options shared by all subcommands:
    --threads N   worker threads for the replicate pool (default: CPU count)
    --debug       debug logging plus Nelder-Mead progress lines on stdout

A missing or malformed input file is reported on stderr with exit code 1;
no output is written then.

IMPORTANT: No unicode characters allowed (Windows charmap constraint).
"""

import argparse
import logging
import sys

from ecosim.engine import EcosimEngine
from ecosim.records import (
    RecordError, format_bruteforce_row, format_hillclimb,
    format_progress_line, read_search_input, write_text,
)
from ecosim.services.search.controller import SearchController
from ecosim.services.search.estimate import estimate_parameters

log = logging.getLogger(__name__)

INTERVAL_COMMANDS = {
    "omega-ci": "omega",
    "sigma-ci": "sigma",
    "npop-ci": "npop",
    "drift-ci": "drift",
}


def _print_progress(neval, value, params):
    print(format_progress_line(neval, value, params))


def run_bruteforce(record, engine, controller):
    result = controller.bruteforce(
        record.omega, record.sigma, record.npop, record.xn, record.increments)
    if not result.complete:
        log.warning("Brute force incomplete: %s", result.error)
    log.info("Brute force: %d of %d points had a nonzero fraction",
             len(result.rows), result.evaluated)
    return [format_bruteforce_row(row.params, row.fractions) for row in result.rows]


def run_hillclimb(record, engine, controller):
    result = controller.hillclimb(record.start_params())
    log.info("Hillclimb: %s likelihood %g (%s)",
             result.params, result.likelihood, result.simplex.message)
    return [format_hillclimb(result.params, result.likelihood)]


def run_interval(target):
    def run(record, engine, controller):
        interval = controller.confidence_interval(
            target, record.start_params(),
            likelihood=record.likelihood, step=record.step,
        )
        for line in interval.to_lines():
            log.info("%s", line)
        return interval.to_lines()
    return run


def run_simulate(record, engine, controller):
    params = record.start_params()
    fractions = engine.evaluate(params)
    return [format_bruteforce_row(params, fractions)]


def run_estimate(record, engine, controller):
    config = engine.config
    estimate = estimate_parameters(config.criteria, config.observed,
                                   config.length, config.nu)
    likelihood = engine.likelihood(estimate.params)
    log.info("Estimate: %s likelihood %g", estimate.params, likelihood)
    return [format_hillclimb(estimate.params, likelihood)]


COMMANDS = {
    "bruteforce": (run_bruteforce, "Evaluate every point of the parameter grid"),
    "hillclimb": (run_hillclimb, "Nelder-Mead point estimate from the low end of each range"),
    "simulate": (run_simulate, "Success fractions of one parameter set"),
    "estimate": (run_estimate, "Starting point read off the observed curve"),
}
for _command, _target in INTERVAL_COMMANDS.items():
    COMMANDS[_command] = (run_interval(_target),
                          "Likelihood-ratio confidence interval for {}".format(_target))


def build_parser():
    ap = argparse.ArgumentParser(
        prog="ecosim",
        description="Ecotype simulation: fit omega, sigma and npop to an observed binning curve.",
    )
    sub = ap.add_subparsers(dest="command", metavar="command")
    sub.required = True
    for name in COMMANDS:
        _, help_text = COMMANDS[name]
        p = sub.add_parser(name, help=help_text)
        p.add_argument("input", help="search input record")
        p.add_argument("output", help="output file")
        p.add_argument("--threads", type=int, default=None,
                       help="worker threads (default: CPU count)")
        p.add_argument("--debug", action="store_true",
                       help="debug logging and optimizer progress")
    return ap


def main(argv=None):
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if args.threads is not None and args.threads < 1:
        print("error: --threads must be positive", file=sys.stderr)
        return 1

    try:
        record = read_search_input(args.input)
        config = record.to_config()
    except (RecordError, ValueError) as e:
        print("error: {}".format(e), file=sys.stderr)
        return 1

    run, _ = COMMANDS[args.command]
    progress = _print_progress if args.debug else None
    try:
        with EcosimEngine(config, threads=args.threads, debug=args.debug) as engine:
            controller = SearchController(engine, progress=progress)
            lines = run(record, engine, controller)
    except ValueError as e:
        print("error: {}".format(e), file=sys.stderr)
        return 1

    write_text(args.output, "".join(line + "\n" for line in lines))
    log.debug("Wrote %d lines to %s", len(lines), args.output)
    return 0


if __name__ == "__main__":
    sys.exit(main())
