"""
Plain-text search records: parser, formatter and file helpers.

Records are line oriented, one scalar or tuple per line, whitespace or
comma delimited. Floats are written with repr() so reading back a record
written here reproduces every field exactly.

Search input layout:
    numcrit
    criterion observed            (numcrit lines)
    omega_lo [omega_hi]
    sigma_lo [sigma_hi]
    npop_lo [npop_hi]
    xn_lo [xn_hi] | none
    inc_omega inc_sigma inc_npop inc_xn
    nu nrep
    seed
    length
    whichavg
    probthreshold
    [likelihood]
    [step]

Output lines:
    brute force   omega,sigma,npop,xn,f1,f2,f3,f4,f5,f6
    hillclimb     omega,sigma,npop,xn,likelihood
    interval      upper|lower parameter value|>=100 likelihood
    progress      neval value p1 p2 ...

Text after '#' on any input line is ignored.

IMPORTANT: No unicode in code or error messages (Windows charmap).
"""

import os
import re
import tempfile

from ecosim.constants import NUM_TOLERANCE_LEVELS, SIGMA_CEILING_LABEL
from ecosim.engine import EcosimConfig, ParameterSet

NONE_TOKEN = "none"
_SPLIT = re.compile(r"[,\s]+")


class RecordError(ValueError):
    """Malformed, missing or unreadable record."""


def _tokens(line):
    line = line.split("#", 1)[0].strip()
    if not line:
        return []
    return [t for t in _SPLIT.split(line) if t]


def _fmt_float(value):
    if value is None:
        return NONE_TOKEN
    return repr(float(value))


def _parse_float(token, field):
    if token.lower() == NONE_TOKEN:
        return None
    try:
        return float(token)
    except ValueError:
        raise RecordError("{}: expected a number, got '{}'".format(field, token))


def _parse_int(token, field):
    try:
        return int(token)
    except ValueError:
        try:
            value = float(token)
        except ValueError:
            raise RecordError("{}: expected an integer, got '{}'".format(field, token))
        if not value.is_integer():
            raise RecordError("{}: expected an integer, got '{}'".format(field, token))
        return int(value)


class SearchInput:
    """
    Parsed search input record.

    Ranges are (lo, hi) tuples; single-value programs use lo == hi.
    xn is None when drift is disabled.
    """

    def __init__(self, criteria, observed, omega, sigma, npop, xn,
                 increments, nu, nrep, seed, length, whichavg=1,
                 probthreshold=0.0, likelihood=None, step=None):
        self.criteria = [float(c) for c in criteria]
        self.observed = [int(b) for b in observed]
        self.omega = tuple(float(v) for v in omega)
        self.sigma = tuple(float(v) for v in sigma)
        self.npop = tuple(int(v) for v in npop)
        self.xn = None if xn is None else tuple(float(v) for v in xn)
        self.increments = tuple(int(v) for v in increments)
        self.nu = int(nu)
        self.nrep = int(nrep)
        self.seed = int(seed)
        self.length = int(length)
        self.whichavg = int(whichavg)
        self.probthreshold = float(probthreshold)
        self.likelihood = None if likelihood is None else float(likelihood)
        self.step = None if step is None else float(step)

    def to_config(self):
        return EcosimConfig(
            criteria=self.criteria,
            observed=self.observed,
            nu=self.nu,
            nrep=self.nrep,
            seed=self.seed,
            length=self.length,
            whichavg=self.whichavg,
            probthreshold=self.probthreshold,
        )

    def start_params(self):
        """Parameter set at the low end of every range."""
        xn = None if self.xn is None else self.xn[0]
        return ParameterSet(self.omega[0], self.sigma[0], self.npop[0], xn)

    def to_dict(self):
        return {
            "criteria": list(self.criteria),
            "observed": list(self.observed),
            "omega": list(self.omega),
            "sigma": list(self.sigma),
            "npop": list(self.npop),
            "xn": None if self.xn is None else list(self.xn),
            "increments": list(self.increments),
            "nu": self.nu,
            "nrep": self.nrep,
            "seed": self.seed,
            "length": self.length,
            "whichavg": self.whichavg,
            "probthreshold": self.probthreshold,
            "likelihood": self.likelihood,
            "step": self.step,
        }

    def __eq__(self, other):
        if not isinstance(other, SearchInput):
            return NotImplemented
        return self.to_dict() == other.to_dict()


def _range(tokens, field, parse):
    if len(tokens) not in (1, 2):
        raise RecordError("{}: expected 1 or 2 values, got {}".format(field, len(tokens)))
    values = [parse(t, field) for t in tokens]
    if len(values) == 1:
        values.append(values[0])
    return tuple(values)


def parse_search_input(text):
    """
    Parse a search input record.

    Raises
    ------
    RecordError
        With a message naming the offending field.
    """
    lines = [t for t in (_tokens(line) for line in text.splitlines()) if t]
    pos = [0]

    def take(field, count=None):
        if pos[0] >= len(lines):
            raise RecordError("{}: unexpected end of record".format(field))
        tokens = lines[pos[0]]
        pos[0] += 1
        if count is not None and len(tokens) != count:
            raise RecordError(
                "{}: expected {} values, got {}".format(field, count, len(tokens))
            )
        return tokens

    numcrit = _parse_int(take("numcrit", 1)[0], "numcrit")
    if numcrit < 1:
        raise RecordError("numcrit: must be positive, got {}".format(numcrit))
    criteria = []
    observed = []
    for i in range(numcrit):
        field = "criterion {}".format(i + 1)
        crit, obs = take(field, 2)
        criteria.append(_parse_float(crit, field))
        observed.append(_parse_int(obs, field))

    omega = _range(take("omega"), "omega", _parse_float)
    sigma = _range(take("sigma"), "sigma", _parse_float)
    npop = _range(take("npop"), "npop", _parse_int)
    xn_tokens = take("xn")
    if len(xn_tokens) == 1 and xn_tokens[0].lower() == NONE_TOKEN:
        xn = None
    else:
        xn = _range(xn_tokens, "xn", _parse_float)
    if None in omega or None in sigma or (xn is not None and None in xn):
        raise RecordError("parameter ranges must be numeric")
    increments = [_parse_int(t, "increments") for t in take("increments", 4)]
    nu, nrep = [_parse_int(t, "nu nrep") for t in take("nu nrep", 2)]
    seed = _parse_int(take("seed", 1)[0], "seed")
    length = _parse_int(take("length", 1)[0], "length")
    whichavg = _parse_int(take("whichavg", 1)[0], "whichavg")
    if not 1 <= whichavg <= NUM_TOLERANCE_LEVELS:
        raise RecordError(
            "whichavg: must be in [1, {}], got {}".format(NUM_TOLERANCE_LEVELS, whichavg)
        )
    probthreshold = _parse_float(take("probthreshold", 1)[0], "probthreshold")

    likelihood = None
    step = None
    if pos[0] < len(lines):
        likelihood = _parse_float(take("likelihood", 1)[0], "likelihood")
    if pos[0] < len(lines):
        step = _parse_float(take("step", 1)[0], "step")
    if pos[0] < len(lines):
        raise RecordError("unexpected trailing line {}".format(" ".join(lines[pos[0]])))

    return SearchInput(
        criteria, observed, omega, sigma, npop, xn, increments, nu, nrep,
        seed, length, whichavg, probthreshold, likelihood, step,
    )


def format_search_input(record):
    lines = [str(len(record.criteria))]
    for crit, obs in zip(record.criteria, record.observed):
        lines.append("{} {}".format(_fmt_float(crit), obs))
    lines.append("{} {}".format(_fmt_float(record.omega[0]), _fmt_float(record.omega[1])))
    lines.append("{} {}".format(_fmt_float(record.sigma[0]), _fmt_float(record.sigma[1])))
    lines.append("{} {}".format(record.npop[0], record.npop[1]))
    if record.xn is None:
        lines.append(NONE_TOKEN)
    else:
        lines.append("{} {}".format(_fmt_float(record.xn[0]), _fmt_float(record.xn[1])))
    lines.append(" ".join(str(i) for i in record.increments))
    lines.append("{} {}".format(record.nu, record.nrep))
    lines.append(str(record.seed))
    lines.append(str(record.length))
    lines.append(str(record.whichavg))
    lines.append(_fmt_float(record.probthreshold))
    if record.likelihood is not None or record.step is not None:
        lines.append(_fmt_float(record.likelihood))
    if record.step is not None:
        lines.append(_fmt_float(record.step))
    return "\n".join(lines) + "\n"


def read_text(path):
    """Read a record file; a missing or unreadable file is a RecordError."""
    if not os.path.isfile(path):
        raise RecordError("input file not found: {}".format(path))
    try:
        with open(path, "r", encoding="utf-8") as f:
            return f.read()
    except (OSError, UnicodeDecodeError) as e:
        raise RecordError("could not read {}: {}".format(path, e))


def write_text(path, text):
    """Write text to path atomically (temp file in the same dir + rename)."""
    out_dir = os.path.dirname(os.path.abspath(path))
    os.makedirs(out_dir, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=out_dir, prefix=".tmp_", suffix=".dat")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(text)
        os.replace(tmp_path, path)
    except Exception:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


def read_search_input(path):
    return parse_search_input(read_text(path))


def write_search_input(path, record):
    write_text(path, format_search_input(record))


# ---------------------------------------------------------------------------
# Output records
# ---------------------------------------------------------------------------

def format_bruteforce_row(params, fractions):
    values = [
        _fmt_float(params.omega),
        _fmt_float(params.sigma),
        str(params.npop),
        _fmt_float(params.xn),
    ]
    values.extend(_fmt_float(f) for f in fractions)
    return ",".join(values)


def parse_bruteforce_row(line):
    """Return (ParameterSet, list of six fractions)."""
    tokens = _tokens(line)
    if len(tokens) != 4 + NUM_TOLERANCE_LEVELS:
        raise RecordError(
            "brute-force row: expected {} values, got {}".format(
                4 + NUM_TOLERANCE_LEVELS, len(tokens))
        )
    params = ParameterSet(
        _parse_float(tokens[0], "omega"),
        _parse_float(tokens[1], "sigma"),
        _parse_int(tokens[2], "npop"),
        _parse_float(tokens[3], "xn"),
    )
    fractions = [_parse_float(t, "fraction") for t in tokens[4:]]
    return params, fractions


def format_hillclimb(params, likelihood):
    return ",".join([
        _fmt_float(params.omega),
        _fmt_float(params.sigma),
        str(params.npop),
        _fmt_float(params.xn),
        _fmt_float(likelihood),
    ])


def parse_hillclimb(line):
    """Return (ParameterSet, likelihood)."""
    tokens = _tokens(line)
    if len(tokens) != 5:
        raise RecordError("hillclimb row: expected 5 values, got {}".format(len(tokens)))
    params = ParameterSet(
        _parse_float(tokens[0], "omega"),
        _parse_float(tokens[1], "sigma"),
        _parse_int(tokens[2], "npop"),
        _parse_float(tokens[3], "xn"),
    )
    return params, _parse_float(tokens[4], "likelihood")


def format_bound(direction, parameter, value, likelihood, capped=False):
    shown = SIGMA_CEILING_LABEL if capped else _fmt_float(value)
    return "{} {} {} {}".format(direction, parameter, shown, _fmt_float(likelihood))


def parse_bound(line):
    """
    Return (direction, parameter, value, likelihood, capped).

    value is None when the bound was reported as the ceiling label.
    """
    tokens = _tokens(line)
    if len(tokens) != 4:
        raise RecordError("interval line: expected 4 values, got {}".format(len(tokens)))
    direction, parameter, shown, likelihood = tokens
    if direction not in ("upper", "lower"):
        raise RecordError("interval line: unknown direction '{}'".format(direction))
    capped = shown == SIGMA_CEILING_LABEL
    value = None if capped else _parse_float(shown, parameter)
    return direction, parameter, value, _parse_float(likelihood, "likelihood"), capped


def format_progress_line(neval, value, params):
    return " ".join([str(neval), _fmt_float(value)] + [_fmt_float(p) for p in params])


def parse_progress_line(line):
    tokens = _tokens(line)
    if len(tokens) < 2:
        raise RecordError("progress line: expected at least 2 values")
    neval = _parse_int(tokens[0], "neval")
    value = _parse_float(tokens[1], "value")
    params = [_parse_float(t, "parameter") for t in tokens[2:]]
    if None in params:
        raise RecordError("progress line: parameters must be numeric")
    return neval, value, params
