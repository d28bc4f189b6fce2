"""
Ziggurat random stream: xorshift uniform core plus normal and exponential
samplers (Marsaglia and Tsang, 2000).

Each ZigguratState is owned by exactly one worker. Nothing here locks, so
a stream must never be shared between threads; spawn_streams() derives one
independent stream per worker from a master seed.

IMPORTANT: No unicode characters allowed (Windows charmap constraint).
"""

import math

import numpy as np

MASK32 = 0xFFFFFFFF

# Replacement word for a zero seed; xorshift never leaves the all-zero state
DEFAULT_WORD = 123456789

# Table construction constants
DN = 3.442619855899
DE = 7.697117470131487
VN = 9.91256303526217e-3
VE = 3.949659822581572e-3
M1 = 2147483648.0
M2 = 4294967296.0

# Right tail of the normal and exponential distributions
R_NORMAL = 3.442620
R_NORMAL_INV = 0.2904764
R_EXPONENTIAL = 7.69711

UNIFORM_SCALE = 0.2328306e-9


def _signed32(value):
    """Interpret the low 32 bits of value as a two's complement integer."""
    value &= MASK32
    if value & 0x80000000:
        return value - 0x100000000
    return value


def _build_tables():
    """
    Build the ziggurat rejection tables.

    Returns
    -------
    tuple
        (kn, fn, wn, ke, fe, we): 128-entry normal tables and 256-entry
        exponential tables.
    """
    kn = np.zeros(128, dtype=np.int64)
    fn = np.zeros(128, dtype=float)
    wn = np.zeros(128, dtype=float)
    ke = np.zeros(256, dtype=np.int64)
    fe = np.zeros(256, dtype=float)
    we = np.zeros(256, dtype=float)

    dn = DN
    tn = dn
    q = VN / math.exp(-0.5 * dn * dn)
    kn[0] = int((dn / q) * M1)
    kn[1] = 0
    wn[0] = q / M1
    wn[127] = dn / M1
    fn[0] = 1.0
    fn[127] = math.exp(-0.5 * dn * dn)
    for i in range(126, 0, -1):
        dn = math.sqrt(-2.0 * math.log(VN / dn + math.exp(-0.5 * dn * dn)))
        kn[i + 1] = int((dn / tn) * M1)
        tn = dn
        fn[i] = math.exp(-0.5 * dn * dn)
        wn[i] = dn / M1

    de = DE
    te = de
    q = VE / math.exp(-de)
    ke[0] = int((de / q) * M2)
    ke[1] = 0
    we[0] = q / M2
    we[255] = de / M2
    fe[0] = 1.0
    fe[255] = math.exp(-de)
    for i in range(254, 0, -1):
        de = -math.log(VE / de + math.exp(-de))
        ke[i + 1] = int((de / te) * M2)
        te = de
        fe[i] = math.exp(-de)
        we[i] = de / M2

    return kn, fn, wn, ke, fe, we


class ZigguratState:
    """
    One random stream: the xorshift word and its rejection tables.

    Parameters
    ----------
    seed : int, optional
        Initial seed (default 0, which maps to DEFAULT_WORD).
    """

    def __init__(self, seed=0):
        self.jsr = DEFAULT_WORD
        self.seed(seed)

    def seed(self, value):
        """Reinitialize the stream deterministically from an integer seed."""
        jsr = int(value) & MASK32
        if jsr == 0:
            jsr = DEFAULT_WORD
        self.jsr = jsr
        (self.kn, self.fn, self.wn,
         self.ke, self.fe, self.we) = _build_tables()

    def shr3(self):
        """Advance the xorshift core; return a signed 32-bit integer."""
        jz = self.jsr
        jsr = jz
        jsr ^= (jsr << 13) & MASK32
        jsr ^= jsr >> 17
        jsr ^= (jsr << 5) & MASK32
        self.jsr = jsr
        return _signed32(jz + jsr)

    def uniform(self):
        """Return a uniform variate in [0, 1)."""
        return 0.5 + self.shr3() * UNIFORM_SCALE

    def below(self, n):
        """Return a uniformly chosen integer in [0, n)."""
        return min(int(n * self.uniform()), n - 1)

    def normal(self):
        """Return a standard normal variate."""
        hz = self.shr3()
        iz = hz & 127
        if abs(hz) < self.kn[iz]:
            return hz * self.wn[iz]
        while True:
            x = hz * self.wn[iz]
            if iz == 0:
                # Base strip: sample the tail beyond R_NORMAL
                while True:
                    x = -math.log(self.uniform()) * R_NORMAL_INV
                    y = -math.log(self.uniform())
                    if y + y >= x * x:
                        break
                return R_NORMAL + x if hz > 0 else -R_NORMAL - x
            z = self.fn[iz] + self.uniform() * (self.fn[iz - 1] - self.fn[iz])
            if z < math.exp(-0.5 * x * x):
                return x
            hz = self.shr3()
            iz = hz & 127
            if abs(hz) < self.kn[iz]:
                return hz * self.wn[iz]

    def exponential(self):
        """Return an exponential variate with unit mean."""
        jz = self.shr3() & MASK32
        iz = jz & 255
        if jz < self.ke[iz]:
            return jz * self.we[iz]
        while True:
            if iz == 0:
                return R_EXPONENTIAL - math.log(self.uniform())
            x = jz * self.we[iz]
            y = self.fe[iz] + self.uniform() * (self.fe[iz - 1] - self.fe[iz])
            if y < math.exp(-x):
                return x
            jz = self.shr3() & MASK32
            iz = jz & 255
            if jz < self.ke[iz]:
                return jz * self.we[iz]


def spawn_streams(seed, count):
    """
    Derive independent worker streams from one master seed.

    Worker i is seeded with a 32-bit word drawn from the master stream, so
    the same (seed, count) pair always yields the same set of streams.

    Parameters
    ----------
    seed : int
        Master seed.
    count : int
        Number of worker streams.

    Returns
    -------
    list of ZigguratState
    """
    if count < 1:
        raise ValueError("count must be at least 1, got {}".format(count))
    master = ZigguratState(seed)
    return [ZigguratState(int(master.uniform() * M2)) for _ in range(count)]
