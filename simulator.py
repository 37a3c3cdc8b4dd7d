import enum
import logging
from collections import namedtuple
from dataclasses import dataclass

import numpy as np
import numba

logger = logging.getLogger(__name__)

CacheLine = np.dtype([('valid', np.bool_), ('tag', np.uint64), ('recency', np.int64)])
TInput = np.dtype([('kind', np.uint8), ('addr', np.uint64), ('size', np.int64)])
Outcome = np.dtype([('hit', np.bool_), ('miss', np.bool_), ('eviction', np.bool_)])

AccessOutcome = namedtuple('AccessOutcome', 'hit miss eviction')


class AccessKind(enum.IntEnum):
    INSTRUCTION_FETCH = 0
    DATA_LOAD = 1
    DATA_STORE = 2
    DATA_MODIFY = 3
    INVALID = 4


# plain ints so the jitted loop sees compile-time constants
_MODIFY = int(AccessKind.DATA_MODIFY)
_INVALID = int(AccessKind.INVALID)


class CacheSimError(Exception):
    pass


class ConfigError(CacheSimError):
    pass


class InvalidAccessFlag(CacheSimError):
    def __init__(self, index, partial):
        super().__init__(f"Invalid or missing flag encountered at record {index + 1}.")
        self.index = index
        self.partial = partial


@dataclass(frozen=True)
class CacheConfig:
    s: int
    E: int
    b: int
    S: int
    B: int


def make_config(s: int, E: int, b: int) -> CacheConfig:
    if s <= 0 or E <= 0 or b <= 0:
        raise ConfigError(f"s, E and b must all be positive, got s={s} E={E} b={b}.")
    if s + b >= 64:
        raise ConfigError(f"s + b must be below 64 for 64-bit addresses, got {s + b}.")
    return CacheConfig(s=s, E=E, b=b, S=1 << s, B=1 << b)


@numba.njit(inline='always')
def decompose(addr, s, b):
    """Split a uint64 address into (set index, tag); the block offset is dropped."""
    a = np.uint64(addr)
    setidx = (a >> np.uint64(b)) & np.uint64((1 << s) - 1)
    tag = a >> np.uint64(s + b)
    return np.int64(setidx), tag


@numba.njit(inline='always')
def _lru_lineno(lines):
    # strict < keeps the lowest index on ties
    victim = 0
    oldest = lines[0]['recency']
    for lineno in range(1, lines.shape[0]):
        if lines[lineno]['recency'] < oldest:
            oldest = lines[lineno]['recency']
            victim = lineno
    return victim


@numba.njit(inline='always')
def lookup(cache, s, b, addr, clock):
    """
    Look up `addr` in `cache` (an S x E array of CacheLine) and update it.
    `clock` is a one-element int64 array holding the logical access counter.
    Returns (hit, miss, eviction).
    """
    setidx, tag = decompose(addr, s, b)
    clock[0] += 1
    now = clock[0]
    lines = cache[setidx]
    for lineno in range(lines.shape[0]):
        if lines[lineno]['valid'] and lines[lineno]['tag'] == tag:
            lines[lineno]['recency'] = now
            return True, False, False
        elif not lines[lineno]['valid']:
            lines[lineno]['valid'] = True
            lines[lineno]['tag'] = tag
            lines[lineno]['recency'] = now
            return False, True, False

    # set is full
    lineno = _lru_lineno(lines)
    lines[lineno]['tag'] = tag
    lines[lineno]['recency'] = now
    return False, True, True


@numba.njit(inline='always')
def combine(first, second):
    return (first[0] or second[0], first[1] or second[1], first[2] or second[2])


@numba.njit(inline='always')
def record(totals, outcome):
    if outcome[0]:
        totals[0] += 1
    if outcome[1]:
        totals[1] += 1
    if outcome[2]:
        totals[2] += 1


class CacheStore:
    """The S x E lines of one cache plus the logical clock that orders them."""

    def __init__(self, config: CacheConfig):
        self.config = config
        try:
            self.lines = np.zeros((config.S, config.E), dtype=CacheLine)
        except (MemoryError, ValueError) as e:
            raise ConfigError(f"Cannot allocate {config.S} sets of {config.E} lines: {e}") from e
        self.clock = np.zeros((1,), dtype=np.int64)

    def lookup(self, addr) -> AccessOutcome:
        # a bare Python int would be typed int64 and overflow above 2**63
        hit, miss, eviction = lookup(self.lines, self.config.s, self.config.b, np.uint64(addr), self.clock)
        return AccessOutcome(bool(hit), bool(miss), bool(eviction))


@dataclass
class RetData:
    hits: int
    misses: int
    evictions: int
    records: np.ndarray
    outcomes: np.ndarray

    def summary(self):
        return f"hits:{self.hits} misses:{self.misses} evictions:{self.evictions}"


def make_sim(debug: bool = False):
    if not debug:
        @numba.njit(inline='always')
        def log(args):
            pass
    else:
        def log(args):
            logger.debug(' '.join(str(arg) for arg in args))

    def sim(s: int, b: int, cache, clock, totals, records, outcomes):
        for idx in range(records.shape[0]):
            kind = records[idx]['kind']
            addr = records[idx]['addr']
            if kind >= _INVALID:
                return idx
            result = lookup(cache, s, b, addr, clock)
            record(totals, result)
            if kind == _MODIFY:  # load then store to the same line
                second = lookup(cache, s, b, addr, clock)
                record(totals, second)
                result = combine(result, second)
            outcomes[idx]['hit'] = result[0]
            outcomes[idx]['miss'] = result[1]
            outcomes[idx]['eviction'] = result[2]
            log(('record=', idx, 'kind=', kind, 'addr=', addr,
                 'hit=', result[0], 'miss=', result[1], 'eviction=', result[2]))
        return -1

    if not debug:
        sim = numba.njit(nogil=True)(sim)

    def run(config: CacheConfig, records: np.ndarray) -> RetData:
        store = CacheStore(config)
        totals = np.zeros((3,), dtype=np.int64)
        outcomes = np.zeros(records.shape, dtype=Outcome)
        stopped = sim(config.s, config.b, store.lines, store.clock, totals, records, outcomes)
        if stopped >= 0:
            partial = RetData(int(totals[0]), int(totals[1]), int(totals[2]),
                              records[:stopped], outcomes[:stopped])
            raise InvalidAccessFlag(int(stopped), partial)
        return RetData(int(totals[0]), int(totals[1]), int(totals[2]), records, outcomes)

    return run
