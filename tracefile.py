import re
from collections import namedtuple

import numpy as np

from simulator import AccessKind, CacheSimError, TInput

AccessRecord = namedtuple('AccessRecord', 'kind address size')

FLAGS = {
    'I': AccessKind.INSTRUCTION_FETCH,
    'L': AccessKind.DATA_LOAD,
    'S': AccessKind.DATA_STORE,
    'M': AccessKind.DATA_MODIFY,
}
LETTERS = {kind: flag for flag, kind in FLAGS.items()}

_FIELDS = re.compile(r'\s*((?:0[xX])?[0-9a-fA-F]+)\s*,\s*([+-]?[0-9]+)')
_ADDR_LIMIT = 1 << 64
_SIZE_LIMIT = 1 << 63


class ParseError(CacheSimError):
    def __init__(self, line, lineno=None):
        where = f"line {lineno}" if lineno is not None else "trace line"
        super().__init__(f"Malformed address or size on {where}: {line.rstrip()!r}")
        self.line = line
        self.lineno = lineno


class FileError(CacheSimError):
    pass


def _handle_line(line):
    # valgrind indents data accesses by one space
    if line[:1].isspace():
        line = line[1:]
    if not line:
        return int(AccessKind.INVALID), 0, 0
    kind = FLAGS.get(line[0], AccessKind.INVALID)
    if kind == AccessKind.INVALID:
        return int(kind), 0, 0
    m = _FIELDS.match(line, 1)
    if m is None:
        raise ParseError(line)
    addr = int(m.group(1), base=16)
    if addr >= _ADDR_LIMIT:
        raise ParseError(line)
    size = int(m.group(2))
    if not -_SIZE_LIMIT <= size < _SIZE_LIMIT:
        raise ParseError(line)
    return int(kind), addr, size


def parse_line(line) -> AccessRecord:
    kind, addr, size = _handle_line(line)
    return AccessRecord(AccessKind(kind), addr, size)


def stream_to_input(stream):
    rows = []
    for lineno, line in enumerate(stream, start=1):
        if not line.strip():
            continue
        try:
            rows.append(_handle_line(line))
        except ParseError as e:
            raise ParseError(e.line, lineno) from None
    return np.array(rows, dtype=TInput)


def file_to_input(fname):
    try:
        with open(fname, encoding='utf-8') as f:
            return stream_to_input(f)
    except OSError as e:
        raise FileError(f"Unable to open trace file {fname!r}: {e.strerror}") from e
    except UnicodeDecodeError as e:
        raise FileError(f"Trace file {fname!r} is not a text trace: {e.reason} at byte {e.start}") from e
