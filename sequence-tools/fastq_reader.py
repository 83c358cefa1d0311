"""
fastq_reader.py

Streaming FASTQ decoder used by fastqcheck.

Each call to FastqReader.read_record() consumes exactly one four-line record
(@id, sequence, +separator, quality) from a binary handle and returns a Record
whose sequence has been translated to base codes 0-4 (A, C, G, T, N) and whose
quality string has been converted to Phred scores (Sanger offset 33).

Lowercase a/c/g/t/n are accepted and counted as their uppercase bases.
Any other sequence character, a sequence/quality length mismatch or a broken
record layout raises a FastqFormatError subclass; nothing is skipped.
"""

import logging
from dataclasses import dataclass
from typing import BinaryIO, Iterator, Optional

import numpy as np


logger = logging.getLogger(__name__)

BASES = "ACGTN"
NUM_BASES = len(BASES)
NUM_QUALITIES = 256
PHRED_OFFSET = 33

_INVALID = 255

# byte value -> base code; _INVALID for anything outside the alphabet
_BASE_LOOKUP = np.full(256, _INVALID, dtype=np.uint8)
for _code, _base in enumerate(BASES):
    _BASE_LOOKUP[ord(_base)] = _code
    _BASE_LOOKUP[ord(_base.lower())] = _code


# ─────────────────────────────────────────────────────────────────────────────
# Errors
# ─────────────────────────────────────────────────────────────────────────────

class FastqError(ValueError):
    """Base class for every problem found in FASTQ input."""

    def __init__(self, message: str, read_id: Optional[str] = None,
                 line_number: Optional[int] = None):
        self.message = message
        self.read_id = read_id
        self.line_number = line_number
        super().__init__(self._describe())

    def _describe(self) -> str:
        where = []
        if self.read_id is not None:
            where.append(f"read {self.read_id}")
        if self.line_number is not None:
            where.append(f"line {self.line_number}")
        if where:
            return f"{', '.join(where)}: {self.message}"
        return self.message


class FastqFormatError(FastqError):
    """A record could not be decoded."""


class InvalidSymbolError(FastqFormatError):
    """Sequence character outside A, C, G, T, N."""


class LengthMismatchError(FastqFormatError):
    """Sequence and quality lines differ in length."""


class MalformedRecordError(FastqFormatError):
    """Record does not follow the @id / seq / + / qual layout."""


# ─────────────────────────────────────────────────────────────────────────────
# Records
# ─────────────────────────────────────────────────────────────────────────────

@dataclass(frozen=True, eq=False)
class Record:
    """One decoded read. bases and quals are read-only uint8 arrays."""
    name: str
    bases: np.ndarray
    quals: np.ndarray

    @property
    def length(self) -> int:
        return len(self.bases)

    def sequence(self) -> str:
        """Sequence text in uppercase."""
        return "".join(BASES[code] for code in self.bases)

    def __len__(self):
        return self.length


def _strip_eol(line: bytes) -> bytes:
    return line.rstrip(b"\r\n")


# ─────────────────────────────────────────────────────────────────────────────
# Reader
# ─────────────────────────────────────────────────────────────────────────────

class FastqReader:
    """Decode FASTQ records one at a time from a binary handle."""

    def __init__(self, handle: BinaryIO):
        self.handle = handle
        self.line_number = 0
        self.records_read = 0

    def _readline(self) -> bytes:
        line = self.handle.readline()
        if line:
            self.line_number += 1
        return line

    def read_record(self) -> Optional[Record]:
        """
        Return the next Record, or None once the stream is exhausted.

        Blank lines in front of a header are skipped so that trailing newlines
        at the end of a file do not count as a truncated record.
        """
        header = self._readline()
        while header and not header.strip():
            header = self._readline()
        if not header:
            return None

        header_line = self.line_number
        if not header.startswith(b"@"):
            raise MalformedRecordError(
                f"expected '@' at start of record, found {_preview(header)}",
                line_number=header_line)
        fields = header[1:].split()
        name = fields[0].decode("ascii", errors="replace") if fields else ""

        seq = self._readline()
        if not seq:
            raise MalformedRecordError("truncated record, missing sequence line",
                                       read_id=name, line_number=header_line)
        seq = _strip_eol(seq)

        plus = self._readline()
        if not plus:
            raise MalformedRecordError("truncated record, missing '+' line",
                                       read_id=name, line_number=header_line)
        if not plus.startswith(b"+"):
            raise MalformedRecordError(
                f"expected '+' separator, found {_preview(plus)}",
                read_id=name, line_number=self.line_number)

        qual = self._readline()
        if not qual:
            raise MalformedRecordError("truncated record, missing quality line",
                                       read_id=name, line_number=header_line)
        qual = _strip_eol(qual)

        bases = _BASE_LOOKUP[np.frombuffer(seq, dtype=np.uint8)]
        bad = np.flatnonzero(bases == _INVALID)
        if bad.size:
            pos = int(bad[0])
            raise InvalidSymbolError(
                f"invalid base {chr(seq[pos])!r} at position {pos + 1}",
                read_id=name, line_number=header_line + 1)

        if len(seq) != len(qual):
            raise LengthMismatchError(
                f"sequence length {len(seq)} != quality length {len(qual)}",
                read_id=name, line_number=header_line)

        raw_quals = np.frombuffer(qual, dtype=np.uint8)
        low = np.flatnonzero(raw_quals < PHRED_OFFSET)
        if low.size:
            pos = int(low[0])
            raise MalformedRecordError(
                f"quality byte {qual[pos]} at position {pos + 1} "
                f"is below the Phred offset {PHRED_OFFSET}",
                read_id=name, line_number=self.line_number)
        quals = raw_quals - np.uint8(PHRED_OFFSET)

        bases.setflags(write=False)
        quals.setflags(write=False)
        self.records_read += 1
        logger.debug(f"Decoded {name} ({len(bases)} bp)")
        return Record(name=name, bases=bases, quals=quals)

    def __iter__(self) -> Iterator[Record]:
        while True:
            record = self.read_record()
            if record is None:
                return
            yield record


def iter_fastq(handle: BinaryIO) -> Iterator[Record]:
    """Yield decoded records from an open binary handle."""
    return iter(FastqReader(handle))


def _preview(line: bytes, width: int = 40) -> str:
    text = _strip_eol(line).decode("ascii", errors="replace")
    return repr(text[:width] + ("..." if len(text) > width else ""))
