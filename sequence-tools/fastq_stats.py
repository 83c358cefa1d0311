"""
fastq_stats.py

Running base-composition and quality counters for a FASTQ stream, and the
fixed-layout fastqcheck report built from them.

Report layout
─────────────
    <n> sequences, <total> total length, <avg> average, <max> max
    Standard deviations at 0.25:  total  x.xx %, per base  x.xx %
                A    C    G    T    N    0   1 ... AQ
    Total    25.0 25.0 25.0 25.0  0.0    0   0 ... 30.0
    base  1  ...

Base columns are percentages of the bases at that position. Quality columns
are thousandths of the bases carrying that score, rounded half away from
zero. AQ is the Phred score of the mean error probability.
"""

import logging
import math
from typing import Iterator, List, TextIO, Tuple

import numpy as np

from fastq_reader import NUM_BASES, NUM_QUALITIES, FastqError, Record


logger = logging.getLogger(__name__)

MAX_LENGTH = 100000

# initial number of per-position rows; grows by doubling
_INITIAL_ROWS = 256


class RecordTooLongError(FastqError):
    """A read is longer than the per-position counters can hold."""

    def __init__(self, read_id: str, length: int, max_length: int):
        self.length = length
        self.max_length = max_length
        super().__init__(f"length = {length} longer than MAX_LENGTH = {max_length}",
                         read_id=read_id)

    def _describe(self) -> str:
        return f"read {self.read_id} {self.message}"


# ─────────────────────────────────────────────────────────────────────────────
# Counters
# ─────────────────────────────────────────────────────────────────────────────

class FastqStats:
    """
    Per-base and per-position counters folded from decoded records.

    Per-position arrays are allocated lazily and grow up to max_length rows.
    A read longer than max_length raises RecordTooLongError before any of
    its bases are counted.
    """

    def __init__(self, max_length: int = MAX_LENGTH):
        if max_length < 0:
            raise ValueError(f"max_length must be non-negative, got {max_length}")
        self.max_length = max_length

        self.num_reads = 0
        self.total_bases = 0
        self.max_length_seen = 0
        self.max_quality_seen = 0

        self.base_counts = np.zeros(NUM_BASES, dtype=np.int64)
        self.quality_counts = np.zeros(NUM_QUALITIES, dtype=np.int64)
        self.position_base_counts = np.zeros((0, NUM_BASES), dtype=np.int64)
        self.position_quality_counts = np.zeros((0, NUM_QUALITIES), dtype=np.int64)
        # indexed by read length, so one longer than the position arrays
        self.reads_by_length = np.zeros(1, dtype=np.int64)

    @property
    def capacity(self) -> int:
        return len(self.position_base_counts)

    def _grow(self, length: int) -> None:
        rows = self.capacity
        if length <= rows:
            return
        new_rows = min(max(length, 2 * rows, _INITIAL_ROWS), self.max_length)
        extra = new_rows - rows
        self.position_base_counts = np.vstack(
            [self.position_base_counts, np.zeros((extra, NUM_BASES), dtype=np.int64)])
        self.position_quality_counts = np.vstack(
            [self.position_quality_counts, np.zeros((extra, NUM_QUALITIES), dtype=np.int64)])
        self.reads_by_length = np.concatenate(
            [self.reads_by_length, np.zeros(extra, dtype=np.int64)])
        logger.debug(f"Per-position counters grown from {rows} to {new_rows} rows")

    def add_record(self, record: Record) -> None:
        length = record.length
        if length > self.max_length:
            raise RecordTooLongError(record.name, length, self.max_length)
        self._grow(length)

        if length:
            positions = np.arange(length)
            # each (position, value) pair occurs once per read
            self.position_base_counts[positions, record.bases] += 1
            self.position_quality_counts[positions, record.quals] += 1
            self.base_counts += np.bincount(record.bases, minlength=NUM_BASES)
            self.quality_counts += np.bincount(record.quals, minlength=NUM_QUALITIES)
            self.max_quality_seen = max(self.max_quality_seen, int(record.quals.max()))

        self.num_reads += 1
        self.total_bases += length
        self.reads_by_length[length] += 1
        self.max_length_seen = max(self.max_length_seen, length)

    def position_rows(self) -> Iterator[Tuple[int, int, np.ndarray, np.ndarray]]:
        """
        Yield (position, reads_covering, base_counts, quality_counts) for
        positions 0 .. max_length_seen - 1.

        Reads of length exactly i have no base at position i, so they are
        dropped from the denominator before position i is reported.
        """
        remaining = self.num_reads
        for i in range(self.max_length_seen):
            remaining -= int(self.reads_by_length[i])
            yield i, remaining, self.position_base_counts[i], self.position_quality_counts[i]

    def average_length(self) -> float:
        """Mean read length, computed in single precision."""
        return float(np.float32(self.total_bases) / np.float32(self.num_reads))


# ─────────────────────────────────────────────────────────────────────────────
# Report arithmetic
# ─────────────────────────────────────────────────────────────────────────────

def round_half_away(value: float) -> int:
    """Nearest integer, ties rounded away from zero."""
    whole = math.floor(abs(value))
    if abs(value) - whole >= 0.5:
        whole += 1
    return int(math.copysign(whole, value))


def average_quality(quality_counts: np.ndarray, denominator: int, max_quality: int) -> float:
    """Phred score of the mean error probability over the counted scores."""
    error_rate = 0.0
    for q in range(max_quality + 1):
        error_rate += 10 ** (q / -10.0) * int(quality_counts[q])
    return -10 * math.log(error_rate / denominator) / math.log(10)


def _format_row(label: str, base_counts, quality_counts, denominator: int,
                max_quality: int) -> str:
    if denominator <= 0:
        raise ValueError(f"{label.strip()}: no reads cover this row")
    parts = [label, "  "]
    parts.append(" ".join(f"{100 * (int(count) / denominator):4.1f}"
                          for count in base_counts))
    parts.append(" ")
    for q in range(max_quality + 1):
        parts.append(f" {round_half_away(1000 * (int(quality_counts[q]) / denominator)):3d}")
    parts.append(f" {average_quality(quality_counts, denominator, max_quality):4.1f}")
    return "".join(parts)


def render_report(stats: FastqStats) -> str:
    """Build the full report text, newline terminated."""
    lines: List[str] = []

    summary = f"{stats.num_reads} sequences, {stats.total_bases} total length"
    if stats.num_reads:
        summary += f", {stats.average_length():.2f} average, {stats.max_length_seen} max"
    lines.append(summary)

    total = stats.total_bases
    if total:
        nseq = stats.num_reads
        lines.append(
            "Standard deviations at 0.25:  total "
            f"{100 * (math.sqrt(0.25 * total) / total):5.2f} %, "
            f"per base {100 * (math.sqrt(0.25 * nseq) / nseq):5.2f} %")

        max_quality = stats.max_quality_seen
        header = "            A    C    G    T    N "
        header += "".join(f" {q:3d}" for q in range(max_quality + 1))
        lines.append(header + " AQ")

        lines.append(_format_row("Total  ", stats.base_counts, stats.quality_counts,
                                 total, max_quality))
        for i, remaining, base_row, quality_row in stats.position_rows():
            lines.append(_format_row(f"base {i + 1:2d}", base_row, quality_row,
                                     remaining, max_quality))

    return "\n".join(lines) + "\n"


def write_report(stats: FastqStats, out: TextIO) -> None:
    out.write(render_report(stats))
