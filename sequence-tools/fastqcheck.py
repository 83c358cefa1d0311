#!/usr/bin/env python3
"""
fastqcheck.py

Read a FASTQ file (or standard input), validate every record and print base
composition and quality statistics, overall and per position.

Usage example
─────────────
    python3 fastqcheck.py lane1.fastq > lane1.fastqcheck
    zcat lane1.fastq.gz | python3 fastqcheck.py > lane1.fastqcheck

Any malformed record, unknown base or over-long read stops the run with an
error on stderr and exit status 1; no report is written in that case.

Requirements: numpy
"""

import argparse
import logging
import sys
from typing import BinaryIO, List, NoReturn, Optional

from fastq_reader import FastqError, FastqReader
from fastq_stats import MAX_LENGTH, FastqStats, RecordTooLongError, write_report


__version__ = "1.1.0"

logger = logging.getLogger(__name__)

PROGRESS_INTERVAL = 1_000_000  # reads


def check_stream(handle: BinaryIO, max_length: int = MAX_LENGTH) -> FastqStats:
    """Decode every record in handle and return the accumulated counters."""
    stats = FastqStats(max_length=max_length)
    reader = FastqReader(handle)
    for record in reader:
        stats.add_record(record)
        if stats.num_reads % PROGRESS_INTERVAL == 0:
            logger.info(f"Progress: {stats.num_reads:,} reads processed")
    return stats


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="fastqcheck",
        description="fastqcheck is a program that reads FASTQ files, generates "
                    "statistics,\nand can be used as a validator.",
        epilog="Example:\n  fastqcheck lane1.fastq\n\n"
               "Reads standard input when no file is given.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("fastq_file", nargs="?", default=None,
                        help="FASTQ file to check (default: standard input)")
    parser.add_argument("--version", action="version",
                        version=f"%(prog)s {__version__}")
    return parser


def _fail(parser: argparse.ArgumentParser, message: str) -> NoReturn:
    logger.error(message)
    parser.print_usage(sys.stderr)
    sys.exit(1)


def main(argv: Optional[List[str]] = None) -> None:
    """Command-line entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO,
                        format='%(asctime)s - %(levelname)s - %(message)s')

    if args.fastq_file is None:
        source = "<stdin>"
        handle = sys.stdin.buffer
        close_handle = False
    else:
        source = args.fastq_file
        close_handle = True
        try:
            handle = open(args.fastq_file, "rb")
        except OSError as e:
            _fail(parser, f"Failed to open fastq file {args.fastq_file}: {e.strerror}")

    logger.info(f"Checking FASTQ input: {source}")
    try:
        stats = check_stream(handle)
    except RecordTooLongError as e:
        _fail(parser, f"{e}; rerun with a larger MAX_LENGTH")
    except FastqError as e:
        _fail(parser, f"Invalid FASTQ record in {source}: {e}")
    except OSError as e:
        _fail(parser, f"Error reading {source}: {e}")
    finally:
        if close_handle:
            handle.close()

    write_report(stats, sys.stdout)
    logger.info(f"Finished {source}: {stats.num_reads:,} reads, "
                f"{stats.total_bases:,} bases")


if __name__ == "__main__":
    main()
