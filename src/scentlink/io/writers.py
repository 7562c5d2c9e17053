"""
Tab-delimited result table output.

Rows are streamed to disk as they are produced so that long runs can be
monitored and resumed. The header is written only when the file is new or
empty; appending to an existing table adds rows under its header.

Engineering Design:
    - One ``write`` = one complete line, flushed, under a lock, so concurrent
      producers never interleave partial rows
    - Missing statistics are written as ``NA``
    - Floats are written at ``repr`` precision and read back with
      ``float_precision="round_trip"``, so values survive a round trip exactly

Examples:
    >>> from scentlink.io.writers import ResultSink, read_result_table
    >>>
    >>> with ResultSink("results.tsv") as sink:
    ...     for row in iter_association(dataset, pairs, config):
    ...         sink.write(row)
    >>> table = read_result_table("results.tsv")
"""

from __future__ import annotations

import logging
import math
import threading
from enum import Enum
from pathlib import Path

import pandas as pd

from scentlink.stats.association_types import RESULT_COLUMNS, ResultRow

__all__ = ['ResultSink', 'read_result_table', 'write_result_table', 'completed_pairs', 'NA']

logger = logging.getLogger(__name__)

NA = "NA"
SEP = "\t"


def _format_value(value) -> str:
    if value is None:
        return NA
    if isinstance(value, Enum):
        return str(value.value)
    if isinstance(value, float):
        return NA if math.isnan(value) else repr(float(value))
    return str(value)


class ResultSink:
    """
    Append-only, thread-safe writer for result rows.

    Attributes:
        path: Output file
        columns: Column order (RESULT_COLUMNS by default)
    """

    def __init__(self, path: str | Path, columns: list[str] | None = None):
        self.path = Path(path)
        self.columns = list(columns) if columns is not None else list(RESULT_COLUMNS)
        self._lock = threading.Lock()
        self._handle = None
        self.n_written = 0

    def _ensure_open(self) -> None:
        if self._handle is not None:
            return
        write_header = not self.path.exists() or self.path.stat().st_size == 0
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._handle = open(self.path, "a", encoding="utf-8", newline="")
        if write_header:
            self._handle.write(SEP.join(self.columns) + "\n")
            self._handle.flush()
        else:
            logger.debug(f"Appending to existing result table {self.path}")

    def write(self, row: ResultRow | dict) -> None:
        """
        Append one row.

        Raises:
            OSError: If the file cannot be opened or written
        """
        record = row.to_dict() if isinstance(row, ResultRow) else row
        line = SEP.join(_format_value(record.get(col)) for col in self.columns) + "\n"
        with self._lock:
            self._ensure_open()
            self._handle.write(line)
            self._handle.flush()
            self.n_written += 1

    def close(self) -> None:
        with self._lock:
            if self._handle is not None:
                self._handle.close()
                self._handle = None

    def __enter__(self) -> ResultSink:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"ResultSink(path='{self.path}', n_written={self.n_written})"


def read_result_table(path: str | Path) -> pd.DataFrame:
    """Parse a result table written by ResultSink or write_result_table."""
    frame = pd.read_csv(
        path,
        sep=SEP,
        na_values=[NA],
        keep_default_na=False,
        float_precision="round_trip",
        dtype={"gene": str, "peak": str, "status": str},
    )
    if "resamples" in frame.columns:
        frame["resamples"] = frame["resamples"].astype("Int64")
    return frame


def write_result_table(frame: pd.DataFrame, path: str | Path) -> None:
    """Write a whole result table (header included), replacing ``path``."""
    frame.to_csv(path, sep=SEP, index=False, na_rep=NA)


def completed_pairs(path: str | Path) -> set[tuple[str, str]]:
    """(gene, peak) pairs already present in a result table; empty if absent."""
    path = Path(path)
    if not path.exists() or path.stat().st_size == 0:
        return set()
    frame = read_result_table(path)
    return set(zip(frame["gene"], frame["peak"]))
