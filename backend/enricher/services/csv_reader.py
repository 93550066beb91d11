"""Lazy, memory-aware CSV reading for staging and blacklist files."""

from __future__ import annotations

import csv
import logging
from collections.abc import Iterable, Iterator, Sequence
from pathlib import Path

from enricher.utils.column_mapping import DEFAULT_HEADERS
from enricher.utils.memory_monitor import (
    check_memory_exceeded,
    check_memory_pressure,
    force_gc,
    log_memory_status,
)

logger = logging.getLogger(__name__)

REFERENCE_HEADER_KEYWORDS = ("HEXACLE", "NUMERO", "VOIE", "VILLE")
FILE_ENCODING = "utf-8-sig"

# Chunks shrink under memory pressure but never below this floor
MIN_CHUNK_SIZE = 100
MEMORY_CHECK_INTERVAL = 100


def detect_headers(file_path: Path, keywords: Sequence[str] = REFERENCE_HEADER_KEYWORDS) -> bool:
    """Guess whether the first line is a header row by looking for known column names."""
    try:
        with file_path.open("r", encoding=FILE_ENCODING, newline="") as handle:
            first_line = handle.readline()
    except FileNotFoundError:
        raise ValueError(f"CSV file not found: {file_path}")
    except UnicodeDecodeError as e:
        raise ValueError(f"File encoding error: {str(e)}") from e

    upper = first_line.upper()
    return any(keyword.upper() in upper for keyword in keywords)


def iter_csv_rows(
    file_path: Path,
    *,
    delimiter: str = ";",
    has_headers: bool | None = None,
    fallback_headers: Sequence[str] = DEFAULT_HEADERS,
    header_keywords: Sequence[str] = REFERENCE_HEADER_KEYWORDS,
) -> Iterator[dict]:
    """Yield each data row as a dict, pulling one line at a time.

    Headerless files are keyed positionally by ``fallback_headers``. When
    ``has_headers`` is None it is detected from the first line.
    """
    if has_headers is None:
        has_headers = detect_headers(file_path, header_keywords)

    try:
        with file_path.open("r", encoding=FILE_ENCODING, newline="") as handle:
            if has_headers:
                reader = csv.DictReader(handle, delimiter=delimiter)
                if not reader.fieldnames:
                    raise ValueError("CSV file appears to be empty or invalid")
            else:
                reader = csv.DictReader(handle, fieldnames=list(fallback_headers), delimiter=delimiter)

            for row in reader:
                # Blank lines come back as rows of None
                if not any(value not in (None, "") for value in row.values()):
                    continue
                yield row
    except FileNotFoundError:
        raise ValueError(f"CSV file not found: {file_path}")
    except PermissionError:
        raise ValueError(f"Permission denied reading file: {file_path}")
    except UnicodeDecodeError as e:
        raise ValueError(f"File encoding error: {str(e)}") from e
    except csv.Error as e:
        raise ValueError(f"CSV parsing error: {str(e)}") from e


def adapt_chunk_size(chunk_size: int) -> int:
    """Shrink the batch size when the worker approaches its memory budget."""
    is_pressure, current, limit = check_memory_pressure()
    if not is_pressure:
        return chunk_size
    usage_ratio = current / limit if limit > 0 else 0
    if usage_ratio > 0.9:
        logger.warning("High memory pressure (>90%), using minimum chunk size")
        return min(chunk_size, MIN_CHUNK_SIZE)
    return max(MIN_CHUNK_SIZE, min(chunk_size, chunk_size // 2))


def iter_chunks(rows: Iterable[dict], chunk_size: int) -> Iterator[list[dict]]:
    """Accumulate rows into batches while guarding process memory.

    Raises MemoryError when the hard limit is crossed.
    """
    batch: list[dict] = []
    chunks_yielded = 0

    for row_num, row in enumerate(rows, start=1):
        if row_num % MEMORY_CHECK_INTERVAL == 0:
            is_exceeded, _, _ = check_memory_exceeded()
            if is_exceeded:
                logger.error("Memory limit exceeded during CSV processing, aborting")
                raise MemoryError("Memory limit exceeded, cannot continue processing")
            adaptive_size = adapt_chunk_size(chunk_size)
            if adaptive_size < chunk_size:
                chunk_size = adaptive_size
                logger.info(f"Reduced chunk size to {chunk_size} due to memory pressure")

        batch.append(row)
        if len(batch) >= chunk_size:
            yield batch
            chunks_yielded += 1
            batch = []
            if chunks_yielded % 10 == 0:
                force_gc()
                log_memory_status(f"After {chunks_yielded} chunks")

    if batch:
        yield batch


def count_rows(
    file_path: Path,
    *,
    delimiter: str = ";",
    has_headers: bool | None = None,
    header_keywords: Sequence[str] = REFERENCE_HEADER_KEYWORDS,
) -> int:
    """Return the number of non-blank data rows (excluding headers)."""
    return sum(
        1
        for _ in iter_csv_rows(
            file_path,
            delimiter=delimiter,
            has_headers=has_headers,
            header_keywords=header_keywords,
        )
    )
