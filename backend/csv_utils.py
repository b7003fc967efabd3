"""
CSV row transformation: append a has_email column to every row of a file.

Rows are streamed one at a time from source to destination, so the whole
file is never held in memory. Blank rows are dropped. The first kept row is
treated as the header and gets the literal column name; every later row gets
"true" or "false" depending on whether any of its fields looks like an email.
"""

import csv
import logging
from pathlib import Path
from typing import TextIO

from config import Config
from email_detection import row_has_likely_email

logger = logging.getLogger(__name__)

# Name of the appended detection column
HAS_EMAIL_COLUMN = "has_email"

# Output uses bare "\n" line endings regardless of platform
OUTPUT_LINE_TERMINATOR = "\n"

QUOTE = '"'
DELIMITER = ","

# A single cell can be as large as the whole upload
csv.field_size_limit(Config.MAX_CONTENT_LENGTH)


class TransformError(Exception):
    """Transformation failed; the destination must not be served."""


class ReadError(TransformError):
    """Source could not be opened, decoded or parsed."""


class WriteError(TransformError):
    """Destination could not be created or written."""


def is_blank_row(row: list[str]) -> bool:
    """
    Check whether a parsed row carries no data.

    A row is blank if it has no fields at all, or a single field that is
    empty after trimming whitespace.
    """
    if not row:
        return True
    return len(row) == 1 and not row[0].strip()


def format_flag(value: bool) -> str:
    """Render a boolean the way it appears in the output file."""
    return "true" if value else "false"


def has_bare_quote(raw: str) -> bool:
    """
    Check raw record text for a quote inside an unquoted field.

    The csv module keeps such quotes as literal characters; they are
    rejected here so that `John "Jr" Doe` is a parse error rather than data.
    Quoted fields, including "" escapes, are skipped over.
    """
    field_start = True
    in_quotes = False
    after_quote = False

    for char in raw:
        if in_quotes:
            if char == QUOTE:
                in_quotes = False
                after_quote = True
            continue
        if after_quote:
            after_quote = False
            if char == QUOTE:
                in_quotes = True
                continue
        if char in (DELIMITER, "\r", "\n"):
            field_start = True
        elif char == QUOTE:
            if not field_start:
                return True
            in_quotes = True
            field_start = False
        else:
            field_start = False

    return False


class _RecordingLines:
    """Line iterator that keeps the raw text consumed since the last take()."""

    def __init__(self, source: TextIO):
        self._lines = iter(source)
        self._consumed: list[str] = []

    def __iter__(self):
        return self

    def __next__(self) -> str:
        line = next(self._lines)
        self._consumed.append(line)
        return line

    def take(self) -> str:
        raw = "".join(self._consumed)
        self._consumed.clear()
        return raw


def transform_rows(source: TextIO, destination: TextIO) -> int:
    """
    Stream CSV rows from source to destination, appending the has_email column.

    Args:
        source: Readable text stream (opened with newline="")
        destination: Writable text stream (opened with newline="")

    Returns:
        Number of rows written, header included

    Raises:
        ReadError: a row could not be parsed, has a quote inside an
            unquoted field, or its field count differs from the header's
        WriteError: a row could not be written
    """
    lines = _RecordingLines(source)
    reader = csv.reader(lines, strict=True)
    writer = csv.writer(destination, lineterminator=OUTPUT_LINE_TERMINATOR)

    written = 0
    header_width = 0

    while True:
        try:
            row = next(reader)
        except StopIteration:
            break
        except (csv.Error, UnicodeDecodeError, OSError) as e:
            raise ReadError(f"failed to read CSV line {reader.line_num}: {e}") from e

        if has_bare_quote(lines.take()):
            raise ReadError(
                f"failed to read CSV line {reader.line_num}: bare \" in non-quoted field"
            )

        if is_blank_row(row):
            continue

        if written == 0:
            header_width = len(row)
            row.append(HAS_EMAIL_COLUMN)
        else:
            if len(row) != header_width:
                raise ReadError(
                    f"failed to read CSV line {reader.line_num}: wrong number of fields "
                    f"(expected {header_width}, got {len(row)})"
                )
            row.append(format_flag(row_has_likely_email(row)))

        try:
            writer.writerow(row)
        except (csv.Error, OSError) as e:
            raise WriteError(f"failed to write CSV row {written}: {e}") from e

        written += 1

    return written


def transform_file(input_path: str | Path, output_path: str | Path) -> int:
    """
    Transform the CSV at input_path into output_path.

    The input is decoded as UTF-8 (a leading BOM is dropped); the output is
    written as UTF-8. An empty input produces an empty output.

    Returns:
        Number of rows written, header included

    Raises:
        ReadError: input missing, unreadable or malformed
        WriteError: output could not be created or written
    """
    try:
        source = open(input_path, encoding="utf-8-sig", newline="")
    except OSError as e:
        raise ReadError(f"failed to open input file: {e}") from e

    with source:
        try:
            destination = open(output_path, "w", encoding="utf-8", newline="")
        except OSError as e:
            raise WriteError(f"failed to create output file: {e}") from e

        with destination:
            rows = transform_rows(source, destination)
            try:
                destination.flush()
            except OSError as e:
                raise WriteError(f"failed to flush output file: {e}") from e

    logger.debug(f"Transformed {input_path} -> {output_path} ({rows} rows)")
    return rows
