"""
Streaming CSV reader for uploads of any size.

The file is read in chunks with aiofiles. Physical lines are grouped into records by
tracking whether a quoted field is open, so quoted fields may contain delimiters, escaped
quotes and newlines. A quote anywhere but the start of a field is a literal character.
Each block of complete records is parsed with the stdlib ``csv`` module.
"""

import codecs
import csv
import io
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterator, Callable, List, Optional, Tuple, Union

import aiofiles

from csvhub.exceptions import ParseError
from csvhub.utils.logging import get_logger

logger = get_logger("csv_stream")

DEFAULT_CHUNK_SIZE = 1024 * 1024
DEFAULT_MAX_RECORD_BYTES = 16 * 1024 * 1024

ErrorHandler = Callable[[ParseError], None]


@dataclass
class CSVRecord:
    """One logical CSV record."""
    fields: List[str]
    line_number: int  # first physical line of the record, 1-based
    bytes_read: int  # bytes consumed from the file when the record was emitted


def _inside_quotes(line: str, in_quotes: bool) -> bool:
    """
    Whether a quoted field is still open at the end of ``line``.

    A quote opens a quoted field only at the start of a field; elsewhere it is a literal
    character, as in ``csv.reader``. Inside a quoted field ``""`` is an escaped quote.
    """
    if '"' not in line:
        return in_quotes

    field_start = not in_quotes
    i = 0
    length = len(line)
    while i < length:
        ch = line[i]
        if in_quotes:
            if ch == '"':
                if i + 1 < length and line[i + 1] == '"':
                    i += 2
                    continue
                in_quotes = False
        elif ch == '"' and field_start:
            in_quotes = True
        field_start = not in_quotes and ch == ","
        i += 1
    return in_quotes


def _is_blank(fields: List[str]) -> bool:
    return not fields or (len(fields) == 1 and not fields[0].strip())


def _report(on_error: Optional[ErrorHandler], error: ParseError) -> None:
    if on_error is not None:
        on_error(error)
    else:
        logger.warning(f"[CSVStream] | Skipping malformed record: {error.message} | details={error.details}")


def _parse_block(
    block: List[Tuple[int, str]],
    bytes_read: int,
    on_error: Optional[ErrorHandler],
) -> List[CSVRecord]:
    """Parse complete records; on a csv error, retry record by record to isolate the bad one."""
    try:
        rows = list(csv.reader(io.StringIO("".join(text for _, text in block), newline="")))
    except csv.Error:
        rows = None

    if rows is not None and len(rows) == len(block):
        return [
            CSVRecord(fields=fields, line_number=line_number, bytes_read=bytes_read)
            for (line_number, _), fields in zip(block, rows)
            if not _is_blank(fields)
        ]

    records = []
    for line_number, text in block:
        try:
            parsed = list(csv.reader(io.StringIO(text, newline="")))
        except csv.Error as e:
            _report(on_error, ParseError(f"Malformed CSV record: {e}", line_number=line_number, snippet=text))
            continue
        for fields in parsed:
            if not _is_blank(fields):
                records.append(CSVRecord(fields=fields, line_number=line_number, bytes_read=bytes_read))
    return records


async def iter_csv_records(
    path: Union[str, Path],
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    encoding: str = "utf-8-sig",
    max_record_bytes: int = DEFAULT_MAX_RECORD_BYTES,
    on_error: Optional[ErrorHandler] = None,
) -> AsyncIterator[CSVRecord]:
    """
    Yield the records of a CSV file in source order.

    Blank lines are skipped. A leading BOM is dropped by the default ``utf-8-sig``
    encoding and undecodable bytes are replaced. Records that cannot be parsed, or that
    grow past ``max_record_bytes`` (an unterminated quoted field, usually), are reported through
    ``on_error`` and skipped.

    Args:
        path: CSV file on disk
        chunk_size: Bytes per read
        encoding: Text encoding of the file
        max_record_bytes: Size limit for a single record
        on_error: Called with a ParseError for every skipped record

    Yields:
        CSVRecord for every non-blank record
    """
    if csv.field_size_limit() < max_record_bytes:
        csv.field_size_limit(max_record_bytes)

    decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
    bytes_read = 0
    line_number = 0
    carry = ""

    record_lines: List[str] = []
    record_start = 1
    record_size = 0
    in_quotes = False

    async with aiofiles.open(path, "rb") as f:
        while True:
            chunk = await f.read(chunk_size)
            final = not chunk
            bytes_read += len(chunk)

            parts = (carry + decoder.decode(chunk, final=final)).split("\n")
            lines = [part + "\n" for part in parts[:-1]]
            # The unterminated tail waits for the next chunk
            carry = parts[-1]
            if final and carry:
                lines.append(carry)
                carry = ""

            block: List[Tuple[int, str]] = []
            for line in lines:
                line_number += 1
                if not record_lines:
                    record_start = line_number
                record_lines.append(line)
                record_size += len(line)
                in_quotes = _inside_quotes(line, in_quotes)

                if not in_quotes:
                    block.append((record_start, "".join(record_lines)))
                elif record_size > max_record_bytes:
                    _report(
                        on_error,
                        ParseError(
                            f"Record exceeds {max_record_bytes} bytes",
                            line_number=record_start,
                            snippet=record_lines[0],
                        ),
                    )
                else:
                    continue
                record_lines = []
                record_size = 0
                in_quotes = False

            if final and record_lines:
                # Unterminated quoted field at end of file: hand the remainder to the parser as is
                block.append((record_start, "".join(record_lines)))
                record_lines = []

            for record in _parse_block(block, bytes_read, on_error):
                yield record

            if final:
                break
