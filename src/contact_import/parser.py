from __future__ import annotations

import logging
from typing import List, Tuple

from .models import MalformedInput, RawTable

logger = logging.getLogger(__name__)


def _split_records(text: str, delimiter: str, quote: str) -> List[List[str]]:
    records: List[List[str]] = []
    row: List[str] = []
    buffer: List[str] = []
    in_quotes = False
    idx = 0
    length = len(text)

    while idx < length:
        ch = text[idx]
        if in_quotes:
            if ch == quote:
                if idx + 1 < length and text[idx + 1] == quote:
                    buffer.append(quote)
                    idx += 2
                    continue
                in_quotes = False
            else:
                buffer.append(ch)
        elif ch == quote and not buffer:
            in_quotes = True
        elif ch == delimiter:
            row.append("".join(buffer))
            buffer = []
        elif ch == "\n":
            row.append("".join(buffer))
            records.append(row)
            row = []
            buffer = []
        else:
            buffer.append(ch)
        idx += 1

    if buffer or row or in_quotes:
        row.append("".join(buffer))
        records.append(row)
    return records


def _is_blank(record: List[str]) -> bool:
    return all(not cell.strip() for cell in record)


def parse_delimited(text: str, delimiter: str = ",", quote: str = '"') -> RawTable:
    """
    Parse delimited text into a rectangular :class:`RawTable`.

    Quoted fields may contain the delimiter, newlines and doubled quotes.
    Data rows shorter than the header are padded with empty cells; longer rows
    are truncated to the header width and the dropped cells are lost.
    """
    if len(delimiter) != 1 or len(quote) != 1:
        raise ValueError("delimiter and quote must be single characters")
    normalized = (text or "").lstrip("\ufeff").replace("\r\n", "\n").replace("\r", "\n")
    records = [record for record in _split_records(normalized, delimiter, quote) if not _is_blank(record)]
    if len(records) < 2:
        raise MalformedInput("Input must have a header row and at least one data row.")

    headers = tuple(records[0])
    width = len(headers)
    rows: List[Tuple[str, ...]] = []
    padded: List[int] = []
    truncated: List[int] = []
    for index, record in enumerate(records[1:]):
        if len(record) < width:
            padded.append(index)
            record = record + [""] * (width - len(record))
        elif len(record) > width:
            truncated.append(index)
            record = record[:width]
        rows.append(tuple(record))

    if truncated:
        logger.warning(
            "Truncated %d row(s) with more cells than the %d header column(s); extra cells were dropped",
            len(truncated),
            width,
        )
    if padded:
        logger.info("Padded %d short row(s) with empty cells", len(padded))
    logger.info("Parsed %d data row(s) across %d column(s)", len(rows), width)
    return RawTable(
        headers=headers,
        rows=tuple(rows),
        padded_rows=tuple(padded),
        truncated_rows=tuple(truncated),
    )


def format_delimited(table: RawTable, delimiter: str = ",", quote: str = '"') -> str:
    """Render a table back to delimited text, quoting cells only when needed."""

    def render(cell: str) -> str:
        if delimiter in cell or quote in cell or "\n" in cell or "\r" in cell:
            return quote + cell.replace(quote, quote * 2) + quote
        return cell

    lines = [delimiter.join(render(cell) for cell in table.headers)]
    lines.extend(delimiter.join(render(cell) for cell in row) for row in table.rows)
    return "\n".join(lines) + "\n"
