"""Row sources over attachments already stored on disk (CSV or NDJSON)."""

from __future__ import annotations

import csv
import io
import json
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from prodrecon.config import FatalConfigError
from prodrecon.domain.ports import SourcePage
from prodrecon.domain.reconciliation import detect_header_row

if TYPE_CHECKING:
    from pathlib import Path

    from prodrecon.domain.ports import SourceRow

log = logging.getLogger(__name__)

NDJSON_SUFFIXES = frozenset({".ndjson", ".jsonl"})
CSV_SUFFIXES = frozenset({".csv", ".tsv", ".txt"})
CSV_DELIMITERS = (",", ";", "\t", "|")
# spreadsheet exports from Windows hosts arrive in the legacy code page
CSV_ENCODINGS = ("utf-8-sig", "cp1252")


@dataclass(slots=True)
class FileRowSource:
    """Serve a file's data rows in offset/limit slices.

    The file is parsed once on first access. CSV headers are located with
    ``detect_header_row`` so supplier preambles above the header are ignored.
    """

    path: Path
    _rows: list[SourceRow] | None = field(default=None, init=False, repr=False)

    def __post_init__(self) -> None:
        suffix = self.path.suffix.lower()
        if suffix not in NDJSON_SUFFIXES | CSV_SUFFIXES:
            raise FatalConfigError(f"Unsupported attachment type: {self.path.name}")
        if not self.path.is_file():
            raise FatalConfigError(f"Attachment not found: {self.path}")

    def fetch_page(self, offset: int, limit: int) -> SourcePage:
        rows = self._load()
        page = rows[offset : offset + limit]
        end = offset + len(page)
        return SourcePage(
            rows=tuple(page),
            has_more=end < len(rows),
            total_count=len(rows),
            next_offset=end,
        )

    def _load(self) -> list[SourceRow]:
        if self._rows is None:
            if self.path.suffix.lower() in NDJSON_SUFFIXES:
                self._rows = _read_ndjson(self.path)
            else:
                self._rows = _read_csv(self.path)
            log.info("Loaded %s rows from %s", len(self._rows), self.path.name)
        return self._rows


def _read_ndjson(path: Path) -> list[SourceRow]:
    rows: list[SourceRow] = []
    with path.open(encoding="utf-8") as handle:
        for number, line in enumerate(handle, start=1):
            if not line.strip():
                continue
            try:
                payload = json.loads(line)
            except json.JSONDecodeError as exc:
                raise FatalConfigError(f"{path.name} line {number}: invalid JSON") from exc
            if not isinstance(payload, dict):
                raise FatalConfigError(f"{path.name} line {number}: expected an object")
            rows.append(payload)
    return rows


def _decode(path: Path) -> str:
    raw = path.read_bytes()
    for encoding in CSV_ENCODINGS:
        try:
            text = raw.decode(encoding)
        except UnicodeDecodeError:
            log.debug("%s is not valid %s", path.name, encoding)
            continue
        if encoding != CSV_ENCODINGS[0]:
            log.warning("Decoded %s as %s; it is not UTF-8", path.name, encoding)
        return text
    raise FatalConfigError(
        f"{path.name}: unsupported text encoding (expected one of {', '.join(CSV_ENCODINGS)})"
    )


def _read_csv(path: Path) -> list[SourceRow]:
    text = _decode(path)
    delimiter = max(CSV_DELIMITERS, key=text[:4096].count)
    grid = list(csv.reader(io.StringIO(text, newline=""), delimiter=delimiter))

    if not grid:
        return []
    header_index = detect_header_row(grid)
    headers = [cell.strip() for cell in grid[header_index]]
    rows: list[SourceRow] = []
    for cells in grid[header_index + 1 :]:
        if not any(cell.strip() for cell in cells):
            continue
        rows.append(
            {header: cell for header, cell in zip(headers, cells, strict=False) if header}
        )
    return rows
