"""Normalizer: turn heterogeneous source rows into ``CandidateRecord`` values.

Responsibilities of this stage:
- map raw columns onto candidate fields through an explicit ``ColumnMapping``
- validate identifiers and parse prices without touching persistence
- derive the comparison text used by the lexical strategy
"""

from __future__ import annotations

import logging
import unicodedata
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Final

from prodrecon.domain.errors import RowNormalizationError
from prodrecon.domain.model import parse_price

from .contracts import CandidateRecord

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping, Sequence
    from decimal import Decimal

    from prodrecon.domain.model import ProductDomain

log = logging.getLogger(__name__)

AUTO_REFERENCE_PREFIX: Final[str] = "AUTO_"
AUTO_REFERENCE_NAME_CHARS: Final[int] = 20
HEADER_SCAN_ROWS: Final[int] = 20


class CandidateField(StrEnum):
    REFERENCE = "reference"
    NAME = "name"
    BRAND = "brand"
    EAN = "ean"
    PRICE = "price"
    STOCK = "stock"
    CATEGORY = "category"


@dataclass(slots=True, frozen=True)
class MappedField:
    column: str
    target: CandidateField
    value: object


@dataclass(slots=True, frozen=True)
class UnmappedColumn:
    column: str
    value: object


type ColumnValue = MappedField | UnmappedColumn


@dataclass(slots=True, frozen=True)
class ColumnMapping:
    """Explicit header -> field mapping; unknown headers stay visible as ``UnmappedColumn``."""

    columns: Mapping[str, CandidateField]

    @classmethod
    def identity(cls) -> ColumnMapping:
        return cls(columns={member.value: member for member in CandidateField})

    def apply(self, row: Mapping[str, object]) -> tuple[ColumnValue, ...]:
        values: list[ColumnValue] = []
        for column, value in row.items():
            target = self.columns.get(column)
            if target is None:
                values.append(UnmappedColumn(column=column, value=value))
            else:
                values.append(MappedField(column=column, target=target, value=value))
        return tuple(values)


# Checked in this order; a header is claimed by the first field that matches it.
_HEADER_PATTERNS: Final[tuple[tuple[CandidateField, tuple[str, ...]], ...]] = (
    (CandidateField.EAN, ("ean", "ean13", "code ean", "gtin", "barcode", "upc")),
    (
        CandidateField.REFERENCE,
        ("code produit", "référence", "reference", "ref", "code", "sku"),
    ),
    (
        CandidateField.NAME,
        ("désignation", "designation", "description", "produit", "article", "libellé", "nom",
         "name", "product", "title"),
    ),
    (
        CandidateField.PRICE,
        ("pau ht", "prix d'achat", "pa ht", "prix achat", "prix ht", "tarif", "pau", "prix",
         "price", "cost"),
    ),
    (CandidateField.STOCK, ("qte", "quantité", "quantity", "stock", "disponibilité", "dispo")),
    (CandidateField.BRAND, ("marque", "brand", "fabricant", "manufacturer")),
    (CandidateField.CATEGORY, ("catégorie", "categorie", "category", "gamme", "famille")),
)

_HEADER_KEYWORDS: Final[tuple[str, ...]] = (
    "prix", "tarif", "référence", "ref", "code", "ean", "produit", "article", "désignation",
    "description", "stock", "quantité", "qte", "marque", "catégorie", "category", "brand",
    "price", "product", "name", "pau", "ppi", "disponibilité", "statut", "tva",
)


def normalize_header(header: object) -> str:
    if header is None:
        return ""
    return " ".join(str(header).lower().split())


def suggest_column_mapping(headers: Iterable[str]) -> ColumnMapping:
    """Propose a mapping from header keywords (French supplier sheets and English feeds)."""

    remaining = {header: normalize_header(header) for header in headers}
    columns: dict[str, CandidateField] = {}
    for target, patterns in _HEADER_PATTERNS:
        for header, normalized in remaining.items():
            if target is CandidateField.REFERENCE and "ean" in normalized:
                continue
            if any(pattern in normalized for pattern in patterns):
                columns[header] = target
                del remaining[header]
                break
    log.debug("Suggested column mapping: %s", columns)
    return ColumnMapping(columns=columns)


def detect_header_row(rows: Sequence[Sequence[object]]) -> int:
    """Index of the most likely header row among the first rows of a sheet.

    A header has at least five non-empty cells, three of which contain a known
    keyword, and is followed by a non-empty row. Falls back to the first row.
    """

    for index, row in enumerate(rows[:HEADER_SCAN_ROWS]):
        cells = [normalize_header(cell) for cell in row]
        if sum(1 for cell in cells if cell) < 5:
            continue
        matches = sum(1 for cell in cells if any(keyword in cell for keyword in _HEADER_KEYWORDS))
        if matches < 3 or index + 1 >= len(rows):
            continue
        if any(normalize_header(cell) for cell in rows[index + 1]):
            log.debug("Header row detected at index %s with %s keywords", index, matches)
            return index
    return 0


def match_text(name: str, brand: str | None = None) -> str:
    """Comparison text: brand + name, NFKC, casefolded, punctuation stripped."""

    normalized_name = normalize_text(name)
    normalized_brand = normalize_text(brand) if brand else ""
    if not normalized_brand or normalized_name.startswith(normalized_brand):
        return normalized_name
    return f"{normalized_brand} {normalized_name}".strip()


def normalize_text(value: str | None) -> str:
    if value is None:
        return ""
    text = unicodedata.normalize("NFKC", value)
    text = text.casefold()
    text = "".join(ch for ch in text if not unicodedata.category(ch).startswith("P"))
    return " ".join(text.split())


def auto_reference(name: str) -> str:
    return AUTO_REFERENCE_PREFIX + "_".join(name[:AUTO_REFERENCE_NAME_CHARS].split()).upper()


@dataclass(slots=True)
class RowNormalizer:
    """Turn one source row into a candidate, or ``None`` when the row must be skipped."""

    source_kind: ProductDomain
    origin: str | None = None
    mapping: ColumnMapping | None = None
    _suggested: dict[tuple[str, ...], ColumnMapping] = field(default_factory=dict, repr=False)

    def normalize(self, row: Mapping[str, object]) -> CandidateRecord | None:
        fields: dict[CandidateField, object] = {}
        extras: dict[str, object] = {}
        for value in self._mapping_for(row).apply(row):
            match value:
                case MappedField(target=target, value=raw):
                    fields.setdefault(target, raw)
                case UnmappedColumn(column=column, value=raw):
                    extras[column] = raw

        name = _text(fields.get(CandidateField.NAME))
        reference = _text(fields.get(CandidateField.REFERENCE))
        if not name and not reference:
            return None
        if not reference:
            reference = auto_reference(name or "")

        return CandidateRecord(
            source_kind=self.source_kind,
            source_ref=reference,
            name=name or reference,
            brand=_text(fields.get(CandidateField.BRAND)),
            identifier_ean=_text(fields.get(CandidateField.EAN)),
            identifier_code=reference,
            price=_price(fields.get(CandidateField.PRICE), reference),
            stock=_stock(fields.get(CandidateField.STOCK), reference),
            origin=self.origin,
            raw_payload=dict(row),
        )

    def _mapping_for(self, row: Mapping[str, object]) -> ColumnMapping:
        if self.mapping is not None:
            return self.mapping
        headers = tuple(row.keys())
        mapping = self._suggested.get(headers)
        if mapping is None:
            identity = ColumnMapping.identity()
            if all(header in identity.columns for header in headers):
                mapping = identity
            else:
                mapping = suggest_column_mapping(headers)
            self._suggested[headers] = mapping
        return mapping


def _text(value: object) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _price(value: object, reference: str) -> Decimal | None:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    price = parse_price(value)
    if price is None:
        raise RowNormalizationError(f"Unparseable price {value!r} for {reference}")
    if price < 0:
        raise RowNormalizationError(f"Negative price {value!r} for {reference}")
    return price


def _stock(value: object, reference: str) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    text = str(value).strip()
    if not text:
        return None
    try:
        return int(float(text.replace(",", ".")))
    except ValueError as exc:
        raise RowNormalizationError(f"Unparseable stock {value!r} for {reference}") from exc
