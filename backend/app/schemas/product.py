"""Pydantic schemas for product records, the merged catalog and imports."""

import re
from enum import Enum
from typing import Any, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


class SourceTag(str, Enum):
    """Importer that produced a product record."""
    XML_CENIK = "xml_cenik"        # price list feed
    XML_POPISKY = "xml_popisky"    # descriptions feed
    EXCEL = "excel"                # spreadsheet upload
    INTELEK_XML = "intelek_xml"    # vendor feed (staged, not merged)


# Merge application order: base → enrich → override
MERGE_SOURCES = (SourceTag.XML_CENIK, SourceTag.XML_POPISKY, SourceTag.EXCEL)

_NUMBER_RE = re.compile(r"^[+-]?\d+([.,]\d+)?$")
_IN_STOCK_WORDS = ("skladem", "dostupn")


def normalize_availability(value: Any) -> Optional[Union[int, float]]:
    """
    Normalize a stock signal to a number.

    Numbers pass through, numeric text is converted, legacy phrases such as
    "skladem" mean 1 piece, anything else (empty, "na objednávku") is None.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return value
    text = str(value).strip().replace("\xa0", "").replace(" ", "")
    if not text:
        return None
    if _NUMBER_RE.match(text):
        number = float(text.replace(",", "."))
        return int(number) if number.is_integer() else number
    lowered = text.lower()
    if any(word in lowered for word in _IN_STOCK_WORDS):
        return 1
    return None


# ── Product records ───────────────────────────────────────────────

class ProductRecord(BaseModel):
    """One item from a single source, before merge."""

    model_config = ConfigDict(extra="ignore", use_enum_values=True)

    # natural key; parsers drop rows without it, the merge skips any left over
    kod: str = ""
    ean: Optional[str] = None
    nazev: str = ""
    cena_bez_dph: float = 0
    cena_s_dph: float = 0
    dostupnost: Optional[Union[int, float]] = None
    kategorie: Optional[str] = None
    vyrobce: Optional[str] = None
    dodani: Optional[str] = None
    minodber: Optional[str] = None
    jednotka: Optional[str] = None
    popis: Optional[str] = None
    kratky_popis: Optional[str] = None
    obrazek: Optional[str] = None
    parametry: Optional[str] = None   # "Name: Value" lines
    dokumenty: Optional[str] = None   # "Datasheet: url" lines
    # price-list / vendor extras
    eu_bez_dph: Optional[float] = None
    eu_s_dph: Optional[float] = None
    rema_bez_dph: Optional[float] = None
    rema_dph: Optional[float] = None
    source: Optional[SourceTag] = None

    @field_validator("kod", mode="before")
    @classmethod
    def strip_kod(cls, v: Any) -> Any:
        if v is None:
            return ""
        return str(v).strip()

    @field_validator("dostupnost", mode="before")
    @classmethod
    def coerce_availability(cls, v: Any) -> Any:
        return normalize_availability(v)

    @field_validator("cena_bez_dph", "cena_s_dph", mode="before")
    @classmethod
    def default_price(cls, v: Any) -> Any:
        return 0 if v is None or v == "" else v

    def to_store(self) -> dict:
        """Plain JSON-ready dict as kept in the source lists."""
        return self.model_dump(mode="json", exclude_none=True)


class MergedProduct(ProductRecord):
    """Canonical catalog entry, one per distinct kod."""

    model_config = ConfigDict(extra="allow", use_enum_values=True)

    merged_sources: List[str] = []


class CatalogProduct(BaseModel):
    """Compact projection entry."""
    kod: str
    nazev: Optional[str] = None
    cena_bez_dph: Optional[float] = None
    cena_s_dph: Optional[float] = None
    dostupnost: Optional[Union[int, float]] = None
    kategorie: Optional[str] = None
    vyrobce: Optional[str] = None
    merged_sources: List[str] = []


# ── Import history ────────────────────────────────────────────────

class ImportHistoryEntry(BaseModel):
    """One row per import call."""
    type: str
    timestamp: str
    products_count: int
    filename: Optional[str] = None


class ImportHistoryResponse(BaseModel):
    """Metadata object, also carries last_updated / last_import_<tag>."""

    model_config = ConfigDict(extra="allow")

    import_history: List[ImportHistoryEntry] = []


# ── Query results ─────────────────────────────────────────────────

class Pagination(BaseModel):
    page: int
    limit: int
    totalProducts: int
    totalPages: int


class ProductListResponse(BaseModel):
    products: List[CatalogProduct]
    pagination: Pagination
    lastUpdated: Optional[str] = None


class PriceRange(BaseModel):
    min_price: float = 0
    max_price: float = 0


# ── Import requests / responses ───────────────────────────────────

class XmlImportRequest(BaseModel):
    """XML feed posted as a JSON string."""
    xml: str = Field(..., min_length=1)


class IntelekImportRequest(BaseModel):
    """Optional explicit export URL; settings are used otherwise."""
    url: Optional[str] = None


class AsyncImportRequest(BaseModel):
    """Feed handed to the worker."""
    source: SourceTag
    xml: str = Field(..., min_length=1)
    filename: Optional[str] = None


class ImportResponse(BaseModel):
    message: Optional[str] = None
    warning: Optional[str] = None
    count: int
    filename: Optional[str] = None
    source: Optional[str] = None


class MergeResponse(BaseModel):
    message: str
    count: int


class ImportStatusResponse(BaseModel):
    """Deferred import progress (``import_status:<id>``)."""
    id: str
    type: str
    status: str
    started_at: str
    finished_at: Optional[str] = None
    products_count: int = 0
    errors: List[str] = []


class ImportCancelResponse(BaseModel):
    message: str
    import_id: str
    status: str


class ImportCleanupResponse(BaseModel):
    removed: int
