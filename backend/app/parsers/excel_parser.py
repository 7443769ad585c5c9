"""
Spreadsheet import (first sheet of an .xlsx / .xls upload).

Headers may be the Czech labels used in the export template or the
snake_case field names; the first matching column wins.
"""

import io
import logging
from typing import Any, Dict, List, Tuple, Union

import pandas as pd

from app.core.exceptions import FeedParseError
from app.parsers.xml_feed_parser import parse_number, parse_stock
from app.schemas.product import ProductRecord, SourceTag

logger = logging.getLogger(__name__)

# field → accepted column headers
COLUMN_MAPPINGS: Dict[str, Tuple[str, ...]] = {
    "kod": ("Kód", "kod"),
    "ean": ("EAN", "ean"),
    "nazev": ("Název", "nazev"),
    "cena_bez_dph": ("Cena bez DPH", "cena_bez_dph"),
    "cena_s_dph": ("Cena s DPH", "cena_s_dph"),
    "dostupnost": ("Dostupnost", "dostupnost"),
    "kategorie": ("Kategorie", "kategorie"),
    "vyrobce": ("Výrobce", "vyrobce"),
    "dodani": ("Dodání", "dodani"),
    "minodber": ("Min. odběr", "minodber"),
    "jednotka": ("Jednotka", "jednotka"),
    "popis": ("Popis", "popis"),
    "kratky_popis": ("Krátký popis", "kratky_popis"),
    "obrazek": ("Obrázek", "obrazek"),
    "parametry": ("Parametry", "parametry"),
    "dokumenty": ("Dokumenty", "dokumenty"),
}
PRICE_FIELDS = ("cena_bez_dph", "cena_s_dph")


def _resolve_columns(columns: List[str]) -> Dict[str, str]:
    """field → actual header present in the sheet."""
    resolved: Dict[str, str] = {}
    for field, candidates in COLUMN_MAPPINGS.items():
        for candidate in candidates:
            if candidate in columns:
                resolved[field] = candidate
                break
    return resolved


def _row_to_record(row: Dict[str, Any], columns: Dict[str, str]) -> ProductRecord:
    data: Dict[str, Any] = {"source": SourceTag.EXCEL}
    for field, column in columns.items():
        value = row.get(column, "")
        if field in PRICE_FIELDS:
            data[field] = parse_number(value)
        elif field == "dostupnost":
            data[field] = parse_stock(value)
        else:
            text = str(value).strip()
            if text:
                data[field] = text
    return ProductRecord(**data)


def parse_excel_products(data: Union[bytes, io.BytesIO]) -> List[ProductRecord]:
    """
    Parse the first sheet of a workbook into product records.

    Args:
        data: raw file content

    Returns:
        Records with a kod; rows without one are dropped.

    Raises:
        FeedParseError: the file is not a readable workbook.
    """
    buffer = io.BytesIO(data) if isinstance(data, (bytes, bytearray)) else data
    try:
        df = pd.read_excel(buffer, sheet_name=0, dtype=str)
    except Exception as e:
        logger.error("Excel read failed: %s", e)
        raise FeedParseError(f"Cannot read Excel file: {e}") from e

    df = df.fillna("")
    df.columns = [str(c).strip() for c in df.columns]
    columns = _resolve_columns(list(df.columns))

    if "kod" not in columns:
        raise FeedParseError("Excel file has no 'Kód' / 'kod' column")

    products: List[ProductRecord] = []
    for row in df.to_dict(orient="records"):
        record = _row_to_record(row, columns)
        if record.kod:
            products.append(record)

    skipped = len(df) - len(products)
    if skipped:
        logger.warning("Excel: skipped %d rows without kod", skipped)
    logger.info("Excel parsed: %d products from %d rows", len(products), len(df))
    return products
