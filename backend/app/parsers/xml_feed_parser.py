"""
Parsers for the supplier XML feeds.

    parse_price_list_xml    — <product> price list   → source "xml_cenik"
    parse_descriptions_xml  — <product> descriptions → source "xml_popisky"

Both feeds are flat lists of <product> elements. Rows without <kod> are
skipped. Text fields may carry CDATA with embedded HTML; it is reduced to
plain text.
"""

import logging
import re
import xml.etree.ElementTree as ET
from typing import Any, Iterator, List, Optional, Union

from bs4 import BeautifulSoup

from app.core.exceptions import FeedParseError
from app.schemas.product import ProductRecord, SourceTag, normalize_availability

logger = logging.getLogger(__name__)

_LEADING_INT_RE = re.compile(r"^\s*([+-]?\d+)")


# ── Shared helpers ─────────────────────────────────────────

def parse_feed_root(xml_text: Union[str, bytes], feed_name: str) -> ET.Element:
    """Parse the document or raise FeedParseError."""
    if not xml_text or not xml_text.strip():
        raise FeedParseError(f"{feed_name}: empty document")
    try:
        return ET.fromstring(xml_text)
    except ET.ParseError as e:
        raise FeedParseError(f"{feed_name}: invalid XML ({e})") from e


def iter_products(root: ET.Element) -> Iterator[ET.Element]:
    """All <product> elements, the root itself included when it is one."""
    return root.iter("product")


def clean_text(text: Optional[str]) -> str:
    """Strip HTML tags (from CDATA blocks) and surrounding whitespace."""
    if not text:
        return ""
    text = text.replace("<![CDATA[", "").replace("]]>", "")
    if "<" in text and ">" in text:
        text = BeautifulSoup(text, "html.parser").get_text()
    return text.strip()


def element_text(element: Optional[ET.Element]) -> str:
    """Full text content of an element, nested markup flattened."""
    if element is None:
        return ""
    return "".join(element.itertext()).strip()


def child_text(product: ET.Element, tag: str) -> str:
    """Text of the first direct child ``tag``."""
    return element_text(product.find(tag))


def parse_number(value: Any) -> float:
    """
    Lenient price parse, anything unparsable → 0.

    "1 234,50" → 1234.5, "1.234,50" → 1234.5, "1,234.50" → 1234.5: when both
    separators occur the last one is the decimal point.
    """
    if value is None:
        return 0
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return value
    text = re.sub(r"\s+", "", str(value))
    if not text:
        return 0
    if "," in text and "." in text:
        thousands = "." if text.rfind(",") > text.rfind(".") else ","
        text = text.replace(thousands, "")
    text = text.replace(",", ".")
    try:
        return float(text)
    except ValueError:
        logger.debug("Unparsable number %r, using 0", value)
        return 0


def parse_optional_number(value: Any) -> Optional[float]:
    """Like parse_number but an empty value stays None."""
    if value is None or str(value).strip() == "":
        return None
    return parse_number(value)


def parse_stock(value: Any) -> Optional[Union[int, float]]:
    """Stock level from "12", "12 ks" or legacy text such as "skladem"."""
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return value
    text = str(value or "")
    match = _LEADING_INT_RE.match(text)
    if match:
        return int(match.group(1))
    return normalize_availability(text)


# ── Price list ─────────────────────────────────────────────

def parse_price_list_xml(xml_text: Union[str, bytes]) -> List[ProductRecord]:
    """
    Price list feed.

    Tags: kod, ean, nazev, vasecenabezdph, vasecenasdph, dostupnost,
    eubezdph, eusdph, remabezdph, remadph.
    """
    root = parse_feed_root(xml_text, "Price list")
    products: List[ProductRecord] = []
    skipped = 0

    for item in iter_products(root):
        kod = child_text(item, "kod")
        if not kod:
            skipped += 1
            continue
        products.append(ProductRecord(
            kod=kod,
            ean=child_text(item, "ean") or None,
            nazev=clean_text(child_text(item, "nazev")),
            cena_bez_dph=parse_number(child_text(item, "vasecenabezdph")),
            cena_s_dph=parse_number(child_text(item, "vasecenasdph")),
            dostupnost=parse_stock(child_text(item, "dostupnost")),
            eu_bez_dph=parse_optional_number(child_text(item, "eubezdph")),
            eu_s_dph=parse_optional_number(child_text(item, "eusdph")),
            rema_bez_dph=parse_optional_number(child_text(item, "remabezdph")),
            rema_dph=parse_optional_number(child_text(item, "remadph")),
            source=SourceTag.XML_CENIK,
        ))

    if skipped:
        logger.warning("Price list: skipped %d products without kod", skipped)
    logger.info("Price list parsed: %d products", len(products))
    return products


# ── Descriptions ───────────────────────────────────────────

def _image_url(item: ET.Element) -> str:
    """Plain <obrazek>, else the first gallery image <obrazek id="1">."""
    for image in item.findall("obrazek"):
        if not image.attrib and element_text(image):
            return element_text(image)
    return element_text(item.find("obrazek[@id='1']"))


def _parameters(item: ET.Element) -> str:
    """<parametr><nazev/><hodnota/></parametr> → "Name: Value" lines."""
    lines = ""
    for param in item.iter("parametr"):
        name = clean_text(param.findtext("nazev"))
        value = clean_text(param.findtext("hodnota"))
        if name and value:
            lines += f"{name}: {value}\n"
    return lines


def _documents(item: ET.Element) -> str:
    documents = [f"Datasheet: {element_text(el)}" for el in item.iter("datasheet") if element_text(el)]
    documents += [f"Manual: {element_text(el)}" for el in item.iter("manual") if element_text(el)]
    return "\n".join(documents)


def parse_descriptions_xml(xml_text: Union[str, bytes]) -> List[ProductRecord]:
    """
    Descriptions feed.

    Tags: kod, ean, nazev, kategorie, vyrobce, dodani, minodber, jednotka,
    kratkypopis, popis, obrazek, parametr, datasheet, manual.
    """
    root = parse_feed_root(xml_text, "Descriptions")
    products: List[ProductRecord] = []
    skipped = 0

    for item in iter_products(root):
        kod = child_text(item, "kod")
        if not kod:
            skipped += 1
            continue
        products.append(ProductRecord(
            kod=kod,
            ean=child_text(item, "ean") or None,
            nazev=clean_text(child_text(item, "nazev")),
            kategorie=clean_text(child_text(item, "kategorie")) or None,
            vyrobce=clean_text(child_text(item, "vyrobce")) or None,
            dodani=child_text(item, "dodani") or None,
            minodber=child_text(item, "minodber") or None,
            jednotka=child_text(item, "jednotka") or None,
            kratky_popis=clean_text(child_text(item, "kratkypopis")) or None,
            popis=clean_text(child_text(item, "popis")) or None,
            obrazek=_image_url(item) or None,
            parametry=_parameters(item) or None,
            dokumenty=_documents(item) or None,
            source=SourceTag.XML_POPISKY,
        ))

    if skipped:
        logger.warning("Descriptions: skipped %d products without kod", skipped)
    logger.info("Descriptions parsed: %d products", len(products))
    return products
