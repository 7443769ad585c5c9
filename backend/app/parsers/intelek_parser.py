"""
Intelek vendor feed (export_cena.jsp?xml=true).

Same <product> layout as the price list, with the product name in CDATA and
the EU price under the vendor's own tag spelling ``eubezbph``. The feed has
no categories or manufacturers: every product gets the default category and
a manufacturer guessed from its name.
"""

import logging
from typing import List, Optional, Union

from app.parsers.xml_feed_parser import (
    child_text,
    clean_text,
    iter_products,
    parse_feed_root,
    parse_number,
    parse_optional_number,
)
from app.schemas.product import ProductRecord, SourceTag

logger = logging.getLogger(__name__)

DEFAULT_CATEGORY = "Konektory a síťové prvky"
DEFAULT_MANUFACTURER = "Intelek"
KNOWN_MANUFACTURERS = (
    "Intelek", "TP-Link", "D-Link", "Cisco", "HP", "Dell", "Lenovo", "Zyxel",
    "Mikrotik", "Ubiquiti", "Netgear", "Asus", "Allied Telesis", "Fortinet", "Huawei",
)


def guess_manufacturer(nazev: str, default: str = DEFAULT_MANUFACTURER) -> str:
    """Known vendor named in the title, else its first real word, else default."""
    for manufacturer in KNOWN_MANUFACTURERS:
        if manufacturer in nazev:
            return manufacturer
    first = nazev.split(" ")[0] if nazev else ""
    if len(first) > 2 and not first.isdigit():
        return first
    return default


def parse_intelek_xml(
    xml_text: Union[str, bytes],
    default_category: str = DEFAULT_CATEGORY,
    default_manufacturer: str = DEFAULT_MANUFACTURER,
) -> List[ProductRecord]:
    """Parse the vendor export into records tagged ``intelek_xml``."""
    root = parse_feed_root(xml_text, "Intelek feed")
    products: List[ProductRecord] = []
    seen = 0

    for item in iter_products(root):
        seen += 1
        kod = child_text(item, "kod")
        if not kod:
            continue
        nazev = clean_text(child_text(item, "nazev"))
        eu_bez: Optional[float] = parse_optional_number(
            child_text(item, "eubezbph") or child_text(item, "eubezdph")
        )
        products.append(ProductRecord(
            kod=kod,
            ean=child_text(item, "ean") or None,
            nazev=nazev,
            dostupnost=parse_number(child_text(item, "dostupnost")),
            cena_bez_dph=parse_number(child_text(item, "vasecenabezdph")),
            cena_s_dph=parse_number(child_text(item, "vasecenasdph")),
            eu_bez_dph=eu_bez,
            eu_s_dph=parse_optional_number(child_text(item, "eusdph")),
            rema_bez_dph=parse_optional_number(child_text(item, "remabezdph")),
            rema_dph=parse_optional_number(child_text(item, "remadph")),
            kategorie=default_category,
            vyrobce=guess_manufacturer(nazev, default_manufacturer),
            source=SourceTag.INTELEK_XML,
        ))

    logger.info("Intelek feed parsed: %d of %d products valid", len(products), seen)
    return products
