"""XML feed parser lookup by source tag (used by the deferred import worker)."""

from typing import Callable, Dict, List, Union

from app.core.exceptions import ImportValidationError
from app.parsers.intelek_parser import parse_intelek_xml
from app.parsers.xml_feed_parser import parse_descriptions_xml, parse_price_list_xml
from app.schemas.product import ProductRecord, SourceTag

XML_FEED_PARSERS: Dict[SourceTag, Callable[[str], List[ProductRecord]]] = {
    SourceTag.XML_CENIK: parse_price_list_xml,
    SourceTag.XML_POPISKY: parse_descriptions_xml,
    SourceTag.INTELEK_XML: parse_intelek_xml,
}


def parse_xml_feed(source: Union[str, SourceTag], xml_text: str) -> List[ProductRecord]:
    """Parse ``xml_text`` with the parser of ``source``."""
    try:
        tag = SourceTag(source)
    except ValueError:
        raise ImportValidationError(f"Unknown product source '{source}'")
    parser = XML_FEED_PARSERS.get(tag)
    if parser is None:
        raise ImportValidationError(f"Source '{tag.value}' is not an XML feed")
    return parser(xml_text)
