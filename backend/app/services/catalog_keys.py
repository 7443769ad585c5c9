"""
Key space of the catalog in the key-value store.

Each key has exactly one writer:
    - SourceRecordStore    → source_<tag>
    - ImportHistoryTracker → product_sources
    - ProductMergeService  → product_catalog, products:<kod>
    - ProductIndexService  → product_index_*, product_categories,
                             product_manufacturers, product_price_range
    - ImportStatusTracker  → import_status:<id>, import_status_index
    - OfferService         → offers:<id>, offers_index
"""

PRODUCT_SOURCES_KEY = "product_sources"
PRODUCT_CATALOG_KEY = "product_catalog"
PRODUCT_CATEGORIES_KEY = "product_categories"
PRODUCT_MANUFACTURERS_KEY = "product_manufacturers"
PRODUCT_PRICE_RANGE_KEY = "product_price_range"
IMPORT_STATUS_INDEX_KEY = "import_status_index"
OFFERS_INDEX_KEY = "offers_index"


def source_key(source: str) -> str:
    return f"source_{source}"


def product_key(kod: str) -> str:
    return f"products:{kod}"


def category_index_key(kategorie: str) -> str:
    return f"product_index_kategorie:{kategorie}"


def manufacturer_index_key(vyrobce: str) -> str:
    return f"product_index_vyrobce:{vyrobce}"


def import_status_key(import_id: str) -> str:
    return f"import_status:{import_id}"


def offer_key(offer_id: str) -> str:
    return f"offers:{offer_id}"
