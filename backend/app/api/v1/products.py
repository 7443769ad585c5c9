"""
Products API endpoints.

POST /products/import/xml-cenik     — price list XML ({xml})
POST /products/import/xml-popisky   — descriptions XML ({xml})
POST /products/import/excel         — spreadsheet upload (multipart "file")
POST /products/import/intelek       — download + stage the vendor feed
POST /products/import/async         — hand an XML feed to the worker
GET  /products/import/status        — all tracked imports (?active=true: processing only)
GET  /products/import/status/{id}   — worker import progress
POST /products/import/status/{id}/cancel
POST /products/import/cleanup?max_age_hours=48 — drop old finished statuses
POST /products/merge                — rebuild the catalog now
GET  /products?kategorie=&vyrobce=&search=&page=1&limit=50&price_min=&price_max=&in_stock=&sort=&order=
GET  /products/categories | /manufacturers | /price-range | /import-history
GET  /products/{kod}
"""
import asyncio
import logging
from typing import List, Literal, Optional

from fastapi import APIRouter, Depends, File, Query, UploadFile, status

from app.config import get_settings
from app.core.exceptions import ImportNotFoundError, ImportValidationError
from app.parsers.excel_parser import parse_excel_products
from app.parsers.xml_feed_parser import parse_descriptions_xml, parse_price_list_xml
from app.schemas.product import (
    AsyncImportRequest,
    ImportCancelResponse,
    ImportCleanupResponse,
    ImportHistoryResponse,
    ImportResponse,
    ImportStatusResponse,
    IntelekImportRequest,
    MergedProduct,
    MergeResponse,
    PriceRange,
    ProductListResponse,
    SourceTag,
    XmlImportRequest,
)
from app.services.catalog_context import CatalogContext, get_catalog_context

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/products", tags=["Products"])

EXCEL_EXTENSIONS = (".xlsx", ".xls")
MAX_PAGE_SIZE = get_settings().catalog_max_page_size
NO_PRODUCTS_WARNING = "No valid products found in the uploaded data"


async def _store(ctx: CatalogContext, products, source: SourceTag, filename: Optional[str] = None) -> ImportResponse:
    """Store parsed products; an empty feed is a warning and stores nothing."""
    if not products:
        logger.warning("Import %s: no valid products, nothing stored", source.value)
        return ImportResponse(warning=NO_PRODUCTS_WARNING, count=0, filename=filename, source=source.value)
    count = await ctx.imports.store_products_from_source(products, source, filename=filename)
    return ImportResponse(
        message=f"Imported {count} products from {source.value}",
        count=count,
        filename=filename,
        source=source.value,
    )


# ── Imports ───────────────────────────────────────────────

@router.post("/import/xml-cenik", response_model=ImportResponse, response_model_exclude_none=True)
async def import_price_list(
    body: XmlImportRequest,
    ctx: CatalogContext = Depends(get_catalog_context),
):
    """Import the price list feed."""
    products = parse_price_list_xml(body.xml)
    return await _store(ctx, products, SourceTag.XML_CENIK)


@router.post("/import/xml-popisky", response_model=ImportResponse, response_model_exclude_none=True)
async def import_descriptions(
    body: XmlImportRequest,
    ctx: CatalogContext = Depends(get_catalog_context),
):
    """Import the descriptions feed."""
    products = parse_descriptions_xml(body.xml)
    return await _store(ctx, products, SourceTag.XML_POPISKY)


@router.post("/import/excel", response_model=ImportResponse, response_model_exclude_none=True)
async def import_excel(
    file: UploadFile = File(...),
    ctx: CatalogContext = Depends(get_catalog_context),
):
    """Import a spreadsheet (.xlsx / .xls, first sheet)."""
    filename = file.filename or "upload.xlsx"
    if not filename.lower().endswith(EXCEL_EXTENSIONS):
        raise ImportValidationError(f"Unsupported file type '{filename}', expected .xlsx or .xls")

    content = await file.read()
    max_bytes = ctx.settings.excel_max_upload_mb * 1024 * 1024
    if len(content) > max_bytes:
        raise ImportValidationError(
            f"File is too large ({len(content)} bytes, limit {ctx.settings.excel_max_upload_mb} MB)"
        )

    products = await asyncio.to_thread(parse_excel_products, content)
    return await _store(ctx, products, SourceTag.EXCEL, filename=filename)


@router.post("/import/intelek", response_model=ImportResponse, response_model_exclude_none=True)
async def import_intelek(
    body: Optional[IntelekImportRequest] = None,
    ctx: CatalogContext = Depends(get_catalog_context),
):
    """Download the Intelek export and stage it as ``intelek_xml``."""
    url = body.url if body else None
    count = await ctx.intelek_feed().import_feed(url)
    if not count:
        return ImportResponse(warning=NO_PRODUCTS_WARNING, count=0, source=SourceTag.INTELEK_XML.value)
    return ImportResponse(
        message=f"Imported {count} products from Intelek",
        count=count,
        source=SourceTag.INTELEK_XML.value,
    )


@router.post("/import/async", status_code=status.HTTP_202_ACCEPTED)
async def import_async(
    body: AsyncImportRequest,
    ctx: CatalogContext = Depends(get_catalog_context),
):
    """Queue an XML feed for the import worker."""
    from celery_app.tasks.tasks import import_product_feed

    if body.source == SourceTag.EXCEL:
        raise ImportValidationError("Excel files are imported through /products/import/excel")

    import_id = ctx.statuses.new_import_id()
    await ctx.statuses.start(import_id, body.source.value)
    import_product_feed.apply_async(
        kwargs={
            "import_id": import_id,
            "source": body.source.value,
            "payload": body.xml,
            "filename": body.filename,
        },
        queue="imports",
    )
    logger.info("Queued %s import %s", body.source.value, import_id)
    return {"import_id": import_id, "status": "processing"}


@router.get("/import/status", response_model=List[ImportStatusResponse])
async def list_import_statuses(
    active: bool = Query(False, description="Only imports still processing"),
    ctx: CatalogContext = Depends(get_catalog_context),
):
    """Tracked imports, newest first."""
    if active:
        return await ctx.statuses.list_active()
    return await ctx.statuses.list_imports()


@router.get("/import/status/{import_id}", response_model=ImportStatusResponse)
async def import_status(
    import_id: str,
    ctx: CatalogContext = Depends(get_catalog_context),
):
    current = await ctx.statuses.get(import_id)
    if current is None:
        raise ImportNotFoundError(import_id)
    return current


@router.post("/import/status/{import_id}/cancel", response_model=ImportCancelResponse)
async def cancel_import(
    import_id: str,
    ctx: CatalogContext = Depends(get_catalog_context),
):
    return await ctx.statuses.cancel(import_id)


@router.post("/import/cleanup", response_model=ImportCleanupResponse)
async def cleanup_imports(
    max_age_hours: Optional[int] = Query(None, ge=0),
    ctx: CatalogContext = Depends(get_catalog_context),
):
    """Remove finished import statuses older than ``max_age_hours``."""
    if max_age_hours is None:
        max_age_hours = ctx.settings.import_status_max_age_hours
    return await ctx.statuses.cleanup_old_imports(max_age_hours=max_age_hours)


@router.get("/import-history", response_model=ImportHistoryResponse)
async def import_history(ctx: CatalogContext = Depends(get_catalog_context)):
    return await ctx.history.get_product_import_history()


# ── Merge ─────────────────────────────────────────────────

@router.post("/merge", response_model=MergeResponse)
async def merge_products(ctx: CatalogContext = Depends(get_catalog_context)):
    """Rebuild the catalog from the stored sources."""
    count = await ctx.merge.recompute()
    return MergeResponse(message=f"Merged {count} products", count=count)


# ── Catalog ───────────────────────────────────────────────

@router.get("", response_model=ProductListResponse)
async def list_products(
    kategorie: Optional[str] = Query(None),
    vyrobce: Optional[str] = Query(None),
    search: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1, le=MAX_PAGE_SIZE),
    price_min: Optional[float] = Query(None),
    price_max: Optional[float] = Query(None),
    in_stock: bool = Query(False),
    sort: Optional[Literal[
        "kod", "nazev", "cena_bez_dph", "cena_s_dph", "dostupnost", "kategorie", "vyrobce",
    ]] = Query(None),
    order: Literal["asc", "desc"] = Query("asc"),
    ctx: CatalogContext = Depends(get_catalog_context),
):
    """Catalog list with filters, sorting and pagination."""
    return await ctx.queries.get_products(
        kategorie=kategorie,
        vyrobce=vyrobce,
        search=search,
        page=page,
        limit=limit,
        price_min=price_min,
        price_max=price_max,
        in_stock=in_stock,
        sort_field=sort,
        sort_direction=order,
    )


@router.get("/categories")
async def list_categories(ctx: CatalogContext = Depends(get_catalog_context)):
    return await ctx.queries.get_product_categories()


@router.get("/manufacturers")
async def list_manufacturers(ctx: CatalogContext = Depends(get_catalog_context)):
    return await ctx.queries.get_product_manufacturers()


@router.get("/price-range", response_model=PriceRange)
async def price_range(ctx: CatalogContext = Depends(get_catalog_context)):
    return await ctx.queries.get_product_price_range()


@router.get("/{kod}", response_model=MergedProduct, response_model_exclude_none=True)
async def product_detail(kod: str, ctx: CatalogContext = Depends(get_catalog_context)):
    """Full merged record of one product."""
    return await ctx.queries.get_product_detail(kod)
